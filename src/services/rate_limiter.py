"""Per-actor command rate limiting backed by a shared counter in Postgres.

Counters live in the ``rate_limits`` table and are incremented by the
``check_rate_limit`` SQL function, so every serverless instance sees the same
window. If the counter store is unreachable the call is allowed and a warning
is logged.
"""

from typing import Optional

from src.services.supabase_client import SupabaseClient
from src.utils.config import EngineConfig
from src.utils.errors import RateLimitError
from src.utils.logging import get_structured_logger, mask_user_id

logger = get_structured_logger(__name__)


def rate_limit_key(command: str, actor_id: Optional[str]) -> str:
    return f"{command}:{actor_id or 'anonymous'}"


class RateLimiter:
    """Fixed-window counter keyed by (command, actor)."""

    def __init__(
        self,
        max_requests: Optional[int] = None,
        window_seconds: Optional[int] = None,
    ):
        self.max_requests = max_requests or EngineConfig.RATE_LIMIT_MAX_REQUESTS
        self.window_seconds = window_seconds or EngineConfig.RATE_LIMIT_WINDOW_SECONDS

    async def allow(self, command: str, actor_id: Optional[str]) -> bool:
        """Count one call and report whether it is within the limit."""
        if EngineConfig.STORE_BACKEND == "memory":
            return True

        key = rate_limit_key(command, actor_id)
        try:
            async with SupabaseClient() as client:
                result = client.rpc("check_rate_limit", {
                    "p_key": key,
                    "p_max_requests": self.max_requests,
                    "p_window_seconds": self.window_seconds,
                }).execute()
        except Exception as e:
            logger.warning(
                "Rate limit check failed; allowing request",
                command=command,
                actor_id=mask_user_id(actor_id),
                error=str(e)
            )
            return True

        allowed = result.data
        if isinstance(allowed, list):
            allowed = allowed[0] if allowed else True
        if isinstance(allowed, dict):
            allowed = allowed.get("check_rate_limit", True)
        return bool(allowed)

    async def enforce(self, command: str, actor_id: Optional[str]) -> None:
        """Raise RateLimitError when the caller is over the limit."""
        if not await self.allow(command, actor_id):
            logger.warning(
                "Rate limit exceeded",
                command=command,
                actor_id=mask_user_id(actor_id),
                max_requests=self.max_requests,
                window_seconds=self.window_seconds
            )
            raise RateLimitError("Rate limit exceeded. Please try again later.")


_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get or create the rate limiter singleton."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter()
    return _rate_limiter
