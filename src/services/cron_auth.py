"""Bearer credential verification for the cron and command endpoints."""

import hmac
from typing import Optional

from src.utils.config import EngineConfig
from src.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Token from an ``Authorization: Bearer <token>`` header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def verify_bearer(authorization: Optional[str], secret: str) -> bool:
    """Constant-time comparison of the presented token against ``secret``.

    An empty secret never verifies, so a deployment missing the variable
    rejects every call.
    """
    if not secret:
        logger.error("Bearer secret not configured; rejecting request")
        return False

    token = extract_bearer_token(authorization)
    if token is None:
        return False

    return hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8"))


def verify_cron_request(authorization: Optional[str]) -> bool:
    """Verify the external scheduler's credential (CRON_SECRET)."""
    if EngineConfig.auth_bypassed():
        logger.debug("Cron authentication bypassed (dev mode)")
        return True

    result = verify_bearer(authorization, EngineConfig.cron_secret())
    if not result:
        logger.warning("Cron authentication failed", has_authorization=bool(authorization))
    return result


def verify_api_request(authorization: Optional[str]) -> bool:
    """Verify the UI/admin tooling credential (API_SECRET_KEY)."""
    if EngineConfig.auth_bypassed():
        logger.debug("API authentication bypassed (dev mode)")
        return True

    result = verify_bearer(authorization, EngineConfig.api_secret())
    if not result:
        logger.warning("API authentication failed", has_authorization=bool(authorization))
    return result
