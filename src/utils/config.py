"""Engine configuration with environment variable support."""

import os
from datetime import timedelta


# Fixed by product rules, not configurable per deployment
BIDDING_PERIOD_DAYS = 7
BIDDING_PERIOD = timedelta(days=BIDDING_PERIOD_DAYS)
AUTO_CANCEL_GRACE = timedelta(hours=24)


class EngineConfig:
    """Centralized engine configuration."""

    STORE_BACKEND = os.environ.get("STORE_BACKEND", "supabase").lower()
    SWEEP_CONCURRENCY = int(os.environ.get("SWEEP_CONCURRENCY", "5"))
    NOTIFIER_TIMEOUT_SECONDS = float(os.environ.get("NOTIFIER_TIMEOUT_SECONDS", "5"))
    RATE_LIMIT_MAX_REQUESTS = int(os.environ.get("RATE_LIMIT_MAX_REQUESTS", "20"))
    RATE_LIMIT_WINDOW_SECONDS = int(os.environ.get("RATE_LIMIT_WINDOW_SECONDS", "60"))

    @staticmethod
    def cron_secret() -> str:
        """Shared secret presented by the external cron trigger."""
        return os.environ.get("CRON_SECRET", "").strip()

    @staticmethod
    def api_secret() -> str:
        """Shared secret presented by the UI/admin tooling."""
        return os.environ.get("API_SECRET_KEY", "").strip()

    @staticmethod
    def auth_bypassed() -> bool:
        """Check if bearer verification should be bypassed (dev mode)."""
        env = os.environ.get("NODE_ENV", "").lower()
        if env in ("development", "local"):
            return True
        return os.environ.get("AUTH_BYPASS", "").lower() == "true"
