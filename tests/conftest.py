"""Shared pytest fixtures and configuration."""

import os
import pytest
from unittest.mock import MagicMock
from datetime import datetime, timezone
from freezegun import freeze_time

# Set test environment variables before any src module reads them
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-key")
os.environ["NODE_ENV"] = "test"
os.environ["STORE_BACKEND"] = "memory"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["API_SECRET_KEY"] = "test-api-secret"
os.environ.pop("AUTH_BYPASS", None)

from src.services.memory_store import InMemoryStore
from tests.utils.helpers import RecordingNotifier

FROZEN_NOW = datetime(2024, 12, 9, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    """Fixed sweep/transition clock (2024-12-09 12:00 UTC)."""
    return FROZEN_NOW


@pytest.fixture
def store():
    """Empty in-memory store."""
    return InMemoryStore()


@pytest.fixture
def notifier():
    """Notifier that records every call."""
    return RecordingNotifier()


@pytest.fixture
def failing_notifier():
    """Notifier whose every call raises."""
    return RecordingNotifier(fail=True)


@pytest.fixture
def mock_supabase_client():
    """Mock Supabase client for testing."""
    client = MagicMock()
    return client


@pytest.fixture
def freeze_time_fixture():
    """Fixture for freezing time in tests."""
    with freeze_time("2024-12-09 12:00:00") as frozen_time:
        yield frozen_time


@pytest.fixture
def cron_headers():
    return {"Authorization": "Bearer test-cron-secret"}


@pytest.fixture
def api_headers():
    return {"authorization": "Bearer test-api-secret", "content-type": "application/json"}
