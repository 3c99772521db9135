"""Tests for the shared-counter rate limiter."""

import pytest
from unittest.mock import MagicMock, patch

from src.services.rate_limiter import RateLimiter, rate_limit_key
from src.utils.config import EngineConfig
from src.utils.errors import RateLimitError


@pytest.fixture
def supabase_backend(mock_supabase_client):
    with patch.object(EngineConfig, "STORE_BACKEND", "supabase"), \
            patch("src.services.supabase_client.get_supabase_client", return_value=mock_supabase_client):
        yield mock_supabase_client


@pytest.mark.unit
def test_rate_limit_key():
    assert rate_limit_key("submit_bid", "con_1") == "submit_bid:con_1"
    assert rate_limit_key("submit_bid", None) == "submit_bid:anonymous"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_allow_uses_shared_counter(supabase_backend):
    """Test the counter lives in the check_rate_limit SQL function."""
    supabase_backend.rpc.return_value.execute.return_value = MagicMock(data=True)

    allowed = await RateLimiter(max_requests=20, window_seconds=60).allow("submit_bid", "con_1")

    assert allowed is True
    supabase_backend.rpc.assert_called_once_with("check_rate_limit", {
        "p_key": "submit_bid:con_1",
        "p_max_requests": 20,
        "p_window_seconds": 60,
    })


@pytest.mark.unit
@pytest.mark.asyncio
async def test_enforce_raises_when_over_limit(supabase_backend):
    supabase_backend.rpc.return_value.execute.return_value = MagicMock(data=False)

    with pytest.raises(RateLimitError) as exc_info:
        await RateLimiter().enforce("submit_bid", "con_1")

    assert exc_info.value.status_code == 429


@pytest.mark.unit
@pytest.mark.asyncio
async def test_counter_store_failure_allows_request(supabase_backend):
    """Test an unreachable counter store fails open."""
    supabase_backend.rpc.side_effect = RuntimeError("timeout")

    assert await RateLimiter().allow("submit_bid", "con_1") is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_memory_backend_skips_counter(mock_supabase_client):
    with patch.object(EngineConfig, "STORE_BACKEND", "memory"):
        assert await RateLimiter().allow("submit_bid", "con_1") is True

    mock_supabase_client.rpc.assert_not_called()
