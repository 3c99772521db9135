"""Tests for bearer credential verification."""

import pytest
from src.services.cron_auth import (
    extract_bearer_token,
    verify_api_request,
    verify_bearer,
    verify_cron_request,
)


@pytest.mark.unit
def test_extract_bearer_token():
    assert extract_bearer_token("Bearer abc123") == "abc123"
    assert extract_bearer_token("bearer  abc123 ") == "abc123"
    assert extract_bearer_token("Basic abc123") is None
    assert extract_bearer_token("Bearer") is None
    assert extract_bearer_token(None) is None


@pytest.mark.unit
def test_verify_bearer():
    assert verify_bearer("Bearer s3cret", "s3cret") is True
    assert verify_bearer("Bearer wrong", "s3cret") is False
    assert verify_bearer(None, "s3cret") is False


@pytest.mark.unit
def test_empty_secret_never_verifies():
    """Test a missing secret fails closed."""
    assert verify_bearer("Bearer ", "") is False
    assert verify_bearer("Bearer anything", "") is False


@pytest.mark.unit
def test_verify_cron_request(monkeypatch):
    monkeypatch.setenv("CRON_SECRET", "cron-secret")

    assert verify_cron_request("Bearer cron-secret") is True
    assert verify_cron_request("Bearer test-api-secret") is False
    assert verify_cron_request(None) is False


@pytest.mark.unit
def test_verify_cron_request_without_configured_secret(monkeypatch):
    monkeypatch.delenv("CRON_SECRET", raising=False)

    assert verify_cron_request("Bearer ") is False


@pytest.mark.unit
@pytest.mark.parametrize("env,value", [
    ("NODE_ENV", "development"),
    ("NODE_ENV", "local"),
    ("AUTH_BYPASS", "true"),
])
def test_bypass_in_development(monkeypatch, env, value):
    """Test dev mode skips bearer checks."""
    monkeypatch.setenv(env, value)

    assert verify_cron_request(None) is True
    assert verify_api_request(None) is True


@pytest.mark.unit
def test_verify_api_request(monkeypatch):
    monkeypatch.setenv("API_SECRET_KEY", "api-secret")

    assert verify_api_request("Bearer api-secret") is True
    assert verify_api_request("Bearer test-cron-secret") is False
