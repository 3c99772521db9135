"""Test helper functions."""

import json
import asyncio
from io import BytesIO
from typing import Any, Dict, Optional
from unittest.mock import MagicMock, Mock

from src.models.notification import NotificationEvent, NotificationResult
from src.utils.errors import NotifierError


class RecordingNotifier:
    """Notifier double that records calls, optionally failing or stalling."""

    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.fail = fail
        self.delay = delay
        self.calls: list[tuple[NotificationEvent, str, dict]] = []

    async def notify(self, event_type, recipient_id, payload) -> NotificationResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.calls.append((event_type, recipient_id, payload))
        if self.fail:
            raise NotifierError("delivery backend unavailable")
        return NotificationResult.QUEUED

    def events(self, event_type: Optional[NotificationEvent] = None) -> list:
        return [c for c in self.calls if event_type is None or c[0] == event_type]

    def recipients(self, event_type: NotificationEvent) -> list[str]:
        return sorted(c[1] for c in self.events(event_type))


def make_supabase_query(data: Any = None) -> MagicMock:
    """Chainable PostgREST query builder mock whose execute() returns ``data``."""
    query = MagicMock()
    for method in ("select", "eq", "lte", "is_", "order", "update", "insert", "upsert", "delete"):
        getattr(query, method).return_value = query
    query.execute.return_value = MagicMock(data=data)
    return query


class MockSocket:
    """Minimal socket for constructing BaseHTTPRequestHandler instances."""

    def __init__(self, raw_request: bytes):
        self.raw_request = raw_request

    def makefile(self, *args, **kwargs):
        return BytesIO(self.raw_request)

    def sendall(self, data):
        pass

    def close(self):
        pass


def make_handler(handler_cls, method: str = "GET", path: str = "/", headers: Optional[Dict[str, str]] = None):
    """Build a handler with mocked response plumbing.

    The raw request used for construction carries no credentials, so the
    request handled during construction is rejected before any work is done.
    """
    raw = f"{method} {path} HTTP/1.1\r\n\r\n".encode("utf-8")
    h = handler_cls(MockSocket(raw), ("127.0.0.1", 8000), None)
    h.path = path
    h.headers = headers or {}
    h.wfile = BytesIO()
    h.send_response = Mock()
    h.send_header = Mock()
    h.end_headers = Mock()
    return h


def read_json_response(h) -> dict:
    h.wfile.seek(0)
    return json.loads(h.wfile.read().decode("utf-8"))


def create_vercel_request(
    method: str = "POST",
    path: str = "/api/commands",
    body: Dict[str, Any] = None,
    headers: Dict[str, str] = None
) -> Dict[str, Any]:
    """Create a Vercel request object for testing."""
    if body is None:
        body = {}

    if headers is None:
        headers = {
            "content-type": "application/json"
        }

    return {
        "method": method,
        "path": path,
        "headers": headers,
        "body": json.dumps(body) if isinstance(body, dict) else body,
        "query": {}
    }
