"""Bidding automation endpoint (called daily by Vercel cron).

Authenticates the caller with ``Authorization: Bearer $CRON_SECRET`` before
touching the store, then runs the scheduler sweep and returns its summary.
An optional ``phase`` query parameter (start_bidding, close_bidding or
auto_cancel) runs a single phase.
"""

from http.server import BaseHTTPRequestHandler
from urllib.parse import urlparse, parse_qs
import json
import asyncio

from src.models.sweep import SweepPhase
from src.services.cron_auth import verify_cron_request
from src.services.notifier import get_notifier
from src.services.scheduler_sweep import run_sweep
from src.services.store import get_store
from src.utils.errors import AuthenticationError
from src.utils.logging import setup_logging, correlation_context, get_structured_logger

setup_logging()
logger = get_structured_logger(__name__)


def _get_loop() -> asyncio.AbstractEventLoop:
    try:
        loop = asyncio.get_event_loop()
        if loop.is_closed():
            raise RuntimeError("event loop is closed")
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
    return loop


def parse_phases(query: dict) -> list[SweepPhase] | None:
    """Phases requested via ``?phase=``; None means all of them."""
    values = query.get("phase") or []
    if not values:
        return None
    return [SweepPhase(value) for value in values]


class handler(BaseHTTPRequestHandler):
    """Vercel serverless function handler for the scheduler sweep."""

    def _send_json(self, status: int, payload: dict):
        self.send_response(status)
        self.send_header('Content-Type', 'application/json')
        self.end_headers()
        self.wfile.write(json.dumps(payload).encode('utf-8'))

    def do_GET(self):
        """Handle GET request from the cron trigger."""
        with correlation_context() as correlation_id:
            if not verify_cron_request(self.headers.get("Authorization")):
                self._send_json(401, AuthenticationError("Unauthorized").to_dict())
                return

            try:
                query = parse_qs(urlparse(self.path).query)
                try:
                    phases = parse_phases(query)
                except ValueError:
                    allowed = [p.value for p in SweepPhase]
                    self._send_json(400, {"error": f"phase must be one of {allowed}"})
                    return

                logger.info(
                    "Starting bidding automation",
                    phases=[p.value for p in phases] if phases else "all"
                )

                summary = _get_loop().run_until_complete(
                    run_sweep(get_store(), get_notifier(), phases=phases)
                )

                response = {
                    "success": True,
                    "message": "Bidding automation completed",
                    "correlation_id": correlation_id,
                }
                response.update(summary.model_dump(mode="json"))
                self._send_json(200, response)

            except Exception as e:
                logger.exception("Bidding automation failed", error=str(e))
                self._send_json(500, {"error": "Bidding automation failed"})

    def do_POST(self):
        """Handle POST request (manual trigger, same as GET)."""
        self.do_GET()
