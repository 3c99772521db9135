"""Command endpoint for UI/admin tooling.

Expects a JSON body ``{"command": "<name>", "payload": {...}}`` and an
``Authorization: Bearer $API_SECRET_KEY`` header.
"""

import json
import asyncio

from src.services.commands import CommandService
from src.services.cron_auth import verify_api_request
from src.services.notifier import get_notifier
from src.services.rate_limiter import get_rate_limiter
from src.services.store import get_store
from src.utils.errors import AuthenticationError
from src.utils.logging import setup_logging, correlation_context, get_structured_logger

setup_logging()
logger = get_structured_logger(__name__)

JSON_HEADERS = {"Content-Type": "application/json"}


def _response(status_code: int, payload: dict) -> dict:
    return {
        "statusCode": status_code,
        "headers": JSON_HEADERS,
        "body": json.dumps(payload),
    }


def _get_header(request: dict, name: str):
    headers = request.get("headers", {}) or {}
    for key, value in headers.items():
        if key.lower() == name.lower():
            return value
    return None


def _parse_body(request: dict) -> dict:
    body = request.get("body") or {}
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8")
    if isinstance(body, str):
        body = json.loads(body) if body.strip() else {}
    if not isinstance(body, dict):
        raise ValueError("body must be a JSON object")
    return body


def handler(request):
    """Run one command and map its result to an HTTP response."""
    with correlation_context() as correlation_id:
        if not verify_api_request(_get_header(request, "Authorization")):
            return _response(401, AuthenticationError("Unauthorized").to_dict())

        try:
            body = _parse_body(request)
        except (ValueError, json.JSONDecodeError):
            return _response(400, {"error": "validation_error", "message": "Invalid JSON body"})

        command = body.get("command")
        if not command:
            return _response(400, {"error": "validation_error", "message": "command is required"})

        try:
            try:
                loop = asyncio.get_event_loop()
                if loop.is_closed():
                    raise RuntimeError("event loop is closed")
            except RuntimeError:
                loop = asyncio.new_event_loop()
                asyncio.set_event_loop(loop)

            service = CommandService(get_store(), get_notifier(), rate_limiter=get_rate_limiter())
            result = loop.run_until_complete(service.execute(command, body.get("payload")))

            payload = result.model_dump(mode="json")
            payload["correlation_id"] = correlation_id
            return _response(result.status_code, payload)

        except Exception as e:
            logger.exception("Error processing command", command=command, error=str(e))
            return _response(500, {"error": "internal_error", "message": "Internal server error"})
