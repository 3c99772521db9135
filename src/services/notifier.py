"""Notifier interface and the Supabase outbox implementation.

Delivery (email/SMS content and transport) happens downstream of the
``notification_outbox`` table. From the engine's side a notification is
best-effort: ``notify_safely`` bounds each call with a timeout and turns any
failure into ``NotificationResult.FAILED`` after logging it.
"""

import asyncio
from typing import Any, Optional, Protocol

from src.models.notification import NotificationEvent, NotificationResult
from src.services.supabase_client import SupabaseClient
from src.services.supabase_store import serialize_fields
from src.utils.config import EngineConfig
from src.utils.errors import NotifierError
from src.utils.logging import get_structured_logger, mask_user_id

logger = get_structured_logger(__name__)


class Notifier(Protocol):
    """Accepts (event type, recipient, payload) for retryable delivery."""

    async def notify(
        self,
        event_type: NotificationEvent,
        recipient_id: str,
        payload: dict[str, Any],
    ) -> NotificationResult:
        ...


class SupabaseOutboxNotifier:
    """Queues notifications in the ``notification_outbox`` table."""

    table = "notification_outbox"

    async def notify(
        self,
        event_type: NotificationEvent,
        recipient_id: str,
        payload: dict[str, Any],
    ) -> NotificationResult:
        async with SupabaseClient() as client:
            try:
                result = client.table(self.table).insert({
                    "event_type": event_type.value,
                    "recipient_id": recipient_id,
                    "payload": serialize_fields(payload),
                }).execute()
            except Exception as e:
                raise NotifierError(f"Failed to queue notification: {e}")

        if not result.data:
            raise NotifierError("Failed to queue notification: no row returned")
        return NotificationResult.QUEUED


class LoggingNotifier:
    """Logs notifications instead of queueing them (STORE_BACKEND=memory)."""

    async def notify(
        self,
        event_type: NotificationEvent,
        recipient_id: str,
        payload: dict[str, Any],
    ) -> NotificationResult:
        logger.info(
            "Notification (not delivered)",
            event_type=event_type.value,
            recipient_id=mask_user_id(recipient_id),
            payload_keys=sorted(payload)
        )
        return NotificationResult.QUEUED


async def notify_safely(
    notifier: Notifier,
    event_type: NotificationEvent,
    recipient_id: Optional[str],
    payload: dict[str, Any],
    timeout: Optional[float] = None,
) -> NotificationResult:
    """Send one notification without ever failing the caller's state change."""
    if not recipient_id:
        logger.warning("Notification skipped: no recipient", event_type=event_type.value)
        return NotificationResult.FAILED

    timeout = EngineConfig.NOTIFIER_TIMEOUT_SECONDS if timeout is None else timeout
    try:
        result = await asyncio.wait_for(
            notifier.notify(event_type, recipient_id, payload),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.warning(
            "Notification timed out",
            event_type=event_type.value,
            recipient_id=mask_user_id(recipient_id),
            timeout_seconds=timeout
        )
        return NotificationResult.FAILED
    except Exception as e:
        logger.warning(
            "Notification failed (non-fatal)",
            event_type=event_type.value,
            recipient_id=mask_user_id(recipient_id),
            error=str(e)
        )
        return NotificationResult.FAILED

    if result != NotificationResult.QUEUED:
        logger.warning(
            "Notifier reported failure",
            event_type=event_type.value,
            recipient_id=mask_user_id(recipient_id)
        )
    return result


async def notify_many(
    notifier: Notifier,
    event_type: NotificationEvent,
    recipient_ids: list[str],
    payload: dict[str, Any],
) -> list[NotificationResult]:
    """Fan one event out to several recipients, each independently best-effort."""
    return list(await asyncio.gather(*(
        notify_safely(notifier, event_type, recipient_id, payload)
        for recipient_id in recipient_ids
    )))


_notifier: Optional[Notifier] = None


def get_notifier() -> Notifier:
    """Get or create the notifier singleton."""
    global _notifier
    if _notifier is None:
        if EngineConfig.STORE_BACKEND == "memory":
            _notifier = LoggingNotifier()
        else:
            _notifier = SupabaseOutboxNotifier()
    return _notifier
