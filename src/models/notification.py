"""Notification event types handed to the Notifier."""

from enum import Enum


class NotificationEvent(str, Enum):
    """Lifecycle events that produce a notification."""
    INSPECTION_SCHEDULED = "INSPECTION_SCHEDULED"
    BIDDING_STARTED = "BIDDING_STARTED"
    BIDDING_CLOSED = "BIDDING_CLOSED"
    NEW_BID = "NEW_BID"
    BID_ACCEPTED = "BID_ACCEPTED"
    BID_REJECTED = "BID_REJECTED"
    BID_WITHDRAWN = "BID_WITHDRAWN"
    REQUEST_CLOSED = "REQUEST_CLOSED"


class NotificationResult(str, Enum):
    """Notifier call outcome."""
    QUEUED = "queued"
    FAILED = "failed"
