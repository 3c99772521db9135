"""Error handling utilities."""

from typing import Optional


class RenobidError(Exception):
    """Base exception for the renovation bidding backend."""
    kind = "error"
    status_code = 500

    def __init__(self, message: Optional[str] = None, **details):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__
        self.details = details

    def to_dict(self) -> dict:
        """Serialize for API responses and sweep outcomes."""
        payload = {"error": self.kind, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidTransitionError(RenobidError):
    """Transition not allowed from the request's current status."""
    kind = "invalid_transition"
    status_code = 409


class NoParticipantsError(RenobidError):
    """No contractor confirmed participation in the inspection."""
    kind = "no_participants"
    status_code = 409


class InspectionRequiredError(RenobidError):
    """Contractor has not confirmed participation in the site inspection."""
    kind = "inspection_required"
    status_code = 403


class BiddingNotOpenError(RenobidError):
    """Bidding is not open for this request."""
    kind = "bidding_not_open"
    status_code = 409


class RequestNotInInspectionPhaseError(RenobidError):
    """Request is not accepting inspection responses."""
    kind = "not_in_inspection_phase"
    status_code = 409


class ConflictError(RenobidError):
    """Resource conflict."""
    kind = "conflict"
    status_code = 409


class AuthenticationError(RenobidError):
    """Authentication required."""
    kind = "unauthenticated"
    status_code = 401


class AuthorizationError(RenobidError):
    """Insufficient permissions."""
    kind = "forbidden"
    status_code = 403


class NotFoundError(RenobidError):
    """Resource not found."""
    kind = "not_found"
    status_code = 404


class ValidationError(RenobidError):
    """Invalid input data."""
    kind = "validation_error"
    status_code = 400


class RateLimitError(RenobidError):
    """Too many requests."""
    kind = "rate_limited"
    status_code = 429


class SupabaseError(RenobidError):
    """Supabase operation error."""
    kind = "store_error"
    status_code = 500


class NotifierError(RenobidError):
    """Notification delivery error."""
    kind = "notifier_error"
    status_code = 502
