"""Request lifecycle state machine - the single authority for status transitions.

Lifecycle:
    OPEN -> INSPECTION_PENDING -> INSPECTION_SCHEDULED -> BIDDING_OPEN
         -> BIDDING_CLOSED -> CONTRACTOR_SELECTED -> COMPLETED
    OPEN / INSPECTION_PENDING / INSPECTION_SCHEDULED -> CLOSED (manual cancel)
    INSPECTION_SCHEDULED -> CLOSED (bidding due but nobody confirmed the inspection)
    BIDDING_CLOSED -> CLOSED (auto-cancel 24h after the window ends unselected)
    INSPECTION_SCHEDULED -> INSPECTION_PENDING (customer cancels the inspection)

``plan_transition`` is pure: given a request, an event, the current time and
the facts it needs (participant count, accepted bid), it returns the target
status, the fields to write and the notifications to send, or raises a typed
error. ``RequestLifecycle`` applies a plan with a compare-and-swap on the
request's current status; direct commands and the scheduler sweep both go
through it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field

from src.models.request import (
    RenovationRequest,
    RequestStatus,
    PRE_BIDDING_STATUSES,
)
from src.models.bid import BidStatus
from src.models.notification import NotificationEvent
from src.services.notifier import Notifier, notify_many
from src.services.store import Store
from src.utils.clock import ensure_utc, utc_now
from src.utils.config import BIDDING_PERIOD, AUTO_CANCEL_GRACE
from src.utils.errors import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NoParticipantsError,
    NotFoundError,
    ValidationError,
)
from src.utils.logging import get_structured_logger, mask_user_id

logger = get_structured_logger(__name__)


class LifecycleEvent(str, Enum):
    """Named transitions a request can undergo."""
    MARK_INSPECTION_PENDING = "MARK_INSPECTION_PENDING"
    SCHEDULE_INSPECTION = "SCHEDULE_INSPECTION"
    CANCEL_INSPECTION = "CANCEL_INSPECTION"
    START_BIDDING = "START_BIDDING"
    CLOSE_BIDDING = "CLOSE_BIDDING"
    SELECT_CONTRACTOR = "SELECT_CONTRACTOR"
    AUTO_CANCEL = "AUTO_CANCEL"
    COMPLETE = "COMPLETE"
    CANCEL = "CANCEL"


class Audience(str, Enum):
    """Who receives a transition notification."""
    CUSTOMER = "customer"
    PARTICIPANTS = "participants"


class TransitionContext(BaseModel):
    """Facts a guard may need beyond the request row itself."""
    participant_count: int = 0
    has_accepted_bid: bool = False
    inspection_date: Optional[datetime] = None
    inspection_time: Optional[str] = None
    contractor_id: Optional[str] = None


class TransitionPlan(BaseModel):
    """Outcome of planning a transition: what to write and whom to tell."""
    event: LifecycleEvent
    from_status: RequestStatus
    to_status: RequestStatus
    fields: dict[str, Any] = Field(default_factory=dict)
    notifications: list[tuple[NotificationEvent, Audience]] = Field(default_factory=list)
    closed_for_no_participants: bool = False


class TransitionOutcome(BaseModel):
    """Result of applying a transition through the store."""
    event: LifecycleEvent
    applied: bool
    previous_status: RequestStatus
    request: RenovationRequest
    closed_for_no_participants: bool = False
    participant_count: Optional[int] = None


Guard = Callable[[RenovationRequest, datetime, TransitionContext], None]
Effect = Callable[[RenovationRequest, datetime, TransitionContext], dict[str, Any]]


@dataclass(frozen=True)
class TransitionRule:
    sources: frozenset
    target: RequestStatus
    guard: Optional[Guard] = None
    effect: Optional[Effect] = None
    notifications: tuple = field(default_factory=tuple)
    requires_participants: bool = False
    # START_BIDDING with nobody confirmed closes the request instead of failing
    close_without_participants: bool = False


def _require_inspection_date(request: RenovationRequest, now: datetime, ctx: TransitionContext) -> None:
    if ctx.inspection_date is None:
        raise ValidationError("inspection_date is required to schedule an inspection")


def _inspection_due(request: RenovationRequest, now: datetime, ctx: TransitionContext) -> None:
    if request.inspection_date is None or ensure_utc(request.inspection_date) > now:
        raise InvalidTransitionError(
            "Inspection date has not been reached",
            request_id=request.id,
        )


def _bidding_window_over(request: RenovationRequest, now: datetime, ctx: TransitionContext) -> None:
    if request.bidding_end_date is None or now < ensure_utc(request.bidding_end_date):
        raise InvalidTransitionError(
            "Bidding window is still open",
            request_id=request.id,
        )


def _selection_grace_expired(request: RenovationRequest, now: datetime, ctx: TransitionContext) -> None:
    if request.selected_contractor_id is not None:
        raise InvalidTransitionError("A contractor is already selected", request_id=request.id)
    deadline = request.auto_cancel_at(AUTO_CANCEL_GRACE)
    if deadline is None or now < ensure_utc(deadline):
        raise InvalidTransitionError(
            "Contractor selection grace period has not expired",
            request_id=request.id,
        )


def _require_contractor(request: RenovationRequest, now: datetime, ctx: TransitionContext) -> None:
    if not ctx.contractor_id:
        raise ValidationError("contractor_id is required to select a contractor")


def _no_accepted_bid(request: RenovationRequest, now: datetime, ctx: TransitionContext) -> None:
    if ctx.has_accepted_bid:
        raise ConflictError("Cannot cancel a request with an accepted bid", request_id=request.id)


def _provision_bidding_window(request: RenovationRequest, now: datetime, ctx: TransitionContext) -> dict[str, Any]:
    # The window is fixed at scheduling time so the deadline is known before bidding starts
    inspection_date = ensure_utc(ctx.inspection_date)
    return {
        "inspection_date": inspection_date,
        "inspection_time": ctx.inspection_time,
        "bidding_start_date": inspection_date,
        "bidding_end_date": inspection_date + BIDDING_PERIOD,
    }


def _clear_schedule(request: RenovationRequest, now: datetime, ctx: TransitionContext) -> dict[str, Any]:
    return {
        "inspection_date": None,
        "inspection_time": None,
        "bidding_start_date": None,
        "bidding_end_date": None,
    }


def _select_contractor(request: RenovationRequest, now: datetime, ctx: TransitionContext) -> dict[str, Any]:
    return {"selected_contractor_id": ctx.contractor_id}


_TRANSITIONS: dict[LifecycleEvent, TransitionRule] = {
    LifecycleEvent.MARK_INSPECTION_PENDING: TransitionRule(
        sources=frozenset({RequestStatus.OPEN}),
        target=RequestStatus.INSPECTION_PENDING,
    ),
    LifecycleEvent.SCHEDULE_INSPECTION: TransitionRule(
        # Re-scheduling an already scheduled inspection moves the date and the window
        sources=frozenset({RequestStatus.INSPECTION_PENDING, RequestStatus.INSPECTION_SCHEDULED}),
        target=RequestStatus.INSPECTION_SCHEDULED,
        guard=_require_inspection_date,
        effect=_provision_bidding_window,
        notifications=(
            (NotificationEvent.INSPECTION_SCHEDULED, Audience.PARTICIPANTS),
            (NotificationEvent.INSPECTION_SCHEDULED, Audience.CUSTOMER),
        ),
        requires_participants=True,
    ),
    LifecycleEvent.CANCEL_INSPECTION: TransitionRule(
        sources=frozenset({RequestStatus.INSPECTION_SCHEDULED}),
        target=RequestStatus.INSPECTION_PENDING,
        effect=_clear_schedule,
    ),
    LifecycleEvent.START_BIDDING: TransitionRule(
        sources=frozenset({RequestStatus.INSPECTION_SCHEDULED}),
        target=RequestStatus.BIDDING_OPEN,
        guard=_inspection_due,
        notifications=((NotificationEvent.BIDDING_STARTED, Audience.PARTICIPANTS),),
        requires_participants=True,
        close_without_participants=True,
    ),
    LifecycleEvent.CLOSE_BIDDING: TransitionRule(
        sources=frozenset({RequestStatus.BIDDING_OPEN}),
        target=RequestStatus.BIDDING_CLOSED,
        guard=_bidding_window_over,
        notifications=((NotificationEvent.BIDDING_CLOSED, Audience.CUSTOMER),),
    ),
    LifecycleEvent.SELECT_CONTRACTOR: TransitionRule(
        sources=frozenset({RequestStatus.BIDDING_CLOSED}),
        target=RequestStatus.CONTRACTOR_SELECTED,
        guard=_require_contractor,
        effect=_select_contractor,
    ),
    LifecycleEvent.AUTO_CANCEL: TransitionRule(
        sources=frozenset({RequestStatus.BIDDING_CLOSED}),
        target=RequestStatus.CLOSED,
        guard=_selection_grace_expired,
        notifications=((NotificationEvent.REQUEST_CLOSED, Audience.CUSTOMER),),
    ),
    LifecycleEvent.COMPLETE: TransitionRule(
        sources=frozenset({RequestStatus.CONTRACTOR_SELECTED}),
        target=RequestStatus.COMPLETED,
    ),
    LifecycleEvent.CANCEL: TransitionRule(
        sources=PRE_BIDDING_STATUSES,
        target=RequestStatus.CLOSED,
        guard=_no_accepted_bid,
        notifications=(
            (NotificationEvent.REQUEST_CLOSED, Audience.CUSTOMER),
            (NotificationEvent.REQUEST_CLOSED, Audience.PARTICIPANTS),
        ),
    ),
}


def _check_table_is_exhaustive() -> None:
    missing = set(LifecycleEvent) - set(_TRANSITIONS)
    if missing:
        raise RuntimeError(f"Lifecycle events without a transition rule: {sorted(e.value for e in missing)}")


_check_table_is_exhaustive()


def allowed_events(status: RequestStatus) -> set[LifecycleEvent]:
    """Events whose source states include ``status``."""
    return {event for event, rule in _TRANSITIONS.items() if status in rule.sources}


def plan_transition(
    request: RenovationRequest,
    event: LifecycleEvent,
    now: datetime,
    context: Optional[TransitionContext] = None,
) -> TransitionPlan:
    """Validate ``event`` against ``request`` and compute its effects.

    Raises InvalidTransitionError when the event is not legal from the
    current status (or its time condition does not hold yet),
    NoParticipantsError when scheduling without a confirmed contractor, and
    the guard's own error otherwise. Never touches storage.
    """
    context = context or TransitionContext()
    now = ensure_utc(now)
    rule = _TRANSITIONS[event]

    if request.status not in rule.sources:
        raise InvalidTransitionError(
            f"Invalid transition: {event.value} from {request.status.value}",
            request_id=request.id,
            status=request.status.value,
            event=event.value,
        )

    if rule.guard is not None:
        rule.guard(request, now, context)

    if rule.requires_participants and context.participant_count < 1:
        if not rule.close_without_participants:
            raise NoParticipantsError(
                "At least one contractor must confirm participation",
                request_id=request.id,
            )
        return TransitionPlan(
            event=event,
            from_status=request.status,
            to_status=RequestStatus.CLOSED,
            notifications=[(NotificationEvent.REQUEST_CLOSED, Audience.CUSTOMER)],
            closed_for_no_participants=True,
        )

    fields = rule.effect(request, now, context) if rule.effect is not None else {}
    return TransitionPlan(
        event=event,
        from_status=request.status,
        to_status=rule.target,
        fields=fields,
        notifications=list(rule.notifications),
    )


class RequestLifecycle:
    """Applies lifecycle transitions through the store and notifies afterwards."""

    def __init__(self, store: Store, notifier: Notifier):
        self.store = store
        self.notifier = notifier

    async def _load(self, request_id: str) -> RenovationRequest:
        request = await self.store.get_request(request_id)
        if request is None:
            raise NotFoundError(f"Renovation request not found: {request_id}")
        return request

    async def _participant_ids(self, request_id: str) -> list[str]:
        interests = await self.store.list_inspection_interests(request_id, will_participate=True)
        return [i.contractor_id for i in interests]

    async def apply(
        self,
        request_id: str,
        event: LifecycleEvent,
        now: Optional[datetime] = None,
        owner_id: Optional[str] = None,
        context: Optional[TransitionContext] = None,
    ) -> TransitionOutcome:
        """Plan and apply ``event`` with a conditional update on the current status.

        If another writer moved the request first, the conditional update
        matches nothing and the outcome is returned with ``applied=False``.
        """
        now = ensure_utc(now or utc_now())
        request = await self._load(request_id)

        if owner_id is not None and request.customer_id != owner_id:
            raise AuthorizationError("Only the owning customer may do this", request_id=request_id)

        context = (context or TransitionContext()).model_copy()
        participants: list[str] = []
        rule = _TRANSITIONS[event]
        if rule.requires_participants or any(a == Audience.PARTICIPANTS for _, a in rule.notifications):
            participants = await self._participant_ids(request_id)
            context.participant_count = len(participants)
        if event == LifecycleEvent.CANCEL:
            accepted = await self.store.list_bids(request_id, status=BidStatus.ACCEPTED)
            context.has_accepted_bid = bool(accepted)

        plan = plan_transition(request, event, now, context)

        updated = await self.store.update_request_status(
            request_id, plan.from_status, plan.to_status, plan.fields
        )
        if updated is None:
            current = await self._load(request_id)
            logger.info(
                "Transition lost a concurrent update; treated as no-op",
                request_id=request_id,
                lifecycle_event=event.value,
                expected_status=plan.from_status.value,
                current_status=current.status.value
            )
            return TransitionOutcome(
                event=event,
                applied=False,
                previous_status=plan.from_status,
                request=current,
            )

        logger.info(
            "Request transitioned",
            request_id=request_id,
            lifecycle_event=event.value,
            from_status=plan.from_status.value,
            to_status=plan.to_status.value,
            closed_for_no_participants=plan.closed_for_no_participants,
            participating_contractors=len(participants)
        )

        try:
            await self._send_notifications(updated, plan, participants)
        except Exception as e:
            # The transition is committed; notification problems stay best-effort
            logger.warning(
                "Post-transition notifications failed",
                request_id=request_id,
                lifecycle_event=event.value,
                error=str(e)
            )

        return TransitionOutcome(
            event=event,
            applied=True,
            previous_status=plan.from_status,
            request=updated,
            closed_for_no_participants=plan.closed_for_no_participants,
            participant_count=context.participant_count if rule.requires_participants else None,
        )

    async def _send_notifications(
        self,
        request: RenovationRequest,
        plan: TransitionPlan,
        participants: list[str],
    ) -> None:
        if not plan.notifications:
            return

        payload: dict[str, Any] = {
            "request_id": request.id,
            "status": request.status.value,
            "category": request.category,
            "inspection_date": request.inspection_date,
            "inspection_time": request.inspection_time,
            "bidding_start_date": request.bidding_start_date,
            "bidding_end_date": request.bidding_end_date,
        }
        if plan.event == LifecycleEvent.CLOSE_BIDDING:
            try:
                payload["bid_count"] = len(await self.store.list_bids(request.id))
            except Exception as e:
                logger.warning(
                    "Could not count bids for notification",
                    request_id=request.id,
                    error=str(e)
                )
        if plan.closed_for_no_participants:
            payload["reason"] = "no_participants"

        for notification_event, audience in plan.notifications:
            recipients = [request.customer_id] if audience == Audience.CUSTOMER else participants
            await notify_many(self.notifier, notification_event, recipients, payload)

    async def mark_inspection_pending(self, request_id: str) -> TransitionOutcome:
        return await self.apply(request_id, LifecycleEvent.MARK_INSPECTION_PENDING)

    async def schedule_inspection(
        self,
        request_id: str,
        inspection_date: datetime,
        inspection_time: Optional[str] = None,
    ) -> TransitionOutcome:
        """Admin confirms a concrete inspection date and provisions the bidding window."""
        return await self.apply(
            request_id,
            LifecycleEvent.SCHEDULE_INSPECTION,
            context=TransitionContext(inspection_date=inspection_date, inspection_time=inspection_time),
        )

    async def cancel_inspection(self, request_id: str, customer_id: str) -> TransitionOutcome:
        return await self.apply(request_id, LifecycleEvent.CANCEL_INSPECTION, owner_id=customer_id)

    async def cancel_request(
        self,
        request_id: str,
        actor_id: str,
        is_admin: bool = False,
    ) -> TransitionOutcome:
        logger.info(
            "Cancelling request",
            request_id=request_id,
            actor_id=mask_user_id(actor_id),
            is_admin=is_admin
        )
        return await self.apply(
            request_id,
            LifecycleEvent.CANCEL,
            owner_id=None if is_admin else actor_id,
        )

    async def complete_request(self, request_id: str) -> TransitionOutcome:
        return await self.apply(request_id, LifecycleEvent.COMPLETE)

    async def start_bidding(self, request_id: str, now: Optional[datetime] = None) -> TransitionOutcome:
        return await self.apply(request_id, LifecycleEvent.START_BIDDING, now=now)

    async def close_bidding(self, request_id: str, now: Optional[datetime] = None) -> TransitionOutcome:
        return await self.apply(request_id, LifecycleEvent.CLOSE_BIDDING, now=now)

    async def auto_cancel(self, request_id: str, now: Optional[datetime] = None) -> TransitionOutcome:
        return await self.apply(request_id, LifecycleEvent.AUTO_CANCEL, now=now)
