"""Tests for the request lifecycle state machine."""

import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from freezegun import freeze_time

from src.models.bid import BidStatus
from src.models.notification import NotificationEvent
from src.models.request import RequestStatus, TERMINAL_STATUSES
from src.services.lifecycle import (
    Audience,
    LifecycleEvent,
    RequestLifecycle,
    TransitionContext,
    allowed_events,
    plan_transition,
    utc_now,
)
from src.services.memory_store import InMemoryStore
from src.utils.errors import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NoParticipantsError,
    NotFoundError,
    ValidationError,
)
from tests.utils.assertions import assert_bidding_window
from tests.utils.factories import create_bid, create_interest, create_request

NOW = datetime(2024, 12, 9, 12, 0, tzinfo=timezone.utc)
YESTERDAY = NOW - timedelta(days=1)
TOMORROW = NOW + timedelta(days=1)


# plan_transition

@pytest.mark.unit
def test_every_status_has_a_defined_set_of_events():
    """Test terminal states accept no events and every other state accepts some."""
    for status in RequestStatus:
        events = allowed_events(status)
        if status in TERMINAL_STATUSES:
            assert events == set()
        else:
            assert events


@pytest.mark.unit
def test_schedule_provisions_seven_day_window():
    """Test scheduling sets the window at scheduling time."""
    request = create_request(status=RequestStatus.INSPECTION_PENDING)

    plan = plan_transition(
        request,
        LifecycleEvent.SCHEDULE_INSPECTION,
        NOW,
        TransitionContext(participant_count=1, inspection_date=TOMORROW, inspection_time="09:30"),
    )

    assert plan.to_status == RequestStatus.INSPECTION_SCHEDULED
    assert plan.fields["bidding_start_date"] == TOMORROW
    assert plan.fields["bidding_end_date"] == TOMORROW + timedelta(days=7)
    assert plan.fields["inspection_time"] == "09:30"
    assert (NotificationEvent.INSPECTION_SCHEDULED, Audience.PARTICIPANTS) in plan.notifications


@pytest.mark.unit
def test_schedule_treats_naive_dates_as_utc():
    request = create_request(status=RequestStatus.INSPECTION_PENDING)

    plan = plan_transition(
        request,
        LifecycleEvent.SCHEDULE_INSPECTION,
        NOW,
        TransitionContext(participant_count=1, inspection_date=datetime(2024, 12, 10, 9, 0)),
    )

    assert plan.fields["inspection_date"] == datetime(2024, 12, 10, 9, 0, tzinfo=timezone.utc)


@pytest.mark.unit
def test_schedule_without_participants_fails():
    """Test scheduling requires a confirmed contractor."""
    request = create_request(status=RequestStatus.INSPECTION_PENDING)

    with pytest.raises(NoParticipantsError):
        plan_transition(
            request,
            LifecycleEvent.SCHEDULE_INSPECTION,
            NOW,
            TransitionContext(participant_count=0, inspection_date=TOMORROW),
        )


@pytest.mark.unit
def test_schedule_without_date_fails():
    request = create_request(status=RequestStatus.INSPECTION_PENDING)

    with pytest.raises(ValidationError):
        plan_transition(request, LifecycleEvent.SCHEDULE_INSPECTION, NOW, TransitionContext(participant_count=1))


@pytest.mark.unit
def test_invalid_pair_raises_invalid_transition():
    """Test an event not legal from the current state is rejected."""
    request = create_request(status=RequestStatus.OPEN)

    with pytest.raises(InvalidTransitionError) as exc_info:
        plan_transition(request, LifecycleEvent.CLOSE_BIDDING, NOW)

    assert exc_info.value.details["status"] == "OPEN"
    assert exc_info.value.status_code == 409


@pytest.mark.unit
def test_start_bidding_before_inspection_date_is_rejected():
    request = create_request(status=RequestStatus.INSPECTION_SCHEDULED, inspection_date=TOMORROW)

    with pytest.raises(InvalidTransitionError):
        plan_transition(request, LifecycleEvent.START_BIDDING, NOW, TransitionContext(participant_count=2))


@pytest.mark.unit
def test_start_bidding_without_participants_closes():
    """Test zero participants redirects START_BIDDING to CLOSED."""
    request = create_request(status=RequestStatus.INSPECTION_SCHEDULED, inspection_date=YESTERDAY)

    plan = plan_transition(request, LifecycleEvent.START_BIDDING, NOW, TransitionContext(participant_count=0))

    assert plan.to_status == RequestStatus.CLOSED
    assert plan.closed_for_no_participants is True
    assert plan.notifications == [(NotificationEvent.REQUEST_CLOSED, Audience.CUSTOMER)]


@pytest.mark.unit
def test_close_bidding_waits_for_window_end():
    request = create_request(status=RequestStatus.BIDDING_OPEN, inspection_date=NOW - timedelta(days=3))

    with pytest.raises(InvalidTransitionError):
        plan_transition(request, LifecycleEvent.CLOSE_BIDDING, NOW)

    plan = plan_transition(request, LifecycleEvent.CLOSE_BIDDING, NOW + timedelta(days=4))
    assert plan.to_status == RequestStatus.BIDDING_CLOSED
    assert plan.fields == {}


@pytest.mark.unit
def test_auto_cancel_respects_grace_period():
    """Test auto-cancel only fires 24h after the window ends."""
    end = NOW - timedelta(hours=23)
    request = create_request(status=RequestStatus.BIDDING_CLOSED, inspection_date=end - timedelta(days=7))

    with pytest.raises(InvalidTransitionError):
        plan_transition(request, LifecycleEvent.AUTO_CANCEL, NOW)

    plan = plan_transition(request, LifecycleEvent.AUTO_CANCEL, NOW + timedelta(hours=1))
    assert plan.to_status == RequestStatus.CLOSED


@pytest.mark.unit
def test_cancel_refused_with_accepted_bid():
    request = create_request(status=RequestStatus.INSPECTION_PENDING)

    with pytest.raises(ConflictError):
        plan_transition(request, LifecycleEvent.CANCEL, NOW, TransitionContext(has_accepted_bid=True))


@pytest.mark.unit
@pytest.mark.parametrize("status", [
    RequestStatus.BIDDING_OPEN,
    RequestStatus.BIDDING_CLOSED,
    RequestStatus.CONTRACTOR_SELECTED,
])
def test_cancel_only_before_bidding(status):
    request = create_request(status=status)

    with pytest.raises(InvalidTransitionError):
        plan_transition(request, LifecycleEvent.CANCEL, NOW)


@pytest.mark.unit
def test_cancel_inspection_clears_schedule_together():
    request = create_request(status=RequestStatus.INSPECTION_SCHEDULED, inspection_date=TOMORROW)

    plan = plan_transition(request, LifecycleEvent.CANCEL_INSPECTION, NOW)

    assert plan.to_status == RequestStatus.INSPECTION_PENDING
    assert plan.fields == {
        "inspection_date": None,
        "inspection_time": None,
        "bidding_start_date": None,
        "bidding_end_date": None,
    }


@pytest.mark.unit
@freeze_time("2024-12-09 12:00:00")
def test_utc_now_is_timezone_aware():
    """Test the service clock is aware UTC and follows frozen time."""
    assert utc_now() == NOW


# RequestLifecycle

@pytest.mark.unit
@pytest.mark.asyncio
async def test_schedule_inspection_persists_window(store, notifier):
    """Test scheduling writes the window and notifies participants and customer."""
    request = store.add_request(create_request(status=RequestStatus.INSPECTION_PENDING))
    store.add_interest(create_interest(request.id, "con_yes", True))
    store.add_interest(create_interest(request.id, "con_no", False))

    outcome = await RequestLifecycle(store, notifier).schedule_inspection(request.id, TOMORROW, "10:00")

    assert outcome.applied
    saved = await store.get_request(request.id)
    assert saved.status == RequestStatus.INSPECTION_SCHEDULED
    assert saved.bidding_end_date == TOMORROW + timedelta(days=7)
    assert_bidding_window(saved)
    assert notifier.recipients(NotificationEvent.INSPECTION_SCHEDULED) == sorted(["con_yes", request.customer_id])


@pytest.mark.unit
@pytest.mark.asyncio
async def test_schedule_inspection_without_confirmed_contractor(store, notifier):
    request = store.add_request(create_request(status=RequestStatus.INSPECTION_PENDING))
    store.add_interest(create_interest(request.id, "con_no", False))

    with pytest.raises(NoParticipantsError):
        await RequestLifecycle(store, notifier).schedule_inspection(request.id, TOMORROW)

    saved = await store.get_request(request.id)
    assert saved.status == RequestStatus.INSPECTION_PENDING
    assert notifier.calls == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_reschedule_moves_window(store, notifier):
    """Test an already scheduled inspection can be moved."""
    request = store.add_request(create_request(status=RequestStatus.INSPECTION_SCHEDULED, inspection_date=TOMORROW))
    store.add_interest(create_interest(request.id, "con_1"))
    later = TOMORROW + timedelta(days=2)

    await RequestLifecycle(store, notifier).schedule_inspection(request.id, later)

    saved = await store.get_request(request.id)
    assert saved.bidding_start_date == later
    assert saved.bidding_end_date == later + timedelta(days=7)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_mark_and_complete(store, notifier):
    lifecycle = RequestLifecycle(store, notifier)
    open_request = store.add_request(create_request(status=RequestStatus.OPEN))
    selected = store.add_request(create_request(
        status=RequestStatus.CONTRACTOR_SELECTED, selected_contractor_id="con_1"
    ))

    assert (await lifecycle.mark_inspection_pending(open_request.id)).request.status == RequestStatus.INSPECTION_PENDING
    assert (await lifecycle.complete_request(selected.id)).request.status == RequestStatus.COMPLETED


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unknown_request(store, notifier):
    with pytest.raises(NotFoundError):
        await RequestLifecycle(store, notifier).mark_inspection_pending("missing")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cancel_inspection_requires_owner(store, notifier):
    request = store.add_request(create_request(
        status=RequestStatus.INSPECTION_SCHEDULED, customer_id="cust_1", inspection_date=TOMORROW
    ))
    lifecycle = RequestLifecycle(store, notifier)

    with pytest.raises(AuthorizationError):
        await lifecycle.cancel_inspection(request.id, "cust_other")

    outcome = await lifecycle.cancel_inspection(request.id, "cust_1")
    assert outcome.request.status == RequestStatus.INSPECTION_PENDING
    assert outcome.request.inspection_date is None
    assert outcome.request.bidding_end_date is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cancel_request_by_customer_and_admin(store, notifier):
    """Test customers cancel their own requests and admins cancel any."""
    lifecycle = RequestLifecycle(store, notifier)
    mine = store.add_request(create_request(status=RequestStatus.OPEN, customer_id="cust_1"))
    other = store.add_request(create_request(status=RequestStatus.INSPECTION_PENDING, customer_id="cust_2"))

    with pytest.raises(AuthorizationError):
        await lifecycle.cancel_request(other.id, "cust_1")

    assert (await lifecycle.cancel_request(mine.id, "cust_1")).request.status == RequestStatus.CLOSED
    assert (await lifecycle.cancel_request(other.id, "admin_1", is_admin=True)).request.status == RequestStatus.CLOSED
    assert notifier.recipients(NotificationEvent.REQUEST_CLOSED) == ["cust_1", "cust_2"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cancel_request_refused_with_accepted_bid(store, notifier):
    request = store.add_request(create_request(status=RequestStatus.INSPECTION_SCHEDULED, inspection_date=TOMORROW))
    store.add_bid(create_bid(request.id, status=BidStatus.ACCEPTED))

    with pytest.raises(ConflictError):
        await RequestLifecycle(store, notifier).cancel_request(request.id, "admin", is_admin=True)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_lost_compare_and_swap_is_a_noop(notifier):
    """Test a concurrent writer winning the conditional update yields applied=False."""

    class RacingStore(InMemoryStore):
        async def update_request_status(self, request_id, expected_status, new_status, fields=None):
            # Another writer advances the request first
            await super().update_request_status(request_id, expected_status, new_status, fields)
            return None

    store = RacingStore()
    request = store.add_request(create_request(status=RequestStatus.OPEN))

    outcome = await RequestLifecycle(store, notifier).mark_inspection_pending(request.id)

    assert outcome.applied is False
    assert outcome.request.status == RequestStatus.INSPECTION_PENDING
    assert notifier.calls == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_concurrent_starts_apply_once(store, notifier):
    """Test racing START_BIDDING calls transition the request exactly once."""
    request = store.add_request(create_request(status=RequestStatus.INSPECTION_SCHEDULED, inspection_date=YESTERDAY))
    store.add_interest(create_interest(request.id, "con_1"))
    lifecycle = RequestLifecycle(store, notifier)

    results = await asyncio.gather(
        lifecycle.start_bidding(request.id, now=NOW),
        lifecycle.start_bidding(request.id, now=NOW),
        return_exceptions=True,
    )

    applied = [r for r in results if not isinstance(r, Exception) and r.applied]
    assert len(applied) == 1
    assert len(notifier.events(NotificationEvent.BIDDING_STARTED)) == 1
    assert (await store.get_request(request.id)).status == RequestStatus.BIDDING_OPEN


@pytest.mark.unit
@pytest.mark.asyncio
async def test_notifier_failure_does_not_roll_back(store, failing_notifier):
    request = store.add_request(create_request(status=RequestStatus.INSPECTION_SCHEDULED, inspection_date=YESTERDAY))
    store.add_interest(create_interest(request.id, "con_1"))

    outcome = await RequestLifecycle(store, failing_notifier).start_bidding(request.id, now=NOW)

    assert outcome.applied
    assert (await store.get_request(request.id)).status == RequestStatus.BIDDING_OPEN
    assert len(failing_notifier.calls) == 1


@pytest.mark.unit
def test_close_bidding_with_service_clock(freeze_time_fixture):
    """Test the window closes exactly at bidding_end_date on the wall clock."""
    request = create_request(status=RequestStatus.BIDDING_OPEN, inspection_date=NOW - timedelta(days=7))

    assert plan_transition(request, LifecycleEvent.CLOSE_BIDDING, utc_now()).to_status == RequestStatus.BIDDING_CLOSED

    freeze_time_fixture.move_to("2024-12-09 11:59:00")
    with pytest.raises(InvalidTransitionError):
        plan_transition(request, LifecycleEvent.CLOSE_BIDDING, utc_now())
