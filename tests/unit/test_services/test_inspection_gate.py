"""Tests for the inspection gate."""

import pytest
from datetime import datetime, timezone

from src.models.request import RequestStatus
from src.services.inspection_gate import InspectionGate
from src.utils.errors import NotFoundError, RequestNotInInspectionPhaseError
from tests.utils.factories import create_interest, create_request

INSPECTION = datetime(2024, 12, 10, 9, 0, tzinfo=timezone.utc)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_eligible_requires_yes(store):
    """Test only a will_participate=true record makes a contractor eligible."""
    request = store.add_request(create_request(status=RequestStatus.BIDDING_OPEN, inspection_date=INSPECTION))
    store.add_interest(create_interest(request.id, "con_yes", True))
    store.add_interest(create_interest(request.id, "con_no", False))
    store.add_interest(create_interest(request.id, "con_undecided", None))
    gate = InspectionGate(store)

    assert await gate.eligible(request.id, "con_yes") is True
    assert await gate.eligible(request.id, "con_no") is False
    assert await gate.eligible(request.id, "con_undecided") is False
    assert await gate.eligible(request.id, "con_unknown") is False


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize("status", [
    RequestStatus.OPEN,
    RequestStatus.INSPECTION_PENDING,
    RequestStatus.INSPECTION_SCHEDULED,
])
async def test_record_interest_during_inspection_phase(store, status):
    """Test answers are accepted from listing until the inspection is scheduled."""
    request = store.add_request(create_request(
        status=status,
        inspection_date=INSPECTION if status == RequestStatus.INSPECTION_SCHEDULED else None,
    ))

    interest = await InspectionGate(store).record_interest(request.id, "con_1", True, notes="  Can attend  ")

    assert interest.will_participate is True
    assert interest.notes == "Can attend"
    assert interest.created_at is not None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_record_interest_overwrites_previous_answer(store):
    """Test re-recording is an idempotent upsert keyed by the pair."""
    request = store.add_request(create_request(status=RequestStatus.INSPECTION_SCHEDULED, inspection_date=INSPECTION))
    gate = InspectionGate(store)

    await gate.record_interest(request.id, "con_1", True)
    await gate.record_interest(request.id, "con_1", False)

    interests = await store.list_inspection_interests(request.id)
    assert len(interests) == 1
    assert interests[0].will_participate is False
    assert await gate.eligible(request.id, "con_1") is False


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize("status", [
    RequestStatus.BIDDING_OPEN,
    RequestStatus.BIDDING_CLOSED,
    RequestStatus.CLOSED,
])
async def test_record_interest_outside_inspection_phase(store, status):
    """Test late answers are rejected."""
    request = store.add_request(create_request(status=status))

    with pytest.raises(RequestNotInInspectionPhaseError):
        await InspectionGate(store).record_interest(request.id, "con_1", True)

    assert await store.get_inspection_interest(request.id, "con_1") is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_record_interest_unknown_request(store):
    with pytest.raises(NotFoundError):
        await InspectionGate(store).record_interest("missing", "con_1", True)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_remove_interest_and_list_participants(store):
    request = store.add_request(create_request(status=RequestStatus.INSPECTION_PENDING))
    store.add_interest(create_interest(request.id, "con_b", True))
    store.add_interest(create_interest(request.id, "con_a", True))
    store.add_interest(create_interest(request.id, "con_c", False))
    gate = InspectionGate(store)

    assert await gate.list_participants(request.id) == ["con_a", "con_b"]

    assert await gate.remove_interest(request.id, "con_a") is True
    assert await gate.remove_interest(request.id, "con_a") is False
    assert await gate.list_participants(request.id) == ["con_b"]
