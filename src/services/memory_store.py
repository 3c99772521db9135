"""In-process store for local development (STORE_BACKEND=memory) and tests.

A single asyncio lock serializes every mutation, which gives the same
guarantees as the Supabase conditional updates and the ``accept_bid``
transaction within one process.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional

from src.models.request import RenovationRequest, RequestStatus
from src.models.bid import Bid, BidStatus, AcceptanceResult
from src.models.inspection_interest import InspectionInterest
from src.services.store import RequestQuery
from src.utils.errors import ConflictError


class InMemoryStore:
    """Dict-backed store keyed the same way as the database tables."""

    def __init__(self) -> None:
        self.requests: dict[str, RenovationRequest] = {}
        self.bids: dict[str, Bid] = {}
        self.interests: dict[tuple[str, str], InspectionInterest] = {}
        self._lock = asyncio.Lock()

    def add_request(self, request: RenovationRequest) -> RenovationRequest:
        self.requests[request.id] = request.model_copy(deep=True)
        return request

    def add_bid(self, bid: Bid) -> Bid:
        self.bids[bid.id] = bid.model_copy(deep=True)
        return bid

    def add_interest(self, interest: InspectionInterest) -> InspectionInterest:
        key = (interest.request_id, interest.contractor_id)
        self.interests[key] = interest.model_copy(deep=True)
        return interest

    async def get_request(self, request_id: str) -> Optional[RenovationRequest]:
        request = self.requests.get(request_id)
        return request.model_copy(deep=True) if request else None

    async def update_request_status(
        self,
        request_id: str,
        expected_status: RequestStatus,
        new_status: RequestStatus,
        fields: Optional[dict[str, Any]] = None,
    ) -> Optional[RenovationRequest]:
        async with self._lock:
            current = self.requests.get(request_id)
            if current is None or current.status != expected_status:
                return None
            data = current.model_dump()
            data.update(fields or {})
            data["status"] = new_status
            data["updated_at"] = datetime.now(timezone.utc)
            # Re-validate so model invariants hold for every write
            updated = RenovationRequest(**data)
            self.requests[request_id] = updated
            return updated.model_copy(deep=True)

    async def find_requests(self, query: RequestQuery) -> list[RenovationRequest]:
        matches = [r for r in self.requests.values() if query.matches(r)]
        return [r.model_copy(deep=True) for r in sorted(matches, key=lambda r: r.id)]

    async def get_bid(self, bid_id: str) -> Optional[Bid]:
        bid = self.bids.get(bid_id)
        return bid.model_copy(deep=True) if bid else None

    async def get_bid_for_contractor(self, request_id: str, contractor_id: str) -> Optional[Bid]:
        for bid in self.bids.values():
            if bid.request_id == request_id and bid.contractor_id == contractor_id:
                return bid.model_copy(deep=True)
        return None

    async def list_bids(self, request_id: str, status: Optional[BidStatus] = None) -> list[Bid]:
        return [
            bid.model_copy(deep=True)
            for bid in self.bids.values()
            if bid.request_id == request_id and (status is None or bid.status == status)
        ]

    async def upsert_bid(self, bid: Bid) -> Optional[Bid]:
        async with self._lock:
            request = self.requests.get(bid.request_id)
            if request is None or request.status != RequestStatus.BIDDING_OPEN:
                return None
            now = datetime.now(timezone.utc)
            existing = next(
                (
                    b for b in self.bids.values()
                    if b.request_id == bid.request_id and b.contractor_id == bid.contractor_id
                ),
                None,
            )
            if existing is not None:
                if existing.status != BidStatus.PENDING:
                    raise ConflictError(f"Cannot revise bid with status: {existing.status.value}")
                stored = bid.model_copy(update={
                    "id": existing.id,
                    "created_at": existing.created_at,
                    "updated_at": now,
                })
            else:
                stored = bid.model_copy(update={"created_at": now, "updated_at": now})
            self.bids[stored.id] = stored
            return stored.model_copy(deep=True)

    async def delete_bid(self, bid_id: str) -> bool:
        async with self._lock:
            bid = self.bids.get(bid_id)
            if bid is None or bid.status != BidStatus.PENDING:
                return False
            del self.bids[bid_id]
            return True

    async def accept_bid_transaction(self, request_id: str, bid_id: str) -> Optional[AcceptanceResult]:
        async with self._lock:
            request = self.requests.get(request_id)
            bid = self.bids.get(bid_id)
            if request is None or bid is None or bid.request_id != request_id:
                return None
            if request.status != RequestStatus.BIDDING_CLOSED or bid.status != BidStatus.PENDING:
                return None

            now = datetime.now(timezone.utc)
            accepted = bid.model_copy(update={"status": BidStatus.ACCEPTED, "updated_at": now})
            rejected = [
                b.model_copy(update={"status": BidStatus.REJECTED, "updated_at": now})
                for b in self.bids.values()
                if b.request_id == request_id and b.id != bid_id and b.status == BidStatus.PENDING
            ]
            data = request.model_dump()
            data.update(
                status=RequestStatus.CONTRACTOR_SELECTED,
                selected_contractor_id=bid.contractor_id,
                updated_at=now,
            )
            selected = RenovationRequest(**data)

            # All three effects are committed together while holding the lock
            self.bids[accepted.id] = accepted
            for sibling in rejected:
                self.bids[sibling.id] = sibling
            self.requests[request_id] = selected

            return AcceptanceResult(
                request=selected.model_copy(deep=True),
                accepted=accepted.model_copy(deep=True),
                rejected=[b.model_copy(deep=True) for b in rejected],
            )

    async def get_inspection_interest(
        self, request_id: str, contractor_id: str
    ) -> Optional[InspectionInterest]:
        interest = self.interests.get((request_id, contractor_id))
        return interest.model_copy(deep=True) if interest else None

    async def upsert_inspection_interest(self, interest: InspectionInterest) -> InspectionInterest:
        async with self._lock:
            key = (interest.request_id, interest.contractor_id)
            now = datetime.now(timezone.utc)
            existing = self.interests.get(key)
            stored = interest.model_copy(update={
                "created_at": existing.created_at if existing else now,
                "updated_at": now,
            })
            self.interests[key] = stored
            return stored.model_copy(deep=True)

    async def list_inspection_interests(
        self, request_id: str, will_participate: Optional[bool] = None
    ) -> list[InspectionInterest]:
        return [
            i.model_copy(deep=True)
            for (rid, _), i in self.interests.items()
            if rid == request_id and (will_participate is None or i.will_participate is will_participate)
        ]

    async def delete_inspection_interest(self, request_id: str, contractor_id: str) -> bool:
        async with self._lock:
            return self.interests.pop((request_id, contractor_id), None) is not None
