"""Entity store interface used by the lifecycle engine.

The engine only talks to storage through this Protocol. Two implementations
ship with the backend: ``SupabaseStore`` (production) and ``InMemoryStore``
(local development and tests), selected by ``STORE_BACKEND``.
"""

from typing import Any, Optional, Protocol
from datetime import datetime
from pydantic import BaseModel

from src.models.request import RenovationRequest, RequestStatus
from src.models.bid import Bid, BidStatus, AcceptanceResult
from src.models.inspection_interest import InspectionInterest
from src.utils.clock import ensure_utc
from src.utils.config import EngineConfig


class RequestQuery(BaseModel):
    """Sweep candidate predicate: status plus a date column at or before a cutoff."""
    status: RequestStatus
    date_field: Optional[str] = None
    due_at_or_before: Optional[datetime] = None
    unselected_only: bool = False

    def matches(self, request: RenovationRequest) -> bool:
        if request.status != self.status:
            return False
        if self.unselected_only and request.selected_contractor_id is not None:
            return False
        if self.date_field and self.due_at_or_before is not None:
            value = getattr(request, self.date_field)
            if value is None or ensure_utc(value) > ensure_utc(self.due_at_or_before):
                return False
        return True


class Store(Protocol):
    """Durable storage for requests, bids and inspection interests."""

    async def get_request(self, request_id: str) -> Optional[RenovationRequest]:
        ...

    async def update_request_status(
        self,
        request_id: str,
        expected_status: RequestStatus,
        new_status: RequestStatus,
        fields: Optional[dict[str, Any]] = None,
    ) -> Optional[RenovationRequest]:
        """Compare-and-swap on status. Returns None when the current status differs."""
        ...

    async def find_requests(self, query: RequestQuery) -> list[RenovationRequest]:
        ...

    async def get_bid(self, bid_id: str) -> Optional[Bid]:
        ...

    async def get_bid_for_contractor(self, request_id: str, contractor_id: str) -> Optional[Bid]:
        ...

    async def list_bids(self, request_id: str, status: Optional[BidStatus] = None) -> list[Bid]:
        ...

    async def upsert_bid(self, bid: Bid) -> Optional[Bid]:
        """Insert or revise the bid keyed by (request_id, contractor_id).

        Applied atomically with a check that the request is BIDDING_OPEN;
        returns None (nothing written) when it is not. Raises ConflictError
        when the contractor's existing bid is no longer PENDING.
        """
        ...

    async def delete_bid(self, bid_id: str) -> bool:
        """Delete a bid only while PENDING. Returns False if nothing was deleted."""
        ...

    async def accept_bid_transaction(self, request_id: str, bid_id: str) -> Optional[AcceptanceResult]:
        """Atomically accept one bid, reject pending siblings and select the contractor.

        Returns None when the request is no longer BIDDING_CLOSED or the bid is
        no longer PENDING; nothing is written in that case.
        """
        ...

    async def get_inspection_interest(
        self, request_id: str, contractor_id: str
    ) -> Optional[InspectionInterest]:
        ...

    async def upsert_inspection_interest(self, interest: InspectionInterest) -> InspectionInterest:
        ...

    async def list_inspection_interests(
        self, request_id: str, will_participate: Optional[bool] = None
    ) -> list[InspectionInterest]:
        ...

    async def delete_inspection_interest(self, request_id: str, contractor_id: str) -> bool:
        ...


_store: Optional[Store] = None


def get_store() -> Store:
    """Get or create the configured store singleton."""
    global _store
    if _store is None:
        if EngineConfig.STORE_BACKEND == "memory":
            from src.services.memory_store import InMemoryStore
            _store = InMemoryStore()
        else:
            from src.services.supabase_store import SupabaseStore
            _store = SupabaseStore()
    return _store
