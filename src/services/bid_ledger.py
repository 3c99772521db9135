"""Bid ledger - consistency rules for the bids on a request.

- one bid per (request, contractor); re-submitting revises the PENDING bid
- ``total_amount`` is always the sum of the cost breakdown
- accepting a bid rejects every other PENDING bid and selects the contractor,
  all in one store transaction
"""

import asyncio
from datetime import datetime
from typing import Any, Optional

from ulid import ULID

from src.models.bid import Bid, BidStatus, BidSubmission, AcceptanceResult
from src.models.request import RequestStatus
from src.models.notification import NotificationEvent
from src.services.inspection_gate import InspectionGate
from src.services.lifecycle import (
    LifecycleEvent,
    TransitionContext,
    plan_transition,
)
from src.services.notifier import Notifier, notify_safely
from src.services.store import Store
from src.utils.clock import utc_now
from src.utils.errors import (
    AuthorizationError,
    BiddingNotOpenError,
    ConflictError,
    InspectionRequiredError,
    NotFoundError,
)
from src.utils.logging import get_structured_logger, mask_user_id, sanitize_text

logger = get_structured_logger(__name__)


def _bid_payload(bid: Bid) -> dict[str, Any]:
    return {
        "request_id": bid.request_id,
        "bid_id": bid.id,
        "contractor_id": bid.contractor_id,
        "total_amount": bid.total_amount,
        "timeline_weeks": bid.timeline_weeks,
    }


class BidLedger:
    """Submits, withdraws and accepts bids."""

    def __init__(self, store: Store, notifier: Notifier, gate: Optional[InspectionGate] = None):
        self.store = store
        self.notifier = notifier
        self.gate = gate or InspectionGate(store)

    async def submit(
        self,
        request_id: str,
        contractor_id: str,
        submission: BidSubmission,
    ) -> Bid:
        """Create or revise the contractor's bid on an open request.

        The inspection gate is checked before the request status, so a
        contractor who never confirmed the inspection always gets
        InspectionRequiredError.

        Raises:
            InspectionRequiredError: contractor did not confirm the inspection
            NotFoundError: unknown request
            BiddingNotOpenError: request is not (or stops being) BIDDING_OPEN
            ConflictError: the contractor's existing bid is no longer PENDING
        """
        if not await self.gate.eligible(request_id, contractor_id):
            raise InspectionRequiredError(
                "Contractor must confirm participation in the site inspection before bidding",
                request_id=request_id,
            )

        request = await self.store.get_request(request_id)
        if request is None:
            raise NotFoundError(f"Renovation request not found: {request_id}")
        if request.status != RequestStatus.BIDDING_OPEN:
            raise BiddingNotOpenError(
                f"Bidding is not open (status: {request.status.value})",
                request_id=request_id,
                status=request.status.value,
            )

        existing = await self.store.get_bid_for_contractor(request_id, contractor_id)
        if existing is not None and existing.status != BidStatus.PENDING:
            raise ConflictError(
                f"Cannot revise bid with status: {existing.status.value}",
                bid_id=existing.id,
            )

        bid_id = existing.id if existing else str(ULID())
        bid = await self.store.upsert_bid(
            Bid.from_submission(bid_id, request_id, contractor_id, submission)
        )
        if bid is None:
            # Request left BIDDING_OPEN between the status check and the write
            raise BiddingNotOpenError(
                "Bidding closed before the bid was saved",
                request_id=request_id,
            )

        logger.info(
            "Bid revised" if existing else "Bid submitted",
            request_id=request_id,
            bid_id=bid.id,
            contractor_id=mask_user_id(contractor_id),
            total_amount=str(bid.total_amount),
            notes_preview=sanitize_text(bid.notes, max_length=80)
        )

        await notify_safely(
            self.notifier,
            NotificationEvent.NEW_BID,
            request.customer_id,
            _bid_payload(bid),
        )
        return bid

    async def withdraw(self, bid_id: str, owner_id: str) -> Bid:
        """Delete the owner's PENDING bid.

        Raises:
            NotFoundError: unknown bid
            AuthorizationError: ``owner_id`` is not the bidding contractor
            ConflictError: bid is not PENDING (or changed while withdrawing)
        """
        bid = await self.store.get_bid(bid_id)
        if bid is None:
            raise NotFoundError(f"Bid not found: {bid_id}")
        if bid.contractor_id != owner_id:
            raise AuthorizationError("Only the bidding contractor may withdraw this bid", bid_id=bid_id)
        if bid.status != BidStatus.PENDING:
            raise ConflictError(f"Cannot withdraw bid with status: {bid.status.value}", bid_id=bid_id)

        if not await self.store.delete_bid(bid_id):
            raise ConflictError("Bid changed while withdrawing", bid_id=bid_id)

        logger.info(
            "Bid withdrawn",
            request_id=bid.request_id,
            bid_id=bid_id,
            contractor_id=mask_user_id(owner_id)
        )

        request = await self.store.get_request(bid.request_id)
        if request is not None:
            await notify_safely(
                self.notifier,
                NotificationEvent.BID_WITHDRAWN,
                request.customer_id,
                _bid_payload(bid),
            )
        return bid

    async def accept(
        self,
        bid_id: str,
        customer_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AcceptanceResult:
        """Accept one bid: reject its PENDING siblings and select the contractor atomically.

        When ``customer_id`` is given it must own the request.

        Raises:
            NotFoundError: unknown bid or request
            AuthorizationError: caller does not own the request
            InvalidTransitionError: request is not BIDDING_CLOSED
            ConflictError: bid is not PENDING, or another acceptance won
        """
        bid = await self.store.get_bid(bid_id)
        if bid is None:
            raise NotFoundError(f"Bid not found: {bid_id}")

        request = await self.store.get_request(bid.request_id)
        if request is None:
            raise NotFoundError(f"Renovation request not found: {bid.request_id}")
        if customer_id is not None and request.customer_id != customer_id:
            raise AuthorizationError("Only the owning customer may accept a bid", request_id=request.id)

        # Same guard the lifecycle applies to every other transition
        plan_transition(
            request,
            LifecycleEvent.SELECT_CONTRACTOR,
            now or utc_now(),
            TransitionContext(contractor_id=bid.contractor_id),
        )
        if bid.status != BidStatus.PENDING:
            raise ConflictError(f"Cannot accept bid with status: {bid.status.value}", bid_id=bid_id)

        result = await self.store.accept_bid_transaction(request.id, bid_id)
        if result is None:
            current = await self.store.get_request(request.id)
            logger.info(
                "Bid acceptance lost a concurrent update",
                request_id=request.id,
                bid_id=bid_id,
                current_status=current.status.value if current else None
            )
            raise ConflictError("Request or bid changed before acceptance", bid_id=bid_id)

        logger.info(
            "Bid accepted",
            request_id=request.id,
            bid_id=bid_id,
            contractor_id=mask_user_id(result.accepted.contractor_id),
            rejected_bids=len(result.rejected)
        )

        await notify_safely(
            self.notifier,
            NotificationEvent.BID_ACCEPTED,
            result.accepted.contractor_id,
            _bid_payload(result.accepted),
        )
        await asyncio.gather(*(
            notify_safely(
                self.notifier,
                NotificationEvent.BID_REJECTED,
                rejected.contractor_id,
                _bid_payload(rejected),
            )
            for rejected in result.rejected
        ))
        return result

    async def select_contractor(
        self,
        request_id: str,
        contractor_id: str,
        customer_id: Optional[str] = None,
    ) -> AcceptanceResult:
        """Accept the bid the given contractor placed on the request."""
        bid = await self.store.get_bid_for_contractor(request_id, contractor_id)
        if bid is None:
            raise NotFoundError(
                "Contractor has no bid on this request",
                request_id=request_id,
            )
        return await self.accept(bid.id, customer_id=customer_id)
