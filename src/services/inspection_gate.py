"""Inspection gate - who may bid on a request.

A contractor is eligible to bid only after answering "yes" to the site
inspection for that request. Answers can be recorded from the moment the
request is listed (OPEN), while the inspection is being arranged
(INSPECTION_PENDING) and once it is scheduled; after bidding opens the
participant list is frozen.
"""

from typing import Optional

from src.models.request import RequestStatus
from src.models.inspection_interest import InspectionInterest
from src.services.store import Store
from src.utils.errors import NotFoundError, RequestNotInInspectionPhaseError
from src.utils.logging import get_structured_logger, mask_user_id, sanitize_text

logger = get_structured_logger(__name__)

INSPECTION_PHASE_STATUSES = frozenset({
    RequestStatus.OPEN,
    RequestStatus.INSPECTION_PENDING,
    RequestStatus.INSPECTION_SCHEDULED,
})


class InspectionGate:
    """Records inspection answers and answers the bid eligibility question."""

    def __init__(self, store: Store):
        self.store = store

    async def eligible(self, request_id: str, contractor_id: str) -> bool:
        interest = await self.store.get_inspection_interest(request_id, contractor_id)
        return interest is not None and interest.confirmed

    async def record_interest(
        self,
        request_id: str,
        contractor_id: str,
        will_participate: bool,
        notes: Optional[str] = None,
    ) -> InspectionInterest:
        """Upsert the contractor's answer; a later answer overwrites the earlier one.

        Raises:
            NotFoundError: unknown request
            RequestNotInInspectionPhaseError: request is not arranging an inspection
        """
        request = await self.store.get_request(request_id)
        if request is None:
            raise NotFoundError(f"Renovation request not found: {request_id}")

        if request.status not in INSPECTION_PHASE_STATUSES:
            raise RequestNotInInspectionPhaseError(
                f"Cannot record inspection interest while request is {request.status.value}",
                request_id=request_id,
                status=request.status.value,
            )

        interest = await self.store.upsert_inspection_interest(InspectionInterest(
            request_id=request_id,
            contractor_id=contractor_id,
            will_participate=will_participate,
            notes=notes.strip() if notes else None,
        ))

        logger.info(
            "Inspection interest recorded",
            request_id=request_id,
            contractor_id=mask_user_id(contractor_id),
            will_participate=will_participate,
            notes_preview=sanitize_text(notes or "", max_length=80)
        )
        return interest

    async def remove_interest(self, request_id: str, contractor_id: str) -> bool:
        """Admin override: forget a contractor's answer entirely."""
        removed = await self.store.delete_inspection_interest(request_id, contractor_id)
        logger.info(
            "Inspection interest removed" if removed else "No inspection interest to remove",
            request_id=request_id,
            contractor_id=mask_user_id(contractor_id)
        )
        return removed

    async def list_participants(self, request_id: str) -> list[str]:
        interests = await self.store.list_inspection_interests(request_id, will_participate=True)
        return sorted(i.contractor_id for i in interests)
