"""RenovationRequest model - a customer's project moving through the bidding lifecycle."""

from enum import Enum
from typing import Optional
from datetime import datetime, timedelta
from pydantic import BaseModel, Field, model_validator

from src.utils.config import BIDDING_PERIOD


class RequestStatus(str, Enum):
    """Request lifecycle states, in topological order."""
    OPEN = "OPEN"
    INSPECTION_PENDING = "INSPECTION_PENDING"
    INSPECTION_SCHEDULED = "INSPECTION_SCHEDULED"
    BIDDING_OPEN = "BIDDING_OPEN"
    BIDDING_CLOSED = "BIDDING_CLOSED"
    CONTRACTOR_SELECTED = "CONTRACTOR_SELECTED"
    COMPLETED = "COMPLETED"
    CLOSED = "CLOSED"


PRE_BIDDING_STATUSES = frozenset({
    RequestStatus.OPEN,
    RequestStatus.INSPECTION_PENDING,
    RequestStatus.INSPECTION_SCHEDULED,
})

SELECTED_STATUSES = frozenset({
    RequestStatus.CONTRACTOR_SELECTED,
    RequestStatus.COMPLETED,
})

TERMINAL_STATUSES = frozenset({
    RequestStatus.COMPLETED,
    RequestStatus.CLOSED,
})


class RenovationRequest(BaseModel):
    """Renovation request listing."""
    id: str = Field(..., description="Request ID (text)")
    customer_id: str = Field(..., description="Owning customer ID (text FK)")
    category: Optional[str] = Field(None, description="Renovation category, e.g. KITCHEN, BATHROOM")
    budget_range: Optional[str] = Field(None, description="Budget range bucket, e.g. UNDER_50K")
    timeline: Optional[str] = Field(None, description="Timeline preference, e.g. ASAP, WITHIN_3_MONTHS")
    address: Optional[str] = Field(None, description="Property address")
    postal_code: Optional[str] = Field(None, description="Postal code prefix used for area matching")
    description: Optional[str] = Field(None, description="Free-text project description")
    photos: list[str] = Field(default_factory=list, description="Photo storage references")
    status: RequestStatus = Field(default=RequestStatus.OPEN, description="Lifecycle status")
    inspection_date: Optional[datetime] = Field(None, description="Confirmed site inspection date")
    inspection_time: Optional[str] = Field(None, description="Inspection time of day, HH:MM")
    bidding_start_date: Optional[datetime] = Field(None, description="Bidding window start")
    bidding_end_date: Optional[datetime] = Field(None, description="Bidding window end")
    selected_contractor_id: Optional[str] = Field(None, description="Contractor whose bid was accepted")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_invariants(self) -> "RenovationRequest":
        """Bidding window is exactly seven days; selection only once a contractor is chosen."""
        if self.bidding_start_date is not None and self.bidding_end_date is not None:
            if self.bidding_end_date - self.bidding_start_date != BIDDING_PERIOD:
                raise ValueError("bidding_end_date must be exactly 7 days after bidding_start_date")
        if self.selected_contractor_id is not None and self.status not in SELECTED_STATUSES:
            raise ValueError("selected_contractor_id may only be set once a contractor is selected")
        return self

    def auto_cancel_at(self, grace: timedelta) -> Optional[datetime]:
        """Moment after which an unselected closed request is cancelled."""
        if self.bidding_end_date is None:
            return None
        return self.bidding_end_date + grace
