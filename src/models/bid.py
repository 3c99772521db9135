"""Bid models - a contractor's priced proposal for a request."""

from enum import Enum
from decimal import Decimal
from typing import Optional
from datetime import date, datetime
from pydantic import BaseModel, Field, field_validator

from src.models.request import RenovationRequest


class BidStatus(str, Enum):
    """Bid status values."""
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class CostBreakdown(BaseModel):
    """Itemized bid cost; the total is always derived from these lines."""
    labor_cost: Decimal = Field(..., ge=0, description="Labor cost")
    material_cost: Decimal = Field(..., ge=0, description="Material cost")
    permit_cost: Decimal = Field(default=Decimal("0"), ge=0, description="Permit cost")
    disposal_cost: Decimal = Field(default=Decimal("0"), ge=0, description="Disposal cost")

    @property
    def total(self) -> Decimal:
        return self.labor_cost + self.material_cost + self.permit_cost + self.disposal_cost


class BidSubmission(BaseModel):
    """Contractor input for creating or revising a bid.

    Any client-supplied total is ignored; ``Bid.total_amount`` is recomputed
    from ``breakdown`` on every write.
    """
    breakdown: CostBreakdown
    timeline_weeks: int = Field(..., ge=1, le=52, description="Estimated duration in weeks")
    start_date: date = Field(..., description="Proposed start date")
    included_items: str = Field(..., min_length=10, description="Scope included in the price")
    excluded_items: Optional[str] = Field(None, description="Scope explicitly excluded")
    notes: Optional[str] = Field(None, description="Free-text notes for the customer")

    @field_validator("included_items", "excluded_items", "notes", mode="before")
    @classmethod
    def strip_text(cls, value):
        if isinstance(value, str):
            return value.strip()
        return value


class Bid(BaseModel):
    """Bid record, unique per (request_id, contractor_id)."""
    id: str = Field(..., description="Bid ID (text)")
    request_id: str = Field(..., description="Request ID (text FK)")
    contractor_id: str = Field(..., description="Contractor ID (text FK)")
    labor_cost: Decimal = Field(..., ge=0)
    material_cost: Decimal = Field(..., ge=0)
    permit_cost: Decimal = Field(default=Decimal("0"), ge=0)
    disposal_cost: Decimal = Field(default=Decimal("0"), ge=0)
    total_amount: Decimal = Field(..., ge=0, description="Sum of the cost breakdown")
    timeline_weeks: int = Field(..., ge=1, le=52)
    start_date: date
    included_items: str
    excluded_items: Optional[str] = None
    notes: Optional[str] = None
    status: BidStatus = Field(default=BidStatus.PENDING)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_submission(
        cls,
        bid_id: str,
        request_id: str,
        contractor_id: str,
        submission: BidSubmission,
    ) -> "Bid":
        """Build a PENDING bid, deriving total_amount from the breakdown."""
        breakdown = submission.breakdown
        return cls(
            id=bid_id,
            request_id=request_id,
            contractor_id=contractor_id,
            labor_cost=breakdown.labor_cost,
            material_cost=breakdown.material_cost,
            permit_cost=breakdown.permit_cost,
            disposal_cost=breakdown.disposal_cost,
            total_amount=breakdown.total,
            timeline_weeks=submission.timeline_weeks,
            start_date=submission.start_date,
            included_items=submission.included_items,
            excluded_items=submission.excluded_items,
            notes=submission.notes,
            status=BidStatus.PENDING,
        )


class AcceptanceResult(BaseModel):
    """Outcome of the atomic accept operation."""
    request: RenovationRequest
    accepted: Bid
    rejected: list[Bid] = Field(default_factory=list)
