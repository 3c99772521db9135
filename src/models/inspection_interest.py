"""InspectionInterest model - a contractor's answer to a site inspection invitation."""

from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field


class InspectionInterest(BaseModel):
    """One record per (request_id, contractor_id).

    ``will_participate`` is tri-state: None until the contractor answers.
    """
    request_id: str = Field(..., description="Request ID (text FK)")
    contractor_id: str = Field(..., description="Contractor ID (text FK)")
    will_participate: Optional[bool] = Field(None, description="Undecided (None), yes or no")
    notes: Optional[str] = Field(None, description="Contractor notes for the inspection")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def confirmed(self) -> bool:
        return self.will_participate is True
