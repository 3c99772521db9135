"""Command surface models: typed payloads and the uniform result."""

from enum import Enum
from typing import Any, Optional
from datetime import datetime
from pydantic import BaseModel, Field

from src.models.bid import BidSubmission


class CommandName(str, Enum):
    """State-changing (and lookup) commands exposed to UI/admin tooling."""
    MARK_INSPECTION_PENDING = "mark_inspection_pending"
    SCHEDULE_INSPECTION = "schedule_inspection"
    CANCEL_INSPECTION = "cancel_inspection"
    RECORD_INTEREST = "record_interest"
    REMOVE_INTEREST = "remove_interest"
    LIST_PARTICIPANTS = "list_participants"
    SUBMIT_BID = "submit_bid"
    WITHDRAW_BID = "withdraw_bid"
    ACCEPT_BID = "accept_bid"
    SELECT_CONTRACTOR = "select_contractor"
    CANCEL_REQUEST = "cancel_request"
    COMPLETE_REQUEST = "complete_request"


class RequestCommand(BaseModel):
    request_id: str


class ScheduleInspectionCommand(RequestCommand):
    inspection_date: datetime
    inspection_time: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}$")


class CancelInspectionCommand(RequestCommand):
    customer_id: str


class RecordInterestCommand(RequestCommand):
    contractor_id: str
    will_participate: bool
    notes: Optional[str] = None


class ContractorCommand(RequestCommand):
    contractor_id: str


class SubmitBidCommand(RequestCommand):
    contractor_id: str
    bid: BidSubmission


class WithdrawBidCommand(BaseModel):
    bid_id: str
    contractor_id: str


class AcceptBidCommand(BaseModel):
    bid_id: str
    customer_id: Optional[str] = None


class SelectContractorCommand(RequestCommand):
    contractor_id: str
    customer_id: Optional[str] = None


class CancelRequestCommand(RequestCommand):
    actor_id: str
    is_admin: bool = False


class CommandResult(BaseModel):
    """Typed result of a state-changing command; errors never escape undecorated."""
    ok: bool
    command: str
    status_code: int = 200
    error: Optional[str] = Field(None, description="Error kind, e.g. bidding_not_open")
    message: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)
