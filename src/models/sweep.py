"""Scheduler sweep result models."""

from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field

from src.utils.config import BIDDING_PERIOD_DAYS


class SweepPhase(str, Enum):
    """Sweep phases, executed in this order."""
    START_BIDDING = "start_bidding"
    CLOSE_BIDDING = "close_bidding"
    AUTO_CANCEL = "auto_cancel"


class OutcomeStatus(str, Enum):
    """Per-request sweep outcome."""
    SUCCESS = "success"
    CLOSED = "closed"
    SKIPPED = "skipped"
    ERROR = "error"


class SweepOutcome(BaseModel):
    """Result of processing one request in one phase."""
    request_id: str
    phase: SweepPhase
    status: OutcomeStatus
    new_status: Optional[str] = None
    participating_contractors: Optional[int] = None
    error: Optional[str] = None
    detail: Optional[str] = None


class SweepSummary(BaseModel):
    """Structured response of the sweep endpoint."""
    timestamp: datetime
    bidding_started: int = 0
    bidding_closed: int = 0
    auto_cancelled: int = 0
    closed_no_participants: int = 0
    skipped: int = 0
    errors: int = 0
    bidding_period_days: int = Field(default=BIDDING_PERIOD_DAYS)
    results: list[SweepOutcome] = Field(default_factory=list)

    def record(self, outcome: SweepOutcome) -> None:
        """Fold a per-request outcome into the counters."""
        self.results.append(outcome)
        if outcome.status == OutcomeStatus.ERROR:
            self.errors += 1
        elif outcome.status == OutcomeStatus.SKIPPED:
            self.skipped += 1
        elif outcome.status == OutcomeStatus.CLOSED:
            self.closed_no_participants += 1
        elif outcome.phase == SweepPhase.START_BIDDING:
            self.bidding_started += 1
        elif outcome.phase == SweepPhase.CLOSE_BIDDING:
            self.bidding_closed += 1
        else:
            self.auto_cancelled += 1

    @property
    def transitions(self) -> int:
        return (
            self.bidding_started
            + self.bidding_closed
            + self.auto_cancelled
            + self.closed_no_participants
        )
