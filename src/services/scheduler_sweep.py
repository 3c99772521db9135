"""Scheduler sweep - fires the time-based lifecycle transitions.

Three phases run in a fixed order:
    1. start_bidding  INSPECTION_SCHEDULED, inspection_date <= now
    2. close_bidding  BIDDING_OPEN, bidding_end_date <= now
    3. auto_cancel    BIDDING_CLOSED, bidding_end_date + 24h <= now, no contractor selected

Each candidate goes through the same ``RequestLifecycle.apply`` used by
direct commands, so a request that already advanced (or that another sweep
invocation is processing) is skipped instead of transitioned twice. Requests
within a phase are processed concurrently, bounded by SWEEP_CONCURRENCY; one
request's failure is recorded in the summary and never aborts the others.
"""

import asyncio
from datetime import datetime
from typing import Iterable, Optional

from src.models.request import RenovationRequest, RequestStatus
from src.models.sweep import OutcomeStatus, SweepOutcome, SweepPhase, SweepSummary
from src.services.lifecycle import LifecycleEvent, RequestLifecycle
from src.services.notifier import Notifier
from src.services.store import RequestQuery, Store
from src.utils.clock import ensure_utc, utc_now
from src.utils.config import AUTO_CANCEL_GRACE, EngineConfig
from src.utils.errors import InvalidTransitionError, RenobidError
from src.utils.logging import get_structured_logger, log_timing, timed

logger = get_structured_logger(__name__)

PHASE_ORDER = (
    SweepPhase.START_BIDDING,
    SweepPhase.CLOSE_BIDDING,
    SweepPhase.AUTO_CANCEL,
)

PHASE_EVENTS = {
    SweepPhase.START_BIDDING: LifecycleEvent.START_BIDDING,
    SweepPhase.CLOSE_BIDDING: LifecycleEvent.CLOSE_BIDDING,
    SweepPhase.AUTO_CANCEL: LifecycleEvent.AUTO_CANCEL,
}


def phase_query(phase: SweepPhase, now: datetime) -> RequestQuery:
    """Candidate predicate for one sweep phase."""
    if phase == SweepPhase.START_BIDDING:
        return RequestQuery(
            status=RequestStatus.INSPECTION_SCHEDULED,
            date_field="inspection_date",
            due_at_or_before=now,
        )
    if phase == SweepPhase.CLOSE_BIDDING:
        return RequestQuery(
            status=RequestStatus.BIDDING_OPEN,
            date_field="bidding_end_date",
            due_at_or_before=now,
        )
    return RequestQuery(
        status=RequestStatus.BIDDING_CLOSED,
        date_field="bidding_end_date",
        due_at_or_before=now - AUTO_CANCEL_GRACE,
        unselected_only=True,
    )


class SchedulerSweep:
    """Runs the sweep phases against a store."""

    def __init__(
        self,
        store: Store,
        notifier: Notifier,
        concurrency: Optional[int] = None,
    ):
        self.store = store
        self.lifecycle = RequestLifecycle(store, notifier)
        self.concurrency = max(1, concurrency or EngineConfig.SWEEP_CONCURRENCY)

    async def _transition(
        self,
        request: RenovationRequest,
        phase: SweepPhase,
        now: datetime,
    ) -> SweepOutcome:
        outcome = await self.lifecycle.apply(request.id, PHASE_EVENTS[phase], now=now)
        if not outcome.applied:
            return SweepOutcome(
                request_id=request.id,
                phase=phase,
                status=OutcomeStatus.SKIPPED,
                new_status=outcome.request.status.value,
                detail="Request changed concurrently",
            )

        return SweepOutcome(
            request_id=request.id,
            phase=phase,
            status=OutcomeStatus.CLOSED if outcome.closed_for_no_participants else OutcomeStatus.SUCCESS,
            new_status=outcome.request.status.value,
            participating_contractors=outcome.participant_count,
        )

    async def _process(
        self,
        request: RenovationRequest,
        phase: SweepPhase,
        now: datetime,
        semaphore: asyncio.Semaphore,
    ) -> SweepOutcome:
        async with semaphore:
            try:
                return await self._transition(request, phase, now)
            except InvalidTransitionError as e:
                # Guard no longer holds: already advanced or not yet due
                logger.info(
                    "Sweep candidate skipped",
                    request_id=request.id,
                    phase=phase.value,
                    reason=e.message
                )
                return SweepOutcome(
                    request_id=request.id,
                    phase=phase,
                    status=OutcomeStatus.SKIPPED,
                    detail=e.message,
                )
            except RenobidError as e:
                logger.error(
                    "Sweep transition failed",
                    request_id=request.id,
                    phase=phase.value,
                    error=e.message,
                    error_kind=e.kind
                )
                return SweepOutcome(
                    request_id=request.id,
                    phase=phase,
                    status=OutcomeStatus.ERROR,
                    error=e.message,
                )
            except Exception as e:
                logger.exception(
                    "Unexpected sweep failure",
                    request_id=request.id,
                    phase=phase.value,
                    error=str(e)
                )
                return SweepOutcome(
                    request_id=request.id,
                    phase=phase,
                    status=OutcomeStatus.ERROR,
                    error=str(e),
                )

    async def run_phase(self, phase: SweepPhase, now: datetime) -> list[SweepOutcome]:
        """Process every candidate of one phase."""
        with log_timing(f"sweep_{phase.value}", logger):
            candidates = await self.store.find_requests(phase_query(phase, now))
            logger.info(
                "Sweep phase candidates loaded",
                phase=phase.value,
                candidates=len(candidates)
            )
            if not candidates:
                return []

            semaphore = asyncio.Semaphore(self.concurrency)
            return list(await asyncio.gather(*(
                self._process(request, phase, now, semaphore)
                for request in candidates
            )))

    @timed("scheduler_sweep")
    async def run(
        self,
        now: Optional[datetime] = None,
        phases: Optional[Iterable[SweepPhase]] = None,
    ) -> SweepSummary:
        """Run the requested phases (all three by default) in dependency order."""
        now = ensure_utc(now or utc_now())
        selected = set(phases) if phases is not None else set(PHASE_ORDER)
        summary = SweepSummary(timestamp=now)

        for phase in PHASE_ORDER:
            if phase not in selected:
                continue
            for outcome in await self.run_phase(phase, now):
                summary.record(outcome)

        logger.info(
            "Sweep complete",
            bidding_started=summary.bidding_started,
            bidding_closed=summary.bidding_closed,
            auto_cancelled=summary.auto_cancelled,
            closed_no_participants=summary.closed_no_participants,
            skipped=summary.skipped,
            errors=summary.errors
        )
        return summary


async def run_sweep(
    store: Store,
    notifier: Notifier,
    now: Optional[datetime] = None,
    phases: Optional[Iterable[SweepPhase]] = None,
) -> SweepSummary:
    """Convenience entry point used by the cron endpoint."""
    return await SchedulerSweep(store, notifier).run(now=now, phases=phases)
