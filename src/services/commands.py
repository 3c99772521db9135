"""Command surface - the public boundary for state-changing operations.

``CommandService.execute`` validates the payload, enforces the rate limit and
dispatches to the lifecycle, inspection gate or bid ledger. Every failure is
returned as a ``CommandResult`` carrying the error kind and an HTTP-style
status code; nothing raised below this point escapes it.
"""

from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from src.models.command import (
    AcceptBidCommand,
    CancelInspectionCommand,
    CancelRequestCommand,
    CommandName,
    CommandResult,
    ContractorCommand,
    RecordInterestCommand,
    RequestCommand,
    ScheduleInspectionCommand,
    SelectContractorCommand,
    SubmitBidCommand,
    WithdrawBidCommand,
)
from src.services.bid_ledger import BidLedger
from src.services.inspection_gate import InspectionGate
from src.services.lifecycle import RequestLifecycle, TransitionOutcome
from src.services.notifier import Notifier
from src.services.rate_limiter import RateLimiter
from src.services.store import Store
from src.utils.errors import RenobidError, ValidationError
from src.utils.logging import get_structured_logger, log_timing

logger = get_structured_logger(__name__)


def _outcome_data(outcome: TransitionOutcome) -> dict[str, Any]:
    return {
        "applied": outcome.applied,
        "previous_status": outcome.previous_status.value,
        "closed_for_no_participants": outcome.closed_for_no_participants,
        "request": outcome.request.model_dump(mode="json"),
    }


def _actor_id(payload: BaseModel) -> Optional[str]:
    for field in ("actor_id", "contractor_id", "customer_id"):
        value = getattr(payload, field, None)
        if value:
            return value
    return None


class CommandService:
    """Dispatches named commands to the engine components."""

    def __init__(
        self,
        store: Store,
        notifier: Notifier,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.lifecycle = RequestLifecycle(store, notifier)
        self.gate = InspectionGate(store)
        self.ledger = BidLedger(store, notifier, gate=self.gate)
        self.rate_limiter = rate_limiter

        self._handlers: dict[CommandName, tuple[type[BaseModel], Callable[[Any], Awaitable[dict]]]] = {
            CommandName.MARK_INSPECTION_PENDING: (RequestCommand, self._mark_inspection_pending),
            CommandName.SCHEDULE_INSPECTION: (ScheduleInspectionCommand, self._schedule_inspection),
            CommandName.CANCEL_INSPECTION: (CancelInspectionCommand, self._cancel_inspection),
            CommandName.RECORD_INTEREST: (RecordInterestCommand, self._record_interest),
            CommandName.REMOVE_INTEREST: (ContractorCommand, self._remove_interest),
            CommandName.LIST_PARTICIPANTS: (RequestCommand, self._list_participants),
            CommandName.SUBMIT_BID: (SubmitBidCommand, self._submit_bid),
            CommandName.WITHDRAW_BID: (WithdrawBidCommand, self._withdraw_bid),
            CommandName.ACCEPT_BID: (AcceptBidCommand, self._accept_bid),
            CommandName.SELECT_CONTRACTOR: (SelectContractorCommand, self._select_contractor),
            CommandName.CANCEL_REQUEST: (CancelRequestCommand, self._cancel_request),
            CommandName.COMPLETE_REQUEST: (RequestCommand, self._complete_request),
        }

    async def execute(self, command: str, payload: Optional[dict[str, Any]]) -> CommandResult:
        """Run one command and return its typed result."""
        try:
            name = CommandName(command)
        except ValueError:
            return self._failure(command, ValidationError(f"Unknown command: {command}"))

        model, handler = self._handlers[name]
        try:
            parsed = model(**(payload or {}))
        except PydanticValidationError as e:
            errors = [
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in e.errors()
            ]
            return self._failure(command, ValidationError("Invalid command payload", errors=errors))

        try:
            if self.rate_limiter is not None:
                await self.rate_limiter.enforce(name.value, _actor_id(parsed))
            with log_timing(f"command_{name.value}", logger):
                data = await handler(parsed)
        except RenobidError as e:
            return self._failure(command, e)
        except Exception as e:
            logger.exception("Unexpected command failure", command=command, error=str(e))
            return CommandResult(
                ok=False,
                command=command,
                status_code=500,
                error="internal_error",
                message="Internal server error",
            )

        return CommandResult(ok=True, command=command, data=data)

    def _failure(self, command: str, error: RenobidError) -> CommandResult:
        log = logger.error if error.status_code >= 500 else logger.info
        log(
            "Command rejected",
            command=command,
            error_kind=error.kind,
            status_code=error.status_code,
            error=error.message
        )
        data = {"details": error.details} if error.details else {}
        return CommandResult(
            ok=False,
            command=command,
            status_code=error.status_code,
            error=error.kind,
            message=error.message,
            data=data,
        )

    async def _mark_inspection_pending(self, cmd: RequestCommand) -> dict:
        return _outcome_data(await self.lifecycle.mark_inspection_pending(cmd.request_id))

    async def _schedule_inspection(self, cmd: ScheduleInspectionCommand) -> dict:
        outcome = await self.lifecycle.schedule_inspection(
            cmd.request_id, cmd.inspection_date, cmd.inspection_time
        )
        return _outcome_data(outcome)

    async def _cancel_inspection(self, cmd: CancelInspectionCommand) -> dict:
        return _outcome_data(await self.lifecycle.cancel_inspection(cmd.request_id, cmd.customer_id))

    async def _record_interest(self, cmd: RecordInterestCommand) -> dict:
        interest = await self.gate.record_interest(
            cmd.request_id, cmd.contractor_id, cmd.will_participate, cmd.notes
        )
        return {"interest": interest.model_dump(mode="json")}

    async def _remove_interest(self, cmd: ContractorCommand) -> dict:
        return {"removed": await self.gate.remove_interest(cmd.request_id, cmd.contractor_id)}

    async def _list_participants(self, cmd: RequestCommand) -> dict:
        return {"participants": await self.gate.list_participants(cmd.request_id)}

    async def _submit_bid(self, cmd: SubmitBidCommand) -> dict:
        bid = await self.ledger.submit(cmd.request_id, cmd.contractor_id, cmd.bid)
        return {"bid": bid.model_dump(mode="json")}

    async def _withdraw_bid(self, cmd: WithdrawBidCommand) -> dict:
        bid = await self.ledger.withdraw(cmd.bid_id, cmd.contractor_id)
        return {"withdrawn": bid.id, "request_id": bid.request_id}

    async def _accept_bid(self, cmd: AcceptBidCommand) -> dict:
        result = await self.ledger.accept(cmd.bid_id, customer_id=cmd.customer_id)
        return result.model_dump(mode="json")

    async def _select_contractor(self, cmd: SelectContractorCommand) -> dict:
        result = await self.ledger.select_contractor(
            cmd.request_id, cmd.contractor_id, customer_id=cmd.customer_id
        )
        return result.model_dump(mode="json")

    async def _cancel_request(self, cmd: CancelRequestCommand) -> dict:
        outcome = await self.lifecycle.cancel_request(cmd.request_id, cmd.actor_id, is_admin=cmd.is_admin)
        return _outcome_data(outcome)

    async def _complete_request(self, cmd: RequestCommand) -> dict:
        return _outcome_data(await self.lifecycle.complete_request(cmd.request_id))
