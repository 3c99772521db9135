"""Supabase-backed implementation of the entity store."""

from enum import Enum
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from src.models.request import RenovationRequest, RequestStatus
from src.models.bid import Bid, BidStatus, AcceptanceResult
from src.models.inspection_interest import InspectionInterest
from src.services.store import RequestQuery
from src.services.supabase_client import SupabaseClient, first_row
from src.utils.errors import ConflictError, SupabaseError
from src.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

REQUESTS_TABLE = "renovation_requests"
BIDS_TABLE = "bids"
INTERESTS_TABLE = "inspection_interests"


def _serialize_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def serialize_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Convert a field dict to PostgREST-compatible JSON values (None clears a column)."""
    return {key: _serialize_value(value) for key, value in fields.items()}


class SupabaseStore:
    """Store backed by Supabase tables and the ``submit_bid``/``accept_bid`` SQL functions."""

    async def get_request(self, request_id: str) -> Optional[RenovationRequest]:
        async with SupabaseClient() as client:
            try:
                result = client.table(REQUESTS_TABLE).select("*").eq("id", request_id).execute()
            except Exception as e:
                raise SupabaseError(f"Failed to get request: {e}")
        row = first_row(result)
        return RenovationRequest(**row) if row else None

    async def update_request_status(
        self,
        request_id: str,
        expected_status: RequestStatus,
        new_status: RequestStatus,
        fields: Optional[dict[str, Any]] = None,
    ) -> Optional[RenovationRequest]:
        updates = serialize_fields(dict(fields or {}))
        updates["status"] = new_status.value
        updates["updated_at"] = datetime.now(timezone.utc).isoformat()

        async with SupabaseClient() as client:
            try:
                # Conditional on the current status: the loser of a race matches zero rows
                result = (
                    client.table(REQUESTS_TABLE)
                    .update(updates)
                    .eq("id", request_id)
                    .eq("status", expected_status.value)
                    .execute()
                )
            except Exception as e:
                raise SupabaseError(f"Failed to update request status: {e}")

        row = first_row(result)
        if row is None:
            logger.info(
                "Conditional status update matched no rows",
                request_id=request_id,
                expected_status=expected_status.value,
                new_status=new_status.value
            )
            return None
        return RenovationRequest(**row)

    async def find_requests(self, query: RequestQuery) -> list[RenovationRequest]:
        async with SupabaseClient() as client:
            try:
                builder = client.table(REQUESTS_TABLE).select("*").eq("status", query.status.value)
                if query.date_field and query.due_at_or_before is not None:
                    builder = builder.lte(query.date_field, query.due_at_or_before.isoformat())
                if query.unselected_only:
                    builder = builder.is_("selected_contractor_id", "null")
                result = builder.order("id").execute()
            except Exception as e:
                raise SupabaseError(f"Failed to find requests: {e}")
        return [RenovationRequest(**row) for row in (result.data or [])]

    async def get_bid(self, bid_id: str) -> Optional[Bid]:
        async with SupabaseClient() as client:
            try:
                result = client.table(BIDS_TABLE).select("*").eq("id", bid_id).execute()
            except Exception as e:
                raise SupabaseError(f"Failed to get bid: {e}")
        row = first_row(result)
        return Bid(**row) if row else None

    async def get_bid_for_contractor(self, request_id: str, contractor_id: str) -> Optional[Bid]:
        async with SupabaseClient() as client:
            try:
                result = (
                    client.table(BIDS_TABLE)
                    .select("*")
                    .eq("request_id", request_id)
                    .eq("contractor_id", contractor_id)
                    .execute()
                )
            except Exception as e:
                raise SupabaseError(f"Failed to get contractor bid: {e}")
        row = first_row(result)
        return Bid(**row) if row else None

    async def list_bids(self, request_id: str, status: Optional[BidStatus] = None) -> list[Bid]:
        async with SupabaseClient() as client:
            try:
                builder = client.table(BIDS_TABLE).select("*").eq("request_id", request_id)
                if status is not None:
                    builder = builder.eq("status", status.value)
                result = builder.order("created_at").execute()
            except Exception as e:
                raise SupabaseError(f"Failed to list bids: {e}")
        return [Bid(**row) for row in (result.data or [])]

    async def upsert_bid(self, bid: Bid) -> Optional[Bid]:
        payload = serialize_fields(bid.model_dump(exclude={"status", "created_at", "updated_at"}))

        async with SupabaseClient() as client:
            try:
                # Request row is locked for the check and the write; see supabase/migrations
                result = client.rpc("submit_bid", {"p_bid": payload}).execute()
            except Exception as e:
                raise SupabaseError(f"Failed to upsert bid: {e}")

        data = result.data
        if isinstance(data, list):
            data = data[0] if data else None
        if not data:
            raise SupabaseError("Failed to upsert bid: no data returned")

        error = data.get("error")
        if error == "bidding_not_open":
            return None
        if error == "bid_not_pending":
            raise ConflictError(f"Cannot revise bid with status: {data.get('status')}")
        return Bid(**data["bid"])

    async def delete_bid(self, bid_id: str) -> bool:
        async with SupabaseClient() as client:
            try:
                result = (
                    client.table(BIDS_TABLE)
                    .delete()
                    .eq("id", bid_id)
                    .eq("status", BidStatus.PENDING.value)
                    .execute()
                )
            except Exception as e:
                raise SupabaseError(f"Failed to delete bid: {e}")
        return bool(result.data)

    async def accept_bid_transaction(self, request_id: str, bid_id: str) -> Optional[AcceptanceResult]:
        async with SupabaseClient() as client:
            try:
                # Single serializable SQL function; see supabase/migrations
                result = client.rpc("accept_bid", {
                    "p_request_id": request_id,
                    "p_bid_id": bid_id,
                }).execute()
            except Exception as e:
                raise SupabaseError(f"Failed to accept bid: {e}")

        payload = result.data
        if isinstance(payload, list):
            payload = payload[0] if payload else None
        if not payload:
            return None
        return AcceptanceResult(**payload)

    async def get_inspection_interest(
        self, request_id: str, contractor_id: str
    ) -> Optional[InspectionInterest]:
        async with SupabaseClient() as client:
            try:
                result = (
                    client.table(INTERESTS_TABLE)
                    .select("*")
                    .eq("request_id", request_id)
                    .eq("contractor_id", contractor_id)
                    .execute()
                )
            except Exception as e:
                raise SupabaseError(f"Failed to get inspection interest: {e}")
        row = first_row(result)
        return InspectionInterest(**row) if row else None

    async def upsert_inspection_interest(self, interest: InspectionInterest) -> InspectionInterest:
        payload = serialize_fields(interest.model_dump(exclude={"created_at", "updated_at"}))
        payload["updated_at"] = datetime.now(timezone.utc).isoformat()

        async with SupabaseClient() as client:
            try:
                result = (
                    client.table(INTERESTS_TABLE)
                    .upsert(payload, on_conflict="request_id,contractor_id")
                    .execute()
                )
            except Exception as e:
                raise SupabaseError(f"Failed to upsert inspection interest: {e}")

        row = first_row(result)
        if row is None:
            raise SupabaseError("Failed to upsert inspection interest: no data returned")
        return InspectionInterest(**row)

    async def list_inspection_interests(
        self, request_id: str, will_participate: Optional[bool] = None
    ) -> list[InspectionInterest]:
        async with SupabaseClient() as client:
            try:
                builder = client.table(INTERESTS_TABLE).select("*").eq("request_id", request_id)
                if will_participate is not None:
                    builder = builder.eq("will_participate", will_participate)
                result = builder.execute()
            except Exception as e:
                raise SupabaseError(f"Failed to list inspection interests: {e}")
        return [InspectionInterest(**row) for row in (result.data or [])]

    async def delete_inspection_interest(self, request_id: str, contractor_id: str) -> bool:
        async with SupabaseClient() as client:
            try:
                result = (
                    client.table(INTERESTS_TABLE)
                    .delete()
                    .eq("request_id", request_id)
                    .eq("contractor_id", contractor_id)
                    .execute()
                )
            except Exception as e:
                raise SupabaseError(f"Failed to delete inspection interest: {e}")
        return bool(result.data)
