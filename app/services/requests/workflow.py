"""
Order Request Workflow

Reservation requests submitted by customers and resolved by restaurant
admins.

Status graph:

    pending -> approved -> seated -> completed
          |            +-----------> completed
          +-> rejected

    completed and rejected are terminal.

Approving a dine-in request reserves a table first (the one supplied by
the admin, the one on the request, or the lowest-numbered free table).
If no table can be reserved the request stays pending; a table id that
does not resolve to a table of the restaurant counts as no table
available. Completing a request releases its table exactly once.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Union

from pydantic import ValidationError

from app.core.config import Settings, get_settings
from app.core.exceptions import (
    InputValidationError,
    InvalidTransitionError,
    NoTableAvailableError,
    OrderRequestNotFoundError,
    TableNotFoundError,
    TableUnavailableError,
)
from app.core.state_machine import TransitionTable
from app.models import ORDER_REQUESTS, OrderRequestStatus, OrderRequestType
from app.schemas import OrderRequestCreate, OrderRequestResponse
from app.services.store import BaseStore, Row
from app.services.tables.registry import TableRegistry

logger = logging.getLogger(__name__)


REQUEST_TRANSITIONS: TransitionTable[OrderRequestStatus] = TransitionTable(
    states=OrderRequestStatus,
    edges={
        OrderRequestStatus.PENDING: [OrderRequestStatus.APPROVED, OrderRequestStatus.REJECTED],
        OrderRequestStatus.APPROVED: [OrderRequestStatus.SEATED, OrderRequestStatus.COMPLETED],
        OrderRequestStatus.SEATED: [OrderRequestStatus.COMPLETED],
        OrderRequestStatus.COMPLETED: [],
        OrderRequestStatus.REJECTED: [],
    },
    terminal=[OrderRequestStatus.COMPLETED, OrderRequestStatus.REJECTED],
    entity="order request",
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class OrderRequestWorkflow:
    """
    Admin-side handling of order requests.

    Example:
        >>> workflow = OrderRequestWorkflow(store, registry)
        >>> request = await workflow.create({"restaurant_id": "r1", "customer_name": "Jane", "guest_count": 4})
        >>> request = await workflow.approve(request.id, approver_id="admin-1", table_id=table_id)
        >>> request = await workflow.complete(request.id)
    """

    def __init__(
        self,
        store: BaseStore,
        registry: TableRegistry,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.registry = registry
        self.settings = settings or get_settings()
        self.transitions = REQUEST_TRANSITIONS

    @property
    def uses_transactions(self) -> bool:
        return self.store.supports_transactions and self.settings.saga_use_transactions

    # =========================================================================
    # CREATE / READ
    # =========================================================================

    async def create(self, data: Union[OrderRequestCreate, dict[str, Any]]) -> OrderRequestResponse:
        """
        Submit a new pending request.

        Raises:
            InputValidationError: Guest count < 1, missing name, etc.
            TableNotFoundError: Requested table does not belong to the restaurant
        """
        if not isinstance(data, OrderRequestCreate):
            try:
                data = OrderRequestCreate.model_validate(data)
            except ValidationError as e:
                raise InputValidationError(
                    "Invalid order request",
                    {"errors": [err["msg"] for err in e.errors()]},
                ) from e

        table_id = data.table_id if data.order_type == OrderRequestType.DINE_IN else None
        if table_id:
            await self.registry.get_table(table_id, restaurant_id=data.restaurant_id)

        now = _now()
        row = await self.store.insert(ORDER_REQUESTS, {
            "restaurant_id": data.restaurant_id,
            "customer_name": data.customer_name,
            "customer_phone": data.customer_phone,
            "order_type": data.order_type.value,
            "table_id": table_id,
            "guest_count": data.guest_count,
            "requested_time": data.requested_time,
            "special_requests": data.special_requests,
            "status": OrderRequestStatus.PENDING.value,
            "created_at": now,
            "updated_at": now,
        })
        logger.info(
            f"Order request created: {row['id']} "
            f"({data.order_type.value}, {data.guest_count} guests)"
        )
        return OrderRequestResponse.model_validate(row)

    async def _load(self, request_id: str) -> Row:
        row = await self.store.select_one(ORDER_REQUESTS, {"id": request_id})
        if row is None:
            raise OrderRequestNotFoundError(
                f"Order request {request_id} not found", {"request_id": request_id}
            )
        return row

    async def get(self, request_id: str) -> OrderRequestResponse:
        return OrderRequestResponse.model_validate(await self._load(request_id))

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def _move(
        self,
        row: Row,
        target: OrderRequestStatus,
        values: Row,
    ) -> Row:
        """Compare-and-set the status from its current value to `target`."""
        current = OrderRequestStatus(row["status"])
        self.transitions.check(current, target)

        updated = await self.store.update_where(
            ORDER_REQUESTS,
            {"id": row["id"]},
            expected={"status": current.value},
            values={**values, "status": target.value, "updated_at": _now()},
        )
        if updated is None:
            latest = await self._load(row["id"])
            raise InvalidTransitionError(
                current=OrderRequestStatus(latest["status"]).value,
                target=target.value,
                entity="order request",
                message=f"Order request {row['id']} was already resolved",
            )
        logger.info(f"Order request {row['id']}: {current.value} -> {target.value}")
        return updated

    async def approve(
        self,
        request_id: str,
        approver_id: str,
        table_id: Optional[str] = None,
    ) -> OrderRequestResponse:
        """
        Approve a pending request, reserving a table for dine-in.

        Raises:
            OrderRequestNotFoundError: Unknown request
            InvalidTransitionError: Request is not pending
            TableUnavailableError: The chosen table is occupied
            NoTableAvailableError: No free table in the restaurant, or the
                chosen table does not belong to it
        """
        row = await self._load(request_id)
        self.transitions.check(OrderRequestStatus(row["status"]), OrderRequestStatus.APPROVED)

        if self.uses_transactions:
            async with self.store.transaction():
                return await self._approve(row, approver_id, table_id, compensate=False)
        return await self._approve(row, approver_id, table_id, compensate=True)

    async def _approve(
        self,
        row: Row,
        approver_id: str,
        table_id: Optional[str],
        compensate: bool,
    ) -> OrderRequestResponse:
        reserved = None
        if OrderRequestType(row["order_type"]) == OrderRequestType.DINE_IN:
            reserved = await self._reserve_table(row, table_id)

        try:
            updated = await self._move(row, OrderRequestStatus.APPROVED, {
                "approved_by": approver_id,
                "approved_at": _now(),
                "table_id": reserved,
            })
        except Exception as e:
            if compensate and reserved:
                await self.registry.compensate_release(
                    reserved, e, kind="order_request", request_id=row["id"]
                )
            raise

        return OrderRequestResponse.model_validate(updated)

    async def _reserve_table(self, row: Row, table_id: Optional[str]) -> str:
        restaurant_id = row["restaurant_id"]
        candidate = table_id or row.get("table_id")

        if candidate:
            try:
                result = await self.registry.reserve(candidate, restaurant_id=restaurant_id)
            except TableNotFoundError as e:
                raise NoTableAvailableError(
                    "The selected table does not exist in this restaurant",
                    {"table_id": candidate, "request_id": row["id"]},
                ) from e
            if not result.success:
                raise TableUnavailableError(
                    result.error_message or "Table is already occupied",
                    {"table_id": candidate, "request_id": row["id"]},
                )
            return candidate

        for table in await self.registry.list_tables(restaurant_id, available_only=True):
            result = await self.registry.reserve(table.id, restaurant_id=restaurant_id)
            if result.success:
                logger.info(f"Auto-selected table {table.table_number} for request {row['id']}")
                return table.id

        raise NoTableAvailableError(
            "No table available for this request",
            {"restaurant_id": restaurant_id, "request_id": row["id"]},
        )

    async def reject(
        self,
        request_id: str,
        reason: str,
        rejected_by: Optional[str] = None,
    ) -> OrderRequestResponse:
        """Reject a pending request. A non-blank reason is required."""
        reason = (reason or "").strip()
        if not reason:
            raise InputValidationError("Rejection reason is required", {"request_id": request_id})

        row = await self._load(request_id)
        updated = await self._move(row, OrderRequestStatus.REJECTED, {
            "rejection_reason": reason,
            "rejected_by": rejected_by,
        })
        return OrderRequestResponse.model_validate(updated)

    async def seat(self, request_id: str) -> OrderRequestResponse:
        row = await self._load(request_id)
        updated = await self._move(row, OrderRequestStatus.SEATED, {"seated_at": _now()})
        return OrderRequestResponse.model_validate(updated)

    async def complete(self, request_id: str) -> OrderRequestResponse:
        """
        Complete an approved or seated request and free its table.

        The status compare-and-set succeeds for one caller only, so the
        table is released once even under concurrent calls.
        """
        row = await self._load(request_id)
        now = _now()
        table_id = row.get("table_id")

        values: Row = {"completed_at": now}
        if table_id:
            values["table_released_at"] = now
        updated = await self._move(row, OrderRequestStatus.COMPLETED, values)

        if table_id:
            await self.registry.compensate_release(
                table_id, cause=None, kind="order_request", request_id=request_id
            )
        return OrderRequestResponse.model_validate(updated)

    async def list(
        self,
        restaurant_id: str,
        status: Optional[Union[OrderRequestStatus, str]] = None,
    ) -> list[OrderRequestResponse]:
        """List a restaurant's requests, newest first."""
        filters: Row = {"restaurant_id": restaurant_id}
        if status:
            try:
                filters["status"] = OrderRequestStatus(status).value
            except ValueError:
                raise InputValidationError(
                    f"Unknown order request status: {status}",
                    {"allowed": [s.value for s in OrderRequestStatus]},
                )
        rows = await self.store.select(
            ORDER_REQUESTS, filters, order_by="created_at", descending=True
        )
        return [OrderRequestResponse.model_validate(row) for row in rows]
