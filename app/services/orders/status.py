"""
Order Status Machine

Status graph:

    pending -> confirmed -> preparing -> ready -> picked_up -> completed
                                              +-> delivered -> completed

    cancelled is reachable from every non-terminal status.
    completed and cancelled are terminal.

Each transition is a compare-and-set on the current status, so two
concurrent callers cannot both move the same order, and a dine-in table
is released exactly once when the order enters a terminal status.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Union

from app.core.exceptions import InputValidationError, InvalidTransitionError, OrderNotFoundError
from app.core.state_machine import TransitionTable
from app.models import ORDER_ITEMS, ORDERS, OrderStatus, OrderType
from app.schemas import OrderItemResponse, OrderResponse
from app.services.store import BaseStore, Row
from app.services.tables.registry import TableRegistry

logger = logging.getLogger(__name__)


ORDER_TRANSITIONS: TransitionTable[OrderStatus] = TransitionTable(
    states=OrderStatus,
    edges={
        OrderStatus.PENDING: [OrderStatus.CONFIRMED],
        OrderStatus.CONFIRMED: [OrderStatus.PREPARING],
        OrderStatus.PREPARING: [OrderStatus.READY],
        OrderStatus.READY: [OrderStatus.PICKED_UP, OrderStatus.DELIVERED],
        OrderStatus.PICKED_UP: [OrderStatus.COMPLETED],
        OrderStatus.DELIVERED: [OrderStatus.COMPLETED],
        OrderStatus.COMPLETED: [],
        OrderStatus.CANCELLED: [],
    },
    terminal=[OrderStatus.COMPLETED, OrderStatus.CANCELLED],
    entity="order",
    universal_target=OrderStatus.CANCELLED,
)

# Column stamped when an order enters each status
STAGE_TIMESTAMPS = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.PREPARING: "preparing_at",
    OrderStatus.READY: "actual_ready_time",
    OrderStatus.PICKED_UP: "picked_up_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.COMPLETED: "completed_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_status(value: Union[OrderStatus, str]) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise InputValidationError(
            f"Unknown order status: {value}",
            {"allowed": [s.value for s in OrderStatus]},
        )


class OrderStatusMachine:
    """
    Applies status changes to persisted orders.

    Example:
        >>> machine = OrderStatusMachine(store, registry)
        >>> order = await machine.transition(order_id, OrderStatus.CONFIRMED)
        >>> order = await machine.complete(order_id)
    """

    def __init__(self, store: BaseStore, registry: TableRegistry):
        self.store = store
        self.registry = registry
        self.transitions = ORDER_TRANSITIONS

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def _load(self, order_id: str) -> Row:
        row = await self.store.select_one(ORDERS, {"id": order_id})
        if row is None:
            raise OrderNotFoundError(f"Order {order_id} not found", {"order_id": order_id})
        return row

    async def _to_response(self, row: Row) -> OrderResponse:
        items = await self.store.select(ORDER_ITEMS, {"order_id": row["id"]}, order_by="created_at")
        return OrderResponse.model_validate({
            **row,
            "items": [OrderItemResponse.model_validate(item) for item in items],
        })

    async def get_order(self, order_id: str) -> OrderResponse:
        """Fetch an order with its line items."""
        return await self._to_response(await self._load(order_id))

    async def list_orders(
        self,
        restaurant_id: Optional[str] = None,
        status: Optional[Union[OrderStatus, str]] = None,
        limit: int = 50,
    ) -> list[OrderResponse]:
        """List orders, newest first."""
        filters: Row = {}
        if restaurant_id:
            filters["restaurant_id"] = restaurant_id
        if status:
            filters["status"] = _parse_status(status).value

        rows = await self.store.select(
            ORDERS, filters or None, order_by="created_at", descending=True, limit=limit
        )
        return [await self._to_response(row) for row in rows]

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def transition(
        self,
        order_id: str,
        new_status: Union[OrderStatus, str],
        reason: Optional[str] = None,
    ) -> OrderResponse:
        """
        Move an order to `new_status`.

        Re-applying the terminal status an order already has is a no-op
        and does not release its table again.

        Raises:
            OrderNotFoundError: Unknown order id
            InvalidTransitionError: Target is not adjacent to the current status
        """
        target = _parse_status(new_status)
        row = await self._load(order_id)
        current = OrderStatus(row["status"])

        if current == target and self.transitions.is_terminal(current):
            logger.debug(f"Order {order_id} already {current.value}, nothing to do")
            return await self._to_response(row)

        self.transitions.check(current, target)

        now = _now()
        values: Row = {
            "status": target.value,
            "updated_at": now,
            STAGE_TIMESTAMPS[target]: now,
        }
        if target == OrderStatus.CANCELLED:
            values["cancellation_reason"] = reason

        table_id = row.get("table_id")
        releases_table = (
            self.transitions.is_terminal(target)
            and OrderType(row["order_type"]) == OrderType.DINE_IN
            and bool(table_id)
        )
        if releases_table:
            values["table_released_at"] = now

        updated = await self.store.update_where(
            ORDERS,
            {"id": order_id},
            expected={"status": current.value},
            values=values,
        )
        if updated is None:
            # Someone else moved the order between our read and write
            latest = await self._load(order_id)
            latest_status = OrderStatus(latest["status"])
            if latest_status == target and self.transitions.is_terminal(target):
                return await self._to_response(latest)
            raise InvalidTransitionError(
                current=latest_status.value,
                target=target.value,
                entity="order",
                message=f"Order {order_id} changed to '{latest_status.value}' concurrently",
            )

        logger.info(f"Order {order_id}: {current.value} -> {target.value}")

        if releases_table:
            await self.registry.compensate_release(
                table_id,
                cause=None,
                kind="order_status",
                order_id=order_id,
            )

        return await self._to_response(updated)

    async def complete(self, order_id: str) -> OrderResponse:
        return await self.transition(order_id, OrderStatus.COMPLETED)

    async def cancel(self, order_id: str, reason: Optional[str] = None) -> OrderResponse:
        return await self.transition(order_id, OrderStatus.CANCELLED, reason=reason)
