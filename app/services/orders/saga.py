"""
Order Saga

Turns a validated cart into a persisted order:

    1. reserve the table (dine-in only)
    2. insert the order row (status pending)
    3. insert the order items

When the store supports transactions (and SAGA_USE_TRANSACTIONS is on)
the three steps run inside one store transaction. Otherwise every
failure after step 1 runs the compensation steps in reverse order:

    item insert failed  -> delete order row, release table
    order insert failed -> release table

and the original error is re-raised. A failed undo step never replaces
the original error; it is recorded as an incident and the table is
flagged for an admin.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union

from pydantic import ValidationError

from app.core.config import Settings, get_settings
from app.core.exceptions import InputValidationError, TableUnavailableError
from app.models import ORDER_ITEMS, ORDERS, OrderStatus, OrderType
from app.schemas import OrderCreate, OrderItemResponse, OrderResponse
from app.services.incidents import CompensationFailure
from app.services.store import BaseStore, Row
from app.services.tables.registry import TableRegistry

logger = logging.getLogger(__name__)


def parse_order(order: Union[OrderCreate, dict[str, Any]]) -> OrderCreate:
    """Validate raw input, reporting problems as InputValidationError."""
    if isinstance(order, OrderCreate):
        return order
    try:
        return OrderCreate.model_validate(order)
    except ValidationError as e:
        errors = [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise InputValidationError("Invalid order", {"errors": errors}) from e


class OrderSaga:
    """
    Order creation with table reservation folded in.

    Example:
        >>> saga = OrderSaga(store, registry)
        >>> order = await saga.create_order({
        ...     "restaurant_id": "r1",
        ...     "order_type": "dine_in",
        ...     "table_id": table_id,
        ...     "items": [{"menu_item_id": "m1", "quantity": 2, "unit_price": 10.0}],
        ...     "subtotal": 20.0,
        ...     "total": 20.0,
        ... })
        >>> order.status
        <OrderStatus.PENDING: 'pending'>
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

    @property
    def uses_transactions(self) -> bool:
        return self.store.supports_transactions and self.settings.saga_use_transactions

    async def create_order(
        self,
        order: Union[OrderCreate, dict[str, Any]],
        user_id: Optional[str] = None,
    ) -> OrderResponse:
        """
        Place an order.

        Args:
            order: OrderCreate or a dict of the same shape
            user_id: Acting customer, from the auth collaborator

        Returns:
            OrderResponse: The new pending order with its items

        Raises:
            InputValidationError: Empty cart, bad quantity, missing table,
                totals that do not reconcile
            TableUnavailableError: Table already occupied
            TableNotFoundError: Unknown table id, or a table of another restaurant
            StoreUnavailableError: Store failure (after compensation)
        """
        cart = parse_order(order)

        if self.uses_transactions:
            async with self.store.transaction():
                return await self._execute(cart, user_id, compensate=False)
        return await self._execute(cart, user_id, compensate=True)

    # =========================================================================
    # STEPS
    # =========================================================================

    async def _execute(
        self,
        cart: OrderCreate,
        user_id: Optional[str],
        compensate: bool,
    ) -> OrderResponse:
        table_id = cart.table_id if cart.order_type == OrderType.DINE_IN else None

        # Step 1: reserve table
        if table_id:
            reservation = await self.registry.reserve(table_id, restaurant_id=cart.restaurant_id)
            if not reservation.success:
                raise TableUnavailableError(
                    reservation.error_message or "Table is already occupied",
                    {"table_id": table_id},
                )

        # Step 2: order row
        try:
            order_row = await self.store.insert(ORDERS, self._order_values(cart, user_id))
        except Exception as e:
            logger.exception(f"Order insert failed for restaurant {cart.restaurant_id}")
            if compensate and table_id:
                await self.registry.compensate_release(table_id, e, kind="order_saga")
            raise

        # Step 3: order items
        try:
            item_rows = await self.store.insert_many(
                ORDER_ITEMS, self._item_values(cart, order_row["id"])
            )
        except Exception as e:
            logger.exception(f"Item insert failed for order {order_row['id']}")
            if compensate:
                await self._undo_order(order_row["id"], table_id, e)
            raise

        logger.info(
            f"Order created: {order_row['id']} "
            f"({cart.order_type.value}, {len(item_rows)} items, total={cart.total:.2f}"
            f"{', table ' + table_id if table_id else ''})"
        )
        return OrderResponse.model_validate({
            **order_row,
            "items": [OrderItemResponse.model_validate(item) for item in item_rows],
        })

    async def _undo_order(
        self,
        order_id: str,
        table_id: Optional[str],
        cause: Exception,
    ) -> None:
        try:
            await self.store.delete(ORDERS, {"id": order_id})
        except Exception as e:
            # The order row survives and still references the table, so the
            # table stays occupied and is flagged instead of released.
            logger.exception(f"Could not delete order {order_id} during compensation")
            await self.registry.record_incident(CompensationFailure(
                kind="order_saga",
                table_id=table_id,
                order_id=order_id,
                original_error=f"{type(cause).__name__}: {cause}",
                compensation_error=f"{type(e).__name__}: {e}",
            ))
            return

        logger.info(f"Compensation: order {order_id} deleted")
        if table_id:
            await self.registry.compensate_release(
                table_id, cause, kind="order_saga", order_id=order_id
            )

    # =========================================================================
    # ROW BUILDERS
    # =========================================================================

    def _order_values(self, cart: OrderCreate, user_id: Optional[str]) -> Row:
        now = datetime.now(timezone.utc)
        return {
            "user_id": user_id,
            "restaurant_id": cart.restaurant_id,
            "order_type": cart.order_type.value,
            "table_id": cart.table_id if cart.order_type == OrderType.DINE_IN else None,
            "subtotal": cart.subtotal,
            "delivery_fee": cart.delivery_fee,
            "service_fee": cart.service_fee,
            "tax": cart.tax,
            "tip": cart.tip,
            "total": cart.total,
            "payment_method": cart.payment_method,
            "special_instructions": cart.special_instructions,
            "status": OrderStatus.PENDING.value,
            "estimated_ready_time": now + timedelta(minutes=self.settings.order_ready_sla_minutes),
            "created_at": now,
            "updated_at": now,
        }

    @staticmethod
    def _item_values(cart: OrderCreate, order_id: str) -> list[Row]:
        now = datetime.now(timezone.utc)
        return [
            {
                "order_id": order_id,
                "menu_item_id": item.menu_item_id,
                "quantity": item.quantity,
                "unit_price": item.unit_price,
                "total_price": item.total_price,
                "special_instructions": item.special_instructions,
                "created_at": now,
            }
            for item in cart.items
        ]
