"""
Order Services

Usage:
    from app.services.orders import get_order_saga, get_order_status_machine

    order = await get_order_saga().create_order(cart)
    order = await get_order_status_machine().transition(order.id, "confirmed")

Author: Khalil Bannouri
Version: 1.0.0
"""

from functools import lru_cache

from app.services.orders.saga import OrderSaga, parse_order
from app.services.orders.status import ORDER_TRANSITIONS, OrderStatusMachine
from app.services.store import get_store
from app.services.tables import get_table_registry


@lru_cache()
def get_order_saga() -> OrderSaga:
    return OrderSaga(get_store(), get_table_registry())


@lru_cache()
def get_order_status_machine() -> OrderStatusMachine:
    return OrderStatusMachine(get_store(), get_table_registry())


__all__ = [
    "get_order_saga",
    "get_order_status_machine",
    "OrderSaga",
    "OrderStatusMachine",
    "ORDER_TRANSITIONS",
    "parse_order",
]
