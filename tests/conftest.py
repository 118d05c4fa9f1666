"""
Shared fixtures: an in-memory store seeded with three tables and the
services wired to it. Incidents are collected in a list instead of being
sent to Celery.
"""

import os

os.environ["ENV_MODE"] = "development"
os.environ["STORE_BACKEND"] = "memory"
os.environ["REPORT_INCIDENTS_ASYNC"] = "false"

from typing import Any, Optional

import pytest

from app.core.exceptions import StoreUnavailableError
from app.models import TABLES
from app.services.orders import OrderSaga, OrderStatusMachine
from app.services.requests import OrderRequestWorkflow
from app.services.store import InMemoryStore
from app.services.tables import OccupancyAuditor, TableRegistry

RESTAURANT_ID = "rest-1"


class ReleaseFailingStore(InMemoryStore):
    """Store whose table releases always fail (reservations still work)."""

    async def update_where(self, table, filters, expected, values):
        if table == TABLES and values.get("is_active") is True:
            raise StoreUnavailableError("Simulated release failure", {"table": table})
        return await super().update_where(table, filters, expected, values)


def build_cart(
    table_id: Optional[str] = None,
    order_type: str = "dine_in",
    items: Optional[list[dict[str, Any]]] = None,
    **overrides: Any,
) -> dict[str, Any]:
    """Two-item cart whose totals reconcile."""
    items = items if items is not None else [
        {"menu_item_id": "margherita", "quantity": 2, "unit_price": 12.50},
        {"menu_item_id": "tiramisu", "quantity": 1, "unit_price": 6.00},
    ]
    subtotal = round(sum(i["quantity"] * i["unit_price"] for i in items), 2)
    cart = {
        "restaurant_id": RESTAURANT_ID,
        "order_type": order_type,
        "table_id": table_id,
        "items": items,
        "subtotal": subtotal,
        "service_fee": 1.00,
        "tax": 2.50,
        "tip": 3.00,
        "total": round(subtotal + 1.00 + 2.50 + 3.00, 2),
    }
    cart.update(overrides)
    return cart


@pytest.fixture
def make_cart():
    return build_cart


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def incidents():
    return []


@pytest.fixture
def registry(store, incidents):
    return TableRegistry(store, incident_reporter=incidents.append)


@pytest.fixture
async def tables(registry):
    return [await registry.create_table(RESTAURANT_ID, number) for number in (1, 2, 3)]


@pytest.fixture
def table_id(tables):
    return tables[0].id


@pytest.fixture
def saga(store, registry):
    return OrderSaga(store, registry)


@pytest.fixture
def machine(store, registry):
    return OrderStatusMachine(store, registry)


@pytest.fixture
def workflow(store, registry):
    return OrderRequestWorkflow(store, registry)


@pytest.fixture
def auditor(registry):
    return OccupancyAuditor(registry, grace_seconds=0)


@pytest.fixture
def release_calls(registry, monkeypatch):
    """Record every table id passed to TableRegistry.release."""
    calls = []
    original = registry.release

    async def counting_release(table_id):
        calls.append(table_id)
        return await original(table_id)

    monkeypatch.setattr(registry, "release", counting_release)
    return calls
