import asyncio
import random
from datetime import datetime, timedelta, timezone

from app.core.exceptions import (
    InvalidTransitionError,
    NoTableAvailableError,
    TableUnavailableError,
)
from app.models import ORDERS, TABLES, OrderStatus
from app.services.orders import OrderSaga
from app.services.store import InMemoryStore
from app.services.tables import OccupancyAuditor, TableRegistry

from conftest import RESTAURANT_ID, build_cart

FORWARD = {
    OrderStatus.PENDING: OrderStatus.CONFIRMED,
    OrderStatus.CONFIRMED: OrderStatus.PREPARING,
    OrderStatus.PREPARING: OrderStatus.READY,
    OrderStatus.READY: OrderStatus.DELIVERED,
    OrderStatus.DELIVERED: OrderStatus.COMPLETED,
}


async def test_consistent_state_has_no_mismatches(auditor, saga, workflow, tables):
    await saga.create_order(build_cart(tables[0].id))
    request = await workflow.create({
        "restaurant_id": RESTAURANT_ID, "customer_name": "Jane", "guest_count": 2,
    })
    await workflow.approve(request.id, approver_id="admin-1", table_id=tables[1].id)

    report = await auditor.audit(RESTAURANT_ID)

    assert report.checked_tables == 3
    assert report.mismatches == []


async def test_orphaned_occupancy_is_reported_and_flagged(auditor, registry, tables):
    await registry.reserve(tables[2].id)

    report = await auditor.audit(RESTAURANT_ID, flag=True)

    assert [m.table_id for m in report.mismatches] == [tables[2].id]
    mismatch = report.mismatches[0]
    assert mismatch.is_active is False
    assert mismatch.bound_by_orders == []
    assert mismatch.flagged is True
    assert (await registry.get_table(tables[2].id)).needs_attention is True


async def test_available_table_bound_to_open_order(auditor, saga, store, tables):
    order = await saga.create_order(build_cart(tables[0].id))
    await store.update(TABLES, {"id": tables[0].id}, {"is_active": True})

    report = await auditor.audit(RESTAURANT_ID)

    assert len(report.mismatches) == 1
    assert report.mismatches[0].bound_by_orders == [order.id]
    assert report.mismatches[0].flagged is False


async def test_audit_scope_is_per_restaurant(auditor, registry, tables):
    other = await registry.create_table("rest-2", 1)
    await registry.reserve(other.id)

    assert (await auditor.audit(RESTAURANT_ID)).mismatches == []
    everywhere = await auditor.audit()
    assert everywhere.checked_tables == 4
    assert [m.table_id for m in everywhere.mismatches] == [other.id]


class GatedOrderStore(InMemoryStore):
    """Holds every order insert until `gate` is set."""

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def insert(self, table, row):
        if table == ORDERS:
            self.entered.set()
            await self.gate.wait()
        return await super().insert(table, row)


async def test_audit_skips_table_of_order_still_being_created(incidents):
    store = GatedOrderStore()
    registry = TableRegistry(store, incident_reporter=incidents.append)
    saga = OrderSaga(store, registry)
    auditor = OccupancyAuditor(registry, grace_seconds=30)
    table = await registry.create_table(RESTAURANT_ID, 1)

    in_flight = asyncio.create_task(saga.create_order(build_cart(table.id)))
    await store.entered.wait()

    report = await auditor.audit(RESTAURANT_ID, flag=True)

    assert report.mismatches == []
    assert (await registry.get_table(table.id)).needs_attention is False

    store.gate.set()
    order = await in_flight
    assert order.table_id == table.id
    assert (await auditor.audit(RESTAURANT_ID)).mismatches == []


async def test_stale_orphan_is_flagged_despite_grace_window(registry, store, tables):
    auditor = OccupancyAuditor(registry, grace_seconds=30)
    await registry.reserve(tables[0].id)
    await store.update(
        TABLES, {"id": tables[0].id},
        {"updated_at": datetime.now(timezone.utc) - timedelta(minutes=5)},
    )

    report = await auditor.audit(RESTAURANT_ID, flag=True)

    assert [m.table_id for m in report.mismatches] == [tables[0].id]
    assert report.mismatches[0].flagged is True


async def test_random_lifecycle_keeps_occupancy_consistent(auditor, saga, machine, workflow, tables):
    rng = random.Random(1234)
    open_orders = []
    open_requests = []

    for _ in range(150):
        action = rng.choice(["order", "advance", "cancel", "request", "complete_request"])
        try:
            if action == "order":
                table = rng.choice(tables)
                order = await saga.create_order(build_cart(table.id))
                open_orders.append(order.id)
            elif action == "advance" and open_orders:
                order_id = rng.choice(open_orders)
                current = (await machine.get_order(order_id)).status
                updated = await machine.transition(order_id, FORWARD[current])
                if updated.status == OrderStatus.COMPLETED:
                    open_orders.remove(order_id)
            elif action == "cancel" and open_orders:
                order_id = open_orders.pop(rng.randrange(len(open_orders)))
                await machine.cancel(order_id, reason="Changed plans")
            elif action == "request":
                request = await workflow.create({
                    "restaurant_id": RESTAURANT_ID,
                    "customer_name": "Walk-in",
                    "guest_count": rng.randint(1, 6),
                })
                await workflow.approve(request.id, approver_id="admin-1")
                open_requests.append(request.id)
            elif action == "complete_request" and open_requests:
                request_id = open_requests.pop(rng.randrange(len(open_requests)))
                await workflow.complete(request_id)
        except (TableUnavailableError, NoTableAvailableError, InvalidTransitionError):
            pass

        report = await auditor.audit(RESTAURANT_ID)
        assert report.mismatches == []
