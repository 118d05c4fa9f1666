from datetime import timedelta

import pytest

from app.core.exceptions import (
    InputValidationError,
    InvalidTransitionError,
    NoTableAvailableError,
    OrderRequestNotFoundError,
    StoreUnavailableError,
    TableNotFoundError,
    TableUnavailableError,
)
from app.models import ORDER_REQUESTS, TABLES, OrderRequestStatus
from app.services.store import InMemoryStore
from app.services.requests import REQUEST_TRANSITIONS, OrderRequestWorkflow
from app.services.tables import TableRegistry

from conftest import RESTAURANT_ID


def request_data(**overrides):
    data = {
        "restaurant_id": RESTAURANT_ID,
        "customer_name": "Jane Doe",
        "customer_phone": "555-0100",
        "order_type": "dine_in",
        "guest_count": 4,
    }
    data.update(overrides)
    return data


async def test_scenario_d_approve_then_complete(workflow, registry, table_id, release_calls):
    request = await workflow.create(request_data())
    assert request.status == OrderRequestStatus.PENDING

    approved = await workflow.approve(request.id, approver_id="admin-1", table_id=table_id)

    assert approved.status == OrderRequestStatus.APPROVED
    assert approved.approved_by == "admin-1"
    assert approved.approved_at is not None
    assert approved.table_id == table_id
    assert (await registry.get_table(table_id)).is_active is False

    completed = await workflow.complete(request.id)

    assert completed.status == OrderRequestStatus.COMPLETED
    assert completed.table_released_at is not None
    assert (await registry.get_table(table_id)).is_active is True
    assert release_calls == [table_id]


async def test_approve_with_occupied_table_leaves_request_pending(workflow, registry, table_id):
    await registry.reserve(table_id)
    request = await workflow.create(request_data())

    with pytest.raises(TableUnavailableError):
        await workflow.approve(request.id, approver_id="admin-1", table_id=table_id)

    assert (await workflow.get(request.id)).status == OrderRequestStatus.PENDING


async def test_approve_uses_table_from_request(workflow, registry, tables):
    request = await workflow.create(request_data(table_id=tables[2].id))

    approved = await workflow.approve(request.id, approver_id="admin-1")

    assert approved.table_id == tables[2].id
    assert (await registry.get_table(tables[2].id)).is_active is False


async def test_approve_auto_selects_lowest_free_table(workflow, registry, tables):
    await registry.reserve(tables[0].id)
    request = await workflow.create(request_data())

    approved = await workflow.approve(request.id, approver_id="admin-1")

    assert approved.table_id == tables[1].id


async def test_approve_without_any_free_table(workflow, registry, tables):
    for table in tables:
        await registry.reserve(table.id)
    request = await workflow.create(request_data())

    with pytest.raises(NoTableAvailableError):
        await workflow.approve(request.id, approver_id="admin-1")

    assert (await workflow.get(request.id)).status == OrderRequestStatus.PENDING


@pytest.mark.parametrize("foreign", [False, True])
async def test_approve_with_unresolvable_table(workflow, registry, store, tables, foreign):
    if foreign:
        table_id = (await registry.create_table("rest-2", 1)).id
    else:
        table_id = "no-such-table"
    request = await workflow.create(request_data())

    with pytest.raises(NoTableAvailableError):
        await workflow.approve(request.id, approver_id="admin-1", table_id=table_id)

    assert (await workflow.get(request.id)).status == OrderRequestStatus.PENDING
    assert all(row["is_active"] for row in store.rows(TABLES))


async def test_takeaway_approval_reserves_no_table(workflow, registry, tables):
    request = await workflow.create(request_data(order_type="takeaway", guest_count=1))

    approved = await workflow.approve(request.id, approver_id="admin-1", table_id=tables[0].id)

    assert approved.status == OrderRequestStatus.APPROVED
    assert approved.table_id is None
    assert all(t.is_active for t in await registry.list_tables(RESTAURANT_ID))


async def test_approving_twice_is_rejected(workflow, registry, tables):
    request = await workflow.create(request_data())
    await workflow.approve(request.id, approver_id="admin-1", table_id=tables[0].id)

    with pytest.raises(InvalidTransitionError):
        await workflow.approve(request.id, approver_id="admin-2", table_id=tables[1].id)

    assert (await registry.get_table(tables[1].id)).is_active is True


async def test_lost_status_race_releases_the_reserved_table(workflow, store, registry, tables, monkeypatch):
    request = await workflow.create(request_data())
    original_reserve = registry.reserve

    async def reserve_then_resolve_elsewhere(table_id, restaurant_id=None):
        result = await original_reserve(table_id, restaurant_id=restaurant_id)
        await store.update(ORDER_REQUESTS, {"id": request.id}, {"status": "rejected"})
        return result

    monkeypatch.setattr(registry, "reserve", reserve_then_resolve_elsewhere)

    with pytest.raises(InvalidTransitionError):
        await workflow.approve(request.id, approver_id="admin-1", table_id=tables[0].id)

    assert (await registry.get_table(tables[0].id)).is_active is True


async def test_transactional_approval_rolls_back_reservation(incidents):
    store = InMemoryStore(transactional=True)
    registry = TableRegistry(store, incident_reporter=incidents.append)
    workflow = OrderRequestWorkflow(store, registry)
    table = await registry.create_table(RESTAURANT_ID, 1)
    request = await workflow.create(request_data())
    store.fail_on("update_where", ORDER_REQUESTS)

    with pytest.raises(StoreUnavailableError):
        await workflow.approve(request.id, approver_id="admin-1", table_id=table.id)

    assert (await registry.get_table(table.id)).is_active is True
    assert (await workflow.get(request.id)).status == OrderRequestStatus.PENDING


# =============================================================================
# REJECT / SEAT / COMPLETE
# =============================================================================

async def test_reject_requires_reason(workflow, tables):
    request = await workflow.create(request_data())

    with pytest.raises(InputValidationError):
        await workflow.reject(request.id, "   ")

    rejected = await workflow.reject(request.id, " Fully booked ", rejected_by="admin-1")
    assert rejected.status == OrderRequestStatus.REJECTED
    assert rejected.rejection_reason == "Fully booked"
    assert rejected.rejected_by == "admin-1"


async def test_reject_only_from_pending(workflow, tables):
    request = await workflow.create(request_data())
    await workflow.approve(request.id, approver_id="admin-1", table_id=tables[0].id)

    with pytest.raises(InvalidTransitionError):
        await workflow.reject(request.id, "Changed my mind")


async def test_seat_then_complete_releases_once(workflow, registry, table_id, release_calls):
    request = await workflow.create(request_data())
    await workflow.approve(request.id, approver_id="admin-1", table_id=table_id)

    seated = await workflow.seat(request.id)
    assert seated.status == OrderRequestStatus.SEATED
    assert seated.seated_at is not None

    await workflow.complete(request.id)
    with pytest.raises(InvalidTransitionError):
        await workflow.complete(request.id)

    assert release_calls == [table_id]
    assert (await registry.get_table(table_id)).is_active is True


async def test_complete_requires_approval(workflow, tables):
    request = await workflow.create(request_data())

    with pytest.raises(InvalidTransitionError):
        await workflow.complete(request.id)


def test_rejected_is_only_reachable_from_pending():
    for status in OrderRequestStatus:
        reachable = OrderRequestStatus.REJECTED in REQUEST_TRANSITIONS.targets(status)
        assert reachable == (status == OrderRequestStatus.PENDING)


# =============================================================================
# CREATE / QUERY
# =============================================================================

async def test_guest_count_must_be_positive(workflow):
    with pytest.raises(InputValidationError):
        await workflow.create(request_data(guest_count=0))


async def test_table_must_belong_to_restaurant(workflow, registry, tables):
    foreign = await registry.create_table("rest-2", 1)

    with pytest.raises(TableNotFoundError):
        await workflow.create(request_data(table_id=foreign.id))


async def test_unknown_request_raises_not_found(workflow):
    with pytest.raises(OrderRequestNotFoundError):
        await workflow.approve("missing", approver_id="admin-1")


async def test_list_filters_by_status_newest_first(workflow, store, tables):
    older = await workflow.create(request_data(customer_name="Older"))
    newer = await workflow.create(request_data(customer_name="Newer"))
    await store.update(
        ORDER_REQUESTS, {"id": older.id}, {"created_at": older.created_at - timedelta(minutes=5)}
    )
    await workflow.reject(older.id, "No space")

    everything = await workflow.list(RESTAURANT_ID)
    pending = await workflow.list(RESTAURANT_ID, status="pending")

    assert [r.id for r in everything] == [newer.id, older.id]
    assert [r.id for r in pending] == [newer.id]

    with pytest.raises(InputValidationError):
        await workflow.list(RESTAURANT_ID, status="lost")
