import asyncio

import pytest

from app.core.exceptions import (
    DuplicateTableError,
    InputValidationError,
    TableNotFoundError,
    TableUnavailableError,
)
from app.models import TABLES
from app.services.qr import validate_qr_payload
from app.services.store import InMemoryStore
from app.services.tables import TableRegistry

from conftest import RESTAURANT_ID, ReleaseFailingStore


async def test_reserve_marks_table_occupied(registry, table_id):
    result = await registry.reserve(table_id)

    assert result.success
    assert not result.conflict
    assert result.table.is_active is False
    assert (await registry.get_table(table_id)).is_active is False


async def test_reserve_conflict_is_a_result_not_an_error(registry, table_id):
    await registry.reserve(table_id)

    result = await registry.reserve(table_id)

    assert not result.success
    assert result.conflict
    assert "already occupied" in result.error_message


async def test_reserve_unknown_table_raises_not_found(registry, tables):
    with pytest.raises(TableNotFoundError):
        await registry.reserve("no-such-table")


async def test_reserve_scoped_to_other_restaurant_leaves_table_free(registry, table_id):
    with pytest.raises(TableNotFoundError):
        await registry.reserve(table_id, restaurant_id="rest-2")

    assert (await registry.get_table(table_id)).is_active is True
    assert (await registry.reserve(table_id, restaurant_id=RESTAURANT_ID)).success


async def test_release_is_idempotent(registry, table_id):
    await registry.reserve(table_id)

    first = await registry.release(table_id)
    second = await registry.release(table_id)

    assert first.changed is True
    assert second.changed is False
    assert second.table.is_active is True


async def test_concurrent_reservations_have_one_winner(incidents):
    store = InMemoryStore(min_latency=0.001, max_latency=0.005)
    registry = TableRegistry(store, incident_reporter=incidents.append)
    table = await registry.create_table(RESTAURANT_ID, 7)

    results = await asyncio.gather(*[registry.reserve(table.id) for _ in range(20)])

    assert sum(r.success for r in results) == 1
    assert sum(r.conflict for r in results) == 19


async def test_get_table_by_restaurant_and_number(registry, tables):
    table = await registry.get_table(restaurant_id=RESTAURANT_ID, table_number=2)
    assert table.id == tables[1].id

    with pytest.raises(TableNotFoundError):
        await registry.get_table(restaurant_id="other-restaurant", table_number=2)

    with pytest.raises(InputValidationError):
        await registry.get_table()


async def test_list_tables_available_only(registry, tables):
    await registry.reserve(tables[1].id)

    available = await registry.list_tables(RESTAURANT_ID, available_only=True)

    assert [t.table_number for t in available] == [1, 3]
    assert len(await registry.list_tables(RESTAURANT_ID)) == 3


async def test_create_table_rejects_duplicates_and_bad_numbers(registry, tables):
    with pytest.raises(DuplicateTableError):
        await registry.create_table(RESTAURANT_ID, 1)

    with pytest.raises(InputValidationError):
        await registry.create_table(RESTAURANT_ID, 0)

    other = await registry.create_table("rest-2", 1)
    assert other.is_active is True


async def test_delete_table_refused_while_occupied(registry, store, table_id):
    await registry.reserve(table_id)

    with pytest.raises(TableUnavailableError):
        await registry.delete_table(table_id)

    await registry.release(table_id)
    await registry.delete_table(table_id)
    assert all(row["id"] != table_id for row in store.rows(TABLES))


async def test_bind_qr_code_stores_scannable_payload(registry, table_id):
    table = await registry.bind_qr_code(table_id, "Bravo Trattoria")

    payload = validate_qr_payload(table.qr_code_payload)
    assert payload.restaurant_id == RESTAURANT_ID
    assert payload.restaurant_name == "Bravo Trattoria"
    assert payload.table_number == 1


async def test_flag_and_clear_flag(registry, table_id):
    flagged = await registry.flag_table(table_id, "Release failed")
    assert flagged.needs_attention is True
    assert flagged.attention_reason == "Release failed"

    cleared = await registry.clear_flag(table_id)
    assert cleared.needs_attention is False
    assert cleared.attention_reason is None


async def test_compensate_release_failure_flags_and_reports(incidents):
    store = ReleaseFailingStore()
    registry = TableRegistry(store, incident_reporter=incidents.append)
    table = await registry.create_table(RESTAURANT_ID, 1)
    await registry.reserve(table.id)

    incident = await registry.compensate_release(
        table.id, RuntimeError("items insert failed"), kind="order_saga"
    )

    assert incident is not None
    assert incidents == [incident]
    assert "items insert failed" in incident.original_error
    assert "Simulated release failure" in incident.compensation_error
    current = await registry.get_table(table.id)
    assert current.is_active is False
    assert current.needs_attention is True


async def test_compensate_release_survives_reporter_failure():
    def broken_reporter(incident):
        raise RuntimeError("reporter down")

    registry = TableRegistry(ReleaseFailingStore(), incident_reporter=broken_reporter)
    table = await registry.create_table(RESTAURANT_ID, 1)
    await registry.reserve(table.id)

    incident = await registry.compensate_release(table.id, None, kind="order_status")

    assert incident is not None
    assert incident.original_error == ""
