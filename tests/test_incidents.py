import pytest

from app import tasks
from app.core.config import get_settings
from app.services.excel_manager import ExcelManager
from app.services.incidents import (
    CompensationFailure,
    dispatch_incident,
    get_incident_reporter,
    log_incident,
)


@pytest.fixture
def report_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("DATA_DIRECTORY", str(tmp_path / "data"))
    get_settings.cache_clear()
    yield tmp_path / "data"
    get_settings.cache_clear()


def make_incident(**overrides):
    values = {
        "kind": "order_saga",
        "table_id": "table-1",
        "original_error": "Simulated insert_many failure on order_items",
        "compensation_error": "Simulated release failure",
        "order_id": "order-1",
    }
    values.update(overrides)
    return CompensationFailure(**values)


def test_incident_serializes_for_the_queue():
    incident = make_incident()

    data = incident.to_dict()

    assert data["incident_id"].startswith("inc_")
    assert data["kind"] == "order_saga"
    assert data["request_id"] is None
    assert "T" in data["occurred_at"]


def test_export_appends_rows(report_dir):
    first = ExcelManager.export_incident(make_incident().to_dict())
    second = ExcelManager.export_incident(make_incident(kind="order_status").to_dict())

    assert first["success"] and second["success"]
    assert (report_dir / "incidents.xlsx").exists()

    rows = ExcelManager.get_all_incidents()
    assert [row["kind"] for row in rows] == ["order_saga", "order_status"]
    assert not any(row["resolved"] for row in rows)

    assert ExcelManager.clear_all() is True
    assert ExcelManager.get_all_incidents() == []


def test_report_task_writes_incident(report_dir):
    incident = make_incident(kind="order_request", request_id="req-1").to_dict()

    result = tasks.report_compensation_incident(incident)

    assert result["success"] is True
    assert "processing_time_seconds" in result
    assert ExcelManager.get_all_incidents()[0]["request_id"] == "req-1"


def test_dispatch_survives_broker_failure(monkeypatch):
    def broker_down(*args, **kwargs):
        raise ConnectionError("redis unreachable")

    monkeypatch.setattr(tasks.report_compensation_incident, "delay", broker_down)

    dispatch_incident(make_incident())


def test_dispatch_queues_the_incident(monkeypatch):
    queued = []
    monkeypatch.setattr(tasks.report_compensation_incident, "delay", queued.append)
    incident = make_incident()

    dispatch_incident(incident)

    assert queued == [incident.to_dict()]


def test_reporter_follows_settings(monkeypatch):
    get_settings.cache_clear()
    try:
        assert get_incident_reporter() is log_incident

        monkeypatch.setenv("REPORT_INCIDENTS_ASYNC", "true")
        get_settings.cache_clear()
        assert get_incident_reporter() is dispatch_incident
    finally:
        monkeypatch.undo()
        get_settings.cache_clear()


def test_audit_task_runs_against_memory_store():
    report = tasks.audit_table_occupancy(restaurant_id="empty-restaurant", flag=False)

    assert report == {"checked_tables": 0, "mismatches": []}
