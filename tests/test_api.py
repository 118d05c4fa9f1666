import json

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.services.auth import HeaderAuthService, MockAuthService, get_auth_service
from app.services.orders import OrderSaga, OrderStatusMachine, get_order_saga, get_order_status_machine
from app.services.requests import OrderRequestWorkflow, get_request_workflow
from app.services.store import InMemoryStore, get_store
from app.services.tables import OccupancyAuditor, TableRegistry, get_occupancy_auditor, get_table_registry

from conftest import RESTAURANT_ID, build_cart


@pytest.fixture
def api_store():
    return InMemoryStore()


@pytest.fixture
def client(api_store):
    registry = TableRegistry(api_store, incident_reporter=lambda incident: None)
    app.dependency_overrides.update({
        get_store: lambda: api_store,
        get_table_registry: lambda: registry,
        get_order_saga: lambda: OrderSaga(api_store, registry),
        get_order_status_machine: lambda: OrderStatusMachine(api_store, registry),
        get_request_workflow: lambda: OrderRequestWorkflow(api_store, registry),
        get_occupancy_auditor: lambda: OccupancyAuditor(registry),
        get_auth_service: lambda: MockAuthService("dev-admin"),
    })
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def table_ids(client):
    ids = []
    for number in (1, 2, 3):
        response = client.post("/api/tables", json={"restaurant_id": RESTAURANT_ID, "table_number": number})
        assert response.status_code == 201
        ids.append(response.json()["id"])
    return ids


# =============================================================================
# TABLES
# =============================================================================

def test_list_and_lookup_tables(client, table_ids):
    listing = client.get("/api/tables", params={"restaurant_id": RESTAURANT_ID})
    assert listing.status_code == 200
    assert listing.json()["total"] == 3

    found = client.get("/api/tables/lookup", params={"restaurant_id": RESTAURANT_ID, "table_number": 2})
    assert found.json()["id"] == table_ids[1]

    missing = client.get("/api/tables/lookup", params={"restaurant_id": RESTAURANT_ID, "table_number": 9})
    assert missing.status_code == 404
    body = missing.json()
    assert body["success"] is False
    assert body["error"] == "table_not_found"
    assert body["message"] == "Table not found. Please contact restaurant staff."


def test_duplicate_table_is_a_conflict(client, table_ids):
    response = client.post("/api/tables", json={"restaurant_id": RESTAURANT_ID, "table_number": 1})

    assert response.status_code == 409
    assert response.json()["error"] == "duplicate_table"


def test_bind_qr_code(client, table_ids):
    response = client.post(f"/api/tables/{table_ids[0]}/qr", json={"restaurant_name": "Bravo"})

    assert response.status_code == 200
    payload = json.loads(response.json()["qr_code_payload"])
    assert payload == {
        "restaurantId": RESTAURANT_ID,
        "restaurantName": "Bravo",
        "tableNumber": 1,
        "type": "restaurant_table",
    }


# =============================================================================
# ORDERS
# =============================================================================

def test_place_order_then_conflict(client, table_ids):
    first = client.post("/api/orders", json=build_cart(table_ids[0]), headers={"x-user-id": "customer-7"})
    assert first.status_code == 201
    assert first.json()["status"] == "pending"
    assert first.json()["user_id"] == "customer-7"

    second = client.post("/api/orders", json=build_cart(table_ids[0]))
    assert second.status_code == 409
    assert second.json()["error"] == "table_unavailable"

    table = client.get(f"/api/tables/{table_ids[0]}").json()
    assert table["is_active"] is False


def test_invalid_cart_returns_validation_error(client, table_ids):
    response = client.post("/api/orders", json=build_cart(table_ids[0], total=1.00))

    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "validation_error"
    assert body["detail"]["errors"]


def test_status_updates_release_table(client, table_ids):
    order = client.post("/api/orders", json=build_cart(table_ids[0])).json()

    skipped = client.patch(f"/api/orders/{order['id']}/status", json={"new_status": "ready"})
    assert skipped.status_code == 409
    assert skipped.json()["error"] == "invalid_transition"

    cancelled = client.patch(
        f"/api/orders/{order['id']}/status",
        json={"new_status": "cancelled", "reason": "Kitchen closed"},
    )
    assert cancelled.status_code == 200
    assert cancelled.json()["cancellation_reason"] == "Kitchen closed"
    assert client.get(f"/api/tables/{table_ids[0]}").json()["is_active"] is True

    listing = client.get("/api/orders", params={"restaurant_id": RESTAURANT_ID, "status": "cancelled"})
    assert listing.json()["total"] == 1


def test_unknown_order_is_404(client):
    response = client.get("/api/orders/does-not-exist")

    assert response.status_code == 404
    assert response.json()["error"] == "order_not_found"


# =============================================================================
# ORDER REQUESTS
# =============================================================================

def test_request_approval_flow(client, table_ids):
    created = client.post("/api/order-requests", json={
        "restaurant_id": RESTAURANT_ID,
        "customer_name": "Jane Doe",
        "guest_count": 4,
    })
    assert created.status_code == 201
    request_id = created.json()["id"]

    approved = client.post(
        f"/api/order-requests/{request_id}/approve",
        json={"table_id": table_ids[1]},
        headers={"x-user-id": "manager-2"},
    )
    assert approved.status_code == 200
    assert approved.json()["approved_by"] == "manager-2"
    assert client.get(f"/api/tables/{table_ids[1]}").json()["is_active"] is False

    completed = client.post(f"/api/order-requests/{request_id}/complete")
    assert completed.json()["status"] == "completed"
    assert client.get(f"/api/tables/{table_ids[1]}").json()["is_active"] is True


def test_reject_requires_non_blank_reason(client, table_ids):
    request_id = client.post("/api/order-requests", json={
        "restaurant_id": RESTAURANT_ID, "customer_name": "Jane Doe",
    }).json()["id"]

    blank = client.post(f"/api/order-requests/{request_id}/reject", json={"reason": "   "})
    assert blank.status_code == 422

    rejected = client.post(f"/api/order-requests/{request_id}/reject", json={"reason": "Fully booked"})
    assert rejected.json()["status"] == "rejected"
    assert rejected.json()["rejected_by"] == "dev-admin"


def test_admin_actions_require_identity_outside_development(client, table_ids):
    app.dependency_overrides[get_auth_service] = lambda: HeaderAuthService("x-user-id")
    request_id = client.post("/api/order-requests", json={
        "restaurant_id": RESTAURANT_ID, "customer_name": "Jane Doe",
    }).json()["id"]

    refused = client.post(f"/api/order-requests/{request_id}/approve")
    assert refused.status_code == 401
    assert refused.json()["error"] == "authentication_required"

    allowed = client.post(f"/api/order-requests/{request_id}/approve", headers={"x-user-id": "admin-9"})
    assert allowed.status_code == 200


# =============================================================================
# ADMIN
# =============================================================================

def test_audit_and_dashboard(client, table_ids, api_store):
    client.post("/api/orders", json=build_cart(table_ids[0]))
    client.post("/api/orders", json=build_cart(order_type="takeaway"))

    audit = client.post("/api/tables/audit", params={"restaurant_id": RESTAURANT_ID})
    assert audit.status_code == 200
    assert audit.json() == {"checked_tables": 3, "mismatches": []}

    stats = client.get("/api/dashboard-data", params={"restaurant_id": RESTAURANT_ID}).json()
    assert stats["total_orders"] == 2
    assert stats["active_orders"] == 2
    assert stats["occupied_tables"] == 1
    assert stats["today_revenue"] == pytest.approx(2 * build_cart()["total"])


def test_health_reports_store(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["store"] == "healthy"
