"""
FastAPI Application Entry Point

Restaurant Ordering - Order & Table Lifecycle API
Serves the mobile ordering client and the restaurant admin panel.

Endpoints:
    - /api/tables: table administration, QR binding, lookup, occupancy audit
    - /api/orders: order placement (saga) and status changes
    - /api/order-requests: reservation requests and admin decisions
    - /api/dashboard-data: admin statistics
    - /health: system health check

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

import redis
from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Windows-specific event loop policy (psycopg async)
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Internal imports
from app.core.config import StoreBackend, get_settings, setup_logging
from app.core.exceptions import OrderingError
from app.database import dispose_db, init_db
from app.models import OrderRequestStatus, OrderStatus
from app.schemas import (
    DashboardResponse,
    ErrorResponse,
    HealthResponse,
    OccupancyAuditResponse,
    OrderCreate,
    OrderListResponse,
    OrderRequestApprove,
    OrderRequestCreate,
    OrderRequestListResponse,
    OrderRequestReject,
    OrderRequestResponse,
    OrderResponse,
    OrderStatusUpdate,
    TableCreate,
    TableListResponse,
    TableQRBind,
    TableResponse,
)
from app.services.auth import BaseAuthService, get_auth_service
from app.services.dashboard import get_dashboard_stats
from app.services.orders import (
    OrderSaga,
    OrderStatusMachine,
    get_order_saga,
    get_order_status_machine,
)
from app.services.requests import OrderRequestWorkflow, get_request_workflow
from app.services.store import BaseStore, get_store
from app.services.tables import (
    OccupancyAuditor,
    TableRegistry,
    get_occupancy_auditor,
    get_table_registry,
)

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    if settings.store_backend == StoreBackend.SQLALCHEMY:
        await init_db()
        logger.info("✅ Database initialized")

    store = get_store()
    auth_service = get_auth_service()
    logger.info(f"✅ Store: {store.provider_name} (transactions={store.supports_transactions})")
    logger.info(f"✅ Auth Service: {auth_service.provider_name}")

    # Validate production config
    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Unsafe production config: {missing}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await dispose_db()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Order and table lifecycle for the restaurant ordering app: "
        "atomic table reservation, order saga with compensation, "
        "order status machine and reservation approvals."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES
# =============================================================================

def current_user_id(
    request: Request,
    auth_service: BaseAuthService = Depends(get_auth_service),
) -> str:
    """Acting admin id; required."""
    return auth_service.resolve_user_id(request.headers.get(settings.auth_header_name))


def optional_user_id(
    request: Request,
    auth_service: BaseAuthService = Depends(get_auth_service),
) -> Optional[str]:
    """Acting customer id; anonymous callers are allowed."""
    return auth_service.optional_user_id(request.headers.get(settings.auth_header_name))


ERROR_RESPONSES = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍽️ Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    store: BaseStore = Depends(get_store),
) -> HealthResponse:
    """Verify the store and Redis are reachable."""

    # Check store
    store_status = "healthy"
    try:
        if not await store.health_check():
            store_status = "unhealthy"
    except Exception as e:
        store_status = f"unhealthy: {str(e)}"
        logger.error(f"Store health check failed: {e}")

    # Check Redis
    redis_status = "healthy"
    try:
        r = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
        r.ping()
        r.close()
    except Exception as e:
        redis_status = f"unhealthy: {str(e)}"
        logger.error(f"Redis health check failed: {e}")

    overall = "operational" if store_status == redis_status == "healthy" else "degraded"

    return HealthResponse(
        status=overall,
        store=store_status,
        redis=redis_status,
        timestamp=datetime.now(),
    )


# =============================================================================
# TABLE ENDPOINTS
# =============================================================================

@app.post(
    "/api/tables",
    response_model=TableResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    tags=["Tables"],
    summary="Create Table",
)
async def create_table(
    data: TableCreate,
    registry: TableRegistry = Depends(get_table_registry),
) -> TableResponse:
    return await registry.create_table(data.restaurant_id, data.table_number)


@app.get(
    "/api/tables",
    response_model=TableListResponse,
    tags=["Tables"],
    summary="List Tables",
)
async def list_tables(
    restaurant_id: str = Query(..., min_length=1),
    available_only: bool = Query(False),
    registry: TableRegistry = Depends(get_table_registry),
) -> TableListResponse:
    tables = await registry.list_tables(restaurant_id, available_only=available_only)
    return TableListResponse(total=len(tables), tables=tables)


@app.get(
    "/api/tables/lookup",
    response_model=TableResponse,
    responses=ERROR_RESPONSES,
    tags=["Tables"],
    summary="Find Table by Number",
)
async def lookup_table(
    restaurant_id: str = Query(..., min_length=1),
    table_number: int = Query(..., gt=0),
    registry: TableRegistry = Depends(get_table_registry),
) -> TableResponse:
    """Resolve the restaurant/table pair carried by a scanned QR code."""
    return await registry.get_table(restaurant_id=restaurant_id, table_number=table_number)


@app.post(
    "/api/tables/audit",
    response_model=OccupancyAuditResponse,
    tags=["Tables"],
    summary="Audit Table Occupancy",
)
async def audit_tables(
    restaurant_id: Optional[str] = Query(None),
    flag: bool = Query(False),
    auditor: OccupancyAuditor = Depends(get_occupancy_auditor),
    admin_id: str = Depends(current_user_id),
) -> OccupancyAuditResponse:
    """Compare occupancy flags with open orders and reservations."""
    logger.info(f"Occupancy audit requested by {admin_id}")
    return await auditor.audit(restaurant_id=restaurant_id, flag=flag)


@app.get(
    "/api/tables/{table_id}",
    response_model=TableResponse,
    responses=ERROR_RESPONSES,
    tags=["Tables"],
)
async def get_table(
    table_id: str,
    registry: TableRegistry = Depends(get_table_registry),
) -> TableResponse:
    return await registry.get_table(table_id)


@app.post(
    "/api/tables/{table_id}/qr",
    response_model=TableResponse,
    responses=ERROR_RESPONSES,
    tags=["Tables"],
    summary="Generate Table QR Code",
)
async def bind_qr_code(
    table_id: str,
    data: TableQRBind,
    registry: TableRegistry = Depends(get_table_registry),
) -> TableResponse:
    return await registry.bind_qr_code(table_id, data.restaurant_name)


@app.post(
    "/api/tables/{table_id}/clear-flag",
    response_model=TableResponse,
    responses=ERROR_RESPONSES,
    tags=["Tables"],
    summary="Clear Attention Flag",
)
async def clear_table_flag(
    table_id: str,
    registry: TableRegistry = Depends(get_table_registry),
    admin_id: str = Depends(current_user_id),
) -> TableResponse:
    logger.info(f"Table {table_id} flag cleared by {admin_id}")
    return await registry.clear_flag(table_id)


@app.delete(
    "/api/tables/{table_id}",
    status_code=204,
    responses=ERROR_RESPONSES,
    tags=["Tables"],
)
async def delete_table(
    table_id: str,
    registry: TableRegistry = Depends(get_table_registry),
) -> Response:
    await registry.delete_table(table_id)
    return Response(status_code=204)


# =============================================================================
# ORDER API ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders",
    response_model=OrderResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Place Order",
)
async def create_order(
    order_data: OrderCreate,
    saga: OrderSaga = Depends(get_order_saga),
    user_id: Optional[str] = Depends(optional_user_id),
) -> OrderResponse:
    """
    Place an order. Dine-in orders reserve their table in the same call;
    any failure rolls the reservation back.
    """
    logger.info(f"Creating {order_data.order_type.value} order for restaurant {order_data.restaurant_id}")
    return await saga.create_order(order_data, user_id=user_id)


@app.get(
    "/api/orders",
    response_model=OrderListResponse,
    tags=["Orders"],
    summary="List Orders",
)
async def list_orders(
    restaurant_id: Optional[str] = Query(None),
    status: Optional[OrderStatus] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    machine: OrderStatusMachine = Depends(get_order_status_machine),
) -> OrderListResponse:
    orders = await machine.list_orders(restaurant_id=restaurant_id, status=status, limit=limit)
    return OrderListResponse(total=len(orders), orders=orders)


@app.get(
    "/api/orders/{order_id}",
    response_model=OrderResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def get_order(
    order_id: str,
    machine: OrderStatusMachine = Depends(get_order_status_machine),
) -> OrderResponse:
    """Get a specific order by ID."""
    return await machine.get_order(order_id)


@app.patch(
    "/api/orders/{order_id}/status",
    response_model=OrderResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Update Order Status",
)
async def update_order_status(
    order_id: str,
    update: OrderStatusUpdate,
    machine: OrderStatusMachine = Depends(get_order_status_machine),
) -> OrderResponse:
    return await machine.transition(order_id, update.new_status, reason=update.reason)


# =============================================================================
# ORDER REQUEST ENDPOINTS
# =============================================================================

@app.post(
    "/api/order-requests",
    response_model=OrderRequestResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    tags=["Order Requests"],
    summary="Submit Order Request",
)
async def create_order_request(
    data: OrderRequestCreate,
    workflow: OrderRequestWorkflow = Depends(get_request_workflow),
) -> OrderRequestResponse:
    return await workflow.create(data)


@app.get(
    "/api/order-requests",
    response_model=OrderRequestListResponse,
    tags=["Order Requests"],
    summary="List Order Requests",
)
async def list_order_requests(
    restaurant_id: str = Query(..., min_length=1),
    status: Optional[OrderRequestStatus] = Query(None),
    workflow: OrderRequestWorkflow = Depends(get_request_workflow),
) -> OrderRequestListResponse:
    requests = await workflow.list(restaurant_id, status=status)
    return OrderRequestListResponse(total=len(requests), requests=requests)


@app.get(
    "/api/order-requests/{request_id}",
    response_model=OrderRequestResponse,
    responses=ERROR_RESPONSES,
    tags=["Order Requests"],
)
async def get_order_request(
    request_id: str,
    workflow: OrderRequestWorkflow = Depends(get_request_workflow),
) -> OrderRequestResponse:
    return await workflow.get(request_id)


@app.post(
    "/api/order-requests/{request_id}/approve",
    response_model=OrderRequestResponse,
    responses=ERROR_RESPONSES,
    tags=["Order Requests"],
    summary="Approve Order Request",
)
async def approve_order_request(
    request_id: str,
    data: Optional[OrderRequestApprove] = None,
    workflow: OrderRequestWorkflow = Depends(get_request_workflow),
    admin_id: str = Depends(current_user_id),
) -> OrderRequestResponse:
    """Approve a pending request; dine-in requests get a table reserved."""
    table_id = data.table_id if data else None
    return await workflow.approve(request_id, approver_id=admin_id, table_id=table_id)


@app.post(
    "/api/order-requests/{request_id}/reject",
    response_model=OrderRequestResponse,
    responses=ERROR_RESPONSES,
    tags=["Order Requests"],
    summary="Reject Order Request",
)
async def reject_order_request(
    request_id: str,
    data: OrderRequestReject,
    workflow: OrderRequestWorkflow = Depends(get_request_workflow),
    admin_id: str = Depends(current_user_id),
) -> OrderRequestResponse:
    return await workflow.reject(request_id, data.reason, rejected_by=admin_id)


@app.post(
    "/api/order-requests/{request_id}/seat",
    response_model=OrderRequestResponse,
    responses=ERROR_RESPONSES,
    tags=["Order Requests"],
)
async def seat_order_request(
    request_id: str,
    workflow: OrderRequestWorkflow = Depends(get_request_workflow),
    admin_id: str = Depends(current_user_id),
) -> OrderRequestResponse:
    return await workflow.seat(request_id)


@app.post(
    "/api/order-requests/{request_id}/complete",
    response_model=OrderRequestResponse,
    responses=ERROR_RESPONSES,
    tags=["Order Requests"],
)
async def complete_order_request(
    request_id: str,
    workflow: OrderRequestWorkflow = Depends(get_request_workflow),
    admin_id: str = Depends(current_user_id),
) -> OrderRequestResponse:
    return await workflow.complete(request_id)


# =============================================================================
# DASHBOARD ENDPOINTS
# =============================================================================

@app.get(
    "/api/dashboard-data",
    response_model=DashboardResponse,
    tags=["Dashboard"],
)
async def dashboard_data(
    restaurant_id: str = Query(..., min_length=1),
    store: BaseStore = Depends(get_store),
) -> DashboardResponse:
    """Get aggregated dashboard statistics."""
    return await get_dashboard_stats(store, restaurant_id)


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(OrderingError)
async def ordering_exception_handler(request: Request, exc: OrderingError) -> JSONResponse:
    """Render the domain error taxonomy."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=exc.error,
            message=exc.message,
            detail=exc.detail or None,
        ).model_dump(mode="json"),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors: list[dict[str, Any]] = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ())),
            "message": err.get("msg"),
            "type": err.get("type"),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error="validation_error",
            message="Invalid request",
            detail={"errors": errors},
        ).model_dump(mode="json"),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host=settings.api_host, port=settings.api_port, reload=settings.debug)
