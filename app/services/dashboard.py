"""
Dashboard Statistics

Aggregates for the restaurant admin panel: order counts by status,
pending reservation requests, occupied/flagged tables and today's
revenue (cancelled orders excluded).

Author: Khalil Bannouri
Version: 1.0.0
"""

from collections import Counter
from datetime import datetime, timezone

from app.models import ORDER_REQUESTS, ORDERS, TABLES, OrderRequestStatus, OrderStatus
from app.schemas import DashboardResponse
from app.services.store import BaseStore

ACTIVE_STATUSES = {
    status.value for status in OrderStatus
    if status not in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)
}


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


async def get_dashboard_stats(store: BaseStore, restaurant_id: str) -> DashboardResponse:
    """Get aggregated dashboard statistics for one restaurant."""
    orders = await store.select(ORDERS, {"restaurant_id": restaurant_id})
    pending_requests = await store.select(ORDER_REQUESTS, {
        "restaurant_id": restaurant_id,
        "status": OrderRequestStatus.PENDING.value,
    })
    tables = await store.select(TABLES, {"restaurant_id": restaurant_id})

    by_status = Counter(OrderStatus(order["status"]).value for order in orders)

    today_start = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    today_revenue = sum(
        order["total"] for order in orders
        if order.get("created_at") is not None
        and _as_utc(order["created_at"]) >= today_start
        and OrderStatus(order["status"]) != OrderStatus.CANCELLED
    )

    return DashboardResponse(
        restaurant_id=restaurant_id,
        total_orders=len(orders),
        orders_by_status=dict(by_status),
        active_orders=sum(count for status, count in by_status.items() if status in ACTIVE_STATUSES),
        pending_requests=len(pending_requests),
        occupied_tables=sum(1 for table in tables if not table["is_active"]),
        flagged_tables=sum(1 for table in tables if table.get("needs_attention")),
        today_revenue=round(today_revenue, 2),
    )
