"""
Occupancy Audit

Checks the occupancy invariant: a table is occupied (is_active False)
exactly when a non-terminal dine-in order or an approved/seated order
request references it. Mismatches are the tables left behind by failed
compensations or manual edits.

A table changed within the grace window (AUDIT_GRACE_SECONDS) is skipped:
an order saga reserves the table before it writes the order row, so a
fresh reservation looks orphaned until the saga finishes.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Optional

from app.core.config import get_settings
from app.models import (
    ORDER_REQUESTS,
    ORDERS,
    TABLES,
    OrderRequestStatus,
    OrderStatus,
    OrderType,
)
from app.schemas import OccupancyAuditResponse, OccupancyMismatchResponse
from app.services.tables.registry import TableRegistry

logger = logging.getLogger(__name__)

OPEN_ORDER_STATUSES = [
    status.value for status in OrderStatus
    if status not in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)
]
BINDING_REQUEST_STATUSES = [OrderRequestStatus.APPROVED.value, OrderRequestStatus.SEATED.value]


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class OccupancyAuditor:
    """Compare table flags with the orders and requests that reference them."""

    def __init__(self, registry: TableRegistry, grace_seconds: Optional[float] = None):
        self.registry = registry
        self.store = registry.store
        self.grace_seconds = (
            get_settings().audit_grace_seconds if grace_seconds is None else grace_seconds
        )

    async def audit(
        self,
        restaurant_id: Optional[str] = None,
        flag: bool = False,
    ) -> OccupancyAuditResponse:
        """
        Run the audit.

        Args:
            restaurant_id: Limit to one restaurant (all restaurants if None)
            flag: Mark every mismatching table as needing attention

        Returns:
            OccupancyAuditResponse: Number of tables checked and mismatches
        """
        scope = {"restaurant_id": restaurant_id} if restaurant_id else {}
        settled_before = datetime.now(timezone.utc) - timedelta(seconds=self.grace_seconds)

        tables = await self.store.select(TABLES, scope or None, order_by="table_number")
        orders = await self.store.select(ORDERS, {
            **scope,
            "order_type": OrderType.DINE_IN.value,
            "status": OPEN_ORDER_STATUSES,
        })
        requests = await self.store.select(ORDER_REQUESTS, {
            **scope,
            "status": BINDING_REQUEST_STATUSES,
        })

        orders_by_table: dict[str, list[str]] = defaultdict(list)
        for order in orders:
            if order.get("table_id"):
                orders_by_table[order["table_id"]].append(order["id"])

        requests_by_table: dict[str, list[str]] = defaultdict(list)
        for request in requests:
            if request.get("table_id"):
                requests_by_table[request["table_id"]].append(request["id"])

        mismatches = []
        for table in tables:
            bound_orders = orders_by_table.get(table["id"], [])
            bound_requests = requests_by_table.get(table["id"], [])
            occupied = not table["is_active"]
            bound = bool(bound_orders or bound_requests)
            if occupied == bound:
                continue
            changed_at = table.get("updated_at")
            if changed_at and _as_utc(changed_at) > settled_before:
                logger.debug(f"Table {table['id']} changed within the grace window, skipped")
                continue

            logger.warning(
                f"Occupancy mismatch on table {table['id']} "
                f"(is_active={table['is_active']}, orders={bound_orders}, "
                f"requests={bound_requests})"
            )
            flagged = False
            if flag:
                reason = (
                    "Occupied with no active order or reservation"
                    if occupied else
                    "Available while bound to an active order or reservation"
                )
                await self.registry.flag_table(table["id"], reason)
                flagged = True

            mismatches.append(OccupancyMismatchResponse(
                table_id=table["id"],
                restaurant_id=table["restaurant_id"],
                table_number=table["table_number"],
                is_active=table["is_active"],
                bound_by_orders=bound_orders,
                bound_by_requests=bound_requests,
                flagged=flagged,
            ))

        logger.info(f"Occupancy audit: {len(tables)} tables checked, {len(mismatches)} mismatches")
        return OccupancyAuditResponse(checked_tables=len(tables), mismatches=mismatches)
