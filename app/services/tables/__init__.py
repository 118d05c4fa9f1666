"""
Table Services

Usage:
    from app.services.tables import get_table_registry

    registry = get_table_registry()
    result = await registry.reserve(table_id)

Author: Khalil Bannouri
Version: 1.0.0
"""

from functools import lru_cache

from app.services.incidents import get_incident_reporter
from app.services.store import get_store
from app.services.tables.audit import OccupancyAuditor
from app.services.tables.registry import ReleaseResult, ReservationResult, TableRegistry


@lru_cache()
def get_table_registry() -> TableRegistry:
    return TableRegistry(get_store(), incident_reporter=get_incident_reporter())


@lru_cache()
def get_occupancy_auditor() -> OccupancyAuditor:
    return OccupancyAuditor(get_table_registry())


__all__ = [
    "get_table_registry",
    "get_occupancy_auditor",
    "TableRegistry",
    "ReservationResult",
    "ReleaseResult",
    "OccupancyAuditor",
]
