"""
Order Request Services

Usage:
    from app.services.requests import get_request_workflow

    request = await get_request_workflow().approve(request_id, approver_id)

Author: Khalil Bannouri
Version: 1.0.0
"""

from functools import lru_cache

from app.services.requests.workflow import REQUEST_TRANSITIONS, OrderRequestWorkflow
from app.services.store import get_store
from app.services.tables import get_table_registry


@lru_cache()
def get_request_workflow() -> OrderRequestWorkflow:
    return OrderRequestWorkflow(get_store(), get_table_registry())


__all__ = ["get_request_workflow", "OrderRequestWorkflow", "REQUEST_TRANSITIONS"]
