"""
Celery Tasks
Background work for the table lifecycle:
    - appending compensation incidents to the Excel report
    - auditing table occupancy against open orders and reservations
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.celery_worker import celery_app
from app.core.config import StoreBackend, get_settings
from app.services.excel_manager import ExcelManager
from app.services.incidents import log_incident
from app.services.store import SqlAlchemyStore, get_store
from app.services.tables import OccupancyAuditor, TableRegistry

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(Exception,),
    retry_backoff=True
)
def report_compensation_incident(self, incident: dict) -> dict:
    """
    Append a compensation incident to the Excel report.

    Args:
        incident: CompensationFailure.to_dict() payload

    Returns:
        dict: Result of the export operation
    """
    task_id = self.request.id
    incident_id = incident.get('incident_id', 'unknown')

    logger.info(f"Task {task_id}: Recording incident {incident_id}")
    start_time = time.time()

    result = ExcelManager.export_incident(incident)

    elapsed = round(time.time() - start_time, 3)
    result['task_id'] = task_id
    result['processing_time_seconds'] = elapsed

    if result['success']:
        logger.info(f"Task {task_id}: Incident {incident_id} recorded in {elapsed}s")
    else:
        logger.warning(f"Task {task_id}: Incident {incident_id} failed - {result['message']}")

    return result


async def _run_audit(restaurant_id: Optional[str], flag: bool) -> dict:
    settings = get_settings()

    # Each task runs its own event loop, so it gets its own engine
    engine = None
    if settings.store_backend == StoreBackend.MEMORY:
        store = get_store()
    else:
        engine = create_async_engine(settings.database_url, poolclass=NullPool)
        store = SqlAlchemyStore(async_sessionmaker(engine, expire_on_commit=False))

    try:
        auditor = OccupancyAuditor(TableRegistry(store, incident_reporter=log_incident))
        report = await auditor.audit(restaurant_id=restaurant_id, flag=flag)
        return report.model_dump()
    finally:
        if engine is not None:
            await engine.dispose()


@celery_app.task
def audit_table_occupancy(restaurant_id: Optional[str] = None, flag: bool = True) -> dict:
    """
    Check every table's occupancy flag against the orders and requests
    that reference it, flagging mismatches for an admin.
    """
    report = asyncio.run(_run_audit(restaurant_id, flag))
    logger.info(
        f"Occupancy audit: {report['checked_tables']} tables, "
        f"{len(report['mismatches'])} mismatches"
    )
    return report


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now().isoformat()
    }
