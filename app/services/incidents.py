"""
Compensation Incidents

When an undo step fails (typically releasing a table after a later step
failed), the table is left occupied with no order behind it. That state
is recorded as a CompensationFailure, logged, flagged on the table and
handed to an incident reporter so staff can correct it manually.

Reporters:
    - log_incident: log only (tests, scripts)
    - dispatch_incident: queue the Celery task that appends the incident
      to the Excel incident report

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from app.core.config import get_settings

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CompensationFailure:
    """
    A failed undo step.

    Attributes:
        kind: Which flow was compensating ("order_saga", "order_status",
            "order_request")
        table_id: Table whose occupancy may now be wrong
        original_error: The error that triggered compensation
        compensation_error: The error raised by the undo step
        order_id: Related order, if any
        request_id: Related order request, if any
    """
    kind: str
    table_id: Optional[str]
    original_error: str
    compensation_error: str
    order_id: Optional[str] = None
    request_id: Optional[str] = None
    occurred_at: datetime = field(default_factory=utcnow)
    incident_id: str = field(default_factory=lambda: f"inc_{uuid.uuid4().hex[:12]}")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "incident_id": self.incident_id,
            "kind": self.kind,
            "table_id": self.table_id,
            "order_id": self.order_id,
            "request_id": self.request_id,
            "original_error": self.original_error,
            "compensation_error": self.compensation_error,
            "occurred_at": self.occurred_at.isoformat(),
        }


IncidentReporter = Callable[[CompensationFailure], None]


def log_incident(incident: CompensationFailure) -> None:
    logger.error(
        f"Incident {incident.incident_id}: {incident.kind} left table "
        f"{incident.table_id} inconsistent ({incident.compensation_error})"
    )


def dispatch_incident(incident: CompensationFailure) -> None:
    """Log the incident and queue it for the Excel report."""
    log_incident(incident)

    # Local import: app.tasks imports the services package
    from app.tasks import report_compensation_incident

    try:
        report_compensation_incident.delay(incident.to_dict())
    except Exception:
        logger.exception(f"Could not queue incident {incident.incident_id}")


def get_incident_reporter() -> IncidentReporter:
    """Pick the reporter matching REPORT_INCIDENTS_ASYNC."""
    if get_settings().report_incidents_async:
        return dispatch_incident
    return log_incident
