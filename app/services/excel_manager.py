"""
Excel Incident Report with Concurrency Control

Appends compensation incidents (tables left occupied after a failed undo
step) to a shared spreadsheet that restaurant admins work through.
Celery workers may write concurrently, so every write holds a file lock.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

import pandas as pd
from filelock import FileLock, Timeout

from app.core.config import get_settings

logger = logging.getLogger(__name__)


class ExcelManager:
    """Thread-safe Excel incident report."""

    INCIDENT_COLUMNS = [
        "incident_id",
        "kind",
        "table_id",
        "order_id",
        "request_id",
        "original_error",
        "compensation_error",
        "occurred_at",
        "resolved",
        "exported_at",
    ]

    @staticmethod
    def _report_file() -> Path:
        return Path(get_settings().incident_report_path)

    @classmethod
    def _lock_file(cls) -> Path:
        report = cls._report_file()
        return report.with_name(report.name + ".lock")

    @classmethod
    def _ensure_data_dir(cls) -> None:
        """Create data directory if needed."""
        data_dir = cls._report_file().parent
        if not data_dir.exists():
            data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {data_dir}")

    @classmethod
    def _load_or_create_df(cls, file_path: Path) -> pd.DataFrame:
        """Load existing file or create new DataFrame."""
        if file_path.exists():
            try:
                return pd.read_excel(file_path, engine="openpyxl")
            except Exception as e:
                logger.warning(f"Error reading {file_path}: {e}")
                return pd.DataFrame(columns=cls.INCIDENT_COLUMNS)
        return pd.DataFrame(columns=cls.INCIDENT_COLUMNS)

    @classmethod
    def export_incident(cls, incident: dict[str, Any]) -> dict[str, Any]:
        """Append one incident to the report with file locking."""
        cls._ensure_data_dir()

        incident_id = incident.get("incident_id", "unknown")
        lock_timeout = get_settings().excel_lock_timeout
        result = {
            "success": False,
            "message": "",
            "incident_id": incident_id,
            "exported_at": None,
        }

        try:
            lock = FileLock(str(cls._lock_file()), timeout=lock_timeout)

            with lock:
                logger.debug(f"Lock acquired for incident {incident_id}")

                report_file = cls._report_file()
                df = cls._load_or_create_df(report_file)

                export_time = datetime.now().isoformat()
                new_row = {
                    "incident_id": incident_id,
                    "kind": incident.get("kind"),
                    "table_id": incident.get("table_id"),
                    "order_id": incident.get("order_id"),
                    "request_id": incident.get("request_id"),
                    "original_error": incident.get("original_error"),
                    "compensation_error": incident.get("compensation_error"),
                    "occurred_at": incident.get("occurred_at", export_time),
                    "resolved": False,
                    "exported_at": export_time,
                }

                df = pd.concat([df, pd.DataFrame([new_row])], ignore_index=True)
                df.to_excel(str(report_file), index=False, engine="openpyxl")

                logger.info(f"Incident {incident_id} exported to Excel")

                result["success"] = True
                result["message"] = f"Incident {incident_id} exported"
                result["exported_at"] = export_time

            logger.debug(f"Lock released for incident {incident_id}")

        except Timeout:
            result["message"] = f"Lock timeout ({lock_timeout}s)"
            logger.error(f"Lock timeout for incident {incident_id}")

        except Exception as e:
            result["message"] = str(e)
            logger.exception(f"Error exporting incident {incident_id}")

        return result

    @classmethod
    def get_all_incidents(cls) -> list[dict[str, Any]]:
        """Get all incidents from Excel."""
        report_file = cls._report_file()
        if not report_file.exists():
            return []

        try:
            df = pd.read_excel(report_file, engine="openpyxl")
            return df.to_dict("records")
        except Exception as e:
            logger.error(f"Error reading incidents: {e}")
            return []

    @classmethod
    def clear_all(cls) -> bool:
        """Delete the report and its lock file."""
        try:
            for f in [cls._report_file(), cls._lock_file()]:
                if f.exists():
                    f.unlink()
            logger.info("Incident report cleared")
            return True
        except Exception as e:
            logger.error(f"Error clearing incident report: {e}")
            return False
