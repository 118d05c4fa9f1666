"""
Table Registry

Sole owner of table occupancy. A table is available when is_active is
True; reserving it flips the flag to False with a single conditional
update, so two concurrent callers can never both win the same table.

Features:
    - Lookup by id or by (restaurant_id, table_number)
    - Atomic reserve (compare-and-set) returning Ok/Conflict as a result
    - Idempotent release
    - Compensation helper used by the saga and request workflow
    - Admin operations: create/list/delete, QR binding, attention flags

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from app.core.exceptions import (
    ConflictError,
    DuplicateTableError,
    InputValidationError,
    TableNotFoundError,
    TableUnavailableError,
)
from app.models import TABLES
from app.schemas import TableResponse
from app.services.incidents import CompensationFailure, IncidentReporter, log_incident
from app.services.qr.payload import build_qr_payload
from app.services.store import BaseStore, Row, get_store

logger = logging.getLogger(__name__)


# =============================================================================
# RESULT OBJECTS
# =============================================================================

@dataclass
class ReservationResult:
    """
    Outcome of a reservation attempt.

    Attributes:
        success: True if the table is now held by the caller
        table_id: The table that was requested
        table: Table state after the attempt (None only if unknown)
        conflict: True if another order/request already holds the table
        error_message: Human-readable reason on conflict
    """
    success: bool
    table_id: str
    table: Optional[TableResponse] = None
    conflict: bool = False
    error_message: Optional[str] = None


@dataclass
class ReleaseResult:
    """changed is False when the table was already available."""
    table_id: str
    table: TableResponse
    changed: bool


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# REGISTRY
# =============================================================================

class TableRegistry:
    """
    Table identity, occupancy and QR binding.

    Example:
        >>> registry = TableRegistry(store)
        >>> result = await registry.reserve(table_id)
        >>> if not result.success:
        ...     raise TableUnavailableError(result.error_message)
    """

    def __init__(
        self,
        store: Optional[BaseStore] = None,
        incident_reporter: Optional[IncidentReporter] = None,
    ):
        self.store = store or get_store()
        self.incident_reporter = incident_reporter or log_incident

    # =========================================================================
    # LOOKUP
    # =========================================================================

    async def get_table(
        self,
        table_id: Optional[str] = None,
        restaurant_id: Optional[str] = None,
        table_number: Optional[int] = None,
    ) -> TableResponse:
        """
        Fetch a table by id, or by restaurant and table number.

        Raises:
            TableNotFoundError: No such table
        """
        if table_id:
            filters: Row = {"id": table_id}
            if restaurant_id:
                filters["restaurant_id"] = restaurant_id
        elif restaurant_id and table_number is not None:
            filters = {"restaurant_id": restaurant_id, "table_number": table_number}
        else:
            raise InputValidationError(
                "Provide table_id or restaurant_id and table_number"
            )

        row = await self.store.select_one(TABLES, filters)
        if row is None:
            raise TableNotFoundError(
                "Table not found. Please contact restaurant staff.",
                {key: str(value) for key, value in filters.items()},
            )
        return TableResponse.model_validate(row)

    async def list_tables(
        self,
        restaurant_id: str,
        available_only: bool = False,
    ) -> list[TableResponse]:
        filters: Row = {"restaurant_id": restaurant_id}
        if available_only:
            filters["is_active"] = True
        rows = await self.store.select(TABLES, filters, order_by="table_number")
        return [TableResponse.model_validate(row) for row in rows]

    # =========================================================================
    # OCCUPANCY
    # =========================================================================

    async def reserve(
        self,
        table_id: str,
        restaurant_id: Optional[str] = None,
    ) -> ReservationResult:
        """
        Mark a table occupied if, and only if, it is currently available.

        Args:
            table_id: Table to reserve
            restaurant_id: Only reserve the table if it belongs to this restaurant

        Returns:
            ReservationResult: success=True, or conflict=True if taken

        Raises:
            TableNotFoundError: Unknown table id, or not in `restaurant_id`
            StoreUnavailableError: Store failure
        """
        filters: Row = {"id": table_id}
        if restaurant_id:
            filters["restaurant_id"] = restaurant_id

        row = await self.store.update_where(
            TABLES,
            filters,
            expected={"is_active": True},
            values={"is_active": False, "updated_at": _now()},
        )
        if row is not None:
            logger.info(f"Table reserved: {table_id} (#{row.get('table_number')})")
            return ReservationResult(
                success=True,
                table_id=table_id,
                table=TableResponse.model_validate(row),
            )

        current = await self.get_table(table_id, restaurant_id=restaurant_id)
        logger.warning(f"Reservation conflict: table {table_id} is already occupied")
        return ReservationResult(
            success=False,
            table_id=table_id,
            table=current,
            conflict=True,
            error_message=f"Table {current.table_number} is already occupied",
        )

    async def release(self, table_id: str) -> ReleaseResult:
        """
        Mark a table available. Releasing an available table is a no-op.

        Raises:
            TableNotFoundError: Unknown table id
        """
        row = await self.store.update_where(
            TABLES,
            {"id": table_id},
            expected={"is_active": False},
            values={"is_active": True, "updated_at": _now()},
        )
        if row is not None:
            logger.info(f"Table released: {table_id} (#{row.get('table_number')})")
            return ReleaseResult(table_id, TableResponse.model_validate(row), changed=True)

        current = await self.get_table(table_id)
        logger.debug(f"Release of {table_id} skipped: already available")
        return ReleaseResult(table_id, current, changed=False)

    async def compensate_release(
        self,
        table_id: str,
        cause: Optional[BaseException],
        kind: str,
        order_id: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> Optional[CompensationFailure]:
        """
        Release a table as an undo step (or a follow-up side effect).

        Never raises: a failed release is logged, the table is flagged for
        manual correction and the incident is reported. The caller is
        expected to re-raise `cause` when there is one.

        Returns:
            CompensationFailure if the release failed, else None
        """
        try:
            await self.release(table_id)
            return None
        except Exception as e:
            logger.exception(
                f"Compensation failed for table {table_id} "
                f"({kind}, original error: {cause})"
            )
            incident = CompensationFailure(
                kind=kind,
                table_id=table_id,
                original_error=f"{type(cause).__name__}: {cause}" if cause else "",
                compensation_error=f"{type(e).__name__}: {e}",
                order_id=order_id,
                request_id=request_id,
            )

        await self.record_incident(incident)
        return incident

    async def record_incident(self, incident: CompensationFailure) -> None:
        """Flag the affected table (if any) and hand the incident to the reporter."""
        if incident.table_id:
            try:
                await self.flag_table(
                    incident.table_id,
                    f"Compensation failed during {incident.kind} ({incident.incident_id})",
                )
            except Exception:
                logger.exception(f"Could not flag table {incident.table_id}")

        try:
            self.incident_reporter(incident)
        except Exception:
            logger.exception(f"Incident reporter failed for {incident.incident_id}")

    # =========================================================================
    # ATTENTION FLAGS
    # =========================================================================

    async def flag_table(self, table_id: str, reason: str) -> TableResponse:
        """Mark a table as needing manual admin correction."""
        rows = await self.store.update(
            TABLES,
            {"id": table_id},
            {"needs_attention": True, "attention_reason": reason, "updated_at": _now()},
        )
        if not rows:
            raise TableNotFoundError(f"Table {table_id} not found", {"table_id": table_id})
        logger.warning(f"Table {table_id} flagged: {reason}")
        return TableResponse.model_validate(rows[0])

    async def clear_flag(self, table_id: str) -> TableResponse:
        rows = await self.store.update(
            TABLES,
            {"id": table_id},
            {"needs_attention": False, "attention_reason": None, "updated_at": _now()},
        )
        if not rows:
            raise TableNotFoundError(f"Table {table_id} not found", {"table_id": table_id})
        logger.info(f"Table {table_id} flag cleared")
        return TableResponse.model_validate(rows[0])

    # =========================================================================
    # ADMINISTRATION
    # =========================================================================

    async def create_table(self, restaurant_id: str, table_number: int) -> TableResponse:
        """
        Register a new, available table.

        Raises:
            InputValidationError: Non-positive table number
            DuplicateTableError: Number already used in this restaurant
        """
        if table_number <= 0:
            raise InputValidationError(
                "Table number must be a positive integer",
                {"table_number": table_number},
            )

        existing = await self.store.select_one(
            TABLES, {"restaurant_id": restaurant_id, "table_number": table_number}
        )
        if existing is not None:
            raise DuplicateTableError(
                f"Table {table_number} already exists",
                {"restaurant_id": restaurant_id, "table_number": table_number},
            )

        now = _now()
        try:
            row = await self.store.insert(TABLES, {
                "restaurant_id": restaurant_id,
                "table_number": table_number,
                "is_active": True,
                "qr_code_payload": None,
                "needs_attention": False,
                "attention_reason": None,
                "created_at": now,
                "updated_at": now,
            })
        except ConflictError as e:
            raise DuplicateTableError(
                f"Table {table_number} already exists",
                {"restaurant_id": restaurant_id, "table_number": table_number},
            ) from e

        logger.info(f"Table created: {restaurant_id} #{table_number} ({row['id']})")
        return TableResponse.model_validate(row)

    async def delete_table(self, table_id: str) -> None:
        """
        Remove a table. Occupied tables cannot be deleted.

        Raises:
            TableNotFoundError: Unknown table id
            TableUnavailableError: Table is occupied
        """
        table = await self.get_table(table_id)
        if not table.is_active:
            raise TableUnavailableError(
                f"Table {table.table_number} is occupied and cannot be deleted",
                {"table_id": table_id},
            )
        removed = await self.store.delete(TABLES, {"id": table_id, "is_active": True})
        if not removed:
            raise TableUnavailableError(
                f"Table {table.table_number} became occupied",
                {"table_id": table_id},
            )
        logger.info(f"Table deleted: {table_id}")

    async def bind_qr_code(self, table_id: str, restaurant_name: str) -> TableResponse:
        """Generate the table QR payload and store it on the table."""
        table = await self.get_table(table_id)
        payload = build_qr_payload(table.restaurant_id, restaurant_name, table.table_number)
        rows = await self.store.update(
            TABLES,
            {"id": table_id},
            {"qr_code_payload": payload, "updated_at": _now()},
        )
        if not rows:
            raise TableNotFoundError(f"Table {table_id} not found", {"table_id": table_id})
        logger.info(f"QR code bound to table {table_id}")
        return TableResponse.model_validate(rows[0])
