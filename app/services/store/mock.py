"""
In-Memory Store Implementation

Dict-backed stand-in for the database, used in development mode
(STORE_BACKEND=memory) and throughout the test suite to:
    - Run the complete order/table flow without PostgreSQL
    - Force individual operations to fail (saga compensation paths)
    - Simulate latency so concurrent callers interleave

Behavior:
    - Rows get a uuid4 id and a created_at timestamp on insert
    - update_where is a true compare-and-set under an asyncio lock
    - Transactions are snapshot/restore and only enabled on request;
      they run one at a time, so a rollback never discards the writes of
      another transaction. Writes made outside any transaction are not
      isolated and are lost if a concurrent transaction rolls back.

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import copy
import logging
import random
import uuid
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from app.core.exceptions import StoreUnavailableError
from app.services.store.base import BaseStore, Row

logger = logging.getLogger(__name__)


@dataclass
class InjectedFailure:
    """A failure armed with fail_on()."""
    operation: str
    table: Optional[str]
    remaining: int
    error: Optional[Exception] = None

    def matches(self, operation: str, table: str) -> bool:
        return (
            self.remaining > 0
            and self.operation == operation
            and (self.table is None or self.table == table)
        )


class InMemoryStore(BaseStore):
    """
    Mock implementation of the store.

    Attributes:
        transactional: Enable snapshot/restore transactions
        min_latency: Minimum simulated response time in seconds
        max_latency: Maximum simulated response time in seconds

    Example:
        >>> store = InMemoryStore()
        >>> store.fail_on("insert_many", "order_items")
        >>> await store.insert_many("order_items", [...])  # raises StoreUnavailableError
    """

    OPERATIONS = ("select", "insert", "insert_many", "update", "update_where", "delete")

    def __init__(
        self,
        transactional: bool = False,
        min_latency: float = 0.0,
        max_latency: float = 0.0,
    ):
        self.transactional = transactional
        self.min_latency = min_latency
        self.max_latency = max_latency

        self._tables: dict[str, dict[str, Row]] = {}
        self._lock = asyncio.Lock()
        self._failures: list[InjectedFailure] = []
        self._tx_lock = asyncio.Lock()
        self._in_transaction: ContextVar[bool] = ContextVar(f"memory_tx_{id(self)}", default=False)

        logger.info(
            f"InMemoryStore initialized "
            f"(transactional={transactional}, "
            f"latency={min_latency}-{max_latency}s)"
        )

    @property
    def provider_name(self) -> str:
        return "memory"

    @property
    def supports_transactions(self) -> bool:
        return self.transactional

    # =========================================================================
    # TEST HOOKS
    # =========================================================================

    def fail_on(
        self,
        operation: str,
        table: Optional[str] = None,
        times: int = 1,
        error: Optional[Exception] = None,
    ) -> None:
        """Make the next `times` calls of `operation` (on `table`) raise."""
        if operation not in self.OPERATIONS:
            raise ValueError(f"Unknown operation: {operation}")
        self._failures.append(InjectedFailure(operation, table, times, error))

    def clear_failures(self) -> None:
        self._failures.clear()

    def rows(self, table: str) -> list[Row]:
        """Synchronous snapshot of a table, for assertions."""
        return [dict(row) for row in self._tables.get(table, {}).values()]

    # =========================================================================
    # INTERNALS
    # =========================================================================

    async def _simulate_latency(self) -> None:
        if self.max_latency > 0:
            await asyncio.sleep(random.uniform(self.min_latency, self.max_latency))

    def _maybe_fail(self, operation: str, table: str) -> None:
        for failure in self._failures:
            if failure.matches(operation, table):
                failure.remaining -= 1
                logger.debug(f"Memory: injected failure on {operation}({table})")
                raise failure.error or StoreUnavailableError(
                    f"Simulated {operation} failure on {table}",
                    {"operation": operation, "table": table},
                )

    @staticmethod
    def _matches(row: Row, filters: Optional[Row]) -> bool:
        for key, value in (filters or {}).items():
            if isinstance(value, (list, tuple, set, frozenset)):
                if row.get(key) not in value:
                    return False
            elif row.get(key) != value:
                return False
        return True

    def _table(self, table: str) -> dict[str, Row]:
        return self._tables.setdefault(table, {})

    @staticmethod
    def _prepare(row: Row) -> Row:
        stored = dict(row)
        stored.setdefault("id", str(uuid.uuid4()))
        stored.setdefault("created_at", datetime.now(timezone.utc))
        return stored

    # =========================================================================
    # STORE INTERFACE
    # =========================================================================

    async def select(
        self,
        table: str,
        filters: Optional[Row] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Row]:
        await self._simulate_latency()
        async with self._lock:
            self._maybe_fail("select", table)
            rows = [dict(r) for r in self._table(table).values() if self._matches(r, filters)]

        if order_by:
            present = [r for r in rows if r.get(order_by) is not None]
            missing = [r for r in rows if r.get(order_by) is None]
            present.sort(key=lambda r: r[order_by], reverse=descending)
            rows = present + missing
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def insert(self, table: str, row: Row) -> Row:
        await self._simulate_latency()
        async with self._lock:
            self._maybe_fail("insert", table)
            stored = self._prepare(row)
            self._table(table)[stored["id"]] = stored
            logger.debug(f"Memory: insert {table} {stored['id']}")
            return dict(stored)

    async def insert_many(self, table: str, rows: list[Row]) -> list[Row]:
        await self._simulate_latency()
        async with self._lock:
            self._maybe_fail("insert_many", table)
            prepared = [self._prepare(r) for r in rows]
            target = self._table(table)
            for stored in prepared:
                target[stored["id"]] = stored
            logger.debug(f"Memory: insert_many {table} ({len(prepared)} rows)")
            return [dict(r) for r in prepared]

    async def update(self, table: str, filters: Row, values: Row) -> list[Row]:
        await self._simulate_latency()
        async with self._lock:
            self._maybe_fail("update", table)
            updated = []
            for row in self._table(table).values():
                if self._matches(row, filters):
                    row.update(values)
                    updated.append(dict(row))
            return updated

    async def update_where(
        self,
        table: str,
        filters: Row,
        expected: Row,
        values: Row,
    ) -> Optional[Row]:
        await self._simulate_latency()
        async with self._lock:
            self._maybe_fail("update_where", table)
            for row in self._table(table).values():
                if self._matches(row, filters) and self._matches(row, expected):
                    row.update(values)
                    return dict(row)
            return None

    async def delete(self, table: str, filters: Row) -> int:
        await self._simulate_latency()
        async with self._lock:
            self._maybe_fail("delete", table)
            target = self._table(table)
            doomed = [key for key, row in target.items() if self._matches(row, filters)]
            for key in doomed:
                del target[key]
            return len(doomed)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Snapshot/restore transaction. Nested calls join the outer one."""
        if not self.transactional or self._in_transaction.get():
            yield
            return

        async with self._tx_lock:
            snapshot = copy.deepcopy(self._tables)
            token = self._in_transaction.set(True)
            try:
                yield
            except BaseException:
                self._tables = snapshot
                logger.debug("Memory: transaction rolled back")
                raise
            finally:
                self._in_transaction.reset(token)

    async def health_check(self) -> bool:
        """Mock store is always available."""
        return True
