"""
SQLAlchemy Store Implementation

Production store backed by PostgreSQL through the async SQLAlchemy engine.
Statements are built with SQLAlchemy Core against the ORM tables, so every
operation is one round trip and conditional updates are a single

    UPDATE <table> SET ... WHERE <filters> AND <expected> RETURNING *

statement: two concurrent reservations of the same table cannot both win.

transaction() binds one session to the running task (contextvars), so
every store call issued inside the block shares a single database
transaction that commits on exit and rolls back on error.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, AsyncIterator, Callable, Optional

from sqlalchemy import Result, Table, and_, delete, insert, select, true, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import ConflictError, StoreUnavailableError
from app.database import Base, get_session_maker
from app.services.store.base import BaseStore, Row
from app import models  # noqa: F401  (registers tables on Base.metadata)

logger = logging.getLogger(__name__)

_current_session: ContextVar[Optional[AsyncSession]] = ContextVar(
    "store_session", default=None
)


def _all_rows(result: Result) -> list[Row]:
    return [dict(row) for row in result.mappings().all()]


def _one_row(result: Result) -> Row:
    return dict(result.mappings().one())


def _first_row(result: Result) -> Optional[Row]:
    row = result.mappings().first()
    return dict(row) if row is not None else None


class SqlAlchemyStore(BaseStore):
    """
    PostgreSQL implementation of the store.

    Args:
        session_maker: Optional session factory (defaults to app.database)
    """

    def __init__(self, session_maker: Optional[async_sessionmaker] = None):
        self._session_maker = session_maker
        logger.info("SqlAlchemyStore initialized")

    @property
    def provider_name(self) -> str:
        return "sqlalchemy"

    @property
    def supports_transactions(self) -> bool:
        return True

    @property
    def session_maker(self) -> async_sessionmaker:
        if self._session_maker is None:
            self._session_maker = get_session_maker()
        return self._session_maker

    # =========================================================================
    # INTERNALS
    # =========================================================================

    @staticmethod
    def _table(name: str) -> Table:
        try:
            return Base.metadata.tables[name]
        except KeyError:
            raise ValueError(f"Unknown table: {name}")

    @staticmethod
    def _where(table: Table, filters: Optional[Row]):
        clauses = []
        for key, value in (filters or {}).items():
            column = table.c[key]
            if isinstance(value, (list, tuple, set, frozenset)):
                clauses.append(column.in_(list(value)))
            elif value is None:
                clauses.append(column.is_(None))
            else:
                clauses.append(column == value)
        return and_(true(), *clauses)

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        """Reuse the transaction session if one is open, else a short-lived one."""
        active = _current_session.get()
        if active is not None:
            yield active
            return

        async with self.session_maker() as session:
            async with session.begin():
                yield session

    async def _execute(
        self,
        operation: str,
        table_name: str,
        statement,
        fetch: Callable[[Result], Any],
    ):
        """Run one statement and extract its rows while the session is open."""
        try:
            async with self._session() as session:
                result = await session.execute(statement)
                return fetch(result)
        except IntegrityError as e:
            logger.warning(f"Constraint violation on {operation}({table_name}): {e.orig}")
            raise ConflictError(
                f"Constraint violated on {table_name}",
                {"operation": operation, "table": table_name},
            ) from e
        except SQLAlchemyError as e:
            logger.error(f"Database error on {operation}({table_name}): {e}")
            raise StoreUnavailableError(
                f"Database error during {operation} on {table_name}",
                {"operation": operation, "table": table_name},
            ) from e

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
        tbl = self._table(table)
        statement = select(tbl).where(self._where(tbl, filters))
        if order_by:
            column = tbl.c[order_by]
            statement = statement.order_by(column.desc() if descending else column.asc())
        if limit is not None:
            statement = statement.limit(limit)

        return await self._execute("select", table, statement, _all_rows)

    async def insert(self, table: str, row: Row) -> Row:
        tbl = self._table(table)
        statement = insert(tbl).values(**row).returning(*tbl.c)
        return await self._execute("insert", table, statement, _one_row)

    async def insert_many(self, table: str, rows: list[Row]) -> list[Row]:
        if not rows:
            return []
        tbl = self._table(table)
        statement = insert(tbl).values(rows).returning(*tbl.c)
        return await self._execute("insert_many", table, statement, _all_rows)

    async def update(self, table: str, filters: Row, values: Row) -> list[Row]:
        tbl = self._table(table)
        statement = (
            update(tbl)
            .where(self._where(tbl, filters))
            .values(**values)
            .returning(*tbl.c)
        )
        return await self._execute("update", table, statement, _all_rows)

    async def update_where(
        self,
        table: str,
        filters: Row,
        expected: Row,
        values: Row,
    ) -> Optional[Row]:
        tbl = self._table(table)
        statement = (
            update(tbl)
            .where(self._where(tbl, {**filters, **expected}))
            .values(**values)
            .returning(*tbl.c)
        )
        return await self._execute("update_where", table, statement, _first_row)

    async def delete(self, table: str, filters: Row) -> int:
        tbl = self._table(table)
        statement = delete(tbl).where(self._where(tbl, filters))
        return await self._execute("delete", table, statement, lambda result: result.rowcount or 0)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if _current_session.get() is not None:
            yield
            return

        async with self.session_maker() as session:
            async with session.begin():
                token = _current_session.set(session)
                try:
                    yield
                finally:
                    _current_session.reset(token)

    async def health_check(self) -> bool:
        try:
            async with self.session_maker() as session:
                await session.execute(select(true()))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Store health check failed: {e}")
            return False
