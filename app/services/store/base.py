"""
Store Abstract Base Class

Defines the row-level persistence contract consumed by the order and
table services. Rows are plain dicts keyed by column name.

Implementations:
    - InMemoryStore: dict-backed store for development and tests
    - SqlAlchemyStore: PostgreSQL through the SQLAlchemy async engine

Design Pattern: Strategy Pattern
    - Services never import a concrete store
    - The factory in app.services.store picks one from configuration

Author: Khalil Bannouri
Version: 1.0.0
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncContextManager, Optional

Row = dict[str, Any]


class BaseStore(ABC):
    """
    Abstract base class for persistence collaborators.

    Filters are equality matches combined with AND. A filter value that is
    a list/tuple/set means "column IN values".

    Example:
        >>> store = get_store()
        >>> table = await store.update_where(
        ...     "restaurant_tables",
        ...     {"id": table_id},
        ...     expected={"is_active": True},
        ...     values={"is_active": False},
        ... )
        >>> if table is None:
        ...     print("Someone else got there first")
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the store name (e.g. "memory", "sqlalchemy")."""
        pass

    @property
    @abstractmethod
    def supports_transactions(self) -> bool:
        """Whether transaction() gives all-or-nothing semantics."""
        pass

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Optional[Row] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Row]:
        """Return all rows matching the filters."""
        pass

    async def select_one(self, table: str, filters: Row) -> Optional[Row]:
        """Return the first matching row or None."""
        rows = await self.select(table, filters, limit=1)
        return rows[0] if rows else None

    @abstractmethod
    async def insert(self, table: str, row: Row) -> Row:
        """Insert one row and return it as stored (id and defaults filled)."""
        pass

    @abstractmethod
    async def insert_many(self, table: str, rows: list[Row]) -> list[Row]:
        """Insert a batch of rows; either every row is stored or none is."""
        pass

    @abstractmethod
    async def update(self, table: str, filters: Row, values: Row) -> list[Row]:
        """Update every matching row and return the updated rows."""
        pass

    @abstractmethod
    async def update_where(
        self,
        table: str,
        filters: Row,
        expected: Row,
        values: Row,
    ) -> Optional[Row]:
        """
        Atomic single-row compare-and-set.

        Updates the row matching `filters` only if its current values equal
        `expected`. Returns the updated row, or None when nothing matched.
        """
        pass

    @abstractmethod
    async def delete(self, table: str, filters: Row) -> int:
        """Delete matching rows and return how many were removed."""
        pass

    @abstractmethod
    def transaction(self) -> AsyncContextManager[None]:
        """
        Group the operations issued inside the block.

        Stores that do not support transactions still accept the block
        and simply run each operation on its own.
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Verify the store is reachable."""
        pass
