"""
Store Factory

Provides a single entry point for obtaining the persistence collaborator.
The rest of the application only sees BaseStore.

Usage:
    from app.services.store import get_store

    store = get_store()
    rows = await store.select("restaurant_tables", {"restaurant_id": rid})

Backend Switching:
    - STORE_BACKEND=sqlalchemy -> SqlAlchemyStore (PostgreSQL)
    - STORE_BACKEND=memory -> InMemoryStore (no database needed)

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from functools import lru_cache

from app.core.config import StoreBackend, get_settings
from app.services.store.base import BaseStore, Row
from app.services.store.mock import InMemoryStore
from app.services.store.postgres import SqlAlchemyStore

logger = logging.getLogger(__name__)


@lru_cache()
def get_store() -> BaseStore:
    """
    Get the configured store instance.

    The instance is cached so every service shares one store.

    Returns:
        BaseStore: Configured store instance
    """
    settings = get_settings()

    if settings.store_backend == StoreBackend.MEMORY:
        logger.info("Store: Using InMemoryStore")
        return InMemoryStore()

    logger.info(f"Store: Using SqlAlchemyStore ({settings.env_mode.value} mode)")
    return SqlAlchemyStore()


def reset_store() -> None:
    """
    Clear the cached store instance.

    The next call to get_store() will create a new instance.
    """
    get_store.cache_clear()
    logger.debug("Store cache cleared")


__all__ = [
    "get_store",
    "reset_store",
    "BaseStore",
    "Row",
    "InMemoryStore",
    "SqlAlchemyStore",
]
