"""
Core module initialization.
Exports configuration, logging utilities and the error taxonomy.
"""

from app.core.config import get_settings, setup_logging, Settings, EnvironmentMode, StoreBackend
from app.core.exceptions import (
    OrderingError,
    InputValidationError,
    MalformedPayloadError,
    NotFoundError,
    ConflictError,
    StoreUnavailableError,
)

__all__ = [
    "get_settings",
    "setup_logging",
    "Settings",
    "EnvironmentMode",
    "StoreBackend",
    "OrderingError",
    "InputValidationError",
    "MalformedPayloadError",
    "NotFoundError",
    "ConflictError",
    "StoreUnavailableError",
]
