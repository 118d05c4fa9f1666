"""
Domain Exceptions

Error taxonomy for the order and table lifecycle:
    - Validation: rejected before any mutating call (422)
    - NotFound: unknown table/order/request id (404)
    - Conflict: table occupied, illegal status change, request resolved (409)
    - Infrastructure: backing store unavailable (503)

Every error carries a human-readable message plus an optional detail
dict that the API layer renders into the ErrorResponse body.

Author: Khalil Bannouri
Version: 1.0.0
"""

from typing import Any, Optional


class OrderingError(Exception):
    """Base class for all errors raised by the ordering services."""

    status_code = 500
    error = "ordering_error"

    def __init__(self, message: str, detail: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def __str__(self) -> str:
        return self.message


# =============================================================================
# VALIDATION
# =============================================================================

class InputValidationError(OrderingError):
    """Input rejected before any mutating call was issued."""
    status_code = 422
    error = "validation_error"


class MalformedPayloadError(InputValidationError):
    """Scanned QR payload is not a table QR code."""
    error = "malformed_payload"


# =============================================================================
# NOT FOUND
# =============================================================================

class NotFoundError(OrderingError):
    status_code = 404
    error = "not_found"


class TableNotFoundError(NotFoundError):
    error = "table_not_found"


class OrderNotFoundError(NotFoundError):
    error = "order_not_found"


class OrderRequestNotFoundError(NotFoundError):
    error = "order_request_not_found"


# =============================================================================
# CONFLICT
# =============================================================================

class ConflictError(OrderingError):
    status_code = 409
    error = "conflict"


class TableUnavailableError(ConflictError):
    """The table is already bound to another order or reservation."""
    error = "table_unavailable"


class NoTableAvailableError(ConflictError):
    """A dine-in reservation could not be matched to any free table."""
    error = "no_table_available"


class InvalidTransitionError(ConflictError):
    """Requested status is not adjacent to the current one."""
    error = "invalid_transition"

    def __init__(
        self,
        current: str,
        target: str,
        entity: str = "order",
        message: Optional[str] = None,
    ):
        super().__init__(
            message or f"Cannot move {entity} from '{current}' to '{target}'",
            {"entity": entity, "current": current, "target": target},
        )
        self.current = current
        self.target = target


class DuplicateTableError(ConflictError):
    error = "duplicate_table"


# =============================================================================
# INFRASTRUCTURE / AUTH
# =============================================================================

class StoreUnavailableError(OrderingError):
    """The backing store could not complete an operation."""
    status_code = 503
    error = "store_unavailable"


class AuthenticationError(OrderingError):
    status_code = 401
    error = "authentication_required"
