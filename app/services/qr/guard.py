"""
QR Session Guard

Turns a burst of raw scanner callbacks into at most one table lookup at a
time. One guard instance belongs to one scanning screen.

Phases:

    IDLE -> VALIDATING -> SUCCESS (navigating; further scans suppressed)
                       -> ERROR   (cooldown, then auto-reset to IDLE)

Suppressed scans (no state change):
    - a lookup is in flight
    - navigation is pending
    - error cooldown is running
    - less than the scan interval since the last scan
    - same payload as the last accepted scan

Timers are plain deadlines checked by tick(now); callers pass `now`
explicitly (monotonic seconds) so the guard is deterministic in tests.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

from app.core.config import get_settings
from app.core.exceptions import MalformedPayloadError, OrderingError, TableNotFoundError
from app.services.qr.payload import validate_qr_payload

if TYPE_CHECKING:
    from app.services.tables.registry import TableRegistry

logger = logging.getLogger(__name__)


class ScanPhase(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    SUCCESS = "success"
    ERROR = "error"


class ScanRejection(str, Enum):
    """Why a scan did not lead to navigation."""
    # Suppressed before validation
    IN_FLIGHT = "in_flight"
    NAVIGATING = "navigating"
    COOLDOWN = "cooldown"
    TOO_SOON = "too_soon"
    DUPLICATE = "duplicate"
    # Validation outcomes
    MALFORMED = "malformed_payload"
    NOT_FOUND = "table_not_found"
    INACTIVE = "table_inactive"
    LOOKUP_FAILED = "lookup_failed"


SUPPRESSIONS = frozenset({
    ScanRejection.IN_FLIGHT,
    ScanRejection.NAVIGATING,
    ScanRejection.COOLDOWN,
    ScanRejection.TOO_SOON,
    ScanRejection.DUPLICATE,
})


@dataclass
class TableNavigation:
    """Hand-off to the ordering flow after a successful scan."""
    restaurant_id: str
    restaurant_name: str
    table_id: str
    table_number: int


@dataclass
class ScanOutcome:
    """
    Result of one scan event.

    Attributes:
        dispatched: True if the scan passed the debounce checks and was validated
        phase: Guard phase after handling the scan
        rejection: Reason the scan did not navigate (None on success)
        message: User-facing error message
        navigation: Set on success
    """
    dispatched: bool
    phase: ScanPhase
    rejection: Optional[ScanRejection] = None
    message: Optional[str] = None
    navigation: Optional[TableNavigation] = None

    @property
    def success(self) -> bool:
        return self.navigation is not None


class QRSessionGuard:
    """
    Single-flight guard for table QR scans.

    Example:
        >>> guard = QRSessionGuard(registry, on_navigate=open_menu)
        >>> outcome = await guard.handle_scan(raw, now=0.0)
        >>> outcome.success
        True
        >>> (await guard.handle_scan(raw, now=0.2)).rejection
        <ScanRejection.NAVIGATING: 'navigating'>
    """

    def __init__(
        self,
        registry: "TableRegistry",
        on_navigate: Optional[Callable[[TableNavigation], None]] = None,
        scan_interval: Optional[float] = None,
        error_cooldown: Optional[float] = None,
        auto_reset: Optional[float] = None,
    ):
        settings = get_settings()
        self.registry = registry
        self.on_navigate = on_navigate
        self.scan_interval = (
            scan_interval if scan_interval is not None else settings.qr_scan_interval_ms / 1000
        )
        self.error_cooldown = (
            error_cooldown if error_cooldown is not None else settings.qr_error_cooldown_ms / 1000
        )
        self.auto_reset = (
            auto_reset if auto_reset is not None else settings.qr_auto_reset_ms / 1000
        )
        self.reset()

    # =========================================================================
    # STATE
    # =========================================================================

    def reset(self) -> None:
        """Manual "scan again": clear every flag, timer and remembered payload."""
        self.phase = ScanPhase.IDLE
        self.in_flight = False
        self.navigating = False
        self.cooldown_until: Optional[float] = None
        self.auto_reset_at: Optional[float] = None
        self.last_payload: Optional[str] = None
        self.last_scan_at: Optional[float] = None
        self.error_message: Optional[str] = None

    def _auto_reset(self) -> None:
        # The remembered payload survives so the same code is not re-read
        self.phase = ScanPhase.IDLE
        self.in_flight = False
        self.navigating = False
        self.cooldown_until = None
        self.auto_reset_at = None
        self.error_message = None
        logger.debug("QR guard auto-reset")

    def tick(self, now: Optional[float] = None) -> None:
        """Fire any timer whose deadline has passed."""
        now = self._clock(now)
        if self.cooldown_until is not None and now >= self.cooldown_until:
            self.cooldown_until = None
        if self.auto_reset_at is not None and now >= self.auto_reset_at:
            self._auto_reset()

    def complete_navigation(self, now: Optional[float] = None) -> None:
        """The ordering flow has taken over; start the auto-reset timer."""
        if self.navigating:
            self.auto_reset_at = self._clock(now) + self.auto_reset

    @staticmethod
    def _clock(now: Optional[float]) -> float:
        return time.monotonic() if now is None else now

    def _suppression(self, data: str, now: float) -> Optional[ScanRejection]:
        if self.in_flight:
            return ScanRejection.IN_FLIGHT
        if self.navigating:
            return ScanRejection.NAVIGATING
        if self.cooldown_until is not None:
            return ScanRejection.COOLDOWN
        if self.last_scan_at is not None and now - self.last_scan_at < self.scan_interval:
            return ScanRejection.TOO_SOON
        if data == self.last_payload:
            return ScanRejection.DUPLICATE
        return None

    def _fail(self, now: float, rejection: ScanRejection, message: str) -> ScanOutcome:
        self.phase = ScanPhase.ERROR
        self.in_flight = False
        self.navigating = False
        self.error_message = message
        self.cooldown_until = now + self.error_cooldown
        self.auto_reset_at = now + self.auto_reset
        logger.warning(f"QR scan rejected ({rejection.value}): {message}")
        return ScanOutcome(
            dispatched=True,
            phase=self.phase,
            rejection=rejection,
            message=message,
        )

    # =========================================================================
    # SCAN HANDLING
    # =========================================================================

    async def handle_scan(self, data: str, now: Optional[float] = None) -> ScanOutcome:
        """
        Process one raw scan event.

        Args:
            data: Raw string read from the QR code
            now: Event time in seconds (monotonic clock if omitted)

        Returns:
            ScanOutcome: dispatched=False for suppressed scans
        """
        now = self._clock(now)
        self.tick(now)

        suppressed = self._suppression(data, now)
        if suppressed is not None:
            logger.debug(f"QR scan suppressed ({suppressed.value})")
            return ScanOutcome(dispatched=False, phase=self.phase, rejection=suppressed)

        self.last_payload = data
        self.last_scan_at = now

        try:
            payload = validate_qr_payload(data)
        except MalformedPayloadError as e:
            return self._fail(
                now,
                ScanRejection.MALFORMED,
                f"This is not a valid table QR code. {e.message}",
            )

        self.in_flight = True
        self.phase = ScanPhase.VALIDATING
        try:
            table = await self.registry.get_table(
                restaurant_id=payload.restaurant_id,
                table_number=payload.table_number,
            )
        except TableNotFoundError:
            return self._fail(
                now,
                ScanRejection.NOT_FOUND,
                "Table not found. Please contact restaurant staff.",
            )
        except OrderingError as e:
            return self._fail(now, ScanRejection.LOOKUP_FAILED, e.message)
        finally:
            self.in_flight = False

        if not table.is_active:
            return self._fail(
                now,
                ScanRejection.INACTIVE,
                f"Table {table.table_number} is currently occupied. Please contact restaurant staff.",
            )

        navigation = TableNavigation(
            restaurant_id=payload.restaurant_id,
            restaurant_name=payload.restaurant_name,
            table_id=table.id,
            table_number=table.table_number,
        )
        self.navigating = True
        self.phase = ScanPhase.SUCCESS
        self.error_message = None
        logger.info(
            f"QR scan accepted: restaurant {payload.restaurant_id}, table {table.table_number}"
        )

        if self.on_navigate is not None:
            self.on_navigate(navigation)
        return ScanOutcome(dispatched=True, phase=self.phase, navigation=navigation)
