"""
Table QR Services

Exports:
    - build_qr_payload / validate_qr_payload: the printed QR payload
    - QRSessionGuard: scan debouncing for the scanner screen

Author: Khalil Bannouri
Version: 1.0.0
"""

from app.services.qr.guard import (
    QRSessionGuard,
    ScanOutcome,
    ScanPhase,
    ScanRejection,
    TableNavigation,
)
from app.services.qr.payload import build_qr_payload, validate_qr_payload

__all__ = [
    "QRSessionGuard",
    "ScanOutcome",
    "ScanPhase",
    "ScanRejection",
    "TableNavigation",
    "build_qr_payload",
    "validate_qr_payload",
]
