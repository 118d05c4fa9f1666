"""
                        Services Module

Business logic for the order and table lifecycle. Collaborators with a
development and a production flavour (store, auth) are picked by factory
functions from configuration.

Services:
    - store: row-level persistence (in-memory / SQLAlchemy)
    - auth: acting user id (mock / gateway header)
    - tables: TableRegistry and occupancy audit
    - orders: OrderSaga and OrderStatusMachine
    - requests: OrderRequestWorkflow
    - qr: table QR payloads and QRSessionGuard
    - excel_manager: file-locked Excel incident report
"""

from app.services.excel_manager import ExcelManager

__all__ = ["ExcelManager"]
