"""
SQLAlchemy Database Models

Order and table lifecycle tables:
- restaurant_tables: table identity, availability flag, QR binding
- orders / order_items: persisted by the order saga
- order_requests: reservation requests handled by restaurant admins

Author: Khalil Bannouri
Version: 1.0.0
"""

import enum
import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from app.database import Base


# Row-level table names used by the store layer
TABLES = "restaurant_tables"
ORDERS = "orders"
ORDER_ITEMS = "order_items"
ORDER_REQUESTS = "order_requests"


def _uuid() -> str:
    return str(uuid.uuid4())


def _values(enum_cls):
    return [member.value for member in enum_cls]


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    PICKED_UP = "picked_up"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OrderType(str, enum.Enum):
    """How the customer receives the order."""
    DELIVERY = "delivery"
    TAKEAWAY = "takeaway"
    DINE_IN = "dine_in"


class OrderRequestStatus(str, enum.Enum):
    """Reservation approval workflow."""
    PENDING = "pending"
    APPROVED = "approved"
    SEATED = "seated"
    COMPLETED = "completed"
    REJECTED = "rejected"


class OrderRequestType(str, enum.Enum):
    DINE_IN = "dine_in"
    TAKEAWAY = "takeaway"


class RestaurantTable(Base):
    """
    A physical table of a restaurant.

    is_active means "available for assignment"; it is flipped only by the
    table registry on behalf of the order saga, the order status machine
    and the order request workflow.
    """
    __tablename__ = TABLES
    __table_args__ = (
        UniqueConstraint("restaurant_id", "table_number", name="uq_restaurant_table_number"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    restaurant_id = Column(String(36), nullable=False, index=True)
    table_number = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    # QR binding (JSON payload printed on the table)
    qr_code_payload = Column(Text, nullable=True)

    # Set when a compensation failed and staff must check the table
    needs_attention = Column(Boolean, nullable=False, default=False)
    attention_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        state = "available" if self.is_active else "occupied"
        return f"<RestaurantTable {self.restaurant_id}#{self.table_number} - {state}>"


class Order(Base):
    """
    Customer order created by the order saga.

    Status is mutated only through the order status machine.
    """
    __tablename__ = ORDERS

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=True, index=True)
    restaurant_id = Column(String(36), nullable=False, index=True)

    # =========================================================================
    # ORDER TYPE
    # =========================================================================
    order_type = Column(
        Enum(OrderType, values_callable=_values, native_enum=False),
        nullable=False,
        index=True
    )
    table_id = Column(String(36), ForeignKey(f"{TABLES}.id"), nullable=True, index=True)

    # =========================================================================
    # PRICING
    # =========================================================================
    subtotal = Column(Float, nullable=False)
    delivery_fee = Column(Float, nullable=False, default=0.0)
    service_fee = Column(Float, nullable=False, default=0.0)
    tax = Column(Float, nullable=False, default=0.0)
    tip = Column(Float, nullable=False, default=0.0)
    total = Column(Float, nullable=False)
    payment_method = Column(String(50), nullable=True)
    special_instructions = Column(Text, nullable=True)

    # =========================================================================
    # ORDER STATUS
    # =========================================================================
    status = Column(
        Enum(OrderStatus, values_callable=_values, native_enum=False),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True
    )
    cancellation_reason = Column(Text, nullable=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    estimated_ready_time = Column(DateTime(timezone=True), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    preparing_at = Column(DateTime(timezone=True), nullable=True)
    actual_ready_time = Column(DateTime(timezone=True), nullable=True)
    picked_up_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    table_released_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Order #{self.id} - {self.order_type.value} - {self.status.value}>"


class OrderItem(Base):
    """Line item snapshotted at order time; never updated afterwards."""
    __tablename__ = ORDER_ITEMS

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(
        String(36),
        ForeignKey(f"{ORDERS}.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    menu_item_id = Column(String(36), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)
    total_price = Column(Float, nullable=False)
    special_instructions = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<OrderItem {self.menu_item_id} x{self.quantity}>"


class OrderRequest(Base):
    """
    Table reservation / takeaway request submitted before an order exists.

    Mutated only by restaurant admin actions through the request workflow.
    """
    __tablename__ = ORDER_REQUESTS

    id = Column(String(36), primary_key=True, default=_uuid)
    restaurant_id = Column(String(36), nullable=False, index=True)

    # Customer
    customer_name = Column(String(100), nullable=False)
    customer_phone = Column(String(20), nullable=True)

    order_type = Column(
        Enum(OrderRequestType, values_callable=_values, native_enum=False),
        nullable=False,
    )
    table_id = Column(String(36), ForeignKey(f"{TABLES}.id"), nullable=True, index=True)
    guest_count = Column(Integer, nullable=False, default=1)
    requested_time = Column(DateTime(timezone=True), nullable=True)
    special_requests = Column(Text, nullable=True)

    status = Column(
        Enum(OrderRequestStatus, values_callable=_values, native_enum=False),
        default=OrderRequestStatus.PENDING,
        nullable=False,
        index=True,
    )

    # Admin decisions
    approved_by = Column(String(64), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejected_by = Column(String(64), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    seated_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    table_released_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<OrderRequest {self.id} - {self.customer_name} - {self.status.value}>"
