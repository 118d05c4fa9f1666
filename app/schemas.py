"""
Pydantic Schemas for Request/Response Validation

Covers:
- Order placement (cart -> order + items) with total reconciliation
- Order status updates
- Order requests (reservations) and admin decisions
- Restaurant tables and the printed table QR payload

Author: Khalil Bannouri
Version: 1.0.0
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.core.config import get_settings
from app.models import OrderRequestStatus, OrderRequestType, OrderStatus, OrderType


QR_PAYLOAD_TYPE = "restaurant_table"


# =============================================================================
# ORDER REQUEST SCHEMAS
# =============================================================================

class OrderItemCreate(BaseModel):
    """Single cart line; unit_price is the price at time of order."""
    menu_item_id: str = Field(..., min_length=1, examples=["b7f4c1d2-0000-4000-8000-000000000001"])
    quantity: int = Field(..., gt=0, examples=[2])
    unit_price: float = Field(..., ge=0, examples=[14.99])
    special_instructions: Optional[str] = Field(None, max_length=200)

    @property
    def total_price(self) -> float:
        return round(self.quantity * self.unit_price, 2)


class OrderCreate(BaseModel):
    """Request schema consumed by the order saga."""

    restaurant_id: str = Field(..., min_length=1)
    order_type: OrderType = Field(..., examples=["dine_in"])
    table_id: Optional[str] = Field(None, examples=["3f0c2a9e-0000-4000-8000-00000000000a"])

    # Order Items
    items: List[OrderItemCreate] = Field(..., min_length=1)
    special_instructions: Optional[str] = Field(None, max_length=500)

    # Money
    subtotal: float = Field(..., ge=0)
    delivery_fee: float = Field(default=0.0, ge=0)
    service_fee: float = Field(default=0.0, ge=0)
    tax: float = Field(default=0.0, ge=0)
    tip: float = Field(default=0.0, ge=0)
    total: float = Field(..., ge=0)
    payment_method: Optional[str] = Field(None, examples=["card", "cash"])

    @model_validator(mode="after")
    def check_table_and_totals(self) -> "OrderCreate":
        if self.order_type == OrderType.DINE_IN and not self.table_id:
            raise ValueError("Dine-in orders require a table_id")
        if self.order_type != OrderType.DINE_IN and self.table_id:
            raise ValueError("table_id is only allowed for dine-in orders")

        tolerance = get_settings().totals_tolerance
        items_sum = sum(item.quantity * item.unit_price for item in self.items)
        if abs(items_sum - self.subtotal) > tolerance:
            raise ValueError(
                f"Subtotal {self.subtotal:.2f} does not match line items ({items_sum:.2f})"
            )

        expected = self.subtotal + self.delivery_fee + self.service_fee + self.tax + self.tip
        if abs(expected - self.total) > tolerance:
            raise ValueError(
                f"Total {self.total:.2f} does not match subtotal + fees + tax + tip ({expected:.2f})"
            )
        return self


class OrderStatusUpdate(BaseModel):
    """Body for PATCH /api/orders/{order_id}/status."""
    new_status: OrderStatus
    reason: Optional[str] = Field(None, max_length=500)


class OrderRequestCreate(BaseModel):
    """Customer-facing reservation request."""
    restaurant_id: str = Field(..., min_length=1)
    customer_name: str = Field(..., min_length=1, max_length=100, examples=["Jane Doe"])
    customer_phone: Optional[str] = Field(None, max_length=20)
    order_type: OrderRequestType = Field(default=OrderRequestType.DINE_IN)
    table_id: Optional[str] = None
    guest_count: int = Field(default=1, ge=1, le=100)
    requested_time: Optional[datetime] = None
    special_requests: Optional[str] = Field(None, max_length=500)


class OrderRequestApprove(BaseModel):
    """Admin approval; table_id is optional for dine-in (auto-selected if absent)."""
    table_id: Optional[str] = None


class OrderRequestReject(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Rejection reason must not be blank")
        return v.strip()


class TableCreate(BaseModel):
    restaurant_id: str = Field(..., min_length=1)
    table_number: int = Field(..., gt=0)


class TableQRBind(BaseModel):
    restaurant_name: str = Field(..., min_length=1, max_length=100)


class TableQRPayload(BaseModel):
    """
    JSON printed into a table QR code.

    Example:
        {"restaurantId": "...", "restaurantName": "Bravo", "tableNumber": 5,
         "type": "restaurant_table"}
    """
    model_config = ConfigDict(populate_by_name=True)

    restaurant_id: str = Field(..., alias="restaurantId")
    restaurant_name: str = Field(default="", alias="restaurantName")
    table_number: int = Field(..., alias="tableNumber", gt=0, strict=True)
    type: Literal["restaurant_table"]

    @field_validator("restaurant_id")
    @classmethod
    def validate_restaurant_id(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("restaurantId must not be empty")
        return v


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class TableResponse(BaseModel):
    id: str
    restaurant_id: str
    table_number: int
    is_active: bool
    qr_code_payload: Optional[str] = None
    needs_attention: bool = False
    attention_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TableListResponse(BaseModel):
    total: int
    tables: List[TableResponse]


class OrderItemResponse(BaseModel):
    id: str
    order_id: str
    menu_item_id: str
    quantity: int
    unit_price: float
    total_price: float
    special_instructions: Optional[str] = None

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    """Response schema for a single order."""
    id: str
    user_id: Optional[str] = None
    restaurant_id: str
    order_type: OrderType
    table_id: Optional[str] = None
    subtotal: float
    delivery_fee: float = 0.0
    service_fee: float = 0.0
    tax: float = 0.0
    tip: float = 0.0
    total: float
    payment_method: Optional[str] = None
    special_instructions: Optional[str] = None
    status: OrderStatus
    cancellation_reason: Optional[str] = None
    estimated_ready_time: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    preparing_at: Optional[datetime] = None
    actual_ready_time: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    table_released_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    items: List[OrderItemResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


class OrderListResponse(BaseModel):
    """Response for listing multiple orders."""
    total: int
    orders: List[OrderResponse]


class OrderRequestResponse(BaseModel):
    id: str
    restaurant_id: str
    customer_name: str
    customer_phone: Optional[str] = None
    order_type: OrderRequestType
    table_id: Optional[str] = None
    guest_count: int
    requested_time: Optional[datetime] = None
    special_requests: Optional[str] = None
    status: OrderRequestStatus
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    seated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    table_released_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OrderRequestListResponse(BaseModel):
    total: int
    requests: List[OrderRequestResponse]


class OccupancyMismatchResponse(BaseModel):
    table_id: str
    restaurant_id: str
    table_number: int
    is_active: bool
    bound_by_orders: List[str]
    bound_by_requests: List[str]
    flagged: bool = False


class OccupancyAuditResponse(BaseModel):
    checked_tables: int
    mismatches: List[OccupancyMismatchResponse]


class DashboardResponse(BaseModel):
    restaurant_id: str
    total_orders: int
    orders_by_status: Dict[str, int]
    active_orders: int
    pending_requests: int
    occupied_tables: int
    flagged_tables: int
    today_revenue: float


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    message: Optional[str] = None
    detail: Optional[Any] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    store: str
    redis: str
    timestamp: datetime
