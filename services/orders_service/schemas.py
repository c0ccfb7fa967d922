"""Pydantic schemas for orders service."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from services.orders_service.models import OrderStatus, PaymentStatus

# ============================================================================
# SHARED
# ============================================================================


class ShippingAddress(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    street: str = Field(..., min_length=1, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    postal_code: str = Field(..., min_length=1, max_length=20)
    country: str = Field(..., min_length=1, max_length=100)


# ============================================================================
# CART SCHEMAS
# ============================================================================


class CartItemCreate(BaseModel):
    product_id: uuid.UUID
    quantity: int = Field(1, gt=0)


class CartItemUpdate(BaseModel):
    quantity: int = Field(..., gt=0)


class CartItemResponse(BaseModel):
    id: uuid.UUID
    product_id: uuid.UUID
    market_id: uuid.UUID
    product_name: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal
    in_stock: bool
    added_at: datetime


class CartResponse(BaseModel):
    items: list[CartItemResponse] = []
    total_items: int
    subtotal: Decimal


# ============================================================================
# CHECKOUT / ORDER CREATION SCHEMAS
# ============================================================================


class CheckoutRequest(BaseModel):
    shipping_address: ShippingAddress
    shipping_method: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=1000)


class OrderLineRequest(BaseModel):
    product_id: uuid.UUID
    quantity: int = Field(..., gt=0)


class OrderCreateRequest(CheckoutRequest):
    """Direct single-market order, bypassing the cart."""

    market_id: uuid.UUID
    items: list[OrderLineRequest] = Field(..., min_length=1)


# ============================================================================
# ORDER ACTION SCHEMAS
# ============================================================================


class ShipOrderRequest(BaseModel):
    tracking_number: Optional[str] = Field(None, max_length=100)


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class RefundOrderRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class RateOrderRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = Field(None, max_length=1000)


class PaymentStatusUpdate(BaseModel):
    """Internal: ledger service reports the outcome of an order's payment."""

    payment_status: Literal["paid", "failed"]
    transaction_id: Optional[str] = Field(None, max_length=100)


# ============================================================================
# ORDER RESPONSES
# ============================================================================


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    product_id: uuid.UUID
    product_name: str
    product_description: Optional[str] = None
    product_image: Optional[str] = None
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_number: str
    buyer_auth_id: str
    market_id: uuid.UUID
    status: OrderStatus
    payment_status: PaymentStatus

    subtotal: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    total_amount: Decimal

    shipping_address: dict
    shipping_method: Optional[str] = None
    payment_method: Optional[str] = None
    payment_transaction_id: Optional[str] = None
    notes: Optional[str] = None
    metadata: Optional[dict] = Field(None, validation_alias="order_metadata")

    rating: Optional[int] = None
    review: Optional[str] = None

    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    items: list[OrderItemResponse] = []


class CheckoutResponse(BaseModel):
    orders: list[OrderResponse]
    total_orders: int


class OrderListResponse(BaseModel):
    """Paginated order list."""

    orders: list[OrderResponse]
    total: int
    skip: int
    limit: int
