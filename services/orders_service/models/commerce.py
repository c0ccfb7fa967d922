"""Orders service commerce models: cart, orders, line items, audit logs."""

import random
import string
import uuid
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base, JSONType
from services.orders_service.models.enums import (
    OrderStatus,
    PaymentStatus,
    enum_values,
)
from sqlalchemy import CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import (
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

TAX_RATE = Decimal("0.10")
FLAT_SHIPPING_FEE = Decimal("10.00")
CENTS = Decimal("0.01")

# ============================================================================
# CART MODELS
# ============================================================================


class CartItem(Base):
    """Cart lines, one per (buyer, product)."""

    __tablename__ = "cart_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    buyer_auth_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("buyer_auth_id", "product_id", name="unique_cart_product"),
        CheckConstraint("quantity > 0", name="positive_cart_quantity"),
    )

    product = relationship("Product")

    def __repr__(self):
        return f"<CartItem product={self.product_id} qty={self.quantity}>"


# ============================================================================
# ORDER MODELS
# ============================================================================


class Order(Base):
    """One order per (buyer, market) per checkout."""

    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_number: Mapped[str] = mapped_column(
        String(30), unique=True, nullable=False, index=True
    )

    buyer_auth_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    market_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("markets.id"), index=True, nullable=False
    )

    # Status
    status: Mapped[OrderStatus] = mapped_column(
        SAEnum(OrderStatus, values_callable=enum_values, name="order_status_enum"),
        default=OrderStatus.PENDING,
        server_default="pending",
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(
            PaymentStatus, values_callable=enum_values, name="payment_status_enum"
        ),
        default=PaymentStatus.PENDING,
        server_default="pending",
    )

    # Pricing, always derived from line items by calculate_totals()
    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0.00"), nullable=False
    )
    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0.00"), nullable=False
    )
    shipping_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0.00"), nullable=False
    )
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0.00"), nullable=False
    )

    # Fulfillment
    shipping_address: Mapped[dict] = mapped_column(
        JSONType, nullable=False
    )  # {"street": "...", "city": "...", "postal_code": "...", "country": "..."}
    shipping_method: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Payment reference (links to ledger_service)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    payment_transaction_id: Mapped[Optional[str]] = mapped_column(
        String(100), index=True, nullable=True
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    order_metadata: Mapped[Optional[dict]] = mapped_column(
        "metadata", JSONType, nullable=True
    )  # {"tracking_number": "..."}

    rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    review: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    delivered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint(
            "rating IS NULL OR (rating >= 1 AND rating <= 5)", name="valid_rating"
        ),
        Index("ix_orders_market_id_status", "market_id", "status"),
    )

    # Relationships
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.created_at",
    )
    market = relationship("Market")

    def calculate_totals(self) -> None:
        """Recompute subtotal, tax and total from the current line items."""
        subtotal = sum((item.line_total for item in self.items), Decimal("0.00"))
        self.subtotal = subtotal.quantize(CENTS, rounding=ROUND_HALF_UP)
        self.tax_amount = (self.subtotal * TAX_RATE).quantize(
            CENTS, rounding=ROUND_HALF_UP
        )
        shipping = self.shipping_amount or Decimal("0.00")
        self.total_amount = self.subtotal + self.tax_amount + shipping

    def can_be_cancelled(self) -> bool:
        return self.status in (OrderStatus.PENDING, OrderStatus.CONFIRMED)

    def can_be_rated(self) -> bool:
        return self.status == OrderStatus.COMPLETED and self.rating is None

    @staticmethod
    def generate_order_number(now: Optional[datetime] = None) -> str:
        """Generate an order number like MKT-20260104-A1B2C3D4."""
        date_part = (now or utc_now()).strftime("%Y%m%d")
        random_part = "".join(
            random.choices(string.ascii_uppercase + string.digits, k=8)
        )
        return f"MKT-{date_part}-{random_part}"

    def __repr__(self):
        return f"<Order {self.order_number}>"


class OrderItem(Base):
    """Order line items (snapshot at order time, never updated)."""

    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("products.id"), nullable=False
    )

    # Snapshot at order time (products may change)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    product_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    product_image: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    __table_args__ = (CheckConstraint("quantity > 0", name="positive_line_quantity"),)

    order = relationship("Order", back_populates="items")

    @classmethod
    def snapshot(cls, product, quantity: int) -> "OrderItem":
        """Capture a product's current price and description for an order line."""
        unit_price = Decimal(product.price).quantize(CENTS, rounding=ROUND_HALF_UP)
        return cls(
            product_id=product.id,
            product_name=product.name,
            product_description=product.description,
            product_image=product.primary_image,
            quantity=quantity,
            unit_price=unit_price,
            line_total=unit_price * quantity,
        )

    def __repr__(self):
        return f"<OrderItem {self.product_name} qty={self.quantity}>"


# ============================================================================
# AUDIT LOG MODEL
# ============================================================================


class OrderAuditLog(Base):
    """Audit log for order status transitions."""

    __tablename__ = "order_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )

    action: Mapped[str] = mapped_column(
        String(50), nullable=False
    )  # e.g., "confirmed", "cancelled"

    old_value: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    new_value: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    performed_by: Mapped[str] = mapped_column(String(255), nullable=False)
    performed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_order_audit_logs_order_id", "order_id"),
        Index("ix_order_audit_logs_performed_at", "performed_at"),
    )

    def __repr__(self):
        return f"<OrderAuditLog {self.order_id} {self.action}>"
