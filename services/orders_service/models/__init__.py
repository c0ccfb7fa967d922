"""Orders Service models package."""

from services.orders_service.models.catalog import Market, Product
from services.orders_service.models.commerce import (
    FLAT_SHIPPING_FEE,
    TAX_RATE,
    CartItem,
    Order,
    OrderAuditLog,
    OrderItem,
)
from services.orders_service.models.enums import (
    TERMINAL_ORDER_STATUSES,
    OrderStatus,
    PaymentStatus,
    StockMovementType,
)
from services.orders_service.models.inventory import StockMovement

__all__ = [
    "CartItem",
    "FLAT_SHIPPING_FEE",
    "Market",
    "Order",
    "OrderAuditLog",
    "OrderItem",
    "OrderStatus",
    "PaymentStatus",
    "Product",
    "StockMovement",
    "StockMovementType",
    "TAX_RATE",
    "TERMINAL_ORDER_STATUSES",
]
