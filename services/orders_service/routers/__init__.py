"""Orders service routers package."""

from services.orders_service.routers.cart import router as cart_router
from services.orders_service.routers.internal import router as internal_router
from services.orders_service.routers.orders import router as orders_router

__all__ = [
    "cart_router",
    "internal_router",
    "orders_router",
]
