"""FastAPI application for the Orders Service."""

from fastapi import FastAPI
from libs.common.error_handler import add_exception_handlers
from libs.common.middleware import add_observability_middleware
from libs.common.rate_limit import add_rate_limiting
from services.orders_service.routers import (
    cart_router,
    internal_router,
    orders_router,
)


def create_app() -> FastAPI:
    """Create and configure the Orders Service FastAPI app."""
    app = FastAPI(
        title="Marketplace Orders Service",
        version="0.1.0",
        description="Carts, checkout, orders and stock reservation.",
    )

    add_observability_middleware(app, service_name="orders")
    add_exception_handlers(app)
    add_rate_limiting(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "orders"}

    app.include_router(cart_router)
    app.include_router(orders_router)
    app.include_router(internal_router)

    return app


app = create_app()
