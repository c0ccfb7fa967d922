"""FastAPI application for the Ledger Service."""

from fastapi import FastAPI
from libs.common.error_handler import add_exception_handlers
from libs.common.middleware import add_observability_middleware
from libs.common.rate_limit import add_rate_limiting
from services.ledger_service.routers import (
    internal_router,
    transactions_router,
    webhooks_router,
)


def create_app() -> FastAPI:
    """Create and configure the Ledger Service FastAPI app."""
    app = FastAPI(
        title="Marketplace Ledger Service",
        version="0.1.0",
        description="Funding, withdrawals, purchase/sale entries and chain settlement.",
    )

    add_observability_middleware(app, service_name="ledger")
    add_exception_handlers(app)
    add_rate_limiting(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "ledger"}

    app.include_router(transactions_router)
    app.include_router(webhooks_router)
    app.include_router(internal_router)

    return app


app = create_app()
