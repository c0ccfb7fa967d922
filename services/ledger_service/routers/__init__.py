"""Ledger service routers."""

from services.ledger_service.routers.internal import router as internal_router
from services.ledger_service.routers.member import router as transactions_router
from services.ledger_service.routers.webhooks import router as webhooks_router

__all__ = [
    "internal_router",
    "transactions_router",
    "webhooks_router",
]
