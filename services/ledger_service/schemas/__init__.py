"""Ledger Service schemas package.

Re-exports all schemas so routers import from one place.
When adding a new schema, add its import and __all__ entry.
"""

from services.ledger_service.schemas.analytics import (  # noqa: F401
    AnalyticsResponse,
    PersonalAnalytics,
    SalesAnalytics,
)
from services.ledger_service.schemas.transaction import (  # noqa: F401
    ConfirmTransactionRequest,
    FundingRequest,
    RecordTransactionRequest,
    TransactionListResponse,
    TransactionResponse,
    WithdrawalRequest,
)
from services.ledger_service.schemas.webhook import (  # noqa: F401
    BlockchainWebhookPayload,
    WebhookAck,
)

__all__ = [
    # Analytics
    "AnalyticsResponse",
    "PersonalAnalytics",
    "SalesAnalytics",
    # Transactions
    "ConfirmTransactionRequest",
    "FundingRequest",
    "RecordTransactionRequest",
    "TransactionListResponse",
    "TransactionResponse",
    "WithdrawalRequest",
    # Webhooks
    "BlockchainWebhookPayload",
    "WebhookAck",
]
