"""Ledger Service models package."""

from services.ledger_service.models.enums import (
    OPEN_TRANSACTION_STATUSES,
    Currency,
    TransactionStatus,
    TransactionType,
)
from services.ledger_service.models.transaction import Transaction

__all__ = [
    "Currency",
    "OPEN_TRANSACTION_STATUSES",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
]
