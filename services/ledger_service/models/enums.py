"""Enums for the Ledger Service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class TransactionType(str, enum.Enum):
    FUNDING = "funding"
    WITHDRAWAL = "withdrawal"
    PURCHASE = "purchase"
    SALE = "sale"
    REFUND = "refund"
    FEE = "fee"


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Statuses a transaction can still settle out of
OPEN_TRANSACTION_STATUSES = (TransactionStatus.PENDING, TransactionStatus.PROCESSING)


class Currency(str, enum.Enum):
    SOL = "SOL"
    USDC = "USDC"
    TOKEN = "TOKEN"
