"""Transaction request/response schemas."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from services.ledger_service.models.enums import (
    Currency,
    TransactionStatus,
    TransactionType,
)


class TransactionResponse(BaseModel):
    id: uuid.UUID
    user_auth_id: str
    market_id: Optional[uuid.UUID] = None
    order_id: Optional[uuid.UUID] = None
    type: TransactionType
    status: TransactionStatus
    amount: Decimal
    currency: Currency
    transaction_hash: Optional[str] = None
    blockchain_signature: Optional[str] = None
    from_wallet: Optional[str] = None
    to_wallet: Optional[str] = None
    gas_fee: Optional[Decimal] = None
    description: Optional[str] = None
    metadata: Optional[dict] = Field(None, validation_alias="txn_metadata")
    processed_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransactionListResponse(BaseModel):
    transactions: list[TransactionResponse]
    total: int
    skip: int
    limit: int


class FundingRequest(BaseModel):
    """Member reports an on-chain transfer into their wallet."""

    amount: Decimal = Field(..., gt=0, max_digits=18, decimal_places=8)
    currency: Currency = Currency.SOL
    transaction_hash: str = Field(..., min_length=1, max_length=255)
    from_wallet: str = Field(..., min_length=1, max_length=255)
    to_wallet: str = Field(..., min_length=1, max_length=255)
    blockchain_signature: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = Field(None, max_length=500)


class WithdrawalRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=18, decimal_places=8)
    currency: Currency = Currency.SOL
    to_wallet: str = Field(..., min_length=1, max_length=255)
    from_wallet: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = Field(None, max_length=500)


class ConfirmTransactionRequest(BaseModel):
    transaction_hash: Optional[str] = Field(None, min_length=1, max_length=255)
    blockchain_signature: Optional[str] = Field(None, max_length=255)
    gas_fee: Optional[Decimal] = Field(None, ge=0)


class RecordTransactionRequest(BaseModel):
    """Request from another service to append a ledger entry."""

    user_auth_id: str = Field(..., min_length=1)
    type: TransactionType
    amount: Decimal = Field(..., gt=0, max_digits=18, decimal_places=8)
    currency: Currency = Currency.USDC
    market_id: Optional[uuid.UUID] = None
    order_id: Optional[uuid.UUID] = None
    description: Optional[str] = Field(None, max_length=500)
    metadata: Optional[dict] = None
