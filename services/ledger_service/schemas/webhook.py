"""Blockchain webhook schemas."""

import uuid
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field
from services.ledger_service.models.enums import TransactionStatus


class BlockchainWebhookPayload(BaseModel):
    """Settlement notice pushed by the chain service.

    ``signature`` is the hex HMAC-SHA256 of every other field, see
    ``transaction_ops.canonical_payload``.
    """

    transaction_hash: str = Field(..., min_length=1, max_length=255)
    status: Literal["confirmed", "failed"]
    gas_fee: Optional[Decimal] = Field(None, ge=0)
    block_number: Optional[int] = Field(None, ge=0)
    metadata: Optional[dict] = None
    signature: str = Field(..., min_length=1)


class WebhookAck(BaseModel):
    transaction_id: uuid.UUID
    status: TransactionStatus
    applied: bool
