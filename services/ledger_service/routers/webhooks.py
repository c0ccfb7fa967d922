"""Inbound settlement webhook from the chain service.

The endpoint carries no bearer token; the HMAC signature over the body is
the only proof of origin, so it is checked before anything is looked up.
"""

import json

from fastapi import APIRouter, Depends, Request
from fastapi.exceptions import RequestValidationError
from libs.common.config import get_settings
from libs.common.datetime_utils import Clock, get_clock
from libs.common.errors import InvalidSignature
from libs.common.logging import get_logger
from libs.common.rate_limit import webhook_limit
from libs.db.session import get_async_db
from pydantic import ValidationError as PydanticValidationError
from services.ledger_service.schemas import BlockchainWebhookPayload, WebhookAck
from services.ledger_service.services import transaction_ops
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _read_payload(request: Request) -> tuple[dict, BlockchainWebhookPayload]:
    try:
        raw = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise RequestValidationError(
            [{"loc": ("body",), "msg": "Body must be valid JSON", "type": "json"}]
        )
    if not isinstance(raw, dict):
        raise RequestValidationError(
            [{"loc": ("body",), "msg": "Body must be a JSON object", "type": "json"}]
        )
    try:
        payload = BlockchainWebhookPayload.model_validate(raw)
    except PydanticValidationError as exc:
        raise RequestValidationError(exc.errors())
    return raw, payload


@router.post("/blockchain", response_model=WebhookAck)
@webhook_limit
async def blockchain_webhook(
    request: Request,
    db: AsyncSession = Depends(get_async_db),
    clock: Clock = Depends(get_clock),
):
    """Settle a transaction by hash. Replays are acknowledged without effect."""
    raw, payload = await _read_payload(request)

    # Signed over the body as received, not the parsed model
    secret = get_settings().CHAIN_WEBHOOK_SECRET
    if not transaction_ops.verify_webhook_signature(raw, secret):
        logger.warning(
            "Rejected webhook with bad signature for %s", payload.transaction_hash
        )
        raise InvalidSignature()

    txn, applied = await transaction_ops.apply_webhook(
        db,
        transaction_hash=payload.transaction_hash,
        status=payload.status,
        gas_fee=payload.gas_fee,
        block_number=payload.block_number,
        metadata=payload.metadata,
        clock=clock,
    )
    if applied:
        await transaction_ops.notify_order_payment(txn)
    return WebhookAck(transaction_id=txn.id, status=txn.status, applied=applied)
