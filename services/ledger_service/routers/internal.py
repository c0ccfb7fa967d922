"""Internal service-to-service ledger endpoints.

Called by the orders service via service-role JWT, not by clients directly.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Response, status
from libs.auth.dependencies import require_service_role
from libs.auth.models import AuthUser
from libs.common.datetime_utils import Clock, get_clock
from libs.db.session import get_async_db
from services.ledger_service.schemas import (
    ConfirmTransactionRequest,
    RecordTransactionRequest,
    TransactionResponse,
)
from services.ledger_service.services import transaction_ops
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/internal/ledger", tags=["internal-ledger"])


@router.post(
    "/transactions",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def internal_record_transaction(
    body: RecordTransactionRequest,
    response: Response,
    _service: AuthUser = Depends(require_service_role),
    db: AsyncSession = Depends(get_async_db),
    clock: Clock = Depends(get_clock),
):
    """Append a purchase, sale, fee or refund entry. Retries return 200."""
    txn, created = await transaction_ops.record_transaction(
        db,
        user_auth_id=body.user_auth_id,
        transaction_type=body.type,
        amount=body.amount,
        currency=body.currency,
        market_id=body.market_id,
        order_id=body.order_id,
        description=body.description,
        metadata=body.metadata,
        clock=clock,
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return txn


@router.post(
    "/transactions/{transaction_id}/confirm", response_model=TransactionResponse
)
async def internal_confirm_transaction(
    transaction_id: uuid.UUID,
    body: Optional[ConfirmTransactionRequest] = None,
    service: AuthUser = Depends(require_service_role),
    db: AsyncSession = Depends(get_async_db),
    clock: Clock = Depends(get_clock),
):
    body = body or ConfirmTransactionRequest()
    txn = await transaction_ops.confirm_transaction(
        db,
        transaction_id,
        actor_id=service.user_id,
        is_service=True,
        transaction_hash=body.transaction_hash,
        blockchain_signature=body.blockchain_signature,
        gas_fee=body.gas_fee,
        clock=clock,
    )
    await transaction_ops.notify_order_payment(txn)
    return txn
