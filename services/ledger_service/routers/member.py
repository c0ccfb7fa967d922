"""Member-facing transaction endpoints."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.datetime_utils import Clock, get_clock
from libs.db.session import get_async_db
from services.ledger_service.chain_client import ChainClient, get_chain_client
from services.ledger_service.models import Currency, TransactionStatus, TransactionType
from services.ledger_service.schemas import (
    AnalyticsResponse,
    ConfirmTransactionRequest,
    FundingRequest,
    TransactionListResponse,
    TransactionResponse,
    WithdrawalRequest,
)
from services.ledger_service.services import transaction_ops
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.get("", response_model=TransactionListResponse)
async def list_my_transactions(
    skip: int = Query(0, ge=0),
    limit: int = Query(15, ge=1, le=100),
    transaction_type: Optional[TransactionType] = Query(None, alias="type"),
    transaction_status: Optional[TransactionStatus] = Query(None, alias="status"),
    currency: Optional[Currency] = None,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """List the caller's transactions, newest first."""
    transactions, total = await transaction_ops.list_user_transactions(
        db,
        current_user.user_id,
        transaction_type=transaction_type,
        status=transaction_status,
        currency=currency,
        skip=skip,
        limit=limit,
    )
    return TransactionListResponse(
        transactions=[TransactionResponse.model_validate(t) for t in transactions],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/analytics", response_model=AnalyticsResponse)
async def my_analytics(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    clock: Clock = Depends(get_clock),
):
    """Confirmed totals and pending count for the caller."""
    return await transaction_ops.user_analytics(db, current_user.user_id, clock=clock)


@router.get("/{transaction_id}", response_model=TransactionResponse)
async def get_my_transaction(
    transaction_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await transaction_ops.get_user_transaction(
        db, transaction_id, current_user.user_id
    )


@router.post(
    "/funding",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_funding(
    body: FundingRequest,
    response: Response,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    chain: Optional[ChainClient] = Depends(get_chain_client),
    clock: Clock = Depends(get_clock),
):
    """Record a wallet funding transfer.

    Re-submitting the same hash returns the existing record with 200.
    """
    txn, created = await transaction_ops.create_funding(
        db,
        current_user.user_id,
        amount=body.amount,
        currency=body.currency,
        transaction_hash=body.transaction_hash,
        from_wallet=body.from_wallet,
        to_wallet=body.to_wallet,
        blockchain_signature=body.blockchain_signature,
        description=body.description,
        chain=chain,
        clock=clock,
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return txn


@router.post(
    "/withdrawal",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_withdrawal(
    body: WithdrawalRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    chain: Optional[ChainClient] = Depends(get_chain_client),
    clock: Clock = Depends(get_clock),
):
    """Request a withdrawal to an external wallet."""
    return await transaction_ops.create_withdrawal(
        db,
        current_user.user_id,
        amount=body.amount,
        currency=body.currency,
        to_wallet=body.to_wallet,
        from_wallet=body.from_wallet,
        description=body.description,
        chain=chain,
        clock=clock,
    )


@router.patch("/{transaction_id}/confirm", response_model=TransactionResponse)
async def confirm_my_transaction(
    transaction_id: uuid.UUID,
    body: Optional[ConfirmTransactionRequest] = None,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    clock: Clock = Depends(get_clock),
):
    body = body or ConfirmTransactionRequest()
    txn = await transaction_ops.confirm_transaction(
        db,
        transaction_id,
        actor_id=current_user.user_id,
        transaction_hash=body.transaction_hash,
        blockchain_signature=body.blockchain_signature,
        gas_fee=body.gas_fee,
        clock=clock,
    )
    await transaction_ops.notify_order_payment(txn)
    return txn


@router.patch("/{transaction_id}/cancel", response_model=TransactionResponse)
async def cancel_my_transaction(
    transaction_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    clock: Clock = Depends(get_clock),
):
    return await transaction_ops.cancel_transaction(
        db, transaction_id, actor_id=current_user.user_id, clock=clock
    )
