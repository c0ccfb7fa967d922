"""Transaction ledger operations: creation paths, confirmation and settlement.

Status changes are conditional UPDATEs guarded on the current status, so a
transaction leaves PENDING/PROCESSING at most once no matter how many
confirmations or webhook deliveries race for it.
"""

import hashlib
import hmac
import json
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Optional

import httpx
from libs.common.config import get_settings
from libs.common.datetime_utils import Clock, utc_now
from libs.common.errors import (
    ExternalServiceFailure,
    InvalidStateTransition,
    NotFound,
    Unauthorized,
    ValidationError,
)
from libs.common.logging import get_logger
from libs.common.service_client import notify_order_payment_status
from services.ledger_service.chain_client import ChainClient, ChainServiceError
from services.ledger_service.models import (
    OPEN_TRANSACTION_STATUSES,
    Currency,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Webhook signatures
# ---------------------------------------------------------------------------


def canonical_payload(payload: dict) -> bytes:
    """Signed bytes: the payload minus ``signature`` as sorted compact JSON."""
    unsigned = {key: value for key, value in payload.items() if key != "signature"}
    return json.dumps(unsigned, sort_keys=True, separators=(",", ":")).encode()


def sign_payload(payload: dict, secret: str) -> str:
    """HMAC-SHA256 hex digest of the canonical payload."""
    return hmac.new(
        secret.encode(), canonical_payload(payload), hashlib.sha256
    ).hexdigest()


def verify_webhook_signature(payload: dict, secret: str) -> bool:
    """Constant-time check of ``payload["signature"]``. No secret means no trust."""
    signature = payload.get("signature")
    if not secret or not isinstance(signature, str):
        return False
    expected = sign_payload(payload, secret)
    return hmac.compare_digest(expected.encode(), signature.encode())


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def get_transaction(db: AsyncSession, transaction_id: uuid.UUID) -> Transaction:
    result = await db.execute(
        select(Transaction)
        .where(Transaction.id == transaction_id)
        .execution_options(populate_existing=True)
    )
    txn = result.scalar_one_or_none()
    if not txn:
        raise NotFound("Transaction not found", transaction_id=transaction_id)
    return txn


async def get_transaction_by_hash(
    db: AsyncSession, transaction_hash: str
) -> Optional[Transaction]:
    result = await db.execute(
        select(Transaction)
        .where(Transaction.transaction_hash == transaction_hash)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_user_transaction(
    db: AsyncSession, transaction_id: uuid.UUID, user_auth_id: str
) -> Transaction:
    txn = await get_transaction(db, transaction_id)
    if txn.user_auth_id != user_auth_id:
        raise Unauthorized()
    return txn


async def _guarded_update(
    db: AsyncSession,
    transaction_id: uuid.UUID,
    allowed_from: tuple,
    values: dict,
) -> bool:
    """UPDATE ... WHERE status IN allowed_from. True if the row was changed."""
    stmt = update(Transaction).where(Transaction.id == transaction_id)
    if allowed_from:
        stmt = stmt.where(Transaction.status.in_(allowed_from))
    result = await db.execute(
        stmt.values({getattr(Transaction, key): value for key, value in values.items()})
        .returning(Transaction.id),
        execution_options={"synchronize_session": False},
    )
    return result.scalar_one_or_none() is not None


# ---------------------------------------------------------------------------
# Creation paths
# ---------------------------------------------------------------------------


async def create_funding(
    db: AsyncSession,
    user_auth_id: str,
    *,
    amount: Decimal,
    currency: Currency,
    transaction_hash: str,
    from_wallet: str,
    to_wallet: str,
    blockchain_signature: Optional[str] = None,
    description: Optional[str] = None,
    chain: Optional[ChainClient] = None,
    clock: Clock = utc_now,
) -> tuple[Transaction, bool]:
    """Record an incoming on-chain transfer.

    Idempotent per hash: re-submitting your own funding returns the existing
    record with ``created=False``; a hash owned by anything else is rejected.

    When a chain service is configured the hash is checked right away. A
    transfer the chain already knows moves to PROCESSING; an unreachable chain
    leaves the record PENDING for the webhook to settle.
    """
    existing = await get_transaction_by_hash(db, transaction_hash)
    if existing:
        return _existing_funding(existing, user_auth_id), False

    now = clock()
    txn = Transaction(
        user_auth_id=user_auth_id,
        type=TransactionType.FUNDING,
        status=TransactionStatus.PENDING,
        amount=amount,
        currency=currency,
        transaction_hash=transaction_hash,
        blockchain_signature=blockchain_signature,
        from_wallet=from_wallet,
        to_wallet=to_wallet,
        description=description or "Wallet funding",
        txn_metadata={},
        created_at=now,
        updated_at=now,
    )
    db.add(txn)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await get_transaction_by_hash(db, transaction_hash)
        if existing is None:
            raise
        return _existing_funding(existing, user_auth_id), False

    logger.info(
        "Funding %s recorded for %s: %s %s",
        txn.id,
        user_auth_id,
        amount,
        currency.value,
        extra={"extra_fields": {"transaction_hash": transaction_hash}},
    )

    if chain is not None:
        await _verify_funding(db, txn, chain, clock)
    return await get_transaction(db, txn.id), True


def _existing_funding(existing: Transaction, user_auth_id: str) -> Transaction:
    if (
        existing.user_auth_id == user_auth_id
        and existing.type == TransactionType.FUNDING
    ):
        return existing
    raise ValidationError(
        "Transaction hash has already been recorded",
        field="transaction_hash",
        transaction_hash=existing.transaction_hash,
    )


async def _verify_funding(
    db: AsyncSession, txn: Transaction, chain: ChainClient, clock: Clock
) -> None:
    try:
        verification = await chain.verify_transfer(txn.transaction_hash)
    except ChainServiceError as exc:
        logger.warning(
            "Could not verify funding %s, leaving pending: %s", txn.id, exc.message
        )
        return

    if verification.seen_on_chain:
        values = {"status": TransactionStatus.PROCESSING, "processed_at": clock()}
        if verification.block_number is not None:
            values["txn_metadata"] = {
                **(txn.txn_metadata or {}),
                "block_number": verification.block_number,
            }
    elif verification.status == "failed":
        values = {"status": TransactionStatus.FAILED}
    else:
        return

    values["updated_at"] = clock()
    await _guarded_update(db, txn.id, (TransactionStatus.PENDING,), values)
    await db.commit()
    logger.info(
        "Funding %s verified on chain (chain status=%s)", txn.id, verification.status
    )


async def create_withdrawal(
    db: AsyncSession,
    user_auth_id: str,
    *,
    amount: Decimal,
    currency: Currency,
    to_wallet: str,
    from_wallet: Optional[str] = None,
    description: Optional[str] = None,
    chain: Optional[ChainClient] = None,
    clock: Clock = utc_now,
) -> Transaction:
    """Record a withdrawal request. It always starts, and stays, PENDING.

    With a chain service configured the transfer is submitted and the hash it
    returns is stored. If submission fails the record is kept PENDING and
    ExternalServiceFailure tells the caller to retry.
    """
    now = clock()
    txn = Transaction(
        user_auth_id=user_auth_id,
        type=TransactionType.WITHDRAWAL,
        status=TransactionStatus.PENDING,
        amount=amount,
        currency=currency,
        from_wallet=from_wallet,
        to_wallet=to_wallet,
        description=description or "Wallet withdrawal",
        txn_metadata={},
        created_at=now,
        updated_at=now,
    )
    db.add(txn)
    await db.commit()
    logger.info(
        "Withdrawal %s requested by %s: %s %s",
        txn.id,
        user_auth_id,
        amount,
        currency.value,
    )

    if chain is None:
        return txn

    try:
        submission = await chain.submit_withdrawal(
            reference=str(txn.id),
            amount=amount,
            currency=currency.value,
            to_wallet=to_wallet,
        )
    except ChainServiceError as exc:
        raise ExternalServiceFailure(
            "Withdrawal could not be submitted to the chain service; "
            "the request is kept pending",
            transaction_id=txn.id,
            service="chain",
        ) from exc

    await _guarded_update(
        db,
        txn.id,
        (TransactionStatus.PENDING,),
        {
            "transaction_hash": submission.transaction_hash,
            "txn_metadata": {"submission_status": submission.status},
            "updated_at": clock(),
        },
    )
    await db.commit()
    return await get_transaction(db, txn.id)


async def record_transaction(
    db: AsyncSession,
    *,
    user_auth_id: str,
    transaction_type: TransactionType,
    amount: Decimal,
    currency: Currency,
    market_id: Optional[uuid.UUID] = None,
    order_id: Optional[uuid.UUID] = None,
    description: Optional[str] = None,
    metadata: Optional[dict] = None,
    clock: Clock = utc_now,
) -> tuple[Transaction, bool]:
    """Append an entry on behalf of another service (purchase, sale, fee, refund).

    One entry per (order, user, type): a retried call returns the first one.
    """
    if order_id is not None:
        result = await db.execute(
            select(Transaction).where(
                Transaction.order_id == order_id,
                Transaction.user_auth_id == user_auth_id,
                Transaction.type == transaction_type,
            )
        )
        existing = result.scalars().first()
        if existing:
            return existing, False

    now = clock()
    txn = Transaction(
        user_auth_id=user_auth_id,
        type=transaction_type,
        status=TransactionStatus.PENDING,
        amount=amount,
        currency=currency,
        market_id=market_id,
        order_id=order_id,
        description=description,
        txn_metadata=dict(metadata or {}),
        created_at=now,
        updated_at=now,
    )
    db.add(txn)
    await db.commit()
    logger.info(
        "Recorded %s %s for %s (order=%s)",
        transaction_type.value,
        txn.id,
        user_auth_id,
        order_id,
    )
    return txn, True


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


async def confirm_transaction(
    db: AsyncSession,
    transaction_id: uuid.UUID,
    *,
    actor_id: str,
    is_service: bool = False,
    transaction_hash: Optional[str] = None,
    blockchain_signature: Optional[str] = None,
    gas_fee: Optional[Decimal] = None,
    clock: Clock = utc_now,
) -> Transaction:
    """Confirm a PENDING transaction (owner, or any internal service)."""
    txn = await get_transaction(db, transaction_id)
    if not is_service and txn.user_auth_id != actor_id:
        raise Unauthorized()

    now = clock()
    values: dict[str, Any] = {
        "status": TransactionStatus.CONFIRMED,
        "confirmed_at": now,
        "updated_at": now,
    }
    if transaction_hash is not None:
        values["transaction_hash"] = transaction_hash
    if blockchain_signature is not None:
        values["blockchain_signature"] = blockchain_signature
    if gas_fee is not None:
        values["gas_fee"] = gas_fee

    try:
        applied = await _guarded_update(
            db, txn.id, (TransactionStatus.PENDING,), values
        )
        if not applied:
            current = await get_transaction(db, txn.id)
            raise InvalidStateTransition(
                "Transaction is not in pending status",
                current_status=current.status,
                transaction_id=txn.id,
                action="confirm",
            )
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ValidationError(
            "Transaction hash has already been recorded",
            field="transaction_hash",
            transaction_hash=transaction_hash,
        ) from exc
    except Exception:
        await db.rollback()
        raise

    logger.info("Transaction %s confirmed by %s", txn.id, actor_id)
    return await get_transaction(db, txn.id)


async def cancel_transaction(
    db: AsyncSession,
    transaction_id: uuid.UUID,
    *,
    actor_id: str,
    clock: Clock = utc_now,
) -> Transaction:
    """Owner withdraws a transaction that has not settled yet."""
    txn = await get_user_transaction(db, transaction_id, actor_id)
    applied = await _guarded_update(
        db,
        txn.id,
        OPEN_TRANSACTION_STATUSES,
        {"status": TransactionStatus.CANCELLED, "updated_at": clock()},
    )
    if not applied:
        await db.rollback()
        current = await get_transaction(db, transaction_id)
        raise InvalidStateTransition(
            f"Cannot cancel transaction in status {current.status.value}",
            current_status=current.status,
            transaction_id=transaction_id,
            action="cancel",
        )
    await db.commit()
    logger.info("Transaction %s cancelled by %s", txn.id, actor_id)
    return await get_transaction(db, txn.id)


async def apply_webhook(
    db: AsyncSession,
    *,
    transaction_hash: str,
    status: str,
    gas_fee: Optional[Decimal] = None,
    block_number: Optional[int] = None,
    metadata: Optional[dict] = None,
    clock: Clock = utc_now,
) -> tuple[Transaction, bool]:
    """Settle a transaction from a verified chain webhook.

    Returns ``(transaction, applied)``. A delivery for a transaction that has
    already settled changes nothing but new metadata keys, and reports
    ``applied=False``. Existing metadata keys always win over incoming ones.
    """
    txn = await get_transaction_by_hash(db, transaction_hash)
    if txn is None:
        raise NotFound("Transaction not found", transaction_hash=transaction_hash)

    incoming = dict(metadata or {})
    if block_number is not None:
        incoming["block_number"] = block_number
    existing_metadata = dict(txn.txn_metadata or {})
    merged = {**incoming, **existing_metadata}

    now = clock()
    target = (
        TransactionStatus.CONFIRMED
        if status == "confirmed"
        else TransactionStatus.FAILED
    )
    values: dict[str, Any] = {
        "status": target,
        "txn_metadata": merged,
        "updated_at": now,
    }
    if target == TransactionStatus.CONFIRMED:
        values["confirmed_at"] = now
    if gas_fee is not None:
        values["gas_fee"] = gas_fee

    applied = await _guarded_update(db, txn.id, OPEN_TRANSACTION_STATUSES, values)
    if not applied and merged != existing_metadata:
        await _guarded_update(db, txn.id, (), {"txn_metadata": merged})
    await db.commit()

    txn = await get_transaction(db, txn.id)
    if applied:
        logger.info(
            "Webhook settled transaction %s as %s",
            txn.id,
            target.value,
            extra={"extra_fields": {"transaction_hash": transaction_hash}},
        )
    else:
        logger.info(
            "Webhook replay for %s ignored (status=%s)",
            transaction_hash,
            txn.status.value,
        )
    return txn, applied


async def notify_order_payment(txn: Transaction) -> None:
    """Best-effort: tell the orders service how a purchase settled."""
    settings = get_settings()
    if (
        not settings.ORDERS_SERVICE_URL
        or txn.type != TransactionType.PURCHASE
        or txn.order_id is None
        or txn.status not in (TransactionStatus.CONFIRMED, TransactionStatus.FAILED)
    ):
        return

    payment_status = "paid" if txn.status == TransactionStatus.CONFIRMED else "failed"
    try:
        await notify_order_payment_status(
            str(txn.order_id),
            payment_status=payment_status,
            calling_service="ledger",
            transaction_id=str(txn.id),
        )
    except httpx.HTTPError as exc:
        logger.warning(
            "Could not notify orders service for order %s: %s", txn.order_id, exc
        )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def list_user_transactions(
    db: AsyncSession,
    user_auth_id: str,
    *,
    transaction_type: Optional[TransactionType] = None,
    status: Optional[TransactionStatus] = None,
    currency: Optional[Currency] = None,
    skip: int = 0,
    limit: int = 15,
) -> tuple[list[Transaction], int]:
    filters = [Transaction.user_auth_id == user_auth_id]
    if transaction_type:
        filters.append(Transaction.type == transaction_type)
    if status:
        filters.append(Transaction.status == status)
    if currency:
        filters.append(Transaction.currency == currency)

    total = (
        await db.execute(select(func.count()).select_from(Transaction).where(*filters))
    ).scalar() or 0
    result = await db.execute(
        select(Transaction)
        .where(*filters)
        .order_by(Transaction.created_at.desc(), Transaction.id)
        .offset(skip)
        .limit(limit)
    )
    return list(result.scalars().all()), total


def _start_of_week(now: datetime) -> datetime:
    monday = now - timedelta(days=now.weekday())
    return monday.replace(hour=0, minute=0, second=0, microsecond=0)


async def user_analytics(
    db: AsyncSession, user_auth_id: str, *, clock: Clock = utc_now
) -> dict:
    """Confirmed totals by type plus the pending count for one user.

    Sales are recorded against the market owner, so a seller's sales figures
    come from their own entries.
    """
    now = clock()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    week_start = _start_of_week(now)

    async def confirmed_sum(transaction_type: TransactionType, since=None) -> Decimal:
        stmt = select(func.coalesce(func.sum(Transaction.amount), 0)).where(
            Transaction.user_auth_id == user_auth_id,
            Transaction.type == transaction_type,
            Transaction.status == TransactionStatus.CONFIRMED,
        )
        if since is not None:
            stmt = stmt.where(Transaction.created_at >= since)
        value = (await db.execute(stmt)).scalar()
        return Decimal(str(value or 0))

    pending = (
        await db.execute(
            select(func.count())
            .select_from(Transaction)
            .where(
                Transaction.user_auth_id == user_auth_id,
                Transaction.status == TransactionStatus.PENDING,
            )
        )
    ).scalar() or 0

    return {
        "personal": {
            "total_funding": await confirmed_sum(TransactionType.FUNDING),
            "total_withdrawals": await confirmed_sum(TransactionType.WITHDRAWAL),
            "total_purchases": await confirmed_sum(TransactionType.PURCHASE),
            "pending_transactions": pending,
        },
        "sales": {
            "total_sales": await confirmed_sum(TransactionType.SALE),
            "monthly_sales": await confirmed_sum(TransactionType.SALE, month_start),
            "weekly_sales": await confirmed_sum(TransactionType.SALE, week_start),
            "total_fees": await confirmed_sum(TransactionType.FEE),
        },
    }
