"""Order state machine: fulfillment, cancellation, refund, rating and payment.

Every transition is a single conditional UPDATE guarded on the current
status, so duplicate or concurrent requests transition an order at most
once. The loser gets InvalidStateTransition carrying the status it found.
"""

import uuid
from typing import Iterable, Optional

from libs.common.datetime_utils import Clock, utc_now
from libs.common.errors import InvalidStateTransition, NotFound, Unauthorized
from libs.common.logging import get_logger
from services.orders_service.models import (
    TERMINAL_ORDER_STATUSES,
    Market,
    Order,
    OrderStatus,
    PaymentStatus,
)
from services.orders_service.services import stock_ledger
from services.orders_service.services.audit import log_audit
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)

BUYER = "buyer"
OWNER = "owner"

NON_TERMINAL_STATUSES = tuple(
    status for status in OrderStatus if status not in TERMINAL_ORDER_STATUSES
)
CANCELLABLE_STATUSES = (OrderStatus.PENDING, OrderStatus.CONFIRMED)
REFUNDABLE_STATUSES = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
)


# ---------------------------------------------------------------------------
# Loading & authorization
# ---------------------------------------------------------------------------


async def get_order(db: AsyncSession, order_id: uuid.UUID) -> Order:
    """Load a live (not soft-deleted) order with its items, fresh from the DB."""
    result = await db.execute(
        select(Order)
        .where(Order.id == order_id, Order.deleted_at.is_(None))
        .options(selectinload(Order.items))
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if not order:
        raise NotFound("Order not found", order_id=order_id)
    return order


async def get_market_owner(db: AsyncSession, market_id: uuid.UUID) -> Optional[str]:
    result = await db.execute(
        select(Market.owner_auth_id).where(Market.id == market_id)
    )
    return result.scalar_one_or_none()


async def load_for_actor(
    db: AsyncSession, order_id: uuid.UUID, actor_id: str, roles: Iterable[str]
) -> Order:
    """Load an order the actor may act on in one of ``roles``.

    Raises NotFound for unknown orders and a generic Unauthorized otherwise.
    """
    order = await get_order(db, order_id)
    roles = set(roles)
    if BUYER in roles and order.buyer_auth_id == actor_id:
        return order
    if OWNER in roles and await get_market_owner(db, order.market_id) == actor_id:
        return order
    raise Unauthorized()


# ---------------------------------------------------------------------------
# Transition core
# ---------------------------------------------------------------------------


async def _current_status(db: AsyncSession, order_id: uuid.UUID) -> OrderStatus:
    result = await db.execute(select(Order.status).where(Order.id == order_id))
    return result.scalar_one()


async def _transition(
    db: AsyncSession,
    order: Order,
    *,
    action: str,
    allowed_from: Iterable[OrderStatus],
    actor_id: str,
    clock: Clock,
    to_status: Optional[OrderStatus] = None,
    extra_conditions: tuple = (),
    values: Optional[dict] = None,
) -> None:
    """Apply a guarded update, or raise InvalidStateTransition. Does not commit."""
    allowed_from = tuple(allowed_from)
    changes = dict(values or {})
    if to_status is not None:
        changes["status"] = to_status
    changes["updated_at"] = clock()

    result = await db.execute(
        update(Order)
        .where(
            Order.id == order.id,
            Order.deleted_at.is_(None),
            Order.status.in_(allowed_from),
            *extra_conditions,
        )
        .values({getattr(Order, key): value for key, value in changes.items()})
        .returning(Order.id),
        execution_options={"synchronize_session": False},
    )
    if result.scalar_one_or_none() is None:
        current = await _current_status(db, order.id)
        raise InvalidStateTransition(
            f"Cannot {action} order in status {current.value}",
            current_status=current,
            order_id=order.id,
            action=action,
        )

    await log_audit(
        db,
        order_id=order.id,
        action=action,
        performed_by=actor_id,
        old_value={
            "status": order.status.value,
            "payment_status": order.payment_status.value,
        },
        new_value={
            key: getattr(value, "value", value)
            for key, value in changes.items()
            if key in ("status", "payment_status", "rating")
        },
    )


async def _finish(db: AsyncSession, order: Order, action: str, actor_id: str) -> Order:
    await db.commit()
    refreshed = await get_order(db, order.id)
    logger.info(
        "Order %s %s by %s (status=%s)",
        refreshed.order_number,
        action,
        actor_id,
        refreshed.status.value,
        extra={"extra_fields": {"order_id": str(refreshed.id), "action": action}},
    )
    return refreshed


async def _run(db: AsyncSession, coro) -> None:
    try:
        await coro
    except Exception:
        await db.rollback()
        raise


# ---------------------------------------------------------------------------
# Market owner actions
# ---------------------------------------------------------------------------


async def confirm_order(
    db: AsyncSession, order_id: uuid.UUID, actor_id: str, *, clock: Clock = utc_now
) -> Order:
    order = await load_for_actor(db, order_id, actor_id, [OWNER])
    await _run(
        db,
        _transition(
            db,
            order,
            action="confirm",
            allowed_from=CANCELLABLE_STATUSES,
            to_status=OrderStatus.CONFIRMED,
            actor_id=actor_id,
            clock=clock,
        ),
    )
    return await _finish(db, order, "confirmed", actor_id)


async def process_order(
    db: AsyncSession, order_id: uuid.UUID, actor_id: str, *, clock: Clock = utc_now
) -> Order:
    order = await load_for_actor(db, order_id, actor_id, [OWNER])
    await _run(
        db,
        _transition(
            db,
            order,
            action="process",
            allowed_from=[OrderStatus.CONFIRMED],
            to_status=OrderStatus.PROCESSING,
            actor_id=actor_id,
            clock=clock,
        ),
    )
    return await _finish(db, order, "processing", actor_id)


async def ship_order(
    db: AsyncSession,
    order_id: uuid.UUID,
    actor_id: str,
    *,
    tracking_number: Optional[str] = None,
    clock: Clock = utc_now,
) -> Order:
    """Mark shipped from any non-terminal status, recording the tracking number."""
    order = await load_for_actor(db, order_id, actor_id, [OWNER])
    values = {}
    if tracking_number:
        values["order_metadata"] = {
            **(order.order_metadata or {}),
            "tracking_number": tracking_number,
        }
    await _run(
        db,
        _transition(
            db,
            order,
            action="ship",
            allowed_from=NON_TERMINAL_STATUSES,
            to_status=OrderStatus.SHIPPED,
            actor_id=actor_id,
            clock=clock,
            values=values,
        ),
    )
    return await _finish(db, order, "shipped", actor_id)


async def deliver_order(
    db: AsyncSession, order_id: uuid.UUID, actor_id: str, *, clock: Clock = utc_now
) -> Order:
    order = await load_for_actor(db, order_id, actor_id, [OWNER])
    await _run(
        db,
        _transition(
            db,
            order,
            action="deliver",
            allowed_from=NON_TERMINAL_STATUSES,
            to_status=OrderStatus.DELIVERED,
            actor_id=actor_id,
            clock=clock,
            values={"delivered_at": clock()},
        ),
    )
    return await _finish(db, order, "delivered", actor_id)


# ---------------------------------------------------------------------------
# Buyer actions
# ---------------------------------------------------------------------------


async def complete_order(
    db: AsyncSession, order_id: uuid.UUID, actor_id: str, *, clock: Clock = utc_now
) -> Order:
    """Buyer acknowledges receipt of a delivered order."""
    order = await load_for_actor(db, order_id, actor_id, [BUYER])
    await _run(
        db,
        _transition(
            db,
            order,
            action="complete",
            allowed_from=[OrderStatus.DELIVERED],
            to_status=OrderStatus.COMPLETED,
            actor_id=actor_id,
            clock=clock,
        ),
    )
    return await _finish(db, order, "completed", actor_id)


async def rate_order(
    db: AsyncSession,
    order_id: uuid.UUID,
    actor_id: str,
    *,
    rating: int,
    review: Optional[str] = None,
    clock: Clock = utc_now,
) -> Order:
    """Store the buyer's rating. Only once, and only on a completed order."""
    order = await load_for_actor(db, order_id, actor_id, [BUYER])
    if order.rating is not None:
        raise InvalidStateTransition(
            "Order has already been rated",
            current_status=order.status,
            order_id=order.id,
            action="rate",
        )
    await _run(
        db,
        _transition(
            db,
            order,
            action="rate",
            allowed_from=[OrderStatus.COMPLETED],
            actor_id=actor_id,
            clock=clock,
            extra_conditions=(Order.rating.is_(None),),
            values={"rating": rating, "review": review},
        ),
    )
    return await _finish(db, order, "rated", actor_id)


# ---------------------------------------------------------------------------
# Cancellation & refund (compensating stock release)
# ---------------------------------------------------------------------------


async def _release_items(db: AsyncSession, order: Order) -> None:
    for item in order.items:
        await stock_ledger.release(
            db,
            item.product_id,
            item.quantity,
            reference_type="order",
            reference_id=order.id,
        )


async def cancel_order(
    db: AsyncSession,
    order_id: uuid.UUID,
    actor_id: str,
    *,
    reason: Optional[str] = None,
    clock: Clock = utc_now,
) -> Order:
    """Cancel a pending/confirmed order and put every line's stock back.

    Either the buyer or the market owner may cancel. The status flip and the
    stock releases commit together.
    """
    order = await load_for_actor(db, order_id, actor_id, [BUYER, OWNER])
    values = {"cancelled_at": clock()}
    if reason:
        values["order_metadata"] = {
            **(order.order_metadata or {}),
            "cancellation_reason": reason,
        }

    async def _cancel():
        await _transition(
            db,
            order,
            action="cancel",
            allowed_from=CANCELLABLE_STATUSES,
            to_status=OrderStatus.CANCELLED,
            actor_id=actor_id,
            clock=clock,
            values=values,
        )
        await _release_items(db, order)

    await _run(db, _cancel())
    return await _finish(db, order, "cancelled", actor_id)


async def refund_order(
    db: AsyncSession,
    order_id: uuid.UUID,
    actor_id: str,
    *,
    reason: Optional[str] = None,
    clock: Clock = utc_now,
) -> Order:
    """Refund a paid order.

    Open orders move to REFUNDED and release their stock. A cancelled order
    already released its stock, so only its payment status changes.
    """
    order = await load_for_actor(db, order_id, actor_id, [OWNER])
    values = {"payment_status": PaymentStatus.REFUNDED}
    if reason:
        values["order_metadata"] = {
            **(order.order_metadata or {}),
            "refund_reason": reason,
        }
    paid = (Order.payment_status == PaymentStatus.PAID,)

    async def _refund():
        if order.status == OrderStatus.CANCELLED:
            await _transition(
                db,
                order,
                action="refund",
                allowed_from=[OrderStatus.CANCELLED],
                actor_id=actor_id,
                clock=clock,
                extra_conditions=paid,
                values=values,
            )
            return
        await _transition(
            db,
            order,
            action="refund",
            allowed_from=REFUNDABLE_STATUSES,
            to_status=OrderStatus.REFUNDED,
            actor_id=actor_id,
            clock=clock,
            extra_conditions=paid,
            values=values,
        )
        await _release_items(db, order)

    await _run(db, _refund())
    return await _finish(db, order, "refunded", actor_id)


# ---------------------------------------------------------------------------
# Payment outcome (internal, from the ledger service)
# ---------------------------------------------------------------------------


async def record_payment(
    db: AsyncSession,
    order_id: uuid.UUID,
    *,
    payment_status: PaymentStatus,
    transaction_id: Optional[str] = None,
    actor_id: str = "system",
    clock: Clock = utc_now,
) -> Order:
    """Settle a pending payment as PAID or FAILED. Repeats are no-ops."""
    if payment_status not in (PaymentStatus.PAID, PaymentStatus.FAILED):
        raise InvalidStateTransition(
            f"Cannot record payment as {payment_status.value}",
            current_status=payment_status,
            order_id=order_id,
            action="record_payment",
        )

    order = await get_order(db, order_id)
    if order.payment_status == payment_status:
        return order

    values = {"payment_status": payment_status, "updated_at": clock()}
    if transaction_id:
        values["payment_transaction_id"] = transaction_id

    result = await db.execute(
        update(Order)
        .where(
            Order.id == order.id,
            Order.payment_status == PaymentStatus.PENDING,
        )
        .values({getattr(Order, key): value for key, value in values.items()})
        .returning(Order.id),
        execution_options={"synchronize_session": False},
    )
    if result.scalar_one_or_none() is None:
        await db.rollback()
        current = await get_order(db, order_id)
        if current.payment_status == payment_status:
            return current
        raise InvalidStateTransition(
            f"Payment already {current.payment_status.value}",
            current_status=current.payment_status,
            order_id=order_id,
            action="record_payment",
        )

    await log_audit(
        db,
        order_id=order.id,
        action="payment_recorded",
        performed_by=actor_id,
        old_value={"payment_status": order.payment_status.value},
        new_value={"payment_status": payment_status.value},
    )
    return await _finish(db, order, f"payment {payment_status.value}", actor_id)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def list_buyer_orders(
    db: AsyncSession,
    buyer_auth_id: str,
    *,
    status: Optional[OrderStatus] = None,
    skip: int = 0,
    limit: int = 20,
) -> tuple[list[Order], int]:
    filters = [Order.buyer_auth_id == buyer_auth_id, Order.deleted_at.is_(None)]
    if status:
        filters.append(Order.status == status)
    return await _paginate(db, filters, skip, limit)


async def list_market_orders(
    db: AsyncSession,
    owner_auth_id: str,
    *,
    market_id: Optional[uuid.UUID] = None,
    status: Optional[OrderStatus] = None,
    skip: int = 0,
    limit: int = 20,
) -> tuple[list[Order], int]:
    """Orders placed with any market the caller owns (or one of them)."""
    owned = select(Market.id).where(Market.owner_auth_id == owner_auth_id)
    if market_id:
        owned = owned.where(Market.id == market_id)
    filters = [Order.market_id.in_(owned), Order.deleted_at.is_(None)]
    if status:
        filters.append(Order.status == status)
    return await _paginate(db, filters, skip, limit)


async def _paginate(
    db: AsyncSession, filters: list, skip: int, limit: int
) -> tuple[list[Order], int]:
    total = (
        await db.execute(select(func.count()).select_from(Order).where(*filters))
    ).scalar() or 0
    result = await db.execute(
        select(Order)
        .where(*filters)
        .options(selectinload(Order.items))
        .order_by(Order.created_at.desc(), Order.id)
        .offset(skip)
        .limit(limit)
    )
    return list(result.scalars().all()), total
