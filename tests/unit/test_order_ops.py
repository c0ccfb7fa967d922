"""Unit tests for the order state machine: fulfillment, cancel, refund, rating."""

import asyncio
import uuid
from decimal import Decimal

import pytest
from libs.common.errors import InvalidStateTransition, NotFound, Unauthorized
from services.orders_service.models import (
    OrderAuditLog,
    OrderStatus,
    PaymentStatus,
    Product,
)
from services.orders_service.services import checkout, order_ops
from sqlalchemy import select
from tests.factories import FIXED_NOW, seed_market

ADDRESS = {
    "street": "1 Market Street",
    "city": "Lagos",
    "postal_code": "100001",
    "country": "NG",
}

BUYER = "buyer-1"
OWNER = "seller-1"


async def _stock(db, product_id) -> int:
    result = await db.execute(
        select(Product.stock_quantity).where(Product.id == product_id)
    )
    return result.scalar_one()


async def _place(db, clock, lines=(("20.00", 5, 2),)):
    """Create a market owned by OWNER and one PENDING order from BUYER.

    ``lines`` are ``(price, stock, quantity)``. Returns ``(order_id, [product_id])``.
    """
    market, products = await seed_market(
        db,
        owner_auth_id=OWNER,
        products=[(price, stock) for price, stock, _ in lines],
    )
    order = await checkout.create_market_order(
        db,
        BUYER,
        market.id,
        [(product.id, qty) for product, (_, _, qty) in zip(products, lines)],
        shipping_address=ADDRESS,
        clock=clock,
    )
    return order.id, [product.id for product in products]


# ---------------------------------------------------------------------------
# Fulfillment
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_full_fulfillment_lifecycle(db_session, clock):
    order_id, _ = await _place(db_session, clock)

    order = await order_ops.confirm_order(db_session, order_id, OWNER, clock=clock)
    assert order.status == OrderStatus.CONFIRMED

    order = await order_ops.process_order(db_session, order_id, OWNER, clock=clock)
    assert order.status == OrderStatus.PROCESSING

    order = await order_ops.ship_order(
        db_session, order_id, OWNER, tracking_number="TRK-123", clock=clock
    )
    assert order.status == OrderStatus.SHIPPED
    assert order.order_metadata["tracking_number"] == "TRK-123"

    order = await order_ops.deliver_order(db_session, order_id, OWNER, clock=clock)
    assert order.status == OrderStatus.DELIVERED
    assert order.delivered_at.replace(tzinfo=None) == FIXED_NOW.replace(tzinfo=None)

    order = await order_ops.complete_order(db_session, order_id, BUYER, clock=clock)
    assert order.status == OrderStatus.COMPLETED

    order = await order_ops.rate_order(
        db_session, order_id, BUYER, rating=5, review="Great", clock=clock
    )
    assert order.rating == 5
    assert order.review == "Great"

    actions = (
        (
            await db_session.execute(
                select(OrderAuditLog.action)
                .where(OrderAuditLog.order_id == order_id)
                .order_by(OrderAuditLog.performed_at)
            )
        )
        .scalars()
        .all()
    )
    assert set(actions) == {
        "created",
        "confirm",
        "process",
        "ship",
        "deliver",
        "complete",
        "rate",
    }


@pytest.mark.asyncio
@pytest.mark.unit
async def test_confirm_is_repeatable(db_session, clock):
    order_id, _ = await _place(db_session, clock)

    await order_ops.confirm_order(db_session, order_id, OWNER, clock=clock)
    order = await order_ops.confirm_order(db_session, order_id, OWNER, clock=clock)

    assert order.status == OrderStatus.CONFIRMED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_process_requires_confirmed(db_session, clock):
    order_id, _ = await _place(db_session, clock)

    with pytest.raises(InvalidStateTransition) as exc_info:
        await order_ops.process_order(db_session, order_id, OWNER, clock=clock)

    assert exc_info.value.current_status == "pending"
    order = await order_ops.get_order(db_session, order_id)
    assert order.status == OrderStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_owner_actions_reject_buyer_and_strangers(db_session, clock):
    order_id, _ = await _place(db_session, clock)

    with pytest.raises(Unauthorized):
        await order_ops.confirm_order(db_session, order_id, BUYER, clock=clock)
    with pytest.raises(Unauthorized):
        await order_ops.ship_order(db_session, order_id, "stranger", clock=clock)
    with pytest.raises(Unauthorized):
        await order_ops.complete_order(db_session, order_id, OWNER, clock=clock)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_order(db_session, clock):
    with pytest.raises(NotFound):
        await order_ops.confirm_order(db_session, uuid.uuid4(), OWNER, clock=clock)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_terminal_orders_cannot_ship(db_session, clock):
    order_id, _ = await _place(db_session, clock)
    await order_ops.cancel_order(db_session, order_id, BUYER, clock=clock)

    with pytest.raises(InvalidStateTransition) as exc_info:
        await order_ops.ship_order(db_session, order_id, OWNER, clock=clock)
    assert exc_info.value.current_status == "cancelled"


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cancel_restores_stock_exactly(db_session, clock):
    order_id, (p1, p2) = await _place(
        db_session, clock, lines=(("5.00", 10, 2), ("8.00", 7, 3))
    )
    assert await _stock(db_session, p1) == 8
    assert await _stock(db_session, p2) == 4

    order = await order_ops.cancel_order(
        db_session, order_id, BUYER, reason="Changed my mind", clock=clock
    )

    assert order.status == OrderStatus.CANCELLED
    assert order.cancelled_at is not None
    assert order.order_metadata["cancellation_reason"] == "Changed my mind"
    assert await _stock(db_session, p1) == 10
    assert await _stock(db_session, p2) == 7

    with pytest.raises(InvalidStateTransition):
        await order_ops.cancel_order(db_session, order_id, BUYER, clock=clock)
    assert await _stock(db_session, p1) == 10
    assert await _stock(db_session, p2) == 7


@pytest.mark.asyncio
@pytest.mark.unit
async def test_market_owner_may_cancel(db_session, clock):
    order_id, _ = await _place(db_session, clock)
    await order_ops.confirm_order(db_session, order_id, OWNER, clock=clock)

    order = await order_ops.cancel_order(db_session, order_id, OWNER, clock=clock)

    assert order.status == OrderStatus.CANCELLED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cannot_cancel_once_processing(db_session, clock):
    order_id, (product_id,) = await _place(db_session, clock)
    await order_ops.confirm_order(db_session, order_id, OWNER, clock=clock)
    await order_ops.process_order(db_session, order_id, OWNER, clock=clock)

    with pytest.raises(InvalidStateTransition):
        await order_ops.cancel_order(db_session, order_id, BUYER, clock=clock)
    assert await _stock(db_session, product_id) == 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_concurrent_cancels_release_once(db_session, session_factory, clock):
    order_id, (product_id,) = await _place(db_session, clock)

    async def attempt() -> bool:
        async with session_factory() as session:
            try:
                await order_ops.cancel_order(session, order_id, BUYER, clock=clock)
                return True
            except InvalidStateTransition:
                return False

    results = await asyncio.gather(attempt(), attempt())

    assert sorted(results) == [False, True]
    assert await _stock(db_session, product_id) == 5


# ---------------------------------------------------------------------------
# Rating
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_rating_requires_completed_and_happens_once(db_session, clock):
    order_id, _ = await _place(db_session, clock)

    with pytest.raises(InvalidStateTransition):
        await order_ops.rate_order(db_session, order_id, BUYER, rating=4, clock=clock)

    for action in (
        order_ops.confirm_order,
        order_ops.ship_order,
        order_ops.deliver_order,
    ):
        await action(db_session, order_id, OWNER, clock=clock)
    await order_ops.complete_order(db_session, order_id, BUYER, clock=clock)

    order = await order_ops.rate_order(
        db_session, order_id, BUYER, rating=4, clock=clock
    )
    assert order.rating == 4

    with pytest.raises(InvalidStateTransition):
        await order_ops.rate_order(db_session, order_id, BUYER, rating=1, clock=clock)
    order = await order_ops.get_order(db_session, order_id)
    assert order.rating == 4


# ---------------------------------------------------------------------------
# Payment & refund
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_record_payment_is_idempotent(db_session, clock):
    order_id, _ = await _place(db_session, clock)

    order = await order_ops.record_payment(
        db_session,
        order_id,
        payment_status=PaymentStatus.PAID,
        transaction_id="txn-1",
        clock=clock,
    )
    assert order.payment_status == PaymentStatus.PAID
    assert order.payment_transaction_id == "txn-1"

    again = await order_ops.record_payment(
        db_session, order_id, payment_status=PaymentStatus.PAID, clock=clock
    )
    assert again.payment_status == PaymentStatus.PAID

    with pytest.raises(InvalidStateTransition) as excinfo:
        await order_ops.record_payment(
            db_session, order_id, payment_status=PaymentStatus.FAILED, clock=clock
        )
    assert excinfo.value.current_status == "paid"

    settled = await order_ops.get_order(db_session, order_id)
    assert settled.payment_status == PaymentStatus.PAID
    assert settled.payment_transaction_id == "txn-1"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_refund_paid_open_order_releases_stock(db_session, clock):
    order_id, (product_id,) = await _place(db_session, clock)
    await order_ops.record_payment(
        db_session, order_id, payment_status=PaymentStatus.PAID, clock=clock
    )
    await order_ops.confirm_order(db_session, order_id, OWNER, clock=clock)

    order = await order_ops.refund_order(
        db_session, order_id, OWNER, reason="Out of stock", clock=clock
    )

    assert order.status == OrderStatus.REFUNDED
    assert order.payment_status == PaymentStatus.REFUNDED
    assert order.order_metadata["refund_reason"] == "Out of stock"
    assert order.total_amount == Decimal("54.00")
    assert await _stock(db_session, product_id) == 5


@pytest.mark.asyncio
@pytest.mark.unit
async def test_refund_requires_payment(db_session, clock):
    order_id, (product_id,) = await _place(db_session, clock)

    with pytest.raises(InvalidStateTransition):
        await order_ops.refund_order(db_session, order_id, OWNER, clock=clock)
    assert await _stock(db_session, product_id) == 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_refund_cancelled_order_does_not_release_twice(db_session, clock):
    order_id, (product_id,) = await _place(db_session, clock)
    await order_ops.record_payment(
        db_session, order_id, payment_status=PaymentStatus.PAID, clock=clock
    )
    await order_ops.cancel_order(db_session, order_id, BUYER, clock=clock)

    order = await order_ops.refund_order(db_session, order_id, OWNER, clock=clock)

    assert order.status == OrderStatus.CANCELLED
    assert order.payment_status == PaymentStatus.REFUNDED
    assert await _stock(db_session, product_id) == 5


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_list_orders_by_buyer_and_market_owner(db_session, clock):
    first_id, _ = await _place(db_session, clock)
    second_id, _ = await _place(db_session, clock)
    await order_ops.cancel_order(db_session, second_id, BUYER, clock=clock)

    orders, total = await order_ops.list_buyer_orders(db_session, BUYER)
    assert total == 2
    assert {order.id for order in orders} == {first_id, second_id}

    cancelled, total = await order_ops.list_market_orders(
        db_session, OWNER, status=OrderStatus.CANCELLED
    )
    assert total == 1
    assert cancelled[0].id == second_id

    not_owned, total = await order_ops.list_market_orders(db_session, BUYER)
    assert total == 0
    assert not_owned == []
