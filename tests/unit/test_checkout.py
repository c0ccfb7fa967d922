"""Unit tests for multi-market checkout and direct order creation."""

import uuid
from decimal import Decimal

import pytest
from libs.common.errors import EmptyCart, InsufficientStock, NotFound, ValidationError
from services.orders_service.models import (
    CartItem,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    Product,
)
from services.orders_service.services import checkout, stock_ledger
from services.orders_service.services.checkout import CheckoutLine
from sqlalchemy import func, select
from tests.factories import ProductFactory, seed_cart, seed_market

ADDRESS = {
    "street": "1 Market Street",
    "city": "Lagos",
    "postal_code": "100001",
    "country": "NG",
}


async def _stock(db, product_id) -> int:
    result = await db.execute(
        select(Product.stock_quantity).where(Product.id == product_id)
    )
    return result.scalar_one()


async def _count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


# ---------------------------------------------------------------------------
# checkout_cart
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_checkout_two_markets_end_to_end(db_session, clock):
    """Two markets in one cart produce two orders with flat shipping and 10% tax."""
    buyer = "buyer-e2e"
    m1, (p1,) = await seed_market(db_session, products=[("20.00", 5)])
    m2, (p2,) = await seed_market(db_session, products=[("15.00", 1)])
    await seed_cart(db_session, buyer, [(p1, 2), (p2, 1)])

    orders = await checkout.checkout_cart(
        db_session, buyer, shipping_address=ADDRESS, clock=clock
    )

    assert [order.market_id for order in orders] == [m1.id, m2.id]
    first, second = orders

    assert first.subtotal == Decimal("40.00")
    assert first.tax_amount == Decimal("4.00")
    assert first.shipping_amount == Decimal("10.00")
    assert first.total_amount == Decimal("54.00")

    assert second.subtotal == Decimal("15.00")
    assert second.tax_amount == Decimal("1.50")
    assert second.shipping_amount == Decimal("10.00")
    assert second.total_amount == Decimal("26.50")

    for order in orders:
        assert order.status == OrderStatus.PENDING
        assert order.payment_status == PaymentStatus.PENDING
        assert order.buyer_auth_id == buyer
        assert order.order_number.startswith("MKT-20260318-")

    assert await _stock(db_session, p1.id) == 3
    assert await _stock(db_session, p2.id) == 0
    assert await _count(db_session, CartItem) == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_checkout_is_all_or_nothing_across_markets(db_session, clock):
    """A shortfall in the second market leaves the first market untouched."""
    buyer = "buyer-atomic"
    _, (p1,) = await seed_market(db_session, products=[("20.00", 5)])
    _, (p2,) = await seed_market(db_session, products=[("15.00", 1)])
    await seed_cart(db_session, buyer, [(p1, 2), (p2, 1)])
    p1_id, p2_id = p1.id, p2.id

    # Someone else buys the last P2 after it went into the cart
    p2_row = await db_session.get(Product, p2.id)
    p2_row.stock_quantity = 0
    await db_session.commit()

    with pytest.raises(InsufficientStock) as exc_info:
        await checkout.checkout_cart(
            db_session, buyer, shipping_address=ADDRESS, clock=clock
        )

    assert exc_info.value.product_id == p2_id
    assert await _count(db_session, Order) == 0
    assert await _count(db_session, OrderItem) == 0
    assert await _stock(db_session, p1_id) == 5
    assert await _count(db_session, CartItem) == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_checkout_rolls_back_when_reserve_loses_race(
    db_session, clock, monkeypatch
):
    """Stock can drop between preflight and reserve; the reserve is authoritative."""
    buyer = "buyer-race"
    _, (p1, p2) = await seed_market(db_session, products=[("5.00", 3), ("7.00", 2)])
    await seed_cart(db_session, buyer, [(p1, 1), (p2, 2)])
    p1_id, p2_id = p1.id, p2.id

    original_reserve = stock_ledger.reserve
    calls = []

    async def reserve_then_fail(db, product_id, quantity, **kwargs):
        calls.append(product_id)
        if product_id == p2_id:
            raise InsufficientStock(product_id, requested=quantity, available=0)
        return await original_reserve(db, product_id, quantity, **kwargs)

    monkeypatch.setattr(stock_ledger, "reserve", reserve_then_fail)
    with pytest.raises(InsufficientStock):
        await checkout.checkout_cart(
            db_session, buyer, shipping_address=ADDRESS, clock=clock
        )

    assert calls == [p1_id, p2_id]
    assert await _stock(db_session, p1_id) == 3
    assert await _count(db_session, Order) == 0
    assert await _count(db_session, CartItem) == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_checkout_empty_cart(db_session, clock):
    with pytest.raises(EmptyCart):
        await checkout.checkout_cart(
            db_session, "buyer-empty", shipping_address=ADDRESS, clock=clock
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_checkout_inactive_product_rejected(db_session, clock):
    buyer = "buyer-inactive"
    _, (product,) = await seed_market(db_session, products=[("9.99", 4)])
    await seed_cart(db_session, buyer, [(product, 1)])
    product_id = product.id
    row = await db_session.get(Product, product_id)
    row.is_active = False
    await db_session.commit()

    with pytest.raises(ValidationError):
        await checkout.checkout_cart(
            db_session, buyer, shipping_address=ADDRESS, clock=clock
        )
    assert await _stock(db_session, product_id) == 4


@pytest.mark.asyncio
@pytest.mark.unit
async def test_checkout_only_clears_own_cart(db_session, clock):
    _, (product,) = await seed_market(db_session, products=[("3.00", 10)])
    await seed_cart(db_session, "buyer-a", [(product, 1)])
    await seed_cart(db_session, "buyer-b", [(product, 2)])

    await checkout.checkout_cart(
        db_session, "buyer-a", shipping_address=ADDRESS, clock=clock
    )

    remaining = (await db_session.execute(select(CartItem))).scalars().all()
    assert [item.buyer_auth_id for item in remaining] == ["buyer-b"]


# ---------------------------------------------------------------------------
# Totals & snapshots
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_order_total_equals_sum_of_parts(db_session, clock):
    buyer = "buyer-totals"
    _, (a, b) = await seed_market(db_session, products=[("19.99", 10), ("0.05", 10)])
    await seed_cart(db_session, buyer, [(a, 3), (b, 1)])

    (order,) = await checkout.checkout_cart(
        db_session, buyer, shipping_address=ADDRESS, clock=clock
    )

    assert order.subtotal == sum(item.line_total for item in order.items)
    assert order.subtotal == Decimal("60.02")
    assert order.tax_amount == Decimal("6.00")
    assert order.total_amount == (
        order.subtotal + order.tax_amount + order.shipping_amount
    )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_line_item_snapshot_survives_price_change(db_session, clock):
    buyer = "buyer-snapshot"
    _, (product,) = await seed_market(db_session, products=[("20.00", 5)])
    await seed_cart(db_session, buyer, [(product, 2)])
    (order,) = await checkout.checkout_cart(
        db_session, buyer, shipping_address=ADDRESS, clock=clock
    )

    row = await db_session.get(Product, product.id)
    row.price = Decimal("99.00")
    row.name = "Renamed"
    await db_session.commit()

    item = (
        await db_session.execute(
            select(OrderItem)
            .where(OrderItem.order_id == order.id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    assert item.unit_price == Decimal("20.00")
    assert item.line_total == Decimal("40.00")
    assert item.product_name != "Renamed"

    stored = await db_session.execute(
        select(Order.total_amount).where(Order.id == order.id)
    )
    assert stored.scalar_one() == Decimal("54.00")


# ---------------------------------------------------------------------------
# group_by_market & create_market_order
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_group_by_market_keeps_first_appearance_and_merges_duplicates():
    m1, m2 = uuid.uuid4(), uuid.uuid4()
    a = ProductFactory.create(market_id=m1)
    b = ProductFactory.create(market_id=m2)
    c = ProductFactory.create(market_id=m1)

    groups = checkout.group_by_market(
        [
            CheckoutLine(b, 1),
            CheckoutLine(a, 2),
            CheckoutLine(c, 1),
            CheckoutLine(b, 3),
        ]
    )

    assert list(groups) == [m2, m1]
    assert [(line.product.id, line.quantity) for line in groups[m2]] == [(b.id, 4)]
    assert [line.product.id for line in groups[m1]] == [a.id, c.id]


@pytest.mark.unit
def test_group_by_market_rejects_non_positive_quantity():
    product = ProductFactory.create()
    with pytest.raises(ValidationError):
        checkout.group_by_market([CheckoutLine(product, 0)])


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_market_order_leaves_cart_alone(db_session, clock):
    buyer = "buyer-direct"
    market, (product,) = await seed_market(db_session, products=[("12.50", 4)])
    await seed_cart(db_session, buyer, [(product, 1)])

    order = await checkout.create_market_order(
        db_session,
        buyer,
        market.id,
        [(product.id, 2)],
        shipping_address=ADDRESS,
        clock=clock,
    )

    assert order.market_id == market.id
    assert order.subtotal == Decimal("25.00")
    assert order.total_amount == Decimal("37.50")
    assert await _stock(db_session, product.id) == 2
    assert await _count(db_session, CartItem) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_market_order_rejects_foreign_product(db_session, clock):
    market, _ = await seed_market(db_session, products=[("1.00", 1)])
    _, (other,) = await seed_market(db_session, products=[("1.00", 1)])
    market_id, other_id = market.id, other.id

    with pytest.raises(ValidationError):
        await checkout.create_market_order(
            db_session,
            "buyer-x",
            market_id,
            [(other_id, 1)],
            shipping_address=ADDRESS,
            clock=clock,
        )
    with pytest.raises(NotFound):
        await checkout.create_market_order(
            db_session,
            "buyer-x",
            market_id,
            [(uuid.uuid4(), 1)],
            shipping_address=ADDRESS,
            clock=clock,
        )
    assert await _count(db_session, Order) == 0
