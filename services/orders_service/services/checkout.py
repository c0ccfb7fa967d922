"""Checkout: turn a buyer's lines into one order per market, all or nothing.

Every order, line item, stock reservation and the cart clear happen in the
caller's single session transaction. Any failure rolls the whole unit back
across every market, so a failed checkout leaves no orders, no stock change
and the cart as it was.
"""

import uuid
from dataclasses import dataclass
from typing import Optional, Sequence

import httpx
from libs.common.config import get_settings
from libs.common.datetime_utils import Clock, utc_now
from libs.common.errors import (
    EmptyCart,
    InsufficientStock,
    NotFound,
    OrderNumberConflict,
    ValidationError,
)
from libs.common.logging import get_logger
from libs.common.service_client import record_ledger_transaction
from services.orders_service.models import (
    FLAT_SHIPPING_FEE,
    Market,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    Product,
)
from services.orders_service.services import cart_ops, stock_ledger
from services.orders_service.services.audit import log_audit
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

ORDER_NUMBER_ATTEMPTS = 5


@dataclass
class CheckoutLine:
    product: Product
    quantity: int


async def checkout_cart(
    db: AsyncSession,
    buyer_auth_id: str,
    *,
    shipping_address: dict,
    shipping_method: Optional[str] = None,
    notes: Optional[str] = None,
    clock: Clock = utc_now,
) -> list[Order]:
    """Check out the buyer's whole cart.

    Returns the created orders in order of each market's first appearance in
    the cart. Raises EmptyCart, ValidationError, InsufficientStock or
    OrderNumberConflict with nothing persisted.
    """
    try:
        cart = await cart_ops.get_cart_lines(db, buyer_auth_id)
        if not cart:
            raise EmptyCart(buyer_auth_id)

        orders = await place_orders(
            db,
            buyer_auth_id,
            [CheckoutLine(item.product, item.quantity) for item in cart],
            shipping_address=shipping_address,
            shipping_method=shipping_method,
            notes=notes,
            clock=clock,
        )
        await cart_ops.clear_cart(db, buyer_auth_id, [item.id for item in cart])
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Checkout by %s created %d order(s): %s",
        buyer_auth_id,
        len(orders),
        ", ".join(order.order_number for order in orders),
        extra={"extra_fields": {"buyer_auth_id": buyer_auth_id}},
    )
    return orders


async def create_market_order(
    db: AsyncSession,
    buyer_auth_id: str,
    market_id: uuid.UUID,
    items: Sequence[tuple[uuid.UUID, int]],
    *,
    shipping_address: dict,
    shipping_method: Optional[str] = None,
    notes: Optional[str] = None,
    clock: Clock = utc_now,
) -> Order:
    """Place a single-market order directly, without touching the cart."""
    try:
        product_ids = [product_id for product_id, _ in items]
        result = await db.execute(select(Product).where(Product.id.in_(product_ids)))
        products = {product.id: product for product in result.scalars().all()}

        lines = []
        for product_id, quantity in items:
            product = products.get(product_id)
            if product is None:
                raise NotFound("Product not found", product_id=product_id)
            if product.market_id != market_id:
                raise ValidationError(
                    "Product does not belong to this market",
                    product_id=product_id,
                    market_id=market_id,
                )
            lines.append(CheckoutLine(product, quantity))

        orders = await place_orders(
            db,
            buyer_auth_id,
            lines,
            shipping_address=shipping_address,
            shipping_method=shipping_method,
            notes=notes,
            clock=clock,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    order = orders[0]
    logger.info("Order %s created by %s", order.order_number, buyer_auth_id)
    return order


def group_by_market(
    lines: Sequence[CheckoutLine],
) -> dict[uuid.UUID, list[CheckoutLine]]:
    """Partition lines by market, merging repeated products.

    Both the markets and the lines within each keep first-appearance order.
    """
    groups: dict[uuid.UUID, dict[uuid.UUID, CheckoutLine]] = {}
    for line in lines:
        if line.quantity <= 0:
            raise ValidationError(
                "Quantity must be a positive integer",
                product_id=line.product.id,
                field="quantity",
            )
        market_lines = groups.setdefault(line.product.market_id, {})
        existing = market_lines.get(line.product.id)
        if existing:
            existing.quantity += line.quantity
        else:
            market_lines[line.product.id] = CheckoutLine(line.product, line.quantity)
    return {
        market_id: list(by_product.values()) for market_id, by_product in groups.items()
    }


def preflight(groups: dict[uuid.UUID, list[CheckoutLine]]) -> None:
    """Fail fast on unavailable products before anything is written."""
    for market_id, lines in groups.items():
        for line in lines:
            product = line.product
            if not product.is_active:
                raise ValidationError(
                    f"Product is not available: {product.name}",
                    product_id=product.id,
                    market_id=market_id,
                )
            if not product.is_in_stock(line.quantity):
                raise InsufficientStock(
                    product.id,
                    requested=line.quantity,
                    available=product.stock_quantity,
                    product_name=product.name,
                    market_id=market_id,
                )


async def allocate_order_numbers(
    db: AsyncSession, count: int, clock: Clock
) -> list[str]:
    """Generate ``count`` order numbers not already used by any order."""
    numbers: list[str] = []
    while len(numbers) < count:
        for _ in range(ORDER_NUMBER_ATTEMPTS):
            candidate = Order.generate_order_number(clock())
            if candidate in numbers:
                continue
            taken = await db.execute(
                select(Order.id).where(Order.order_number == candidate)
            )
            if taken.first() is None:
                numbers.append(candidate)
                break
        else:
            raise OrderNumberConflict()
    return numbers


async def place_orders(
    db: AsyncSession,
    buyer_auth_id: str,
    lines: Sequence[CheckoutLine],
    *,
    shipping_address: dict,
    shipping_method: Optional[str] = None,
    notes: Optional[str] = None,
    clock: Clock = utc_now,
) -> list[Order]:
    """Create and reserve one PENDING order per market. Does not commit."""
    if not lines:
        raise EmptyCart(buyer_auth_id)

    groups = group_by_market(lines)
    preflight(groups)

    numbers = await allocate_order_numbers(db, len(groups), clock)
    now = clock()

    orders = []
    for (market_id, market_lines), order_number in zip(groups.items(), numbers):
        order = Order(
            id=uuid.uuid4(),
            order_number=order_number,
            buyer_auth_id=buyer_auth_id,
            market_id=market_id,
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            shipping_address=dict(shipping_address),
            shipping_method=shipping_method,
            shipping_amount=FLAT_SHIPPING_FEE,
            notes=notes,
            order_metadata={},
            created_at=now,
            updated_at=now,
            items=[],
        )
        db.add(order)

        for line in market_lines:
            order.items.append(OrderItem.snapshot(line.product, line.quantity))
            await stock_ledger.reserve(
                db,
                line.product.id,
                line.quantity,
                reference_type="order",
                reference_id=order.id,
            )

        order.calculate_totals()
        await log_audit(
            db,
            order_id=order.id,
            action="created",
            performed_by=buyer_auth_id,
            new_value={
                "status": OrderStatus.PENDING.value,
                "total_amount": str(order.total_amount),
            },
        )
        orders.append(order)

    try:
        await db.flush()
    except IntegrityError as exc:
        if "order_number" in str(exc.orig):
            raise OrderNumberConflict() from exc
        raise
    return orders


# ============================================================================
# LEDGER POSTING (best effort, after commit)
# ============================================================================


async def post_ledger_entries(db: AsyncSession, orders: Sequence[Order]) -> int:
    """Record purchase (buyer) and sale (market owner) entries for new orders.

    Failures are logged and skipped; the orders are already committed.
    Returns the number of entries recorded.
    """
    settings = get_settings()
    if not settings.LEDGER_SERVICE_URL or not orders:
        return 0

    market_ids = {order.market_id for order in orders}
    result = await db.execute(
        select(Market.id, Market.owner_auth_id).where(Market.id.in_(market_ids))
    )
    owners = {row.id: row.owner_auth_id for row in result}

    recorded = 0
    for order in orders:
        entries = [("purchase", order.buyer_auth_id)]
        if order.market_id in owners:
            entries.append(("sale", owners[order.market_id]))

        for transaction_type, user_auth_id in entries:
            try:
                await record_ledger_transaction(
                    user_auth_id,
                    transaction_type=transaction_type,
                    amount=str(order.total_amount),
                    currency=settings.SETTLEMENT_CURRENCY,
                    calling_service="orders",
                    market_id=str(order.market_id),
                    order_id=str(order.id),
                    description=f"Order {order.order_number}",
                    metadata={"order_number": order.order_number},
                )
                recorded += 1
            except httpx.HTTPError as exc:
                logger.warning(
                    "Could not record %s entry for order %s: %s",
                    transaction_type,
                    order.order_number,
                    exc,
                )
    return recorded
