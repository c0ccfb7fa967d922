"""Stock ledger: atomic reserve/release against ``Product.stock_quantity``.

These are the only code paths allowed to change a product's stock. Neither
function commits; callers own the transaction boundary so a failed reserve
rolls back together with everything else in the unit of work.
"""

import uuid
from typing import Optional

from libs.common.errors import InsufficientStock, NotFound, ValidationError
from libs.common.logging import get_logger
from services.orders_service.models import Product, StockMovement, StockMovementType
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


def _check_quantity(quantity: int) -> None:
    if quantity <= 0:
        raise ValidationError(
            "Quantity must be a positive integer", field="quantity", value=quantity
        )


async def reserve(
    db: AsyncSession,
    product_id: uuid.UUID,
    quantity: int,
    *,
    reference_type: Optional[str] = None,
    reference_id: Optional[uuid.UUID] = None,
) -> int:
    """Decrement stock by ``quantity`` if enough is available.

    The sufficiency check and the decrement are one UPDATE statement, so two
    concurrent reservations of the last unit cannot both succeed.

    Returns the remaining stock. Raises InsufficientStock (nothing changed) or
    NotFound if the product does not exist.
    """
    _check_quantity(quantity)

    result = await db.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock_quantity >= quantity)
        .values(stock_quantity=Product.stock_quantity - quantity)
        .returning(Product.stock_quantity),
        execution_options={"synchronize_session": False},
    )
    remaining = result.scalar_one_or_none()

    if remaining is None:
        current = await db.execute(
            select(Product.stock_quantity, Product.name, Product.market_id).where(
                Product.id == product_id
            )
        )
        row = current.one_or_none()
        if row is None:
            raise NotFound("Product not found", product_id=product_id)
        raise InsufficientStock(
            product_id,
            requested=quantity,
            available=row.stock_quantity,
            product_name=row.name,
            market_id=row.market_id,
        )

    db.add(
        StockMovement(
            product_id=product_id,
            movement_type=StockMovementType.RESERVATION,
            quantity=-quantity,
            quantity_after=remaining,
            reference_type=reference_type,
            reference_id=reference_id,
        )
    )
    logger.info(
        "Reserved %d of product %s (remaining=%d)", quantity, product_id, remaining
    )
    return remaining


async def release(
    db: AsyncSession,
    product_id: uuid.UUID,
    quantity: int,
    *,
    reference_type: Optional[str] = None,
    reference_id: Optional[uuid.UUID] = None,
) -> int:
    """Return ``quantity`` units to stock. Only for compensating a prior reserve.

    No upper bound is enforced; the movement row records where the units came
    back from.
    """
    _check_quantity(quantity)

    result = await db.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(stock_quantity=Product.stock_quantity + quantity)
        .returning(Product.stock_quantity),
        execution_options={"synchronize_session": False},
    )
    remaining = result.scalar_one_or_none()
    if remaining is None:
        raise NotFound("Product not found", product_id=product_id)

    db.add(
        StockMovement(
            product_id=product_id,
            movement_type=StockMovementType.RELEASE,
            quantity=quantity,
            quantity_after=remaining,
            reference_type=reference_type,
            reference_id=reference_id,
        )
    )
    logger.info(
        "Released %d of product %s (remaining=%d)", quantity, product_id, remaining
    )
    return remaining
