"""Cart collaborator: a buyer's pending lines before checkout."""

import uuid
from typing import Optional, Sequence

from libs.common.errors import NotFound, ValidationError
from libs.common.logging import get_logger
from services.orders_service.models import CartItem, Product
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)


async def get_cart_lines(db: AsyncSession, buyer_auth_id: str) -> list[CartItem]:
    """Return the buyer's cart lines in the order they were added, products loaded."""
    result = await db.execute(
        select(CartItem)
        .where(CartItem.buyer_auth_id == buyer_auth_id)
        .options(selectinload(CartItem.product))
        .order_by(CartItem.added_at, CartItem.id)
    )
    return list(result.scalars().all())


async def clear_cart(
    db: AsyncSession,
    buyer_auth_id: str,
    item_ids: Optional[Sequence[uuid.UUID]] = None,
) -> int:
    """Delete the buyer's cart lines (or only ``item_ids``). Does not commit."""
    stmt = delete(CartItem).where(CartItem.buyer_auth_id == buyer_auth_id)
    if item_ids is not None:
        stmt = stmt.where(CartItem.id.in_(list(item_ids)))
    result = await db.execute(stmt, execution_options={"synchronize_session": False})
    return result.rowcount


async def _get_available_product(db: AsyncSession, product_id: uuid.UUID) -> Product:
    result = await db.execute(select(Product).where(Product.id == product_id))
    product = result.scalar_one_or_none()
    if not product:
        raise NotFound("Product not found", product_id=product_id)
    if not product.is_active:
        raise ValidationError("Product is not available", product_id=product_id)
    return product


def _check_stock(product: Product, quantity: int) -> None:
    if not product.is_in_stock(quantity):
        raise ValidationError(
            f"Only {product.stock_quantity} available",
            product_id=product.id,
            requested=quantity,
            available=product.stock_quantity,
        )


async def add_item(
    db: AsyncSession, buyer_auth_id: str, product_id: uuid.UUID, quantity: int
) -> CartItem:
    """Add a product to the cart, or increase the quantity of an existing line."""
    product = await _get_available_product(db, product_id)

    result = await db.execute(
        select(CartItem).where(
            CartItem.buyer_auth_id == buyer_auth_id,
            CartItem.product_id == product_id,
        )
    )
    item = result.scalar_one_or_none()

    new_quantity = quantity + (item.quantity if item else 0)
    _check_stock(product, new_quantity)

    if item:
        item.quantity = new_quantity
    else:
        item = CartItem(
            buyer_auth_id=buyer_auth_id, product_id=product_id, quantity=quantity
        )
        db.add(item)

    await db.commit()
    await db.refresh(item)
    return item


async def _get_own_item(
    db: AsyncSession, buyer_auth_id: str, item_id: uuid.UUID
) -> CartItem:
    result = await db.execute(
        select(CartItem)
        .where(CartItem.id == item_id, CartItem.buyer_auth_id == buyer_auth_id)
        .options(selectinload(CartItem.product))
    )
    item = result.scalar_one_or_none()
    if not item:
        raise NotFound("Cart item not found", item_id=item_id)
    return item


async def update_item(
    db: AsyncSession, buyer_auth_id: str, item_id: uuid.UUID, quantity: int
) -> CartItem:
    item = await _get_own_item(db, buyer_auth_id, item_id)
    _check_stock(item.product, quantity)
    item.quantity = quantity
    await db.commit()
    await db.refresh(item)
    return item


async def remove_item(db: AsyncSession, buyer_auth_id: str, item_id: uuid.UUID) -> None:
    item = await _get_own_item(db, buyer_auth_id, item_id)
    await db.delete(item)
    await db.commit()
