"""Cart router: cart lines and checkout."""

import uuid
from decimal import Decimal

from fastapi import APIRouter, Depends, Request, status
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.datetime_utils import Clock, get_clock
from libs.common.rate_limit import checkout_limit
from libs.db.session import get_async_db
from services.orders_service.schemas import (
    CartItemCreate,
    CartItemResponse,
    CartItemUpdate,
    CartResponse,
    CheckoutRequest,
    CheckoutResponse,
    OrderResponse,
)
from services.orders_service.services import cart_ops
from services.orders_service.services.checkout import checkout_cart, post_ledger_entries
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["cart"])


async def build_cart_response(db: AsyncSession, buyer_auth_id: str) -> CartResponse:
    """Cart lines with live product price and stock."""
    lines = await cart_ops.get_cart_lines(db, buyer_auth_id)
    items = [
        CartItemResponse(
            id=line.id,
            product_id=line.product_id,
            market_id=line.product.market_id,
            product_name=line.product.name,
            unit_price=line.product.price,
            quantity=line.quantity,
            line_total=line.product.price * line.quantity,
            in_stock=line.product.is_in_stock(line.quantity),
            added_at=line.added_at,
        )
        for line in lines
    ]
    return CartResponse(
        items=items,
        total_items=sum(item.quantity for item in items),
        subtotal=sum((item.line_total for item in items), Decimal("0.00")),
    )


# ============================================================================
# CART ENDPOINTS
# ============================================================================


@router.get("/cart", response_model=CartResponse)
async def get_cart(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Get current cart."""
    return await build_cart_response(db, current_user.user_id)


@router.post("/cart/items", response_model=CartResponse)
async def add_to_cart(
    item_in: CartItemCreate,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Add item to cart."""
    await cart_ops.add_item(
        db, current_user.user_id, item_in.product_id, item_in.quantity
    )
    return await build_cart_response(db, current_user.user_id)


@router.delete("/cart/clear", response_model=CartResponse)
async def clear_cart(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Remove every line from the cart."""
    await cart_ops.clear_cart(db, current_user.user_id)
    await db.commit()
    return await build_cart_response(db, current_user.user_id)


@router.patch("/cart/items/{item_id}", response_model=CartResponse)
async def update_cart_item(
    item_id: uuid.UUID,
    item_in: CartItemUpdate,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Update cart item quantity."""
    await cart_ops.update_item(db, current_user.user_id, item_id, item_in.quantity)
    return await build_cart_response(db, current_user.user_id)


@router.delete("/cart/items/{item_id}", response_model=CartResponse)
async def remove_cart_item(
    item_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Remove item from cart."""
    await cart_ops.remove_item(db, current_user.user_id, item_id)
    return await build_cart_response(db, current_user.user_id)


# ============================================================================
# CHECKOUT
# ============================================================================


@router.post(
    "/cart/checkout",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
)
@checkout_limit
async def checkout(
    request: Request,
    body: CheckoutRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    clock: Clock = Depends(get_clock),
):
    """Check out the whole cart: one order per market, all or nothing."""
    orders = await checkout_cart(
        db,
        current_user.user_id,
        shipping_address=body.shipping_address.model_dump(),
        shipping_method=body.shipping_method,
        notes=body.notes,
        clock=clock,
    )
    await post_ledger_entries(db, orders)
    return CheckoutResponse(
        orders=[OrderResponse.model_validate(order) for order in orders],
        total_orders=len(orders),
    )
