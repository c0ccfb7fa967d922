"""Orders router: direct order creation, reads and fulfillment actions."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.datetime_utils import Clock, get_clock
from libs.db.session import get_async_db
from services.orders_service.models import OrderStatus
from services.orders_service.schemas import (
    CancelOrderRequest,
    OrderCreateRequest,
    OrderListResponse,
    OrderResponse,
    RateOrderRequest,
    RefundOrderRequest,
    ShipOrderRequest,
)
from services.orders_service.services import order_ops
from services.orders_service.services.checkout import (
    create_market_order,
    post_ledger_entries,
)
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/orders", tags=["orders"])


# ============================================================================
# CREATE & READ
# ============================================================================


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    body: OrderCreateRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    clock: Clock = Depends(get_clock),
):
    """Place an order with a single market without going through the cart."""
    order = await create_market_order(
        db,
        current_user.user_id,
        body.market_id,
        [(line.product_id, line.quantity) for line in body.items],
        shipping_address=body.shipping_address.model_dump(),
        shipping_method=body.shipping_method,
        notes=body.notes,
        clock=clock,
    )
    await post_ledger_entries(db, [order])
    return order


@router.get("", response_model=OrderListResponse)
async def list_my_orders(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """List the caller's orders as a buyer, newest first."""
    orders, total = await order_ops.list_buyer_orders(
        db, current_user.user_id, status=order_status, skip=skip, limit=limit
    )
    return OrderListResponse(
        orders=[OrderResponse.model_validate(order) for order in orders],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/market", response_model=OrderListResponse)
async def list_market_orders(
    market_id: Optional[uuid.UUID] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """List orders received by the markets the caller owns."""
    orders, total = await order_ops.list_market_orders(
        db,
        current_user.user_id,
        market_id=market_id,
        status=order_status,
        skip=skip,
        limit=limit,
    )
    return OrderListResponse(
        orders=[OrderResponse.model_validate(order) for order in orders],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Get an order as its buyer or as the market owner."""
    return await order_ops.load_for_actor(
        db, order_id, current_user.user_id, [order_ops.BUYER, order_ops.OWNER]
    )


# ============================================================================
# MARKET OWNER ACTIONS
# ============================================================================


@router.patch("/{order_id}/confirm", response_model=OrderResponse)
async def confirm_order(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    clock: Clock = Depends(get_clock),
):
    return await order_ops.confirm_order(
        db, order_id, current_user.user_id, clock=clock
    )


@router.patch("/{order_id}/process", response_model=OrderResponse)
async def process_order(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    clock: Clock = Depends(get_clock),
):
    return await order_ops.process_order(
        db, order_id, current_user.user_id, clock=clock
    )


@router.patch("/{order_id}/ship", response_model=OrderResponse)
async def ship_order(
    order_id: uuid.UUID,
    body: Optional[ShipOrderRequest] = None,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    clock: Clock = Depends(get_clock),
):
    """Mark shipped, optionally recording a tracking number."""
    return await order_ops.ship_order(
        db,
        order_id,
        current_user.user_id,
        tracking_number=body.tracking_number if body else None,
        clock=clock,
    )


@router.patch("/{order_id}/deliver", response_model=OrderResponse)
async def deliver_order(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    clock: Clock = Depends(get_clock),
):
    return await order_ops.deliver_order(
        db, order_id, current_user.user_id, clock=clock
    )


@router.patch("/{order_id}/refund", response_model=OrderResponse)
async def refund_order(
    order_id: uuid.UUID,
    body: Optional[RefundOrderRequest] = None,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    clock: Clock = Depends(get_clock),
):
    """Refund a paid order and return its stock."""
    return await order_ops.refund_order(
        db,
        order_id,
        current_user.user_id,
        reason=body.reason if body else None,
        clock=clock,
    )


# ============================================================================
# BUYER ACTIONS
# ============================================================================


@router.patch("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: uuid.UUID,
    body: Optional[CancelOrderRequest] = None,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    clock: Clock = Depends(get_clock),
):
    """Cancel as buyer or market owner; stock is restored."""
    return await order_ops.cancel_order(
        db,
        order_id,
        current_user.user_id,
        reason=body.reason if body else None,
        clock=clock,
    )


@router.patch("/{order_id}/complete", response_model=OrderResponse)
async def complete_order(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    clock: Clock = Depends(get_clock),
):
    return await order_ops.complete_order(
        db, order_id, current_user.user_id, clock=clock
    )


@router.patch("/{order_id}/rate", response_model=OrderResponse)
async def rate_order(
    order_id: uuid.UUID,
    body: RateOrderRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    clock: Clock = Depends(get_clock),
):
    return await order_ops.rate_order(
        db,
        order_id,
        current_user.user_id,
        rating=body.rating,
        review=body.review,
        clock=clock,
    )
