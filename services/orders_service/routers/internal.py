"""Internal service-to-service order endpoints.

Called by the ledger service via service-role JWT, not by clients directly.
"""

import uuid

from fastapi import APIRouter, Depends
from libs.auth.dependencies import require_service_role
from libs.auth.models import AuthUser
from libs.common.datetime_utils import Clock, get_clock
from libs.db.session import get_async_db
from services.orders_service.models import PaymentStatus
from services.orders_service.schemas import OrderResponse, PaymentStatusUpdate
from services.orders_service.services import order_ops
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/internal/orders", tags=["internal-orders"])


@router.post("/{order_id}/payment-status", response_model=OrderResponse)
async def update_payment_status(
    order_id: uuid.UUID,
    body: PaymentStatusUpdate,
    service: AuthUser = Depends(require_service_role),
    db: AsyncSession = Depends(get_async_db),
    clock: Clock = Depends(get_clock),
):
    """Record the settled payment outcome of an order."""
    return await order_ops.record_payment(
        db,
        order_id,
        payment_status=PaymentStatus(body.payment_status),
        transaction_id=body.transaction_id,
        actor_id=service.user_id,
        clock=clock,
    )
