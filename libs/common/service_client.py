"""Service-to-service HTTP calls between the orders and ledger services.

Neither service reads the other's tables; everything crosses this boundary as
a POST carrying a short-lived service-role JWT.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
from libs.auth.dependencies import _service_role_jwt
from libs.common.config import get_settings
from libs.common.logging import get_logger, get_request_id

logger = get_logger(__name__)

INTERNAL_TIMEOUT = 10.0


async def post_internal(
    service_url: str,
    path: str,
    *,
    calling_service: str,
    json: Any = None,
    timeout: float = INTERNAL_TIMEOUT,
) -> httpx.Response:
    """POST to a sibling service as ``service:<calling_service>``.

    The current request id is forwarded so both sides log under one id.
    Connection failures propagate as ``httpx.RequestError``.
    """
    headers = {
        "Authorization": f"Bearer {_service_role_jwt(calling_service)}",
        "X-Caller-Service": calling_service,
    }
    request_id = get_request_id()
    if request_id:
        headers["X-Request-ID"] = request_id

    async with httpx.AsyncClient(base_url=service_url, timeout=timeout) as client:
        response = await client.post(path, headers=headers, json=json)
    logger.debug("POST %s%s -> %s", service_url, path, response.status_code)
    return response


# ---------------------------------------------------------------------------
# Ledger Service helpers
# ---------------------------------------------------------------------------


async def record_ledger_transaction(
    user_auth_id: str,
    *,
    transaction_type: str,
    amount: str,
    currency: str,
    calling_service: str,
    market_id: Optional[str] = None,
    order_id: Optional[str] = None,
    description: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> dict:
    """Append a purchase/sale/fee/refund entry to the transaction ledger.

    ``amount`` is sent as a decimal string so no precision is lost in JSON.
    Returns the created transaction as a dict. Raises httpx errors on failure.
    """
    settings = get_settings()
    resp = await post_internal(
        settings.LEDGER_SERVICE_URL,
        "/internal/ledger/transactions",
        calling_service=calling_service,
        json={
            "user_auth_id": user_auth_id,
            "type": transaction_type,
            "amount": amount,
            "currency": currency,
            "market_id": market_id,
            "order_id": order_id,
            "description": description,
            "metadata": metadata or {},
        },
    )
    resp.raise_for_status()
    return resp.json()


# ---------------------------------------------------------------------------
# Orders Service helpers
# ---------------------------------------------------------------------------


async def notify_order_payment_status(
    order_id: str,
    *,
    payment_status: str,
    calling_service: str,
    transaction_id: Optional[str] = None,
) -> Optional[dict]:
    """Tell the orders service that an order's payment settled.

    Returns the updated order dict, or None if the order does not exist.
    """
    settings = get_settings()
    resp = await post_internal(
        settings.ORDERS_SERVICE_URL,
        f"/internal/orders/{order_id}/payment-status",
        calling_service=calling_service,
        json={
            "payment_status": payment_status,
            "transaction_id": transaction_id,
        },
    )
    if resp.status_code == 404:
        return None
    resp.raise_for_status()
    return resp.json()
