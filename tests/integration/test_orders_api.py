"""Integration tests for the orders service HTTP API (cart, checkout, orders)."""

import pytest
from services.orders_service.models import Product
from sqlalchemy import select
from tests.factories import seed_market

ADDRESS = {
    "street": "1 Market Street",
    "city": "Lagos",
    "postal_code": "100001",
    "country": "NG",
}


async def _stock(session_factory, product_id) -> int:
    async with session_factory() as session:
        result = await session.execute(
            select(Product.stock_quantity).where(Product.id == product_id)
        )
        return result.scalar_one()


async def _checkout(client, headers, lines):
    for product_id, quantity in lines:
        response = await client.post(
            "/cart/items",
            json={"product_id": str(product_id), "quantity": quantity},
            headers=headers,
        )
        assert response.status_code == 200, response.text
    return await client.post(
        "/cart/checkout", json={"shipping_address": ADDRESS}, headers=headers
    )


@pytest.mark.asyncio
@pytest.mark.integration
async def test_health(orders_client):
    response = await orders_client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "orders"}


@pytest.mark.asyncio
@pytest.mark.integration
async def test_requires_authentication(orders_client):
    response = await orders_client.get("/cart")
    assert response.status_code in (401, 403)


# ---------------------------------------------------------------------------
# Cart
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_cart_lifecycle(orders_client, db_session, auth_headers):
    headers = auth_headers("buyer-cart")
    _, (product,) = await seed_market(db_session, products=[("12.50", 4)])

    response = await orders_client.post(
        "/cart/items", json={"product_id": str(product.id)}, headers=headers
    )
    assert response.status_code == 200, response.text
    response = await orders_client.post(
        "/cart/items",
        json={"product_id": str(product.id), "quantity": 2},
        headers=headers,
    )
    cart = response.json()
    assert len(cart["items"]) == 1
    assert cart["items"][0]["quantity"] == 3
    assert cart["total_items"] == 3
    assert cart["subtotal"] == "37.50"
    item_id = cart["items"][0]["id"]

    response = await orders_client.patch(
        f"/cart/items/{item_id}", json={"quantity": 5}, headers=headers
    )
    assert response.status_code == 422
    assert response.json()["error"] == "validation_error"

    response = await orders_client.patch(
        f"/cart/items/{item_id}", json={"quantity": 1}, headers=headers
    )
    assert response.json()["items"][0]["quantity"] == 1

    response = await orders_client.delete(f"/cart/items/{item_id}", headers=headers)
    assert response.status_code == 200
    assert response.json()["items"] == []


@pytest.mark.asyncio
@pytest.mark.integration
async def test_cart_items_are_private(orders_client, db_session, auth_headers):
    _, (product,) = await seed_market(db_session, products=[("1.00", 4)])
    response = await orders_client.post(
        "/cart/items",
        json={"product_id": str(product.id)},
        headers=auth_headers("buyer-a"),
    )
    item_id = response.json()["items"][0]["id"]

    response = await orders_client.delete(
        f"/cart/items/{item_id}", headers=auth_headers("buyer-b")
    )
    assert response.status_code == 404

    response = await orders_client.delete(
        "/cart/clear", headers=auth_headers("buyer-a")
    )
    assert response.json()["total_items"] == 0


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_checkout_across_two_markets(
    orders_client, db_session, session_factory, auth_headers
):
    headers = auth_headers("buyer-e2e")
    m1, (p1,) = await seed_market(db_session, products=[("20.00", 5)])
    m2, (p2,) = await seed_market(db_session, products=[("15.00", 1)])

    response = await _checkout(orders_client, headers, [(p1.id, 2), (p2.id, 1)])

    assert response.status_code == 201, response.text
    data = response.json()
    assert data["total_orders"] == 2
    first, second = data["orders"]
    assert first["market_id"] == str(m1.id)
    assert (first["subtotal"], first["tax_amount"], first["total_amount"]) == (
        "40.00",
        "4.00",
        "54.00",
    )
    assert second["market_id"] == str(m2.id)
    assert (second["subtotal"], second["tax_amount"], second["total_amount"]) == (
        "15.00",
        "1.50",
        "26.50",
    )
    assert first["items"][0]["unit_price"] == "20.00"
    assert first["status"] == "pending"

    assert await _stock(session_factory, p1.id) == 3
    assert await _stock(session_factory, p2.id) == 0

    cart = await orders_client.get("/cart", headers=headers)
    assert cart.json()["items"] == []


@pytest.mark.asyncio
@pytest.mark.integration
async def test_checkout_empty_cart(orders_client, auth_headers):
    response = await orders_client.post(
        "/cart/checkout",
        json={"shipping_address": ADDRESS},
        headers=auth_headers("buyer-empty"),
    )
    assert response.status_code == 422
    assert response.json()["error"] == "empty_cart"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_checkout_insufficient_stock_reports_product(
    orders_client, db_session, session_factory, auth_headers
):
    headers = auth_headers("buyer-short")
    _, (p1,) = await seed_market(db_session, products=[("20.00", 5)])
    _, (p2,) = await seed_market(db_session, products=[("15.00", 2)])
    for product_id, quantity in [(p1.id, 1), (p2.id, 2)]:
        await orders_client.post(
            "/cart/items",
            json={"product_id": str(product_id), "quantity": quantity},
            headers=headers,
        )

    # Another buyer takes one unit of P2 first
    await _checkout(orders_client, auth_headers("buyer-fast"), [(p2.id, 1)])

    response = await orders_client.post(
        "/cart/checkout", json={"shipping_address": ADDRESS}, headers=headers
    )

    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "insufficient_stock"
    assert body["context"]["product_id"] == str(p2.id)
    assert body["context"]["available"] == 1
    assert await _stock(session_factory, p1.id) == 5
    assert len((await orders_client.get("/cart", headers=headers)).json()["items"]) == 2


@pytest.mark.asyncio
@pytest.mark.integration
async def test_checkout_validation_errors_are_enumerated(orders_client, auth_headers):
    response = await orders_client.post(
        "/cart/checkout",
        json={"shipping_address": {**ADDRESS, "city": ""}},
        headers=auth_headers("buyer-invalid"),
    )

    assert response.status_code == 422
    body = response.json()
    assert body["detail"] == "Validation failed"
    assert "shipping_address.city" in body["errors"]


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_direct_order_and_owner_workflow(
    orders_client, db_session, session_factory, auth_headers
):
    buyer, owner = auth_headers("buyer-1"), auth_headers("seller-1")
    market, (product,) = await seed_market(
        db_session, owner_auth_id="seller-1", products=[("20.00", 5)]
    )

    response = await orders_client.post(
        "/orders",
        json={
            "market_id": str(market.id),
            "items": [{"product_id": str(product.id), "quantity": 2}],
            "shipping_address": ADDRESS,
        },
        headers=buyer,
    )
    assert response.status_code == 201, response.text
    order_id = response.json()["id"]

    response = await orders_client.patch(f"/orders/{order_id}/confirm", headers=buyer)
    assert response.status_code == 403
    assert response.json() == {"detail": "Unauthorized", "error": "unauthorized"}

    response = await orders_client.patch(f"/orders/{order_id}/confirm", headers=owner)
    assert response.status_code == 200
    assert response.json()["status"] == "confirmed"

    response = await orders_client.patch(
        f"/orders/{order_id}/ship",
        json={"tracking_number": "TRK-9"},
        headers=owner,
    )
    assert response.json()["metadata"]["tracking_number"] == "TRK-9"

    response = await orders_client.get(f"/orders/{order_id}", headers=auth_headers("x"))
    assert response.status_code == 403

    market_orders = await orders_client.get("/orders/market", headers=owner)
    assert market_orders.json()["total"] == 1

    my_orders = await orders_client.get("/orders?status=shipped", headers=buyer)
    assert [o["id"] for o in my_orders.json()["orders"]] == [order_id]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_cancel_twice_over_http(
    orders_client, db_session, session_factory, auth_headers
):
    buyer = auth_headers("buyer-cancel")
    _, (product,) = await seed_market(db_session, products=[("8.00", 6)])
    response = await _checkout(orders_client, buyer, [(product.id, 4)])
    order_id = response.json()["orders"][0]["id"]
    assert await _stock(session_factory, product.id) == 2

    response = await orders_client.patch(
        f"/orders/{order_id}/cancel", json={"reason": "Too slow"}, headers=buyer
    )
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert await _stock(session_factory, product.id) == 6

    response = await orders_client.patch(f"/orders/{order_id}/cancel", headers=buyer)
    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "invalid_state_transition"
    assert body["context"]["current_status"] == "cancelled"
    assert await _stock(session_factory, product.id) == 6


@pytest.mark.asyncio
@pytest.mark.integration
async def test_rate_validation(orders_client, auth_headers, db_session):
    _, (product,) = await seed_market(db_session, products=[("8.00", 6)])
    buyer = auth_headers("buyer-rate")
    response = await _checkout(orders_client, buyer, [(product.id, 1)])
    order_id = response.json()["orders"][0]["id"]

    response = await orders_client.patch(
        f"/orders/{order_id}/rate", json={"rating": 6}, headers=buyer
    )
    assert response.status_code == 422
    assert "rating" in response.json()["errors"]

    response = await orders_client.patch(
        f"/orders/{order_id}/rate", json={"rating": 5}, headers=buyer
    )
    assert response.status_code == 422
    assert response.json()["error"] == "invalid_state_transition"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_unknown_order_is_404(orders_client, auth_headers):
    response = await orders_client.get(
        "/orders/00000000-0000-0000-0000-000000000000", headers=auth_headers("u")
    )
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


# ---------------------------------------------------------------------------
# Internal
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_internal_payment_status_requires_service_role(
    orders_client, db_session, auth_headers, service_headers
):
    _, (product,) = await seed_market(db_session, products=[("8.00", 6)])
    buyer = auth_headers("buyer-pay")
    response = await _checkout(orders_client, buyer, [(product.id, 1)])
    order_id = response.json()["orders"][0]["id"]
    path = f"/internal/orders/{order_id}/payment-status"
    body = {"payment_status": "paid", "transaction_id": "txn-42"}

    response = await orders_client.post(path, json=body, headers=buyer)
    assert response.status_code == 403

    response = await orders_client.post(path, json=body, headers=service_headers)
    assert response.status_code == 200, response.text
    assert response.json()["payment_status"] == "paid"
    assert response.json()["payment_transaction_id"] == "txn-42"

    response = await orders_client.post(path, json=body, headers=service_headers)
    assert response.status_code == 200

    response = await orders_client.post(
        path, json={"payment_status": "refunded"}, headers=service_headers
    )
    assert response.status_code == 422


@pytest.mark.asyncio
@pytest.mark.integration
async def test_conflicting_payment_outcome_reports_current_status(
    orders_client, db_session, auth_headers, service_headers
):
    _, (product,) = await seed_market(db_session, products=[("8.00", 6)])
    buyer = auth_headers("buyer-conflict")
    response = await _checkout(orders_client, buyer, [(product.id, 1)])
    order_id = response.json()["orders"][0]["id"]
    path = f"/internal/orders/{order_id}/payment-status"

    response = await orders_client.post(
        path,
        json={"payment_status": "paid", "transaction_id": "txn-7"},
        headers=service_headers,
    )
    assert response.status_code == 200

    response = await orders_client.post(
        path, json={"payment_status": "failed"}, headers=service_headers
    )
    assert response.status_code == 422, response.text
    body = response.json()
    assert body["error"] == "invalid_state_transition"
    assert body["context"]["current_status"] == "paid"
    assert body["context"]["order_id"] == order_id

    response = await orders_client.get(f"/orders/{order_id}", headers=buyer)
    assert response.json()["payment_status"] == "paid"
    assert response.json()["payment_transaction_id"] == "txn-7"
