import pytest

from storefront import crud

CHECKOUT = {
    "first_name": "Ana",
    "last_name": "Gomez",
    "email": "ana@example.com",
    "phone": "+57 300 123 4567",
    "shipping_address": {
        "street": "Calle 10 # 5-20",
        "city": "Bogota",
        "state": "Cundinamarca",
        "zip_code": "110111",
    },
    "payment_method": "cash_on_delivery",
}


@pytest.fixture
def checkout(client, make_product):
    def _checkout(payment_method="cash_on_delivery", quantity=1, headers=None):
        product = make_product(stock=10)
        client.post("/cart/items", json={"product_id": product.id, "quantity": quantity})
        body = {**CHECKOUT, "payment_method": payment_method, "payment_token": "pm_card_visa"}
        return client.post("/orders/checkout", json=body, headers=headers or {})

    return _checkout


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy", "service": "storefront-service"}


def test_cart_endpoints(client, make_product):
    product = make_product(price=10000, stock=5)

    assert client.get("/cart").json()["items"] == []

    response = client.post("/cart/items", json={"product_id": product.id, "quantity": 3})
    assert response.status_code == 201
    cart = response.json()
    assert cart["total"] == 30000
    line_id = cart["items"][0]["id"]

    response = client.put(f"/cart/items/{line_id}", json={"quantity": 6})
    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["error"] == "insufficient_stock"
    assert detail["errors"][0]["available"] == 5
    assert detail["retryable"] is False

    assert client.put(f"/cart/items/{line_id}", json={"quantity": 5}).json()["total"] == 50000

    summary = client.get("/cart/summary", params={"product_id": product.id}).json()
    assert summary == {"total": 50000, "item_count": 5, "quantity_for": 5}

    assert client.put(f"/cart/items/{line_id}", json={"quantity": 0}).json()["items"] == []
    assert client.delete(f"/cart/items/{line_id}").status_code == 200


def test_add_unknown_product_is_404(client):
    response = client.post("/cart/items", json={"product_id": "missing", "quantity": 1})

    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "not_found"


def test_add_zero_quantity_is_rejected_by_validation(client, make_product):
    response = client.post("/cart/items", json={"product_id": make_product().id, "quantity": 0})
    assert response.status_code == 422


def test_check_stock(client, db, make_product):
    product = make_product(stock=4)
    client.post("/cart/items", json={"product_id": product.id, "quantity": 3})
    assert client.post("/cart/check-stock").json() == {"valid": True, "errors": []}

    crud.set_stock(db, product.id, 1)
    result = client.post("/cart/check-stock").json()

    assert result["valid"] is False
    assert result["errors"][0]["requested"] == 3
    assert result["errors"][0]["available"] == 1


def test_clear_cart(client, make_product):
    client.post("/cart/items", json={"product_id": make_product().id, "quantity": 1})

    response = client.delete("/cart")

    assert response.status_code == 200
    assert response.json()["items"] == []
    assert response.json()["total"] == 0


def test_cash_on_delivery_checkout(client, checkout):
    response = checkout(quantity=2)

    assert response.status_code == 201
    order = response.json()
    assert order["status"] == "pending"
    assert order["payment_status"] == "pending"
    assert order["total"] == 20000
    assert order["shipping_address"]["country"] == "Colombia"
    assert client.get("/cart").json()["items"] == []


def test_checkout_empty_cart_is_400(client):
    response = client.post("/orders/checkout", json=CHECKOUT)

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "validation_failed"


def test_checkout_insufficient_stock_is_409(client, db, make_product):
    product = make_product(stock=3)
    client.post("/cart/items", json={"product_id": product.id, "quantity": 3})
    crud.set_stock(db, product.id, 2)

    response = client.post("/orders/checkout", json=CHECKOUT)

    assert response.status_code == 409
    assert response.json()["detail"]["errors"][0]["product_id"] == product.id


def test_declined_card_is_402(client, checkout, gateway):
    gateway.status = "failed"

    response = checkout(payment_method="card")

    assert response.status_code == 402
    assert response.json()["detail"]["error"] == "payment_declined"
    assert len(client.get("/cart").json()["items"]) == 1


def test_gateway_outage_is_503_with_retry_after(client, checkout, gateway):
    gateway.status = "unavailable"

    response = checkout(payment_method="card")

    assert response.status_code == 503
    assert response.headers["Retry-After"] == "5"
    assert response.json()["detail"]["retryable"] is True


def test_idempotency_key_replays_order(client, gateway, checkout):
    first = checkout(payment_method="card", headers={"Idempotency-Key": "abc-123"})
    again = client.post(
        "/orders/checkout",
        json={**CHECKOUT, "payment_method": "card", "payment_token": "pm_card_visa"},
        headers={"Idempotency-Key": "abc-123"},
    )

    assert first.status_code == 201
    assert again.status_code == 201
    assert again.json()["id"] == first.json()["id"]
    assert len(gateway.calls) == 1


def test_my_orders_are_paginated(client, checkout):
    ids = [checkout().json()["id"] for _ in range(3)]

    page = client.get("/orders/me", params={"page": 1, "limit": 2}).json()

    assert page["total"] == 3
    assert page["total_pages"] == 2
    assert len(page["orders"]) == 2
    assert set(o["id"] for o in page["orders"]) <= set(ids)
    assert len(client.get("/orders/me", params={"page": 2, "limit": 2}).json()["orders"]) == 1


def test_order_visibility(client, auth, checkout):
    order_id = checkout().json()["id"]

    assert client.get(f"/orders/{order_id}").status_code == 200

    auth.login("user-2")
    assert client.get(f"/orders/{order_id}").status_code == 403
    assert client.get("/orders/me").json()["total"] == 0

    auth.login("staff-1", role="employee")
    assert client.get(f"/orders/{order_id}").status_code == 200
    assert client.get("/orders").json()["total"] == 1
    assert client.get("/orders/missing").status_code == 404


def test_status_updates_are_staff_only(client, auth, checkout):
    order_id = checkout().json()["id"]

    response = client.patch(f"/orders/{order_id}/status", json={"status": "processing"})
    assert response.status_code == 403

    auth.login("admin-1", role="admin")
    response = client.patch(f"/orders/{order_id}/status", json={"status": "shipped"})
    assert response.status_code == 409
    assert response.json()["detail"]["current"] == "pending"

    response = client.patch(f"/orders/{order_id}/status", json={"status": "processing"})
    assert response.status_code == 200
    assert response.json()["status"] == "processing"

    response = client.patch(f"/orders/{order_id}/payment-status", json={"payment_status": "completed"})
    assert response.status_code == 200
    assert response.json()["payment_status"] == "completed"

    response = client.patch(f"/orders/{order_id}/status", json={"status": "teleported"})
    assert response.status_code == 422


def test_product_back_office(client, auth):
    product = {"name": "Rosa Blanca", "price": 12000, "stock": 4, "category": "Rosas"}

    assert client.post("/products/", json=product).status_code == 403

    auth.login("staff-1", role="employee")
    response = client.post("/products/", json=product)
    assert response.status_code == 201
    product_id = response.json()["id"]

    duplicate = client.post("/products/", json={**product, "name": "rosa blanca"})
    assert duplicate.status_code == 400

    response = client.put(f"/products/{product_id}/stock", json={"stock": 9})
    assert response.json()["stock"] == 9

    response = client.patch(f"/products/{product_id}", json={"price": 15000})
    assert response.json()["price"] == 15000
    assert response.json()["name"] == "Rosa Blanca"

    assert client.delete(f"/products/{product_id}").status_code == 204
    assert client.get(f"/products/{product_id}").status_code == 404


def test_reconciliation_list_is_staff_only(client, auth):
    assert client.get("/orders/reconciliation").status_code == 403

    auth.login("admin-1", role="admin")
    response = client.get("/orders/reconciliation")

    assert response.status_code == 200
    assert response.json() == []
