"""HTTP tests for the sales API."""
from decimal import Decimal


def as_user(users, username):
    return {"X-User-Id": str(users[username])}


def order_body(lines, **extra):
    body = {"lines": lines}
    body.update(extra)
    return body


def test_health(client):
    assert client.get("/").status_code == 200
    assert client.get("/health").json() == {"status": "ok"}


def test_place_order_ignores_client_total(client, users, catalog, publisher, stock_of):
    resp = client.post(
        "/api/v1/orders",
        json=order_body(
            [{"variant_id": catalog["S"], "quantity": 3, "unit_price": "100", "discount_rate": "0.2"}],
            total="1.00",
            payment_method="CARD",
        ),
        headers=as_user(users, "cashier1"),
    )

    assert resp.status_code == 201, resp.text
    data = resp.json()
    assert Decimal(data["total"]) == Decimal("240.00")
    assert Decimal(data["lines"][0]["line_total"]) == Decimal("240.00")
    assert data["cashier_id"] == users["cashier1"]
    assert data["channel"] == "IN_PERSON"
    assert data["payment_method"] == "CARD"
    assert stock_of(catalog["S"]) == 7

    routing_key, event = publisher.events[-1]
    assert routing_key == "sale.created"
    assert event["order_id"] == data["order_id"]


def test_insufficient_stock_is_409_with_details(client, users, catalog, publisher, stock_of):
    resp = client.post(
        "/api/v1/orders",
        json=order_body([
            {"variant_id": catalog["S"], "quantity": 1, "unit_price": "10"},
            {"variant_id": catalog["L"], "quantity": 1, "unit_price": "10"},
        ]),
        headers=as_user(users, "cashier1"),
    )

    assert resp.status_code == 409
    body = resp.json()
    assert body["error"] == "insufficient_stock"
    assert body["shortages"] == [{"variant_id": catalog["L"], "requested": 1, "available": 0}]
    assert stock_of(catalog["S"]) == 10
    assert publisher.events == []


def test_unknown_variant_is_404(client, users, catalog):
    resp = client.post(
        "/api/v1/orders",
        json=order_body([{"variant_id": 9999, "quantity": 1, "unit_price": "10"}]),
        headers=as_user(users, "cashier1"),
    )
    assert resp.status_code == 404
    assert resp.json()["resource"] == "variant"


def test_empty_order_is_400(client, users):
    resp = client.post("/api/v1/orders", json=order_body([]), headers=as_user(users, "cashier1"))
    assert resp.status_code == 400
    assert resp.json() == {"error": "validation_error", "message": "no items"}


def test_malformed_request_is_400(client, users, catalog):
    resp = client.post(
        "/api/v1/orders",
        json=order_body([{"variant_id": catalog["S"], "quantity": 1, "unit_price": "10"}], channel="PHONE"),
        headers=as_user(users, "cashier1"),
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_error"


def test_missing_or_unknown_caller_is_401(client, users, catalog):
    body = order_body([{"variant_id": catalog["S"], "quantity": 1, "unit_price": "10"}])
    assert client.post("/api/v1/orders", json=body).status_code == 401
    assert client.post("/api/v1/orders", json=body, headers={"X-User-Id": "4040"}).status_code == 401


def test_customer_ring_cannot_place_pos_orders(client, users, catalog, stock_of):
    resp = client.post(
        "/api/v1/orders",
        json=order_body([{"variant_id": catalog["S"], "quantity": 1, "unit_price": "10"}]),
        headers=as_user(users, "customer1"),
    )
    assert resp.status_code == 403
    assert stock_of(catalog["S"]) == 10


def test_get_list_and_track_orders(client, users, catalog):
    created = client.post(
        "/api/v1/orders",
        json=order_body(
            [{"variant_id": catalog["M"], "quantity": 1, "unit_price": "55.5"}],
            channel="ONLINE",
            payment_method="TRANSFER",
            customer_id=users["customer1"],
            shipping_address={"full_name": "Ana", "address": "Calle 1", "city": "Puebla",
                              "state": "PUE", "zip_code": "72000"},
        ),
        headers=as_user(users, "cashier1"),
    ).json()

    fetched = client.get(f"/api/v1/orders/{created['order_id']}", headers=as_user(users, "manager1"))
    assert fetched.status_code == 200
    assert fetched.json()["shipping_address"]["country"] == "MX"

    listed = client.get(
        "/api/v1/orders", params={"customer_id": users["customer1"]}, headers=as_user(users, "cashier1")
    )
    assert [o["order_id"] for o in listed.json()] == [created["order_id"]]

    tracked = client.get(f"/api/v1/orders/track/{created['tracking_number']}")
    assert tracked.status_code == 200
    assert tracked.json()["order_id"] == created["order_id"]

    assert client.get("/api/v1/orders/track/SS-NOPE").status_code == 404
    assert client.get("/api/v1/orders/missing", headers=as_user(users, "cashier1")).status_code == 404


def test_idempotent_retry_over_http(client, users, catalog, stock_of):
    body = order_body([{"variant_id": catalog["S"], "quantity": 2, "unit_price": "10"}], idempotency_key="till-3-77")
    first = client.post("/api/v1/orders", json=body, headers=as_user(users, "cashier1")).json()
    second = client.post("/api/v1/orders", json=body, headers=as_user(users, "cashier1")).json()

    assert first["order_id"] == second["order_id"]
    assert stock_of(catalog["S"]) == 8


def test_return_endpoint(client, users, catalog, publisher, stock_of):
    created = client.post(
        "/api/v1/orders",
        json=order_body([{"variant_id": catalog["S"], "quantity": 2, "unit_price": "30"}]),
        headers=as_user(users, "cashier1"),
    ).json()

    resp = client.post(
        f"/api/v1/orders/{created['order_id']}/returns",
        json={"items": [{"variant_id": catalog["S"], "quantity": 1}]},
        headers=as_user(users, "cashier1"),
    )

    assert resp.status_code == 201, resp.text
    assert Decimal(resp.json()["refund_total"]) == Decimal("30.00")
    assert resp.json()["order_id"] == created["order_id"]
    assert stock_of(catalog["S"]) == 9
    assert publisher.events[-1][0] == "sale.returned"


def test_catalog_endpoints(client, users):
    body = {
        "name": "Denim Jacket",
        "base_price": "899.00",
        "category": "MEN",
        "product_type": "jacket",
        "variants": [{"size": "L", "sku": "JKT-L", "stock": 2}, {"size": "XL", "sku": "JKT-XL"}],
    }
    assert client.post("/api/v1/products", json=body, headers=as_user(users, "cashier1")).status_code == 403

    created = client.post("/api/v1/products", json=body, headers=as_user(users, "admin"))
    assert created.status_code == 201, created.text
    variants = created.json()["variants"]
    assert [(v["sku"], v["stock"]) for v in variants] == [("JKT-L", 2), ("JKT-XL", 0)]

    names = [p["name"] for p in client.get("/api/v1/products").json()]
    assert "Denim Jacket" in names
    assert client.get(f"/api/v1/variants/{variants[0]['id']}").json()["sku"] == "JKT-L"


def test_restock_and_low_stock_endpoints(client, users, catalog, publisher):
    low = client.get("/api/v1/inventory/low-stock", params={"threshold": 5}, headers=as_user(users, "manager1"))
    assert [v["sku"] for v in low.json()] == ["SHIRT-L", "SHIRT-M"]

    denied = client.post(
        f"/api/v1/variants/{catalog['L']}/restock", json={"quantity": 4}, headers=as_user(users, "manager1")
    )
    assert denied.status_code == 403

    resp = client.post(
        f"/api/v1/variants/{catalog['L']}/restock", json={"quantity": 4}, headers=as_user(users, "admin")
    )
    assert resp.status_code == 200
    assert resp.json()["stock"] == 4
    assert publisher.events[-1] == (
        "stock.restocked", {"variant_id": catalog["L"], "sku": "SHIRT-L", "quantity": 4, "stock": 4}
    )

    bad = client.post(
        f"/api/v1/variants/{catalog['L']}/restock", json={"quantity": 0}, headers=as_user(users, "admin")
    )
    assert bad.status_code == 400


def test_roles_and_users_endpoints(client, users):
    roles = client.get("/api/v1/roles").json()
    assert [r["name"] for r in roles] == ["admin", "manager", "cashier", "customer"]

    created = client.post(
        "/api/v1/roles", json={"name": "stockist", "permission_ring": 0}, headers=as_user(users, "admin")
    )
    assert created.status_code == 201

    user = client.post(
        "/api/v1/users", json={"username": "stock1", "role": "stockist"}, headers=as_user(users, "admin")
    )
    assert user.status_code == 201
    assert user.json()["role_id"] == created.json()["id"]

    assert client.post(
        "/api/v1/roles", json={"name": "x", "permission_ring": 1}, headers=as_user(users, "manager1")
    ).status_code == 403


def test_online_order_without_address_is_400(client, users, catalog, stock_of):
    resp = client.post(
        "/api/v1/orders",
        json=order_body([{"variant_id": catalog["S"], "quantity": 1, "unit_price": "10"}], channel="ONLINE"),
        headers=as_user(users, "cashier1"),
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "online orders require a shipping address"
    assert stock_of(catalog["S"]) == 10
