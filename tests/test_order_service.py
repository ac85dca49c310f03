PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def order_payload(**overrides):
    payload = {
        "order_items": [{
            "id": "mlbb:::CART:::abc",
            "name": "Mobile Legends",
            "selectedVariation": {"id": "d50", "name": "50 Diamonds", "price": 50},
            "selectedAddOns": [],
            "totalPrice": 50,
            "quantity": 1,
        }],
        "customer_info": {"User ID": "111", "Payment Method": "GCash"},
        "payment_method_id": "gcash",
        "receipt_url": "http://testserver/receipts/r.png",
        "total_price": 50,
    }
    payload.update(overrides)
    return payload


def create(client, **overrides):
    resp = client.post("/api/v1/orders", json=order_payload(**overrides))
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/").status_code == 200


def test_create_order_is_pending_and_numbered(client, producer):
    first = create(client)
    second = create(client, status="approved")

    assert first["status"] == "pending"
    assert second["status"] == "pending"
    assert first["invoice_number"] == "INV-000001"
    assert second["invoice_number"] == "INV-000002"
    assert first["id"] != second["id"]
    assert first["receipt_url"] == "http://testserver/receipts/r.png"
    assert first["order_items"][0]["selectedVariation"]["id"] == "d50"
    assert producer.events[0] == ("order.created", {"order_id": first["id"], "status": "pending"})


def test_create_order_validation(client, producer):
    assert client.post("/api/v1/orders", json=order_payload(order_items=[])).status_code == 422
    assert client.post("/api/v1/orders", json=order_payload(receipt_url="  ")).status_code == 422
    assert client.post("/api/v1/orders", json=order_payload(total_price=-1)).status_code == 422
    assert producer.events == []


def test_get_order(client):
    order = create(client)
    resp = client.get(f"/api/v1/orders/{order['id']}")
    assert resp.status_code == 200
    assert resp.json()["receipt_url"] == order["receipt_url"]

    assert client.get("/api/v1/orders/missing").status_code == 404


def test_list_orders_newest_first_without_receipts(client):
    ids = [create(client, member_id="m1" if i % 2 else None)["id"] for i in range(5)]

    page = client.get("/api/v1/orders", params={"offset": 0, "limit": 2}).json()
    assert page["count"] == 5
    assert [o["id"] for o in page["orders"]] == [ids[4], ids[3]]
    assert "receipt_url" not in page["orders"][0]

    last = client.get("/api/v1/orders", params={"offset": 4, "limit": 2}).json()
    assert [o["id"] for o in last["orders"]] == [ids[0]]

    mine = client.get("/api/v1/orders", params={"member_id": "m1"}).json()
    assert mine["count"] == 2
    assert [o["id"] for o in mine["orders"]] == [ids[3], ids[1]]


def test_update_follows_lifecycle(client, producer):
    order = create(client)
    url = f"/api/v1/orders/{order['id']}"

    resp = client.patch(url, json={"status": "processing"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "processing"

    resp = client.patch(url, json={"status": "approved", "approval_message": "Sent!"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "approved"
    assert body["approval_message"] == "Sent!"
    assert producer.routing_keys == ["order.created", "order.updated", "order.updated"]
    assert producer.events[-1][1] == {"order_id": order["id"], "status": "approved"}


def test_terminal_orders_are_frozen(client, producer):
    order = create(client)
    url = f"/api/v1/orders/{order['id']}"
    client.patch(url, json={"status": "rejected", "rejection_reason": "Invalid receipt"})

    assert client.patch(url, json={"status": "approved"}).status_code == 409
    assert client.patch(url, json={"status": "rejected", "rejection_reason": "Other"}).status_code == 409
    assert client.get(url).json()["rejection_reason"] == "Invalid receipt"
    assert producer.routing_keys.count("order.updated") == 1


def test_update_rejects_backwards_and_unknown_status(client):
    order = create(client)
    url = f"/api/v1/orders/{order['id']}"
    client.patch(url, json={"status": "processing"})

    assert client.patch(url, json={"status": "pending"}).status_code == 409
    assert client.patch(url, json={"status": "shipped"}).status_code == 422
    assert client.patch("/api/v1/orders/missing", json={"status": "approved"}).status_code == 404


def test_rejection_fields_only_kept_while_rejected(client):
    order = create(client)
    url = f"/api/v1/orders/{order['id']}"

    body = client.patch(url, json={"rejection_reason": "stray"}).json()
    assert body["status"] == "pending"
    assert body["rejection_reason"] is None

    body = client.patch(url, json={
        "status": "rejected",
        "rejection_reason": "Wrong amount",
        "rejection_message": "Please pay 50",
    }).json()
    assert body["rejection_reason"] == "Wrong amount"
    assert body["rejection_message"] == "Please pay 50"
    assert body["approval_message"] is None


def test_delete_order(client, producer):
    order = create(client)
    resp = client.delete(f"/api/v1/orders/{order['id']}")
    assert resp.status_code == 200
    assert client.get(f"/api/v1/orders/{order['id']}").status_code == 404
    assert producer.events[-1] == ("order.deleted", {"order_id": order["id"], "status": "pending"})


def test_receipt_upload_and_download(client):
    resp = client.post("/api/v1/receipts", files={"file": ("proof.png", PNG, "image/png")})
    assert resp.status_code == 201
    url = resp.json()["url"]
    assert url.startswith("http://testserver/receipts/")
    assert url.endswith(".png")

    download = client.get(url)
    assert download.status_code == 200
    assert download.content == PNG


def test_receipt_upload_validation(client):
    resp = client.post("/api/v1/receipts", files={"file": ("proof.pdf", b"%PDF", "application/pdf")})
    assert resp.status_code == 415
    resp = client.post("/api/v1/receipts", files={"file": ("proof.png", b"", "image/png")})
    assert resp.status_code == 422
    assert client.get("/receipts/nothing.png").status_code == 404


def test_payment_methods(client):
    client.post("/api/v1/payment-methods", json={"id": "maya", "name": "Maya", "sort_order": 2})
    client.post("/api/v1/payment-methods", json={"id": "gcash", "name": "GCash", "sort_order": 1})
    client.post("/api/v1/payment-methods", json={"id": "old", "name": "Old Bank", "active": False})

    methods = client.get("/api/v1/payment-methods").json()
    assert [m["id"] for m in methods] == ["gcash", "maya"]

    client.post("/api/v1/payment-methods", json={"id": "maya", "name": "Maya Wallet", "sort_order": 0})
    methods = client.get("/api/v1/payment-methods").json()
    assert [m["name"] for m in methods] == ["Maya Wallet", "GCash"]
