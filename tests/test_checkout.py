from decimal import Decimal

from darktides.domain.models import Order
from helpers import product_state

def checkout(client, customer, items, method="venmo", session="session_shopper", **extra):
    payload = {"customer": customer, "items": items, "payment_method": method, **extra}
    return client.post("/checkout/orders", json=payload, headers={"X-Session-ID": session})

def test_quote_prices_on_the_server(client, catalog):
    resp = client.post("/checkout/quote", json={
        "items": [{"product_id": "bpc157-10", "quantity": 2}, {"product_id": "sema-5", "quantity": 1}],
        "discount_code": "ten",
    })
    assert resp.status_code == 200
    quote = resp.json()
    assert quote["subtotal"] == 88.0
    assert quote["discount_code"] == "TEN"
    assert quote["discount_amount"] == 8.8
    assert quote["total"] == 79.2
    assert [line["name"] for line in quote["lines"]] == ["BPC-157 10mg", "Semaglutide 5mg"]

def test_quote_refuses_inactive_products(client, catalog):
    resp = client.post("/checkout/quote", json={"items": [{"product_id": "ghkcu-50", "quantity": 1}]})
    assert resp.status_code == 409

def test_validate_cart_endpoint(client, catalog):
    resp = client.post("/checkout/validate", json={"items": [
        {"product_id": "bpc157-10", "quantity": 1},
        {"product_id": "tb500-10", "quantity": 1},
    ]})
    assert resp.json() == {"valid": False, "invalid_items": ["tb500-10"]}

def test_venmo_checkout(client, catalog, customer, notifier):
    resp = checkout(client, customer, [{"product_id": "bpc157-10", "quantity": 2}])
    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    assert body["step"] == "venmo_instructions"
    assert body["totals"]["total"] == 80.0
    assert body["venmo_instructions"] == {
        "handle": "darktides",
        "amount": 80.0,
        "memo": body["order_number"],
        "payment_url": "https://venmo.com/darktides?txn=pay&amount=80.00",
    }

    status = client.get(f"/orders/{body['order_number']}/status").json()
    assert status == {
        "order_number": body["order_number"],
        "status": "pending",
        "payment_status": "pending",
        "payment_method": "venmo",
    }
    assert product_state("bpc157-10") == (3, 0)

    assert len(notifier.orders) == 1
    sent = notifier.orders[0]
    assert sent["payment_confirmation"] is None
    assert sent["order"]["order_number"] == body["order_number"]
    assert sent["order"]["items"][0]["quantity"] == 2

def test_checkout_consumes_the_sessions_holds(client, catalog, customer):
    headers = {"X-Session-ID": "session_shopper"}
    client.post("/inventory/reservations", json={"product_id": "sema-5", "quantity": 3}, headers=headers)
    assert product_state("sema-5") == (3, 3)

    resp = checkout(client, customer, [{"product_id": "sema-5", "quantity": 3}])
    assert resp.status_code == 201
    assert product_state("sema-5") == (0, 0)

def test_checkout_blocked_by_unavailable_item(client, catalog, customer, notifier, db):
    resp = checkout(client, customer, [
        {"product_id": "bpc157-10", "quantity": 1},
        {"product_id": "tb500-10", "quantity": 1},
    ])
    assert resp.status_code == 409
    body = resp.json()
    assert body["success"] is False
    assert body["step"] == "shipping_form"
    assert body["invalid_items"] == ["tb500-10"]
    assert body["order_number"] is None
    assert db.query(Order).count() == 0
    assert product_state("bpc157-10") == (5, 0)
    assert notifier.orders == []

def test_checkout_blocks_split_lines_over_stock(client, catalog, customer, db):
    resp = checkout(client, customer, [
        {"product_id": "bpc157-10", "quantity": 3},
        {"product_id": "bpc157-10", "quantity": 3},
    ])
    assert resp.status_code == 409
    body = resp.json()
    assert body["step"] == "shipping_form"
    assert body["invalid_items"] == ["bpc157-10"]
    assert db.query(Order).count() == 0

def test_checkout_with_invalid_discount_is_rejected(client, catalog, customer, db):
    resp = checkout(client, customer, [{"product_id": "bpc157-10", "quantity": 1}], discount_code="OLD")
    assert resp.status_code == 409
    assert resp.json()["message"] == "Invalid discount code"
    assert db.query(Order).count() == 0

def test_checkout_applies_discount(client, catalog, customer, db):
    resp = checkout(client, customer, [{"product_id": "sema-5", "quantity": 1}], discount_code="save10")
    assert resp.status_code == 201
    totals = resp.json()["totals"]
    assert totals["discount_code"] == "SAVE10"
    assert totals["discount_amount"] == 8.0
    assert totals["total"] == 0.0
    order = db.query(Order).one()
    assert order.total == Decimal("0.00")

def test_checkout_rejects_bad_customer_data(client, catalog, customer):
    customer["email"] = "not-an-email"
    resp = checkout(client, customer, [{"product_id": "bpc157-10", "quantity": 1}])
    assert resp.status_code == 422

def test_crypto_checkout(client, catalog, customer, gateway, db):
    resp = checkout(client, customer, [{"product_id": "bpc157-10", "quantity": 1}], method="crypto")
    assert resp.status_code == 201
    body = resp.json()
    assert body["step"] == "crypto_redirect"
    assert body["crypto_redirect"]["charge_code"] == "CHG0001"
    assert body["crypto_redirect"]["hosted_url"] == "https://commerce.coinbase.com/charges/CHG0001"
    assert gateway.charges == [{"order_number": body["order_number"], "amount": Decimal("40.00"), "code": "CHG0001"}]

    order = db.query(Order).filter_by(order_number=body["order_number"]).one()
    assert order.payment_status == "pending_crypto"
    assert order.coinbase_charge_code == "CHG0001"

def test_charge_failure_keeps_the_order(client, catalog, customer, gateway):
    gateway.fail = True
    resp = checkout(client, customer, [{"product_id": "bpc157-10", "quantity": 1}], method="crypto")
    assert resp.status_code == 502
    body = resp.json()
    assert body["success"] is False
    assert body["order_number"]
    assert body["message"] == "Unable to create payment. Please try again."
    assert product_state("bpc157-10") == (4, 0)

    assert client.post(f"/checkout/orders/{body['order_number']}/charge").status_code == 502

    gateway.fail = False
    retry = client.post(f"/checkout/orders/{body['order_number']}/charge")
    assert retry.status_code == 200
    assert retry.json()["charge_code"] == "CHG0001"
    # a second call returns the attached charge instead of creating another
    assert client.post(f"/checkout/orders/{body['order_number']}/charge").json()["charge_code"] == "CHG0001"
    assert len(gateway.charges) == 1

def test_charge_retry_errors(client, catalog, customer):
    assert client.post("/checkout/orders/DT-NOPE00/charge").status_code == 404
    venmo = checkout(client, customer, [{"product_id": "sema-5", "quantity": 1}]).json()
    assert client.post(f"/checkout/orders/{venmo['order_number']}/charge").status_code == 400

def test_resubmitted_checkout_is_idempotent(client, catalog, customer, notifier, db):
    first = checkout(client, customer, [{"product_id": "sema-5", "quantity": 2}], order_number="DT-RETRY1")
    second = checkout(client, customer, [{"product_id": "sema-5", "quantity": 2}], order_number="DT-RETRY1")
    assert first.status_code == second.status_code == 201
    assert second.json()["order_number"] == "DT-RETRY1"
    assert db.query(Order).count() == 1
    assert product_state("sema-5") == (3 - 2, 0)
    assert len(notifier.orders) == 1

def test_admin_confirms_venmo_payment(client, catalog, customer, admin_headers):
    number = checkout(client, customer, [{"product_id": "sema-5", "quantity": 1}]).json()["order_number"]

    resp = client.patch(f"/admin/orders/{number}", json={"status": "confirmed"}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "confirmed"
    assert resp.json()["payment_status"] == "completed"

    resp = client.patch(f"/admin/orders/{number}", json={"status": "pending"}, headers=admin_headers)
    assert resp.status_code == 409
    assert resp.json()["detail"] == "Status change not allowed"

    shipped = client.patch(f"/admin/orders/{number}", json={"status": "shipped"}, headers=admin_headers)
    assert shipped.json()["status"] == "shipped"

def test_order_status_unknown(client):
    assert client.get("/orders/DT-UNKNWN/status").status_code == 404
