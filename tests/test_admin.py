import pytest

from darktides.application.inventory import InventoryService
from helpers import product_state

NEW_PRODUCT = {
    "id": "cjc-5",
    "name": "CJC-1295 5mg",
    "short_name": "CJC-1295",
    "dosage": "5 MG",
    "sku": "DT-CJC-005",
    "price": 45,
    "stock_quantity": 12,
    "display_order": 5,
}

def test_token_rejects_bad_credentials(client):
    resp = client.post("/admin/token", json={"username": "admin", "password": "wrong"})
    assert resp.status_code == 401

@pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer not-a-jwt"}, {"Authorization": "Basic abc"}])
def test_admin_routes_require_token(client, headers):
    assert client.get("/admin/products", headers=headers).status_code == 401
    assert client.get("/admin/orders", headers=headers).status_code == 401

def test_product_crud(client, catalog, admin_headers):
    resp = client.post("/admin/products", json=NEW_PRODUCT, headers=admin_headers)
    assert resp.status_code == 201
    created = resp.json()
    assert created["stock_quantity"] == 12
    assert created["reserved_quantity"] == 0
    assert created["available"] == 12

    duplicate = client.post("/admin/products", json=NEW_PRODUCT, headers=admin_headers)
    assert duplicate.status_code == 409

    resp = client.patch("/admin/products/cjc-5", json={"price": 39.5, "description": "Lyophilized"}, headers=admin_headers)
    assert resp.json()["price"] == 39.5
    assert resp.json()["description"] == "Lyophilized"

    resp = client.post("/admin/products/cjc-5/toggle", headers=admin_headers)
    assert resp.json()["is_active"] is False
    assert "cjc-5" not in [p["id"] for p in client.get("/products/").json()]
    assert "cjc-5" in [p["id"] for p in client.get("/admin/products", headers=admin_headers).json()]

    assert client.delete("/admin/products/cjc-5", headers=admin_headers).status_code == 204
    assert client.patch("/admin/products/cjc-5", json={"price": 10}, headers=admin_headers).status_code == 404

def test_set_stock_respects_reservations(client, catalog, admin_headers, db):
    InventoryService(db).reserve("bpc157-10", 4, "session_a")

    resp = client.put("/admin/products/bpc157-10/stock", json={"stock_quantity": 3}, headers=admin_headers)
    assert resp.status_code == 409
    assert resp.json()["detail"] == "Stock cannot be set below the quantity currently reserved"
    assert product_state("bpc157-10") == (5, 4)

    resp = client.put(
        "/admin/products/bpc157-10/stock",
        json={"stock_quantity": 20, "note": "restock"},
        headers=admin_headers,
    )
    assert resp.status_code == 200
    assert resp.json()["available"] == 16

    ledger = client.get(
        "/admin/inventory/transactions", params={"product_id": "bpc157-10"}, headers=admin_headers,
    ).json()
    assert ledger[0]["transaction_type"] == "adjustment"
    assert ledger[0]["quantity_change"] == 15
    assert ledger[0]["balance_after"] == 20
    assert ledger[0]["details"] == {"note": "restock"}

def test_negative_stock_is_rejected(client, catalog, admin_headers):
    resp = client.put("/admin/products/sema-5/stock", json={"stock_quantity": -1}, headers=admin_headers)
    assert resp.status_code == 422

def test_order_listing(client, catalog, customer, admin_headers):
    placed = client.post("/checkout/orders", json={
        "customer": customer,
        "items": [{"product_id": "sema-5", "quantity": 1}],
        "payment_method": "venmo",
    }).json()

    orders = client.get("/admin/orders", headers=admin_headers).json()
    assert [o["order_number"] for o in orders] == [placed["order_number"]]
    assert orders[0]["items"][0]["sku"] == "DT-SEM-005"
    assert orders[0]["customer_data"]["city"] == "London"

    assert client.get("/admin/orders", params={"status": "confirmed"}, headers=admin_headers).json() == []
    assert client.get(f"/admin/orders/{placed['order_number']}", headers=admin_headers).status_code == 200
    assert client.get("/admin/orders/DT-NONE00", headers=admin_headers).status_code == 404

def test_confirm_crypto_rejects_venmo_orders(client, catalog, customer, admin_headers):
    placed = client.post("/checkout/orders", json={
        "customer": customer,
        "items": [{"product_id": "sema-5", "quantity": 1}],
        "payment_method": "venmo",
    }).json()
    resp = client.post(f"/admin/orders/{placed['order_number']}/confirm-crypto", headers=admin_headers)
    assert resp.status_code == 404
