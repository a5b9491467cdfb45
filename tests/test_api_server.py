"""
HTTP surface tests against the FastAPI app with an in-memory database
"""

import pytest
from fastapi.testclient import TestClient

from api_server import app, get_cart_stores
from conftest import BOX_ID, BUYER_ID, INACTIVE_BOX_ID, SECOND_BOX_ID, SELLER_ID, SHIPPING_ADDRESS, STRANGER_ID
from database import get_db
from services.cart_store import get_stores
from utils.error_handler import ErrorCodes

pytestmark = pytest.mark.integration


@pytest.fixture
def client(session_factory, seed_data, tmp_path):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cart_stores] = lambda: get_stores(str(tmp_path))
    yield TestClient(app)
    app.dependency_overrides.clear()


def _as(user_id):
    return {"X-User-Id": user_id}


def _order_body(**overrides):
    body = {
        "box_id": BOX_ID,
        "quantity": 2,
        "shipping_address": dict(SHIPPING_ADDRESS),
        "payment_method": "cod",
    }
    body.update(overrides)
    return body


@pytest.fixture
def order_id(client):
    response = client.post("/orders", json=_order_body(), headers=_as(BUYER_ID))
    assert response.status_code == 201
    return response.json()["order_id"]


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["database"] is True


class TestCreateOrderEndpoint:

    def test_requires_user_header(self, client):
        assert client.post("/orders", json=_order_body()).status_code == 401

    def test_created(self, client):
        response = client.post("/orders", json=_order_body(), headers=_as(BUYER_ID))
        assert response.status_code == 201
        body = response.json()
        assert body["order_id"].startswith("ORD-")
        assert body["created"] is True
        assert body["warnings"] == []

    def test_idempotent_replay(self, client):
        body = _order_body(idempotency_key="checkout-form-42")
        first = client.post("/orders", json=body, headers=_as(BUYER_ID))
        second = client.post("/orders", json=body, headers=_as(BUYER_ID))

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json() == {"order_id": first.json()["order_id"], "created": False, "warnings": []}

    def test_malformed_body_is_400(self, client):
        body = _order_body()
        del body["payment_method"]
        response = client.post("/orders", json=body, headers=_as(BUYER_ID))

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["category"] == "validation"
        assert error["details"]["field"] == "payment_method"

    def test_missing_shipping_fields(self, client):
        address = dict(SHIPPING_ADDRESS)
        del address["city"]
        response = client.post("/orders", json=_order_body(shipping_address=address), headers=_as(BUYER_ID))

        assert response.status_code == 400
        assert response.json()["error"]["details"]["missing_fields"] == ["city"]

    def test_crypto_without_wallet(self, client):
        body = _order_body(payment_method="crypto", payment_method_details={"cryptocurrency": "BTC"})
        response = client.post("/orders", json=body, headers=_as(BUYER_ID))
        assert response.status_code == 400
        assert response.json()["error"]["details"]["field"] == "wallet_address"

    def test_unknown_box(self, client):
        response = client.post("/orders", json=_order_body(box_id="box-nope"), headers=_as(BUYER_ID))
        assert response.status_code == 404


class TestOrderEndpoints:

    def test_buyer_view(self, client, order_id):
        response = client.get(f"/orders/{order_id}", headers=_as(BUYER_ID))
        assert response.status_code == 200
        view = response.json()
        assert view["role"] == "buyer"
        assert view["amount"] == "50.00"
        assert view["totals"]["total"] == "59.98"
        assert view["available_actions"] == ["cancelled", "disputed"]

    def test_stranger_denied(self, client, order_id):
        response = client.get(f"/orders/{order_id}", headers=_as(STRANGER_ID))
        assert response.status_code == 403
        assert response.json()["error"]["code"] == ErrorCodes.FORBIDDEN

    def test_unknown_order(self, client):
        assert client.get("/orders/ORD-00000000-MISSING", headers=_as(BUYER_ID)).status_code == 404

    def test_list_by_role(self, client, order_id):
        as_seller = client.get("/orders", params={"role": "seller"}, headers=_as(SELLER_ID)).json()["orders"]
        as_buyer_selling = client.get("/orders", params={"role": "seller"}, headers=_as(BUYER_ID)).json()["orders"]
        assert [o["order_id"] for o in as_seller] == [order_id]
        assert as_buyer_selling == []

        assert client.get("/orders", params={"role": "admin"}, headers=_as(BUYER_ID)).status_code == 400

    def test_seller_updates_status(self, client, order_id):
        response = client.patch(
            f"/orders/{order_id}/status",
            json={"status": "processing", "note": "Packing", "expected_version": 1},
            headers=_as(SELLER_ID),
        )
        assert response.status_code == 200
        view = response.json()
        assert view["status"] == "processing"
        assert view["version"] == 2
        assert view["timeline"]["steps"][2]["state"] == "current"

    def test_buyer_cannot_ship(self, client, order_id):
        response = client.patch(
            f"/orders/{order_id}/status", json={"status": "shipped"}, headers=_as(BUYER_ID)
        )
        assert response.status_code == 403

    def test_invalid_transition(self, client, order_id):
        response = client.patch(
            f"/orders/{order_id}/status", json={"status": "delivered"}, headers=_as(SELLER_ID)
        )
        assert response.status_code == 409
        assert response.json()["error"]["code"] == ErrorCodes.INVALID_ORDER_STATE

    def test_stale_version(self, client, order_id):
        client.patch(f"/orders/{order_id}/status", json={"status": "confirmed"}, headers=_as(SELLER_ID))
        response = client.patch(
            f"/orders/{order_id}/status",
            json={"status": "processing", "expected_version": 1},
            headers=_as(SELLER_ID),
        )
        assert response.status_code == 409
        assert response.json()["error"]["code"] == ErrorCodes.VERSION_CONFLICT

    def test_buyer_cancels(self, client, order_id):
        response = client.post(
            f"/orders/{order_id}/cancel", json={"reason": "Found it cheaper"}, headers=_as(BUYER_ID)
        )
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["timeline"]["branch"]["status"] == "cancelled"

    def test_order_messages(self, client, order_id):
        response = client.get(f"/orders/{order_id}/messages", headers=_as(SELLER_ID))
        assert response.status_code == 200
        [message] = response.json()["messages"]
        assert message["sender_id"] == BUYER_ID
        assert "New Order Received" in message["content"]

        assert client.get(f"/orders/{order_id}/messages", headers=_as(STRANGER_ID)).status_code == 403


class TestCartEndpoints:

    def test_cart_checkout_flow(self, client):
        added = client.post("/cart/items", json={"box_id": BOX_ID, "quantity": 2}, headers=_as(BUYER_ID))
        assert added.status_code == 200
        assert added.json()["total_items"] == 2
        assert added.json()["total_price"] == "50.00"

        response = client.post(
            "/checkout/cart",
            json={"shipping_address": SHIPPING_ADDRESS, "payment_method": "cod"},
            headers=_as(BUYER_ID),
        )
        assert response.status_code == 201
        assert len(response.json()["orders"]) == 1

        assert client.get("/cart", headers=_as(BUYER_ID)).json()["items"] == []

    def test_explicit_lines_leave_stored_cart(self, client):
        client.post("/cart/items", json={"box_id": BOX_ID, "quantity": 1}, headers=_as(BUYER_ID))
        response = client.post(
            "/checkout/cart",
            json={
                "items": [{"box_id": SECOND_BOX_ID, "quantity": 1}],
                "shipping_address": SHIPPING_ADDRESS,
                "payment_method": "cod",
            },
            headers=_as(BUYER_ID),
        )
        assert response.status_code == 201

        [item] = client.get("/cart", headers=_as(BUYER_ID)).json()["items"]
        assert item["box"]["id"] == BOX_ID

    def test_failed_checkout_keeps_cart(self, client):
        client.post("/cart/items", json={"box_id": BOX_ID, "quantity": 1}, headers=_as(BUYER_ID))
        response = client.post(
            "/checkout/cart",
            json={"shipping_address": {"full_name": "Jane"}, "payment_method": "cod"},
            headers=_as(BUYER_ID),
        )
        assert response.status_code == 400
        assert len(client.get("/cart", headers=_as(BUYER_ID)).json()["items"]) == 1

    def test_empty_cart_checkout(self, client):
        response = client.post(
            "/checkout/cart",
            json={"shipping_address": SHIPPING_ADDRESS, "payment_method": "cod"},
            headers=_as(BUYER_ID),
        )
        assert response.status_code == 400

    def test_inactive_box_cannot_be_added(self, client):
        response = client.post("/cart/items", json={"box_id": INACTIVE_BOX_ID}, headers=_as(BUYER_ID))
        assert response.status_code == 400

    def test_update_and_remove(self, client):
        client.post("/cart/items", json={"box_id": BOX_ID, "quantity": 1}, headers=_as(BUYER_ID))
        updated = client.patch(f"/cart/items/{BOX_ID}", json={"quantity": 3}, headers=_as(BUYER_ID))
        assert updated.json()["total_items"] == 3

        removed = client.delete(f"/cart/items/{BOX_ID}", headers=_as(BUYER_ID))
        assert removed.json()["items"] == []

    def test_wishlist_toggle(self, client):
        first = client.post(f"/wishlist/{BOX_ID}", headers=_as(BUYER_ID)).json()
        assert first["wishlisted"] is True
        assert [item["box"]["id"] for item in first["items"]] == [BOX_ID]

        second = client.post(f"/wishlist/{BOX_ID}", headers=_as(BUYER_ID)).json()
        assert second == {"wishlisted": False, "items": []}

        assert client.post("/wishlist/box-nope", headers=_as(BUYER_ID)).status_code == 404


class TestNotificationEndpoints:

    def test_seller_notified_of_new_order(self, client, order_id):
        notifications = client.get("/notifications", headers=_as(SELLER_ID)).json()["notifications"]
        assert [n["title"] for n in notifications] == ["New Order Received"]
        assert notifications[0]["data"] == {"order_id": order_id}

        assert client.post("/notifications/read-all", headers=_as(SELLER_ID)).json() == {"updated": 1}
        unread = client.get("/notifications", params={"unread_only": True}, headers=_as(SELLER_ID)).json()
        assert unread["notifications"] == []
