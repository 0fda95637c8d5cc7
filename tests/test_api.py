"""Tests for the FastAPI API."""

from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.errors import ServerSelectionTimeoutError

from storefront.database import PRODUCTS
from storefront.models import OrderStatus

CHECKOUT = {
    "shippingAddress": {
        "name": "Test Buyer",
        "street": "1 Main St",
        "city": "Almaty",
        "country": "KZ",
        "phone": "+7 700 000 0000",
    },
    "paymentMethod": "credit-card",
}


class TestHealthCheck:
    def test_ok(self, client, monkeypatch):
        monkeypatch.setattr("storefront.api.ping", lambda db: None)
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "ok"

    def test_database_down(self, client, monkeypatch):
        def fail(db):
            raise ServerSelectionTimeoutError("no servers")

        monkeypatch.setattr("storefront.api.ping", fail)
        response = client.get("/api/health")
        assert response.status_code == 503
        assert response.json()["success"] is False


class TestEndToEnd:
    def test_register_login_cart_checkout(self, client, db, make_product):
        response = client.post(
            "/api/auth/register",
            json={"name": "Dana", "email": "dana@example.com", "password": "secret123"},
        )
        assert response.status_code == 201
        assert response.json()["success"] is True

        response = client.post(
            "/api/auth/login", json={"email": "DANA@example.com", "password": "secret123"}
        )
        assert response.status_code == 200
        token = response.json()["data"]["token"]
        headers = {"Authorization": f"Bearer {token}"}

        product = make_product(price=10.0, stock=5)
        response = client.post(
            "/api/users/cart", json={"productId": product.id, "quantity": 2}, headers=headers
        )
        assert response.status_code == 200
        assert response.json()["data"][0]["quantity"] == 2

        response = client.post("/api/orders/checkout", json=CHECKOUT, headers=headers)
        assert response.status_code == 201
        order = response.json()["data"]
        assert order["pricing"] == {"subtotal": 20.0, "shipping": 5.0, "discount": 0.0, "total": 25.0}
        assert order["order_status"] == "pending"
        assert order["user"]["email"] == "dana@example.com"

        assert db[PRODUCTS].find_one({"_id": ObjectId(product.id)})["stock"] == 3
        assert client.get("/api/users/cart", headers=headers).json()["data"] == []

        me = client.get("/api/auth/me", headers=headers).json()["data"]
        assert me["email"] == "dana@example.com"
        assert "password_hash" not in me


class TestAuthErrors:
    def test_missing_token(self, client):
        response = client.get("/api/orders")
        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert "Please login" in body["message"]

    def test_garbage_token(self, client):
        response = client.get("/api/orders", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_deactivated(self, client, make_user, auth_headers):
        user = make_user(is_active=False)
        response = client.get("/api/auth/me", headers=auth_headers(user))
        assert response.status_code == 401

    def test_non_admin_write(self, client, buyer, auth_headers):
        response = client.post(
            "/api/products",
            json={"name": "Case", "description": "A fine case", "category": "phone-case", "price": 5},
            headers=auth_headers(buyer),
        )
        assert response.status_code == 403

    def test_bad_credentials(self, client, buyer):
        response = client.post("/api/auth/login", json={"email": buyer.email, "password": "nope"})
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid credentials"


class TestProducts:
    def test_admin_crud(self, client, admin, auth_headers):
        headers = auth_headers(admin)
        response = client.post(
            "/api/products",
            json={
                "name": "Armor Case",
                "description": "Drop tested to two metres.",
                "category": "phone-case",
                "price": 24.0,
                "stock": 3,
                "compatible_models": [{"brand": "Apple", "model_name": "iPhone 15"}],
            },
            headers=headers,
        )
        assert response.status_code == 201
        product_id = response.json()["data"]["id"]

        response = client.put(f"/api/products/{product_id}", json={"price": 20.0}, headers=headers)
        assert response.json()["data"]["price"] == 20.0

        response = client.patch(f"/api/products/{product_id}/stock", json={"quantity": -1}, headers=headers)
        assert response.json()["data"]["stock"] == 2

        response = client.patch(f"/api/products/{product_id}/tags", json={"tag": "rugged"}, headers=headers)
        assert response.json()["data"]["tags"] == ["rugged"]

        response = client.delete(f"/api/products/{product_id}/tags/rugged", headers=headers)
        assert response.json()["data"]["tags"] == []

        response = client.delete(f"/api/products/{product_id}", headers=headers)
        assert response.status_code == 200
        assert client.get(f"/api/products/{product_id}").status_code == 404

    def test_list_envelope(self, client, make_product):
        for _ in range(3):
            make_product()
        body = client.get("/api/products", params={"limit": 2}).json()
        assert body["success"] is True
        assert body["count"] == 2
        assert body["total"] == 3
        assert body["pages"] == 2
        assert body["currentPage"] == 1

    def test_inactive_visible_to_admin_only(self, client, admin, buyer, auth_headers, make_product):
        make_product(is_active=False)
        params = {"includeInactive": "true"}
        assert client.get("/api/products", params=params).json()["total"] == 0
        assert client.get("/api/products", params=params, headers=auth_headers(buyer)).json()["total"] == 0
        assert client.get("/api/products", params=params, headers=auth_headers(admin)).json()["total"] == 1

    def test_zero_stock_delta(self, client, admin, auth_headers, make_product):
        product = make_product()
        response = client.patch(
            f"/api/products/{product.id}/stock", json={"quantity": 0}, headers=auth_headers(admin)
        )
        assert response.status_code == 400
        assert response.json()["error"] == "InvalidArgument"

    def test_invalid_id(self, client):
        response = client.get("/api/products/not-an-id")
        assert response.status_code == 400

    def test_invalid_category(self, client):
        response = client.get("/api/products", params={"category": "shoes"})
        assert response.status_code == 400
        assert response.json()["success"] is False


class TestOrders:
    def test_insufficient_stock(self, client, buyer, auth_headers, make_product):
        product = make_product(stock=1)
        response = client.post(
            "/api/orders",
            json={"items": [{"product": product.id, "quantity": 2}], **CHECKOUT},
            headers=auth_headers(buyer),
        )
        assert response.status_code == 400
        assert response.json()["message"] == f"Insufficient stock for {product.name}"

    def test_missing_shipping_address(self, client, buyer, auth_headers, make_product):
        response = client.post(
            "/api/orders",
            json={"items": [{"product": make_product().id, "quantity": 1}], "paymentMethod": "paypal"},
            headers=auth_headers(buyer),
        )
        assert response.status_code == 400

    def test_client_totals_ignored(self, client, buyer, auth_headers, make_product):
        product = make_product(price=10.0)
        response = client.post(
            "/api/orders",
            json={
                "items": [{"product": product.id, "quantity": 1}],
                "pricing": {"subtotal": 1.0, "shipping": 0.0, "discount": 2.0, "total": 0.01},
                **CHECKOUT,
            },
            headers=auth_headers(buyer),
        )
        assert response.json()["data"]["pricing"]["discount"] == 0.0
        assert response.json()["data"]["pricing"]["total"] == 15.0

    def test_admin_discount_applied(self, client, admin, auth_headers, make_product):
        product = make_product(price=10.0)
        response = client.post(
            "/api/orders",
            json={"items": [{"product": product.id, "quantity": 1}], "pricing": {"discount": 2.0}, **CHECKOUT},
            headers=auth_headers(admin),
        )
        assert response.json()["data"]["pricing"]["discount"] == 2.0
        assert response.json()["data"]["pricing"]["total"] == 13.0

    def test_lifecycle(self, client, buyer, admin, auth_headers, make_product, place_order):
        order = place_order(buyer, (make_product(), 1))
        admin_headers = auth_headers(admin)

        response = client.patch(
            f"/api/orders/{order.id}/status", json={"orderStatus": "delivered"}, headers=admin_headers
        )
        assert response.status_code == 400

        for status in ("processing", "shipped"):
            response = client.patch(
                f"/api/orders/{order.id}/status", json={"orderStatus": status}, headers=admin_headers
            )
            assert response.json()["data"]["order_status"] == status

        response = client.delete(f"/api/orders/{order.id}", headers=auth_headers(buyer))
        assert response.status_code == 400

    def test_cancel_and_listing(self, client, buyer, admin, make_user, auth_headers, make_product, place_order):
        mine = place_order(buyer, (make_product(), 1))
        place_order(make_user(), (make_product(), 1))

        body = client.get("/api/orders", headers=auth_headers(buyer)).json()
        assert body["total"] == 1

        body = client.get("/api/orders/all", headers=auth_headers(admin)).json()
        assert body["total"] == 2
        assert client.get("/api/orders/all", headers=auth_headers(buyer)).status_code == 403

        response = client.delete(f"/api/orders/{mine.id}", headers=auth_headers(buyer))
        assert response.json()["data"]["order_status"] == "cancelled"

        body = client.get("/api/orders", params={"status": "cancelled"}, headers=auth_headers(buyer)).json()
        assert body["count"] == 1

    def test_view_other_users_order(self, client, buyer, make_user, auth_headers, make_product, place_order):
        order = place_order(buyer, (make_product(), 1))
        response = client.get(f"/api/orders/{order.id}", headers=auth_headers(make_user()))
        assert response.status_code == 403


class TestReviews:
    def test_review_flow(self, client, buyer, auth_headers, make_product, deliver):
        product = make_product()
        headers = auth_headers(buyer)
        payload = {"product": product.id, "rating": 4, "comment": "Snug fit, good buttons."}

        assert client.post("/api/reviews", json=payload, headers=headers).status_code == 403

        deliver(buyer, product)
        response = client.post("/api/reviews", json=payload, headers=headers)
        assert response.status_code == 201
        review_id = response.json()["data"]["id"]

        assert client.post("/api/reviews", json=payload, headers=headers).status_code == 400

        response = client.put(f"/api/reviews/{review_id}", json={"rating": 2}, headers=headers)
        assert response.json()["data"]["rating"] == 2

        body = client.get(f"/api/reviews/products/{product.id}").json()
        assert body["total"] == 1
        assert body["data"][0]["user"]["name"] == "Buyer"

        assert client.get(f"/api/products/{product.id}").json()["data"]["rating"] == {
            "average": 2.0,
            "count": 1,
        }

        assert client.delete(f"/api/reviews/{review_id}", headers=headers).status_code == 200


class TestUsers:
    def test_addresses(self, client, buyer, auth_headers):
        headers = auth_headers(buyer)
        response = client.post(
            f"/api/users/{buyer.id}/addresses",
            json={"street": "1 A St", "city": "X", "is_default": True},
            headers=headers,
        )
        address_id = response.json()["data"]["addresses"][0]["id"]

        response = client.patch(
            f"/api/users/{buyer.id}/addresses/{address_id}", json={"city": "Y"}, headers=headers
        )
        assert response.json()["data"]["addresses"][0]["city"] == "Y"

        response = client.delete(f"/api/users/{buyer.id}/addresses/{address_id}", headers=headers)
        assert response.json()["data"]["addresses"] == []

    def test_profile_access(self, client, buyer, make_user, auth_headers):
        assert client.get(f"/api/users/{buyer.id}", headers=auth_headers(buyer)).status_code == 200
        assert client.get(f"/api/users/{buyer.id}", headers=auth_headers(make_user())).status_code == 403

        response = client.put(f"/api/users/{buyer.id}", json={"name": "Renamed"}, headers=auth_headers(buyer))
        assert response.json()["data"]["name"] == "Renamed"

    def test_cart_remove_and_clear(self, client, buyer, auth_headers, make_product):
        headers = auth_headers(buyer)
        a, b = make_product(), make_product()
        client.post("/api/users/cart", json={"productId": a.id}, headers=headers)
        client.post("/api/users/cart", json={"productId": b.id}, headers=headers)

        response = client.delete(f"/api/users/cart/{a.id}", headers=headers)
        assert [line["product"]["id"] for line in response.json()["data"]] == [b.id]

        response = client.delete("/api/users/cart", headers=headers)
        assert response.json()["data"] == []


class TestAnalytics:
    def test_admin_only(self, client, buyer, admin, auth_headers):
        for path in (
            "/api/analytics/products/stats",
            "/api/analytics/sales",
            "/api/analytics/sales/timeseries",
            "/api/analytics/orders/status",
        ):
            assert client.get(path, headers=auth_headers(buyer)).status_code == 403
            assert client.get(path, headers=auth_headers(admin)).status_code == 200

    def test_public(self, client):
        assert client.get("/api/analytics/products/top-rated").json()["count"] == 0
        assert client.get("/api/analytics/reviews/stats").json()["data"]["total_reviews"] == 0

    def test_sales_dates(self, client, admin, auth_headers, buyer, make_product, place_order):
        place_order(buyer, (make_product(), 1), status=OrderStatus.PROCESSING)
        response = client.get(
            "/api/analytics/sales",
            params={"startDate": "2000-01-01", "endDate": "2999-01-01T00:00:00Z"},
            headers=auth_headers(admin),
        )
        assert response.status_code == 200
        assert response.json()["data"]["summary"]["total_orders"] == 1

    def test_sales_bad_range(self, client, admin, auth_headers):
        response = client.get(
            "/api/analytics/sales",
            params={"startDate": "2024-02-01", "endDate": "2024-01-01"},
            headers=auth_headers(admin),
        )
        assert response.status_code == 400

    def test_user_history(self, client, buyer, make_user, auth_headers):
        path = f"/api/analytics/users/{buyer.id}/orders"
        assert client.get(path, headers=auth_headers(buyer)).status_code == 200
        assert client.get(path, headers=auth_headers(make_user())).status_code == 403


class TestErrorEnvelope:
    def test_unknown_route(self, client):
        response = client.get("/api/nowhere")
        assert response.status_code == 404
        assert response.json() == {"success": False, "message": "Route not found"}

    def test_unhandled_error(self, db, settings, monkeypatch):
        from storefront.api import app, get_app_settings, get_db

        def explode(self):
            raise RuntimeError("boom")

        monkeypatch.setattr("storefront.api.SalesAnalytics.review_stats", explode)
        app.dependency_overrides[get_db] = lambda: db
        app.dependency_overrides[get_app_settings] = lambda: settings
        try:
            response = TestClient(app, raise_server_exceptions=False).get("/api/analytics/reviews/stats")
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "message": "Internal Server Error",
            "error": "RuntimeError",
        }
