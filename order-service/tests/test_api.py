"""HTTP surface: envelopes, status codes, identity headers."""

from app.state_machine import OrderStatus

from fakes import CUSTOMER, driver_headers

ORDER_BODY = {
    "restaurant_id": 7,
    "address_id": 10,
    "items": [{"menu_item_id": 100, "quantity": 2}, {"menu_item_id": 101, "quantity": 1}],
}


def _create(client):
    r = client.post("/orders", json=ORDER_BODY, headers=CUSTOMER)
    assert r.status_code == 201, r.text
    return r.json()["data"]


class TestCreateOrderEndpoint:
    def test_created(self, client, collaborators) -> None:
        r = client.post("/orders", json=ORDER_BODY, headers=CUSTOMER)

        assert r.status_code == 201
        body = r.json()
        assert body["status"] == "success"
        assert body["message"] == "Order created successfully, awaiting payment."
        assert body["data"]["total_price"] == 85000
        assert body["data"]["status"] == "PENDING_PAYMENT"
        assert body["data"]["payment_id"] == 500
        assert collaborators.restaurants.stock_of(100) == 8

    def test_client_price_is_ignored(self, client) -> None:
        body = {**ORDER_BODY, "items": [{"menu_item_id": 100, "quantity": 1, "price": 1}]}

        r = client.post("/orders", json=body, headers=CUSTOMER)

        assert r.json()["data"]["total_price"] == 25000

    def test_insufficient_stock_is_wrapped(self, client) -> None:
        body = {**ORDER_BODY, "items": [{"menu_item_id": 101, "quantity": 9}]}

        r = client.post("/orders", json=body, headers=CUSTOMER)

        assert r.status_code == 400
        assert r.json()["status"] == "error"
        assert r.json()["message"] == "Failed to create order"
        assert r.json()["code"] == "VALIDATION_ERROR"
        assert "Insufficient stock" in r.json()["details"]
        assert client.get("/orders", headers=CUSTOMER).json()["data"] == []

    def test_payment_failure_reports_order_id(self, client, collaborators) -> None:
        collaborators.payments.fail = True

        r = client.post("/orders", json=ORDER_BODY, headers=CUSTOMER)

        assert r.status_code == 400
        assert r.json()["code"] == "UPSTREAM_UNAVAILABLE"
        assert isinstance(r.json()["order_id"], int)

    def test_zero_quantity_rejected(self, client) -> None:
        body = {**ORDER_BODY, "items": [{"menu_item_id": 100, "quantity": 0}]}

        r = client.post("/orders", json=body, headers=CUSTOMER)

        assert r.status_code == 400
        assert r.json()["status"] == "error"

    def test_empty_items_rejected(self, client) -> None:
        r = client.post("/orders", json={**ORDER_BODY, "items": []}, headers=CUSTOMER)

        assert r.status_code == 400

    def test_missing_identity_is_unauthorized(self, client) -> None:
        r = client.post("/orders", json=ORDER_BODY)

        assert r.status_code == 401
        assert r.json() == {"status": "error", "code": "UNAUTHORIZED", "message": "Unauthorized",
                            "correlationId": r.json()["correlationId"]}


class TestCustomerReads:
    def test_list_orders(self, client) -> None:
        created = _create(client)

        r = client.get("/orders", headers=CUSTOMER)

        assert r.status_code == 200
        [summary] = r.json()["data"]
        assert summary["order_id"] == created["order_id"]
        assert summary["restaurant_name"] == "Warung Sederhana"

    def test_order_details(self, client) -> None:
        created = _create(client)

        r = client.get(f"/orders/{created['order_id']}", headers=CUSTOMER)

        data = r.json()["data"]
        assert data["restaurant_details"] == {"name": "Warung Sederhana", "address": "Jl. Kebon 3"}
        assert data["delivery_address"] == "Jl. Merdeka 1, Jakarta"
        assert data["driver_details"] is None
        assert data["items"] == [
            {"name": "Nasi Goreng", "quantity": 2, "price": 25000},
            {"name": "Sate Ayam", "quantity": 1, "price": 35000},
        ]

    def test_enrichment_failure_degrades(self, client, collaborators) -> None:
        created = _create(client)
        collaborators.users.fail = True
        collaborators.restaurants.fail_menu = True

        r = client.get(f"/orders/{created['order_id']}", headers=CUSTOMER)
        listed = client.get("/orders", headers=CUSTOMER)

        assert r.status_code == 200
        assert r.json()["data"]["delivery_address"] == "Unknown"
        assert listed.json()["data"][0]["restaurant_name"] == "Unknown"

    def test_other_users_order_is_forbidden(self, client) -> None:
        created = _create(client)

        r = client.get(f"/orders/{created['order_id']}", headers={"X-User-Id": "2"})

        assert r.status_code == 403
        assert r.json()["message"] == "Access denied"

    def test_missing_order(self, client) -> None:
        r = client.get("/orders/999", headers=CUSTOMER)

        assert r.status_code == 404
        assert r.json()["status"] == "error"
        assert r.json()["code"] == "NOT_FOUND"


class TestPaymentCallbackEndpoint:
    def test_success_assigns_driver(self, client, dispatcher) -> None:
        created = _create(client)

        r = client.post("/orders/internal/callback/payment",
                        json={"order_id": created["order_id"], "payment_status": "SUCCESS"})

        assert r.status_code == 200
        assert r.json()["message"] == "Payment callback processed"
        assert r.json()["data"]["status"] == "PREPARING"
        assert r.json()["data"]["driver_id"] == 42
        assert dispatcher.pending() == {created["order_id"]}

    def test_duplicate_is_reported(self, client, collaborators) -> None:
        created = _create(client)
        payload = {"order_id": created["order_id"], "payment_status": "SUCCESS"}

        client.post("/orders/internal/callback/payment", json=payload)
        r = client.post("/orders/internal/callback/payment", json=payload)

        assert r.json()["message"] == "Payment callback already processed"
        assert collaborators.drivers.assign_calls == [created["order_id"]]

    def test_failure(self, client, collaborators) -> None:
        created = _create(client)

        r = client.post("/orders/internal/callback/payment",
                        json={"order_id": created["order_id"], "payment_status": "FAILED"})

        assert r.json()["data"]["status"] == "PAYMENT_FAILED"
        assert collaborators.drivers.assign_calls == []

    def test_missing_fields(self, client) -> None:
        r = client.post("/orders/internal/callback/payment", json={"order_id": 1})

        assert r.status_code == 400


class TestDriverEndpoints:
    def _paid_without_driver(self, client, collaborators):
        collaborators.drivers.available = []
        created = _create(client)
        client.post("/orders/internal/callback/payment",
                    json={"order_id": created["order_id"], "payment_status": "SUCCESS"})
        return created["order_id"]

    def test_customer_cannot_use_driver_routes(self, client) -> None:
        r = client.get("/orders/available", headers=CUSTOMER)

        assert r.status_code == 403

    def test_available_accept_complete(self, client, collaborators) -> None:
        order_id = self._paid_without_driver(client, collaborators)

        available = client.get("/orders/available", headers=driver_headers(43)).json()["data"]
        assert [o["order_id"] for o in available] == [order_id]
        assert available[0]["customer_name"] == "Budi"
        assert available[0]["items"][0]["menu_item_name"] == "Nasi Goreng"

        accepted = client.post(f"/orders/{order_id}/accept", headers=driver_headers(43))
        assert accepted.status_code == 200
        assert accepted.json()["data"]["status"] == OrderStatus.ON_THE_WAY.value
        assert accepted.json()["data"]["driver_id"] == 43

        mine = client.get("/orders/driver/my-orders", headers=driver_headers(43)).json()["data"]
        assert [o["order_id"] for o in mine] == [order_id]
        assert mine[0]["estimated_delivery_time"] is not None

        done = client.post(f"/orders/{order_id}/complete", headers=driver_headers(43))
        assert done.json()["data"]["status"] == OrderStatus.DELIVERED.value

    def test_second_accept_conflicts(self, client, collaborators) -> None:
        order_id = self._paid_without_driver(client, collaborators)
        client.post(f"/orders/{order_id}/accept", headers=driver_headers(43))

        r = client.post(f"/orders/{order_id}/accept", headers=driver_headers(44))

        assert r.status_code == 409
        assert r.json()["message"] == "Order already assigned to another driver"

    def test_wrong_driver_complete_forbidden(self, client, collaborators) -> None:
        order_id = self._paid_without_driver(client, collaborators)
        client.post(f"/orders/{order_id}/accept", headers=driver_headers(43))

        r = client.post(f"/orders/{order_id}/complete", headers=driver_headers(44))

        assert r.status_code == 403
        assert r.json()["message"] == "This order is not assigned to you"

    def test_accept_before_payment_is_invalid(self, client) -> None:
        created = _create(client)

        r = client.post(f"/orders/{created['order_id']}/accept", headers=driver_headers(43))

        assert r.status_code == 400
        assert r.json()["code"] == "INVALID_STATE"


class TestReconcileEndpoint:
    def test_reconcile_after_stock_failure(self, client, collaborators) -> None:
        collaborators.restaurants.fail_decrease = True
        r = client.post("/orders", json=ORDER_BODY, headers=CUSTOMER)
        order_id = r.json()["order_id"]
        collaborators.restaurants.fail_decrease = False

        r = client.post(f"/orders/internal/{order_id}/reconcile")

        assert r.status_code == 200
        assert r.json()["data"]["performed_steps"] == ["STOCK_DECREASED"]
        assert collaborators.restaurants.stock_of(100) == 8


class TestInfra:
    def test_health(self, client) -> None:
        assert client.get("/health").json() == {"status": "ok", "service": "order-service"}

    def test_metrics_exposes_order_counters(self, client) -> None:
        _create(client)

        text = client.get("/metrics").text

        assert "orders_created_total" in text
        assert "http_requests_total" in text
