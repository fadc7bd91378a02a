"""
Operator fulfillment endpoints.

The blueprint builds its router through build_default_router, which is
patched to a router over the in-memory store.
"""
import pytest

from tests.factories import OrderFactory, OrderItemFactory

TOKEN_HEADERS = {"X-FULFILLMENT-TOKEN": "test-ops-token"}


@pytest.fixture
def wired_router(router, monkeypatch):
    import routes.fulfillment
    monkeypatch.setattr(routes.fulfillment, 'build_default_router', lambda: router)
    return router


@pytest.fixture
def paid_order(store):
    order = OrderFactory.build()
    items = [OrderItemFactory.physical(order), OrderItemFactory.digital(order)]
    store.add_order(order, items)
    return order


class TestAuth:

    @pytest.mark.parametrize("method,path", [
        ("post", "/internal/fulfillment/orders/ord_1/fulfill"),
        ("get", "/internal/fulfillment/orders/ord_1/status"),
        ("post", "/internal/fulfillment/orders/ord_1/digital/cancel"),
    ])
    def test_no_token(self, client, method, path):
        response = getattr(client, method)(path)
        assert response.status_code == 401
        assert response.json == {"success": False, "error": "unauthorized"}

    def test_wrong_token(self, client):
        response = client.post(
            "/internal/fulfillment/orders/ord_1/fulfill",
            headers={"X-FULFILLMENT-TOKEN": "wrong"},
        )
        assert response.status_code == 401

    def test_unset_server_token_denies(self, client, monkeypatch):
        import config
        monkeypatch.setattr(config, 'FULFILLMENT_OPS_TOKEN', '')
        response = client.post("/internal/fulfillment/orders/ord_1/fulfill", headers={"X-FULFILLMENT-TOKEN": ""})
        assert response.status_code == 401


class TestFulfillEndpoint:

    def test_unknown_order_is_404(self, client, wired_router):
        response = client.post("/internal/fulfillment/orders/ord_missing/fulfill", headers=TOKEN_HEADERS)
        assert response.status_code == 404
        assert response.json["success"] is False

    def test_runs_router(self, client, wired_router, paid_order):
        response = client.post(f"/internal/fulfillment/orders/{paid_order.id}/fulfill", headers=TOKEN_HEADERS)

        assert response.status_code == 200
        body = response.json
        assert body["success"] is True
        assert body["fulfillment_status"] == "fulfilled"
        assert [r["provider"] for r in body["results"]] == ["digital_download", "gelato_print"]
        grants = body["results"][0]["tracking_info"]["download_urls"]
        assert len(grants) == 2
        assert grants[0]["download_url"].startswith(f"/api/orders/{paid_order.id}/download/")
        assert grants[0]["expires_at"].startswith("2026-03-21T09:30:00")
        assert paid_order.fulfillment_type == "hybrid"

    def test_partial_failure_is_reported(self, client, wired_router, paid_order, gelato_client):
        gelato_client.create_order.side_effect = RuntimeError("gelato api unreachable")

        response = client.post(f"/internal/fulfillment/orders/{paid_order.id}/fulfill", headers=TOKEN_HEADERS)

        assert response.status_code == 200
        assert response.json["success"] is False
        assert response.json["fulfillment_status"] == "partially_fulfilled"
        failed = response.json["results"][1]
        assert failed["error_details"]["code"] == "API_ERROR"


class TestStatusEndpoint:

    def test_unknown_order_is_404(self, client, wired_router):
        response = client.get("/internal/fulfillment/orders/ord_missing/status", headers=TOKEN_HEADERS)
        assert response.status_code == 404

    def test_reports_each_method(self, client, wired_router, paid_order, gelato_client):
        gelato_client.get_order.return_value = {"fulfillmentStatus": "delivered"}
        client.post(f"/internal/fulfillment/orders/{paid_order.id}/fulfill", headers=TOKEN_HEADERS)

        response = client.get(f"/internal/fulfillment/orders/{paid_order.id}/status", headers=TOKEN_HEADERS)

        assert response.status_code == 200
        fulfillments = response.json["fulfillments"]
        assert fulfillments["gelato"]["status"] == "fulfilled"
        assert fulfillments["download"]["status"] == "processing"
        assert fulfillments["download"]["status_message"] == "Awaiting first download"


class TestCancelDigitalEndpoint:

    def test_expires_downloads(self, client, wired_router, paid_order, store, now):
        client.post(f"/internal/fulfillment/orders/{paid_order.id}/fulfill", headers=TOKEN_HEADERS)

        response = client.post(
            f"/internal/fulfillment/orders/{paid_order.id}/digital/cancel",
            headers=TOKEN_HEADERS,
        )

        assert response.status_code == 200
        assert response.json == {"success": True, "order_id": paid_order.id}
        assert paid_order.digital_delivery_status == "expired"
        assert all(item.download_expires_at == now for item in store.list_order_items(paid_order.id))

    def test_expire_failure_is_500(self, client, wired_router, paid_order, store):
        store.fail_on.add('expire_digital_items')

        response = client.post(
            f"/internal/fulfillment/orders/{paid_order.id}/digital/cancel",
            headers=TOKEN_HEADERS,
        )

        assert response.status_code == 500


class TestHealth:

    def test_ping(self, client):
        response = client.get("/ping")
        assert response.status_code == 200
        assert response.json == {"status": "ok"}
