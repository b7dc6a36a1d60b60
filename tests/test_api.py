"""End-to-end tests through the FastAPI app."""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from api_interface import app
from database_setup import get_db_session


@pytest.fixture
def client(session_factory):
    def override_session():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db_session] = override_session
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _as(user_id: int) -> dict:
    return {"X-User-Id": str(user_id)}


class TestSettlementScenario:
    def test_order_to_completed_payout(self, client, seller, super_admin, make_order) -> None:
        order_id = make_order(seller["store_id"], "1000.00")

        resp = client.patch(f"/api/orders/{order_id}/status", json={"status": "paid"},
                            headers=_as(seller["user_id"]))
        assert resp.status_code == 200
        order = resp.json()["data"]
        assert Decimal(order["admin_commission"]) == Decimal("50.00")
        assert Decimal(order["seller_amount"]) == Decimal("950.00")

        resp = client.post("/api/payouts/request", json={}, headers=_as(seller["user_id"]))
        assert resp.status_code == 201
        payout = resp.json()["data"]
        assert payout["status"] == "requested"
        assert Decimal(payout["gross_amount"]) == Decimal("1000.00")
        assert Decimal(payout["commission_amount"]) == Decimal("50.00")
        assert Decimal(payout["amount"]) == Decimal("950.00")
        assert payout["order_ids"] == [order_id]

        resp = client.post(f"/api/admin/payouts/{payout['id']}/process",
                           json={"status": "approved", "transaction_id": "TXN1"},
                           headers=_as(super_admin.user_id))
        assert resp.status_code == 200
        processed = resp.json()["data"]
        assert processed["status"] == "completed"
        assert processed["transaction_id"] == "TXN1"

        order = client.get(f"/api/orders/{order_id}", headers=_as(seller["user_id"])).json()["data"]
        assert order["payout_status"] == "completed"
        assert order["payout_id"] == payout["id"]

        wallet = client.get("/api/admin/wallet", headers=_as(super_admin.user_id)).json()["data"]
        assert Decimal(wallet["total_balance"]) - Decimal(wallet["total_payouts_processed"]) == \
            Decimal(wallet["available_balance"])
        assert Decimal(wallet["total_payouts_processed"]) == Decimal("950.00")

        resp = client.post(f"/api/admin/payouts/{payout['id']}/process",
                           json={"status": "approved", "transaction_id": "TXN2"},
                           headers=_as(super_admin.user_id))
        assert resp.status_code == 422

        earnings = client.get("/api/seller/earnings", headers=_as(seller["user_id"])).json()["data"]
        assert Decimal(earnings["completed_payouts"]) == Decimal("950.00")

    def test_commission_update_via_api(self, client, seller, super_admin, make_order) -> None:
        resp = client.put("/api/admin/commission", json={"commission_rate": "0.1", "update_note": "raise"},
                          headers=_as(super_admin.user_id))
        assert resp.status_code == 200
        assert Decimal(resp.json()["data"]["commission_rate"]) == Decimal("0.1")

        order_id = make_order(seller["store_id"], "300.00")
        order = client.patch(f"/api/orders/{order_id}/status", json={"status": "paid"},
                             headers=_as(seller["user_id"])).json()["data"]
        assert Decimal(order["admin_commission"]) == Decimal("30.00")


class TestErrorMapping:
    def test_missing_caller_is_401(self, client) -> None:
        assert client.get("/api/seller/earnings").status_code == 401

    def test_unknown_caller_is_401(self, client) -> None:
        assert client.get("/api/seller/earnings", headers=_as(9999)).status_code == 401

    def test_unknown_order_is_404(self, client, seller) -> None:
        resp = client.get("/api/orders/9999", headers=_as(seller["user_id"]))
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Order not found"

    def test_invalid_transition_is_400(self, client, seller, make_order) -> None:
        order_id = make_order(seller["store_id"])
        resp = client.patch(f"/api/orders/{order_id}/status", json={"status": "delivered"},
                            headers=_as(seller["user_id"]))
        assert resp.status_code == 400

    def test_unknown_status_body_is_422(self, client, seller, make_order) -> None:
        order_id = make_order(seller["store_id"])
        resp = client.patch(f"/api/orders/{order_id}/status", json={"status": "refunded"},
                            headers=_as(seller["user_id"]))
        assert resp.status_code == 422

    def test_no_orders_is_422(self, client, seller) -> None:
        resp = client.post("/api/payouts/request", json={}, headers=_as(seller["user_id"]))
        assert resp.status_code == 422
        assert resp.json()["detail"] == "No orders available for payout"

    def test_rate_out_of_range_is_400(self, client, super_admin) -> None:
        resp = client.put("/api/admin/commission", json={"commission_rate": "1.5"},
                          headers=_as(super_admin.user_id))
        assert resp.status_code == 400

    def test_plain_admin_rate_change_is_403(self, client, admin) -> None:
        resp = client.put("/api/admin/commission", json={"commission_rate": "0.1"},
                          headers=_as(admin.user_id))
        assert resp.status_code == 403

    def test_seller_on_admin_report_is_403(self, client, seller) -> None:
        resp = client.get("/api/admin/reports/revenue", headers=_as(seller["user_id"]))
        assert resp.status_code == 403

    def test_bad_decision_is_422(self, client, admin) -> None:
        resp = client.post("/api/admin/payouts/1/process", json={"status": "processing"},
                           headers=_as(admin.user_id))
        assert resp.status_code == 422


class TestListings:
    def test_seller_orders_paginated(self, client, seller, make_order) -> None:
        for _ in range(3):
            make_order(seller["store_id"])
        resp = client.get("/api/seller/orders", params={"limit": 2, "status": "pending"},
                          headers=_as(seller["user_id"]))
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["total"] == 3
        assert len(data["orders"]) == 2

    def test_limit_above_max_is_422(self, client, seller) -> None:
        resp = client.get("/api/seller/orders", params={"limit": 500}, headers=_as(seller["user_id"]))
        assert resp.status_code == 422

    def test_admin_store_and_kyc(self, client, admin, seller) -> None:
        resp = client.patch(f"/api/admin/stores/{seller['store_id']}/status",
                            json={"is_verified": False}, headers=_as(admin.user_id))
        assert resp.status_code == 200
        assert resp.json()["data"]["is_verified"] is False

        resp = client.patch(f"/api/admin/sellers/{seller['seller_id']}/kyc",
                            json={"kyc_verified": False}, headers=_as(admin.user_id))
        assert resp.status_code == 200
        assert resp.json()["data"]["kyc_verified"] is False

        resp = client.post("/api/payouts/request", json={}, headers=_as(seller["user_id"]))
        assert resp.status_code == 422

    def test_root(self, client) -> None:
        assert client.get("/").status_code == 200


class TestAdminDirectory:
    def test_store_and_seller_lookups(self, client, admin, seller, make_seller, make_store) -> None:
        other = make_seller(kyc_verified=False)
        pending = make_store(other["seller_id"], "Awaiting Review")
        client.patch(f"/api/admin/stores/{pending}/status", json={"is_verified": False},
                     headers=_as(admin.user_id))

        resp = client.get("/api/admin/stores", params={"is_verified": "false"}, headers=_as(admin.user_id))
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["total"] == 1
        assert data["stores"][0]["id"] == pending

        resp = client.get(f"/api/admin/stores/{seller['store_id']}", headers=_as(admin.user_id))
        assert resp.status_code == 200
        assert Decimal(resp.json()["data"]["total_revenue"]) == Decimal("0")

        resp = client.get(f"/api/admin/sellers/{other['seller_id']}", headers=_as(admin.user_id))
        assert resp.status_code == 200
        assert [s["id"] for s in resp.json()["data"]["stores"]] == [pending]

        sellers = client.get("/api/admin/sellers", headers=_as(admin.user_id)).json()["data"]["sellers"]
        assert len(sellers) == 2

    def test_directory_errors(self, client, admin, seller) -> None:
        assert client.get("/api/admin/stores/9999", headers=_as(admin.user_id)).status_code == 404
        assert client.get("/api/admin/sellers/9999", headers=_as(admin.user_id)).status_code == 404
        assert client.get("/api/admin/stores", headers=_as(seller["user_id"])).status_code == 403
