"""Tests for bundling eligible orders into payout requests."""

from decimal import Decimal

import pytest
from sqlalchemy import text

from config import OrderPayoutStatus, PayoutStatus
from finance_logic import NotFoundError, ValidationError, WalletLedger
from order_logic import OrderStatusService
from payout_logic import PayoutQuery, PayoutService


@pytest.fixture
def orders(session):
    return OrderStatusService(session)


@pytest.fixture
def payouts(session) -> PayoutService:
    return PayoutService(session)


def _paid_order(orders, make_order, seller, total: str = "1000.00", store_id=None) -> int:
    order_id = make_order(store_id or seller["store_id"], total)
    orders.update_order_status(seller["actor"], order_id, "paid")
    return order_id


def _payout_count(session) -> int:
    return session.execute(text("SELECT COUNT(*) AS total FROM payouts")).fetchone().total


class TestRequestPayout:
    def test_single_order_payout(self, session, orders, payouts, seller, make_order) -> None:
        order_id = _paid_order(orders, make_order, seller)
        payout = payouts.request_payout(seller["user_id"], request_notes="weekly")

        assert payout["status"] == PayoutStatus.REQUESTED
        assert payout["gross_amount"] == Decimal("1000.00")
        assert payout["commission_amount"] == Decimal("50.00")
        assert payout["amount"] == Decimal("950.00")
        assert payout["order_ids"] == [order_id]
        assert payout["request_notes"] == "weekly"
        assert payout["seller"]["user_id"] == seller["user_id"]

        order = orders.get_order(seller["actor"], order_id)
        assert order["payout_status"] == OrderPayoutStatus.REQUESTED
        assert order["payout_id"] is None

    def test_sums_all_eligible_orders(self, orders, payouts, seller, make_order) -> None:
        _paid_order(orders, make_order, seller, "100.00")
        _paid_order(orders, make_order, seller, "250.50")
        shipped = make_order(seller["store_id"], "49.50")
        orders.update_order_status(seller["actor"], shipped, "shipped")

        payout = payouts.request_payout(seller["user_id"])
        assert payout["gross_amount"] == Decimal("400.00")
        assert payout["commission_amount"] + payout["amount"] == payout["gross_amount"]
        assert len(payout["order_ids"]) == 3

    def test_excludes_unpaid_and_cancelled(self, orders, payouts, seller, make_order) -> None:
        paid = _paid_order(orders, make_order, seller, "100.00")
        make_order(seller["store_id"], "200.00")
        cancelled = make_order(seller["store_id"], "300.00")
        orders.update_order_status(seller["actor"], cancelled, "cancelled")

        payout = payouts.request_payout(seller["user_id"])
        assert payout["order_ids"] == [paid]
        assert payout["gross_amount"] == Decimal("100.00")

    def test_no_eligible_orders(self, session, payouts, seller, make_order) -> None:
        make_order(seller["store_id"])
        with pytest.raises(ValidationError, match="No orders available for payout"):
            payouts.request_payout(seller["user_id"])
        assert _payout_count(session) == 0

    def test_second_request_does_not_overlap(self, session, orders, payouts, seller, make_order) -> None:
        first_order = _paid_order(orders, make_order, seller, "100.00")
        first = payouts.request_payout(seller["user_id"])

        with pytest.raises(ValidationError):
            payouts.request_payout(seller["user_id"])

        second_order = _paid_order(orders, make_order, seller, "60.00")
        second = payouts.request_payout(seller["user_id"])
        assert first["order_ids"] == [first_order]
        assert second["order_ids"] == [second_order]
        assert _payout_count(session) == 2

    def test_explicit_order_ids(self, orders, payouts, seller, make_order) -> None:
        a = _paid_order(orders, make_order, seller, "100.00")
        b = _paid_order(orders, make_order, seller, "200.00")

        payout = payouts.request_payout(seller["user_id"], order_ids=[b])
        assert payout["order_ids"] == [b]
        assert orders.get_order(seller["actor"], a)["payout_status"] == OrderPayoutStatus.PENDING

    def test_ineligible_explicit_order_ids(self, orders, payouts, seller, make_order) -> None:
        unpaid = make_order(seller["store_id"], "100.00")
        with pytest.raises(ValidationError):
            payouts.request_payout(seller["user_id"], order_ids=[unpaid])

    def test_store_scope(self, orders, payouts, seller, make_store, make_order) -> None:
        second_store = make_store(seller["seller_id"])
        _paid_order(orders, make_order, seller, "100.00")
        other = _paid_order(orders, make_order, seller, "300.00", store_id=second_store)

        payout = payouts.request_payout(seller["user_id"], store_id=second_store)
        assert payout["order_ids"] == [other]
        assert payout["store"]["id"] == second_store

    def test_foreign_store(self, payouts, seller, make_seller, make_store) -> None:
        other = make_seller()
        foreign = make_store(other["seller_id"])
        with pytest.raises(NotFoundError):
            payouts.request_payout(seller["user_id"], store_id=foreign)

    def test_seller_without_stores(self, payouts, make_seller) -> None:
        lonely = make_seller()
        with pytest.raises(ValidationError, match="No stores found"):
            payouts.request_payout(lonely["user_id"])

    def test_kyc_required(self, session, payouts, make_seller, make_store, make_order) -> None:
        unverified = make_seller(kyc_verified=False)
        store_id = make_store(unverified["seller_id"])
        make_order(store_id)
        with pytest.raises(ValidationError, match="KYC"):
            payouts.request_payout(unverified["user_id"])
        assert _payout_count(session) == 0

    def test_missing_profile(self, payouts, make_user) -> None:
        with pytest.raises(NotFoundError):
            payouts.request_payout(make_user())

    def test_wallet_tracks_pending(self, session, orders, payouts, seller, make_order) -> None:
        _paid_order(orders, make_order, seller, "1000.00")
        payouts.request_payout(seller["user_id"])

        wallet = WalletLedger(session).get_wallet()
        assert wallet["pending_payouts"] == Decimal("950.00")
        assert wallet["available_balance"] == Decimal("1000.00")


class TestSellerPayoutViews:
    def test_get_own_payout(self, orders, payouts, seller, make_order) -> None:
        _paid_order(orders, make_order, seller)
        created = payouts.request_payout(seller["user_id"])
        assert payouts.get_payout(seller["user_id"], created["id"])["id"] == created["id"]

    def test_other_sellers_payout_is_not_found(self, orders, payouts, seller, make_seller, make_order) -> None:
        _paid_order(orders, make_order, seller)
        created = payouts.request_payout(seller["user_id"])
        other = make_seller()
        with pytest.raises(NotFoundError):
            payouts.get_payout(other["user_id"], created["id"])

    def test_list_filters_by_status(self, orders, payouts, seller, make_order) -> None:
        _paid_order(orders, make_order, seller)
        payouts.request_payout(seller["user_id"])

        page = payouts.list_payouts(seller["user_id"], PayoutQuery(status=PayoutStatus.REQUESTED))
        assert page["total"] == 1
        page = payouts.list_payouts(seller["user_id"], PayoutQuery(status=PayoutStatus.COMPLETED))
        assert page["total"] == 0
        assert page["payouts"] == []
