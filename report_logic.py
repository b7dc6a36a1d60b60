# report_logic.py - read-only earnings, revenue and profit views
import logging
from decimal import Decimal
from typing import Optional, List, Dict, Any, Tuple
from sqlalchemy.orm import Session
from sqlalchemy import text
from config import (
    PayoutStatus, OrderPayoutStatus, UserRole,
    PAYABLE_ORDER_STATUSES, OPEN_PAYOUT_STATUSES, MONEY_QUANTUM
)
from finance_logic import FinanceService, CommissionService, Actor, to_money

logger = logging.getLogger(__name__)


class EarningsReportService(FinanceService):
    """Aggregations computed on demand from orders and payouts.

    Nothing here locks or writes; concurrent settlements may make two
    figures of the same report disagree by one in-flight order.
    """

    def __init__(self, session: Session, commission: Optional[CommissionService] = None):
        super().__init__(session)
        self.commission = commission or CommissionService(session)

    # ============== seller views ==============

    def get_seller_earnings(self, seller_user_id: int) -> Dict[str, Any]:
        profile = self._get_seller_profile(seller_user_id)
        store_ids = self._get_seller_store_ids(profile.id)

        if not store_ids:
            return {
                "total_orders": 0,
                "total_revenue": Decimal('0.00'),
                "total_commission": Decimal('0.00'),
                "net_earnings": Decimal('0.00'),
                "pending_payout": Decimal('0.00'),
                "completed_payouts": Decimal('0.00'),
                "available_for_payout": Decimal('0.00')
            }

        stats = self._order_stats(store_ids)
        available = self._available_for_payout(store_ids)
        pending = self._payout_total("seller_id = :seller_id", {"seller_id": profile.id}, OPEN_PAYOUT_STATUSES)
        completed = self._payout_total("seller_id = :seller_id", {"seller_id": profile.id}, (PayoutStatus.COMPLETED,))

        return {
            **stats,
            "pending_payout": pending,
            "completed_payouts": completed,
            "available_for_payout": available
        }

    def get_earnings_by_store(self, seller_user_id: int) -> List[Dict[str, Any]]:
        profile = self._get_seller_profile(seller_user_id)
        result = self.session.execute(
            text("SELECT id, name FROM stores WHERE seller_id = :seller_id ORDER BY id"),
            {"seller_id": profile.id}
        )

        summaries = []
        for store in result.fetchall():
            stats = self._order_stats([store.id])
            summaries.append({
                "store_id": store.id,
                "store_name": store.name,
                **stats,
                "pending_payout": self._payout_total("store_id = :store_id", {"store_id": store.id},
                                                     OPEN_PAYOUT_STATUSES),
                "available_for_payout": self._available_for_payout([store.id])
            })
        return summaries

    # ============== admin views ==============

    def get_total_revenue(self, actor: Actor) -> Dict[str, Any]:
        self._require_admin(actor)
        payable, params = self._payable_clause()
        row = self.session.execute(
            text(f"""SELECT COUNT(id) AS orders_count,
                            COALESCE(SUM(total_amount), 0) AS total_revenue,
                            COALESCE(SUM(admin_commission), 0) AS total_commission,
                            COALESCE(SUM(seller_amount), 0) AS total_seller_earnings
                     FROM orders WHERE {payable}"""),
            params
        ).fetchone()
        return {
            "total_revenue": to_money(row.total_revenue),
            "total_commission": to_money(row.total_commission),
            "total_seller_earnings": to_money(row.total_seller_earnings),
            "orders_count": row.orders_count or 0
        }

    def get_revenue_by_store(self, actor: Actor) -> List[Dict[str, Any]]:
        self._require_admin(actor)
        return [{
            "store_id": r.store_id,
            "store_name": r.store_name or "Unknown Store",
            "total_orders": r.total_orders or 0,
            "total_revenue": to_money(r.total_revenue),
            "admin_commission": to_money(r.admin_commission),
            "seller_earnings": to_money(r.seller_earnings)
        } for r in self._per_store_rows()]

    def get_total_profit(self, actor: Actor) -> Dict[str, Any]:
        self._require_admin(actor)
        payable, params = self._payable_clause()
        row = self.session.execute(
            text(f"""SELECT COUNT(id) AS total_orders, COALESCE(SUM(admin_commission), 0) AS total_profit
                     FROM orders WHERE {payable}"""),
            params
        ).fetchone()

        total_orders = row.total_orders or 0
        total_profit = to_money(row.total_profit)
        average = (total_profit / total_orders).quantize(MONEY_QUANTUM) if total_orders else Decimal('0.00')
        return {
            "total_profit": total_profit,
            "total_orders": total_orders,
            "average_commission_per_order": average,
            "commission_rate": self.commission.get_rate()
        }

    def get_profit_by_store(self, actor: Actor) -> List[Dict[str, Any]]:
        self._require_admin(actor)
        rate = self.commission.get_rate()
        rows = sorted(self._per_store_rows(), key=lambda r: to_money(r.admin_commission), reverse=True)
        return [{
            "store_id": r.store_id,
            "store_name": r.store_name or "Unknown Store",
            "total_orders": r.total_orders or 0,
            "total_revenue": to_money(r.total_revenue),
            "profit": to_money(r.admin_commission),
            "commission_rate": rate
        } for r in rows]

    def get_dashboard_stats(self, actor: Actor) -> Dict[str, Any]:
        self._require_admin(actor)
        revenue = self.get_total_revenue(actor)

        def count(sql: str, params: Optional[Dict[str, Any]] = None) -> int:
            return self.session.execute(text(sql), params or {}).fetchone().total or 0

        open_placeholders, open_params = self._in_clause("open", [s.value for s in OPEN_PAYOUT_STATUSES])
        return {
            "total_revenue": revenue["total_revenue"],
            "total_commission": revenue["total_commission"],
            "total_orders": count("SELECT COUNT(*) AS total FROM orders"),
            "total_stores": count("SELECT COUNT(*) AS total FROM stores"),
            "pending_stores": count("SELECT COUNT(*) AS total FROM stores WHERE is_verified = :v", {"v": False}),
            "verified_stores": count("SELECT COUNT(*) AS total FROM stores WHERE is_verified = :v", {"v": True}),
            "total_sellers": count("SELECT COUNT(*) AS total FROM users WHERE role = :role",
                                   {"role": UserRole.SELLER.value}),
            "total_buyers": count("SELECT COUNT(*) AS total FROM users WHERE role = :role",
                                  {"role": UserRole.BUYER.value}),
            "pending_payouts": count(f"SELECT COUNT(*) AS total FROM payouts WHERE status IN ({open_placeholders})",
                                     open_params)
        }

    # ============== helpers ==============

    def _payable_clause(self, column: str = "status") -> Tuple[str, Dict[str, Any]]:
        placeholders, params = self._in_clause("payable", [s.value for s in PAYABLE_ORDER_STATUSES])
        return f"{column} IN ({placeholders})", params

    def _order_stats(self, store_ids: List[int]) -> Dict[str, Any]:
        store_placeholders, params = self._in_clause("store", store_ids)
        payable, payable_params = self._payable_clause()
        row = self.session.execute(
            text(f"""SELECT COUNT(id) AS total_orders,
                            COALESCE(SUM(total_amount), 0) AS total_revenue,
                            COALESCE(SUM(admin_commission), 0) AS total_commission,
                            COALESCE(SUM(seller_amount), 0) AS net_earnings
                     FROM orders WHERE store_id IN ({store_placeholders}) AND {payable}"""),
            {**params, **payable_params}
        ).fetchone()
        return {
            "total_orders": row.total_orders or 0,
            "total_revenue": to_money(row.total_revenue),
            "total_commission": to_money(row.total_commission),
            "net_earnings": to_money(row.net_earnings)
        }

    def _available_for_payout(self, store_ids: List[int]) -> Decimal:
        store_placeholders, params = self._in_clause("store", store_ids)
        payable, payable_params = self._payable_clause()
        row = self.session.execute(
            text(f"""SELECT COALESCE(SUM(seller_amount), 0) AS available
                     FROM orders WHERE store_id IN ({store_placeholders}) AND {payable}
                     AND payout_status = :pending"""),
            {**params, **payable_params, "pending": OrderPayoutStatus.PENDING.value}
        ).fetchone()
        return to_money(row.available)

    def _payout_total(self, condition: str, params: Dict[str, Any], statuses) -> Decimal:
        placeholders, status_params = self._in_clause("pstatus", [s.value for s in statuses])
        row = self.session.execute(
            text(f"""SELECT COALESCE(SUM(amount), 0) AS total FROM payouts
                     WHERE {condition} AND status IN ({placeholders})"""),
            {**params, **status_params}
        ).fetchone()
        return to_money(row.total)

    def _per_store_rows(self):
        payable, params = self._payable_clause("o.status")
        return self.session.execute(
            text(f"""SELECT o.store_id, s.name AS store_name, COUNT(o.id) AS total_orders,
                            COALESCE(SUM(o.total_amount), 0) AS total_revenue,
                            COALESCE(SUM(o.admin_commission), 0) AS admin_commission,
                            COALESCE(SUM(o.seller_amount), 0) AS seller_earnings
                     FROM orders o LEFT JOIN stores s ON o.store_id = s.id
                     WHERE {payable}
                     GROUP BY o.store_id, s.name
                     ORDER BY total_revenue DESC"""),
            params
        ).fetchall()
