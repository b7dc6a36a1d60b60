# payout_logic.py - seller payout requests and admin settlement of payouts
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, List, Dict, Any
from sqlalchemy.orm import Session
from sqlalchemy import text
from config import (
    OrderPayoutStatus, PayoutStatus, PayoutDecision, RejectedPayoutPolicy,
    PAYABLE_ORDER_STATUSES, PROCESSABLE_PAYOUT_STATUSES, REJECTED_PAYOUT_POLICY,
    DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
)
from finance_logic import (
    FinanceService, WalletLedger, Actor,
    NotFoundError, ValidationError,
    to_money, format_datetime
)

logger = logging.getLogger(__name__)

PAYOUT_SELECT = """SELECT p.*, s.name AS store_name, sp.user_id AS seller_user_id,
                          u.name AS seller_name, u.email AS seller_email
                   FROM payouts p
                   JOIN seller_profiles sp ON p.seller_id = sp.id
                   JOIN users u ON sp.user_id = u.id
                   LEFT JOIN stores s ON p.store_id = s.id"""


@dataclass
class PayoutQuery:
    status: Optional[PayoutStatus] = None
    seller_id: Optional[int] = None
    store_id: Optional[int] = None
    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE


class PayoutReader(FinanceService):

    def _fetch_payouts(self, query: PayoutQuery) -> Dict[str, Any]:
        conditions = []
        params: Dict[str, Any] = {}
        if query.seller_id is not None:
            conditions.append("p.seller_id = :seller_id")
            params["seller_id"] = query.seller_id
        if query.store_id is not None:
            conditions.append("p.store_id = :store_id")
            params["store_id"] = query.store_id
        if query.status is not None:
            conditions.append("p.status = :status")
            params["status"] = PayoutStatus(query.status).value

        where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
        limit = max(1, min(query.limit, MAX_PAGE_SIZE))
        page = max(1, query.page)

        total = self.session.execute(
            text(f"SELECT COUNT(*) AS total FROM payouts p{where}"), params
        ).fetchone().total
        result = self.session.execute(
            text(f"{PAYOUT_SELECT}{where} ORDER BY p.created_at DESC, p.id DESC LIMIT :limit OFFSET :offset"),
            {**params, "limit": limit, "offset": (page - 1) * limit}
        )
        rows = result.fetchall()
        order_ids = self._get_order_ids_by_payout([r.id for r in rows])

        return {
            "payouts": [self._to_payout_response(r, order_ids.get(r.id, [])) for r in rows],
            "total": total,
            "page": page,
            "limit": limit
        }

    def _fetch_payout(self, payout_id: int, seller_id: Optional[int] = None) -> Dict[str, Any]:
        sql = f"{PAYOUT_SELECT} WHERE p.id = :payout_id"
        params: Dict[str, Any] = {"payout_id": payout_id}
        if seller_id is not None:
            sql += " AND p.seller_id = :seller_id"
            params["seller_id"] = seller_id

        payout = self.session.execute(text(sql), params).fetchone()
        if not payout:
            raise NotFoundError("Payout not found")
        return self._to_payout_response(payout, self._get_order_ids_by_payout([payout_id]).get(payout_id, []))

    def _get_order_ids_by_payout(self, payout_ids: List[int]) -> Dict[int, List[int]]:
        if not payout_ids:
            return {}
        placeholders, params = self._in_clause("payout", payout_ids)
        result = self.session.execute(
            text(f"""SELECT payout_id, order_id FROM payout_orders
                     WHERE payout_id IN ({placeholders}) ORDER BY order_id"""),
            params
        )
        grouped: Dict[int, List[int]] = {}
        for row in result.fetchall():
            grouped.setdefault(row.payout_id, []).append(row.order_id)
        return grouped

    @staticmethod
    def _to_payout_response(payout, order_ids: List[int]) -> Dict[str, Any]:
        return {
            "id": payout.id,
            "seller_id": payout.seller_id,
            "store_id": payout.store_id,
            "gross_amount": to_money(payout.gross_amount),
            "commission_amount": to_money(payout.commission_amount),
            "amount": to_money(payout.amount),
            "status": payout.status,
            "order_ids": order_ids,
            "request_notes": payout.request_notes,
            "admin_notes": payout.admin_notes,
            "transaction_id": payout.transaction_id,
            "processed_by": payout.processed_by,
            "processed_at": format_datetime(payout.processed_at),
            "created_at": format_datetime(payout.created_at),
            "updated_at": format_datetime(payout.updated_at),
            "store": {"id": payout.store_id, "name": payout.store_name} if payout.store_id else None,
            "seller": {
                "id": payout.seller_id,
                "user_id": payout.seller_user_id,
                "name": payout.seller_name,
                "email": payout.seller_email
            }
        }


class PayoutService(PayoutReader):
    """Seller side: bundles eligible orders into a payout request."""

    def __init__(self, session: Session, wallet: Optional[WalletLedger] = None):
        super().__init__(session)
        self.wallet = wallet or WalletLedger(session)

    def request_payout(self, seller_user_id: int, store_id: Optional[int] = None,
                       order_ids: Optional[List[int]] = None,
                       request_notes: Optional[str] = None) -> Dict[str, Any]:
        profile = self._get_seller_profile(seller_user_id)
        if not profile.kyc_verified:
            raise ValidationError("KYC verification is required before requesting payouts")

        store_ids = self._get_seller_store_ids(profile.id)
        if store_id is not None:
            if store_id not in store_ids:
                raise NotFoundError("Store not found")
            scope = [store_id]
        else:
            if not store_ids:
                raise ValidationError("No stores found")
            scope = store_ids

        try:
            candidates = self._select_candidates(scope, order_ids)
            if not candidates:
                raise ValidationError("No orders available for payout")

            claimed_ids = [o.id for o in candidates]
            gross_amount = sum((to_money(o.total_amount) for o in candidates), Decimal('0.00'))
            commission_amount = sum((to_money(o.admin_commission) for o in candidates), Decimal('0.00'))
            amount = sum((to_money(o.seller_amount) for o in candidates), Decimal('0.00'))

            placeholders, params = self._in_clause("order", claimed_ids)
            result = self.session.execute(
                text(f"""UPDATE orders SET payout_status = :requested, updated_at = CURRENT_TIMESTAMP
                         WHERE id IN ({placeholders}) AND payout_status = :pending"""),
                {
                    **params,
                    "requested": OrderPayoutStatus.REQUESTED.value,
                    "pending": OrderPayoutStatus.PENDING.value
                }
            )
            if result.rowcount != len(claimed_ids):
                raise ValidationError("Some orders were claimed by another payout request, please retry")

            payout_id = self.session.execute(
                text("""INSERT INTO payouts (seller_id, store_id, gross_amount, commission_amount, amount,
                                             status, request_notes)
                        VALUES (:seller_id, :store_id, :gross_amount, :commission_amount, :amount,
                                :status, :request_notes)"""),
                {
                    "seller_id": profile.id,
                    "store_id": store_id,
                    "gross_amount": gross_amount,
                    "commission_amount": commission_amount,
                    "amount": amount,
                    "status": PayoutStatus.REQUESTED.value,
                    "request_notes": request_notes
                }
            ).lastrowid

            for order_id in claimed_ids:
                self.session.execute(
                    text("INSERT INTO payout_orders (payout_id, order_id) VALUES (:payout_id, :order_id)"),
                    {"payout_id": payout_id, "order_id": order_id}
                )

            self.wallet.record_payout_request(payout_id, amount)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"📤 Payout #{payout_id} requested by seller {profile.id}: {len(claimed_ids)} orders, "
                    f"gross {gross_amount}, commission {commission_amount}, net {amount}")
        return self._fetch_payout(payout_id)

    def get_payout(self, seller_user_id: int, payout_id: int) -> Dict[str, Any]:
        profile = self._get_seller_profile(seller_user_id)
        return self._fetch_payout(payout_id, seller_id=profile.id)

    def list_payouts(self, seller_user_id: int, query: PayoutQuery) -> Dict[str, Any]:
        profile = self._get_seller_profile(seller_user_id)
        query.seller_id = profile.id
        return self._fetch_payouts(query)

    def _select_candidates(self, store_ids: List[int], order_ids: Optional[List[int]]):
        store_placeholders, params = self._in_clause("store", store_ids)
        status_placeholders, status_params = self._in_clause("status", [s.value for s in PAYABLE_ORDER_STATUSES])
        params.update(status_params)

        sql = f"""SELECT id, total_amount, admin_commission, seller_amount FROM orders
                  WHERE store_id IN ({store_placeholders})
                  AND status IN ({status_placeholders})
                  AND payout_status = :pending"""
        params["pending"] = OrderPayoutStatus.PENDING.value

        if order_ids:
            order_placeholders, order_params = self._in_clause("order", order_ids)
            sql += f" AND id IN ({order_placeholders})"
            params.update(order_params)

        sql += f" ORDER BY id{self._lock_clause()}"
        return self.session.execute(text(sql), params).fetchall()


class AdminSettlementService(PayoutReader):
    """Admin side: approves or rejects payout requests."""

    def __init__(self, session: Session, wallet: Optional[WalletLedger] = None,
                 rejected_policy: RejectedPayoutPolicy = REJECTED_PAYOUT_POLICY):
        super().__init__(session)
        self.wallet = wallet or WalletLedger(session)
        self.rejected_policy = rejected_policy

    def process_payout(self, actor: Actor, payout_id: int, status: str,
                       admin_notes: Optional[str] = None,
                       transaction_id: Optional[str] = None) -> Dict[str, Any]:
        self._require_admin(actor)
        try:
            decision = PayoutDecision(status)
        except ValueError:
            raise ValidationError("Status must be either 'approved' or 'rejected'")

        try:
            result = self.session.execute(
                text(f"SELECT id, status, amount FROM payouts WHERE id = :payout_id{self._lock_clause()}"),
                {"payout_id": payout_id}
            )
            payout = result.fetchone()
            if not payout:
                raise NotFoundError("Payout not found")
            if payout.status not in PROCESSABLE_PAYOUT_STATUSES:
                raise ValidationError("Payout already processed")

            amount = to_money(payout.amount)
            was_requested = payout.status == PayoutStatus.REQUESTED
            order_ids = self._get_order_ids_by_payout([payout_id]).get(payout_id, [])

            if decision == PayoutDecision.APPROVED:
                self._finalize(payout_id, PayoutStatus.COMPLETED, actor, admin_notes, transaction_id)
                if order_ids:
                    placeholders, params = self._in_clause("order", order_ids)
                    result = self.session.execute(
                        text(f"""UPDATE orders
                                 SET payout_status = :completed, payout_id = :payout_id,
                                     updated_at = CURRENT_TIMESTAMP
                                 WHERE id IN ({placeholders}) AND payout_status = :requested"""),
                        {
                            **params,
                            "completed": OrderPayoutStatus.COMPLETED.value,
                            "requested": OrderPayoutStatus.REQUESTED.value,
                            "payout_id": payout_id
                        }
                    )
                    if result.rowcount != len(order_ids):
                        raise ValidationError(f"Payout #{payout_id} includes orders that are not awaiting payout")
                self.wallet.record_payout(payout_id, amount, release_pending=was_requested)
            else:
                self._finalize(payout_id, PayoutStatus.REJECTED, actor, admin_notes, transaction_id)
                if was_requested:
                    self.wallet.release_payout(payout_id, amount)
                if self.rejected_policy == RejectedPayoutPolicy.RELEASE and order_ids:
                    placeholders, params = self._in_clause("order", order_ids)
                    self.session.execute(
                        text(f"""UPDATE orders SET payout_status = :pending, updated_at = CURRENT_TIMESTAMP
                                 WHERE id IN ({placeholders}) AND payout_status = :requested"""),
                        {
                            **params,
                            "pending": OrderPayoutStatus.PENDING.value,
                            "requested": OrderPayoutStatus.REQUESTED.value
                        }
                    )
                    logger.info(f"↩️ Payout #{payout_id} rejected, {len(order_ids)} orders released")

            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        if decision == PayoutDecision.APPROVED:
            logger.info(f"✅ Payout #{payout_id} completed by admin {actor.user_id}, paid {amount}")
        else:
            logger.info(f"❌ Payout #{payout_id} rejected by admin {actor.user_id}")
        return self._fetch_payout(payout_id)

    def get_payout(self, actor: Actor, payout_id: int) -> Dict[str, Any]:
        self._require_admin(actor)
        return self._fetch_payout(payout_id)

    def list_payouts(self, actor: Actor, query: PayoutQuery) -> Dict[str, Any]:
        self._require_admin(actor)
        return self._fetch_payouts(query)

    def _finalize(self, payout_id: int, status: PayoutStatus, actor: Actor,
                  admin_notes: Optional[str], transaction_id: Optional[str]) -> None:
        placeholders, params = self._in_clause("open", [s.value for s in PROCESSABLE_PAYOUT_STATUSES])
        result = self.session.execute(
            text(f"""UPDATE payouts
                     SET status = :status, admin_notes = :admin_notes, processed_by = :processed_by,
                         processed_at = CURRENT_TIMESTAMP,
                         transaction_id = COALESCE(:transaction_id, transaction_id),
                         updated_at = CURRENT_TIMESTAMP
                     WHERE id = :payout_id AND status IN ({placeholders})"""),
            {
                **params,
                "status": status.value,
                "admin_notes": admin_notes,
                "processed_by": actor.user_id,
                "transaction_id": transaction_id,
                "payout_id": payout_id
            }
        )
        if result.rowcount == 0:
            raise ValidationError("Payout already processed")
