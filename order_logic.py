# order_logic.py - order status state machine and settlement stamping
import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any
from sqlalchemy.orm import Session
from sqlalchemy import text
from config import (
    OrderStatus, OrderPayoutStatus, UserRole,
    ORDER_TRANSITIONS, PAYABLE_ORDER_STATUSES,
    DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
)
from finance_logic import (
    FinanceService, CommissionService, WalletLedger, Actor,
    NotFoundError, ValidationError, ForbiddenError, InvalidTransition,
    compute_settlement, to_money, format_datetime
)

logger = logging.getLogger(__name__)


@dataclass
class OrderQuery:
    store_id: Optional[int] = None
    status: Optional[OrderStatus] = None
    payout_status: Optional[OrderPayoutStatus] = None
    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE


class OrderStatusService(FinanceService):
    """Moves orders through their lifecycle.

    Entering a payable status for the first time stamps the commission split
    and opens the order for payout; the first payment confirmation credits the
    admin wallet. Both happen once per order regardless of later transitions.
    """

    def __init__(self, session: Session,
                 commission: Optional[CommissionService] = None,
                 wallet: Optional[WalletLedger] = None):
        super().__init__(session)
        self.commission = commission or CommissionService(session)
        self.wallet = wallet or WalletLedger(session)

    def update_order_status(self, actor: Actor, order_id: int, status: str,
                            tracking_number: Optional[str] = None,
                            notes: Optional[str] = None) -> Dict[str, Any]:
        try:
            new_status = OrderStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown order status: {status}")
        self._require_order_role(actor)

        try:
            order = self._get_order_row(order_id, lock=True)
            self._check_access(actor, order)

            current = OrderStatus(order.status)
            if new_status not in ORDER_TRANSITIONS[current]:
                raise InvalidTransition(current.value, new_status.value)

            total_amount = to_money(order.total_amount)
            commission = to_money(order.admin_commission)
            settle = new_status in PAYABLE_ORDER_STATUSES and order.settled_at is None
            # Cash-on-delivery orders skip paid; their payment is confirmed on delivery
            confirm_payment = (
                new_status in (OrderStatus.PAID, OrderStatus.DELIVERED)
                and order.payment_confirmed_at is None
            )
            settlement = compute_settlement(total_amount, self.commission.get_rate()) if settle else None

            # Guarded on the status read above; a concurrent change leaves no row to update
            result = self.session.execute(
                text("""UPDATE orders
                        SET status = :status,
                            tracking_number = COALESCE(:tracking_number, tracking_number),
                            status_notes = COALESCE(:notes, status_notes),
                            updated_at = CURRENT_TIMESTAMP
                        WHERE id = :order_id AND status = :current"""),
                {
                    "status": new_status.value,
                    "tracking_number": tracking_number,
                    "notes": notes,
                    "order_id": order_id,
                    "current": current.value
                }
            )
            if result.rowcount != 1:
                raise ValidationError("Order was changed by another request, please retry")

            if settlement is not None:
                commission = settlement.commission
                result = self.session.execute(
                    text("""UPDATE orders
                            SET admin_commission = :commission, seller_amount = :seller_amount,
                                payout_status = COALESCE(payout_status, :payout_status),
                                settled_at = CURRENT_TIMESTAMP
                            WHERE id = :order_id AND settled_at IS NULL"""),
                    {
                        "commission": settlement.commission,
                        "seller_amount": settlement.seller_amount,
                        "payout_status": OrderPayoutStatus.PENDING.value,
                        "order_id": order_id
                    }
                )
                if result.rowcount != 1:
                    raise ValidationError("Order was settled by another request, please retry")
                logger.info(f"🧾 Order #{order_id} settled: commission {settlement.commission}, "
                            f"seller {settlement.seller_amount}")

            if confirm_payment:
                result = self.session.execute(
                    text("""UPDATE orders SET payment_confirmed_at = CURRENT_TIMESTAMP
                            WHERE id = :order_id AND payment_confirmed_at IS NULL"""),
                    {"order_id": order_id}
                )
                if result.rowcount == 1:
                    self.wallet.record_payment(order_id, total_amount, commission)

            self.session.execute(
                text("""INSERT INTO order_status_log (order_id, from_status, to_status, changed_by, notes)
                        VALUES (:order_id, :from_status, :to_status, :changed_by, :notes)"""),
                {
                    "order_id": order_id,
                    "from_status": current.value,
                    "to_status": new_status.value,
                    "changed_by": actor.user_id,
                    "notes": notes
                }
            )

            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"📦 Order #{order_id}: {current} → {new_status} (by user {actor.user_id})")
        return self.get_order(actor, order_id)

    def get_order(self, actor: Actor, order_id: int) -> Dict[str, Any]:
        self._require_order_role(actor)
        order = self._get_order_row(order_id)
        self._check_access(actor, order)

        result = self.session.execute(
            text("""SELECT from_status, to_status, changed_by, notes, created_at
                    FROM order_status_log WHERE order_id = :order_id ORDER BY id"""),
            {"order_id": order_id}
        )
        history = [{
            "from_status": h.from_status,
            "to_status": h.to_status,
            "changed_by": h.changed_by,
            "notes": h.notes,
            "created_at": format_datetime(h.created_at)
        } for h in result.fetchall()]

        return {**self._to_order_response(order), "status_history": history}

    def list_orders(self, actor: Actor, query: OrderQuery) -> Dict[str, Any]:
        self._require_order_role(actor)

        conditions = []
        params: Dict[str, Any] = {}

        if not actor.is_admin:
            profile = self._get_seller_profile(actor.user_id)
            store_ids = self._get_seller_store_ids(profile.id)
            if query.store_id is not None and query.store_id not in store_ids:
                raise NotFoundError("Store not found")
            if not store_ids:
                return {"orders": [], "total": 0, "page": query.page, "limit": query.limit}
            placeholders, store_params = self._in_clause("store", store_ids)
            conditions.append(f"store_id IN ({placeholders})")
            params.update(store_params)

        if query.store_id is not None:
            conditions.append("store_id = :store_id")
            params["store_id"] = query.store_id
        if query.status is not None:
            conditions.append("status = :status")
            params["status"] = OrderStatus(query.status).value
        if query.payout_status is not None:
            conditions.append("payout_status = :payout_status")
            params["payout_status"] = OrderPayoutStatus(query.payout_status).value

        where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
        limit = max(1, min(query.limit, MAX_PAGE_SIZE))
        page = max(1, query.page)

        total = self.session.execute(text(f"SELECT COUNT(*) AS total FROM orders{where}"), params).fetchone().total
        result = self.session.execute(
            text(f"""SELECT * FROM orders{where}
                     ORDER BY created_at DESC, id DESC LIMIT :limit OFFSET :offset"""),
            {**params, "limit": limit, "offset": (page - 1) * limit}
        )

        return {
            "orders": [self._to_order_response(o) for o in result.fetchall()],
            "total": total,
            "page": page,
            "limit": limit
        }

    @staticmethod
    def _require_order_role(actor: Actor) -> None:
        if actor.role != UserRole.SELLER and not actor.is_admin:
            raise ForbiddenError("Only the store's seller or an admin can manage orders")

    def _get_order_row(self, order_id: int, lock: bool = False):
        result = self.session.execute(
            text(f"SELECT * FROM orders WHERE id = :order_id{self._lock_clause() if lock else ''}"),
            {"order_id": order_id}
        )
        order = result.fetchone()
        if not order:
            raise NotFoundError("Order not found")
        return order

    def _check_access(self, actor: Actor, order) -> None:
        if actor.is_admin:
            return
        result = self.session.execute(
            text("""SELECT sp.user_id FROM stores s
                    JOIN seller_profiles sp ON s.seller_id = sp.id
                    WHERE s.id = :store_id"""),
            {"store_id": order.store_id}
        )
        owner = result.fetchone()
        # Orders of other sellers are reported as missing
        if not owner or owner.user_id != actor.user_id:
            raise NotFoundError("Order not found")

    @staticmethod
    def _to_order_response(order) -> Dict[str, Any]:
        return {
            "id": order.id,
            "store_id": order.store_id,
            "user_id": order.user_id,
            "status": order.status,
            "total_amount": to_money(order.total_amount),
            "admin_commission": to_money(order.admin_commission),
            "seller_amount": to_money(order.seller_amount),
            "payout_status": order.payout_status,
            "payout_id": order.payout_id,
            "tracking_number": order.tracking_number,
            "status_notes": order.status_notes,
            "settled_at": format_datetime(order.settled_at),
            "payment_confirmed_at": format_datetime(order.payment_confirmed_at),
            "created_at": format_datetime(order.created_at),
            "updated_at": format_datetime(order.updated_at)
        }
