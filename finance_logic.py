# finance_logic.py - money rules, commission, admin wallet ledger and shared service plumbing
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional, List, Dict, Any, Iterable, Tuple
from sqlalchemy.orm import Session
from sqlalchemy import text
from config import (
    UserRole, ADMIN_ROLES, WalletFlowType,
    MONEY_QUANTUM, RATE_QUANTUM, DEFAULT_COMMISSION_RATE,
    COMMISSION_SETTINGS_ID, ADMIN_WALLET_ID,
    LOG_FILE, LOG_LEVEL
)

logging.basicConfig(
    level=LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(LOG_FILE, encoding='utf-8'),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)


class FinanceException(Exception):
    status_code = 400


class NotFoundError(FinanceException):
    status_code = 404


class ValidationError(FinanceException):
    status_code = 422


class InvalidTransition(ValidationError):
    status_code = 400

    def __init__(self, from_status: str, to_status: str):
        super().__init__(f"Cannot change status from {from_status} to {to_status}")
        self.from_status = from_status
        self.to_status = to_status


class InvalidCommissionRate(ValidationError):
    status_code = 400


class ForbiddenError(FinanceException):
    status_code = 403


class UnauthorizedError(FinanceException):
    status_code = 401


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as resolved by the auth layer."""
    user_id: int
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


def load_actor(session: Session, user_id: Optional[int]) -> Actor:
    if user_id is None:
        raise UnauthorizedError("Authentication required")
    result = session.execute(
        text("SELECT id, role, is_active FROM users WHERE id = :user_id"),
        {"user_id": user_id}
    )
    user = result.fetchone()
    if not user or not user.is_active:
        raise UnauthorizedError("Unknown or inactive user")
    try:
        role = UserRole(user.role)
    except ValueError:
        raise UnauthorizedError(f"Unsupported role: {user.role}")
    return Actor(user_id=user.id, role=role)


@dataclass(frozen=True)
class Settlement:
    commission: Decimal
    seller_amount: Decimal


def to_decimal(value) -> Decimal:
    if value is None:
        return Decimal('0')
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"Not a valid amount: {value!r}")


def to_money(value) -> Decimal:
    return to_decimal(value).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def compute_settlement(total_amount, commission_rate) -> Settlement:
    """Split an order total into the admin commission and the seller's share.

    The commission is rounded half-up to cents and the seller amount is the
    remainder, so ``commission + seller_amount == total_amount`` exactly.
    """
    total = to_decimal(total_amount)
    rate = to_decimal(commission_rate)
    if total < 0:
        raise ValidationError(f"Order total cannot be negative: {total}")
    if rate < 0 or rate > 1:
        raise InvalidCommissionRate(f"Commission rate must be between 0 and 1: {rate}")

    commission = (total * rate).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)
    return Settlement(commission=commission, seller_amount=total - commission)


def format_datetime(value) -> Optional[str]:
    if value is None:
        return None
    if hasattr(value, 'strftime'):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    # SQLite hands timestamps back as text
    return str(value)[:19]


class FinanceService:
    """Base for services that work inside one request-scoped session."""

    def __init__(self, session: Session):
        self.session = session

    def _lock_clause(self) -> str:
        # SQLite has no row locks; it serialises writers on its own
        if self.session.get_bind().dialect.name == 'sqlite':
            return ""
        return " FOR UPDATE"

    @staticmethod
    def _in_clause(prefix: str, values: Iterable[Any]) -> Tuple[str, Dict[str, Any]]:
        values = list(values)
        placeholders = ','.join([f":{prefix}{i}" for i in range(len(values))])
        params = {f"{prefix}{i}": v for i, v in enumerate(values)}
        return placeholders, params

    @staticmethod
    def _require_admin(actor: Actor) -> None:
        if not actor.is_admin:
            raise ForbiddenError("Admin access required")

    def _get_seller_profile(self, user_id: int):
        result = self.session.execute(
            text("""SELECT id, user_id, kyc_verified, seller_status
                    FROM seller_profiles WHERE user_id = :user_id"""),
            {"user_id": user_id}
        )
        profile = result.fetchone()
        if not profile:
            raise NotFoundError("Seller profile not found")
        return profile

    def _get_seller_store_ids(self, seller_id: int) -> List[int]:
        result = self.session.execute(
            text("SELECT id FROM stores WHERE seller_id = :seller_id ORDER BY id"),
            {"seller_id": seller_id}
        )
        return [row.id for row in result.fetchall()]


class CommissionService(FinanceService):

    def get_settings(self) -> Dict[str, Any]:
        result = self.session.execute(
            text("""SELECT commission_rate, updated_by, update_note, updated_at
                    FROM commission_settings WHERE id = :id"""),
            {"id": COMMISSION_SETTINGS_ID}
        )
        row = result.fetchone()
        rate = to_decimal(row.commission_rate).quantize(RATE_QUANTUM) if row else DEFAULT_COMMISSION_RATE
        return {
            "commission_rate": rate,
            "commission_percentage": (rate * 100).quantize(MONEY_QUANTUM),
            "updated_by": row.updated_by if row else None,
            "update_note": row.update_note if row else None,
            "updated_at": format_datetime(row.updated_at) if row else None
        }

    def get_rate(self) -> Decimal:
        return self.get_settings()["commission_rate"]

    def update_settings(self, actor: Actor, commission_rate, update_note: Optional[str] = None) -> Dict[str, Any]:
        if actor.role != UserRole.SUPER_ADMIN:
            raise ForbiddenError("Only a super admin can change the commission rate")

        rate = to_decimal(commission_rate)
        if rate < 0 or rate > 1:
            raise InvalidCommissionRate("Commission rate must be between 0 and 1 (e.g. 0.05 for 5%)")
        rate = rate.quantize(RATE_QUANTUM, rounding=ROUND_HALF_UP)

        try:
            result = self.session.execute(
                text("""UPDATE commission_settings
                        SET commission_rate = :rate, updated_by = :updated_by,
                            update_note = :note, updated_at = CURRENT_TIMESTAMP
                        WHERE id = :id"""),
                {"rate": rate, "updated_by": actor.user_id, "note": update_note, "id": COMMISSION_SETTINGS_ID}
            )
            if result.rowcount == 0:
                self.session.execute(
                    text("""INSERT INTO commission_settings (id, commission_rate, updated_by, update_note)
                            VALUES (:id, :rate, :updated_by, :note)"""),
                    {"id": COMMISSION_SETTINGS_ID, "rate": rate, "updated_by": actor.user_id, "note": update_note}
                )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"📐 Commission rate set to {rate} by admin {actor.user_id}")
        return self.get_settings()


class WalletLedger(FinanceService):
    """Admin wallet singleton.

    Every movement is an additive UPDATE on the single row plus one
    ``wallet_flow`` entry. Callers own the transaction: nothing here commits.
    """

    def get_wallet(self) -> Dict[str, Any]:
        result = self.session.execute(
            text("""SELECT total_balance, available_balance, pending_payouts,
                           total_commission_earned, total_payouts_processed, updated_at
                    FROM admin_wallet WHERE id = :id"""),
            {"id": ADMIN_WALLET_ID}
        )
        row = result.fetchone()
        if not row:
            raise FinanceException("Admin wallet is not initialised")

        return {
            "total_balance": to_money(row.total_balance),
            "available_balance": to_money(row.available_balance),
            "pending_payouts": to_money(row.pending_payouts),
            "total_commission_earned": to_money(row.total_commission_earned),
            "total_payouts_processed": to_money(row.total_payouts_processed),
            "updated_at": format_datetime(row.updated_at)
        }

    def record_payment(self, order_id: int, total_amount: Decimal, commission: Decimal) -> None:
        self._apply(
            {"total_balance": total_amount, "available_balance": total_amount,
             "total_commission_earned": commission}
        )
        self._record_flow(
            WalletFlowType.PAYMENT, total_amount,
            related_order=order_id,
            remark=f"Payment confirmed for order #{order_id} (commission {commission})"
        )
        logger.info(f"💰 Wallet credited {total_amount} for order #{order_id}, commission {commission}")

    def record_payout_request(self, payout_id: int, amount: Decimal) -> None:
        self._apply({"pending_payouts": amount})
        self._record_flow(
            WalletFlowType.PAYOUT_REQUEST, Decimal('0'),
            related_payout=payout_id,
            remark=f"Payout #{payout_id} requested, {amount} pending"
        )

    def record_payout(self, payout_id: int, amount: Decimal, release_pending: bool = True) -> None:
        deltas = {"available_balance": -amount, "total_payouts_processed": amount}
        if release_pending:
            deltas["pending_payouts"] = -amount
        self._apply(deltas)
        self._record_flow(
            WalletFlowType.PAYOUT, -amount,
            related_payout=payout_id,
            remark=f"Payout #{payout_id} completed"
        )
        logger.info(f"💸 Wallet debited {amount} for payout #{payout_id}")

    def release_payout(self, payout_id: int, amount: Decimal) -> None:
        self._apply({"pending_payouts": -amount})
        self._record_flow(
            WalletFlowType.PAYOUT_RELEASE, Decimal('0'),
            related_payout=payout_id,
            remark=f"Payout #{payout_id} rejected, {amount} no longer pending"
        )

    def _apply(self, deltas: Dict[str, Decimal]) -> None:
        assignments = ', '.join(f"{column} = {column} + :{column}" for column in deltas)
        result = self.session.execute(
            text(f"UPDATE admin_wallet SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = :id"),
            {**deltas, "id": ADMIN_WALLET_ID}
        )
        if result.rowcount == 0:
            raise FinanceException("Admin wallet is not initialised")

    def _record_flow(self, flow_type: WalletFlowType, change_amount: Decimal,
                     related_order: Optional[int] = None,
                     related_payout: Optional[int] = None,
                     remark: Optional[str] = None) -> None:
        result = self.session.execute(
            text("SELECT available_balance FROM admin_wallet WHERE id = :id"),
            {"id": ADMIN_WALLET_ID}
        )
        available_after = to_money(result.fetchone().available_balance)
        self.session.execute(
            text("""INSERT INTO wallet_flow (flow_type, change_amount, available_after,
                                             related_order, related_payout, remark)
                    VALUES (:flow_type, :change_amount, :available_after,
                            :related_order, :related_payout, :remark)"""),
            {
                "flow_type": flow_type.value,
                "change_amount": change_amount,
                "available_after": available_after,
                "related_order": related_order,
                "related_payout": related_payout,
                "remark": remark
            }
        )

    def get_flow(self, limit: int = 50) -> List[Dict[str, Any]]:
        result = self.session.execute(
            text("""SELECT id, flow_type, change_amount, available_after, related_order,
                           related_payout, remark, created_at
                    FROM wallet_flow ORDER BY id DESC LIMIT :limit"""),
            {"limit": limit}
        )
        return [{
            "id": f.id,
            "flow_type": f.flow_type,
            "change_amount": to_money(f.change_amount),
            "available_after": to_money(f.available_after) if f.available_after is not None else None,
            "related_order": f.related_order,
            "related_payout": f.related_payout,
            "remark": f.remark,
            "created_at": format_datetime(f.created_at)
        } for f in result.fetchall()]
