# config.py - marketplace settlement settings, enums and business rules
from decimal import Decimal
from enum import StrEnum
from typing import Final
import os
from dotenv import load_dotenv

load_dotenv()

# Database
DB_CONFIG = {
    'host': os.getenv('MYSQL_HOST', '127.0.0.1'),
    'port': int(os.getenv('MYSQL_PORT', 3306)),
    'user': os.getenv('MYSQL_USER'),
    'password': os.getenv('MYSQL_PASSWORD'),
    'database': os.getenv('MYSQL_DATABASE'),
    'charset': 'utf8mb4',
}

# Overrides DB_CONFIG when set, e.g. sqlite:///marketplace.db
DATABASE_URL: Final[str | None] = os.getenv('DATABASE_URL')

# Singletons
COMMISSION_SETTINGS_ID: Final[int] = 1
ADMIN_WALLET_ID: Final[int] = 1

# Money
MONEY_QUANTUM: Final[Decimal] = Decimal('0.01')
RATE_QUANTUM: Final[Decimal] = Decimal('0.0001')
DEFAULT_COMMISSION_RATE: Final[Decimal] = Decimal(os.getenv('DEFAULT_COMMISSION_RATE', '0.05'))


class UserRole(StrEnum):
    BUYER = 'buyer'
    SELLER = 'seller'
    ADMIN = 'admin'
    SUPER_ADMIN = 'super_admin'


ADMIN_ROLES: Final[frozenset[UserRole]] = frozenset({UserRole.ADMIN, UserRole.SUPER_ADMIN})


class SellerStatus(StrEnum):
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'


# Order lifecycle
class OrderStatus(StrEnum):
    PENDING = 'pending'
    PAID = 'paid'
    SHIPPED = 'shipped'
    DELIVERED = 'delivered'
    CANCELLED = 'cancelled'


ORDER_TRANSITIONS: Final[dict[OrderStatus, frozenset[OrderStatus]]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Statuses that count as revenue and make an order eligible for payout
PAYABLE_ORDER_STATUSES: Final[tuple[OrderStatus, ...]] = (
    OrderStatus.PAID, OrderStatus.SHIPPED, OrderStatus.DELIVERED,
)


class OrderPayoutStatus(StrEnum):
    PENDING = 'pending'
    REQUESTED = 'requested'
    COMPLETED = 'completed'


# Payouts
class PayoutStatus(StrEnum):
    PENDING = 'pending'
    REQUESTED = 'requested'
    APPROVED = 'approved'
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    REJECTED = 'rejected'
    FAILED = 'failed'


PROCESSABLE_PAYOUT_STATUSES: Final[tuple[PayoutStatus, ...]] = (
    PayoutStatus.PENDING, PayoutStatus.REQUESTED,
)
OPEN_PAYOUT_STATUSES: Final[tuple[PayoutStatus, ...]] = (
    PayoutStatus.REQUESTED, PayoutStatus.APPROVED, PayoutStatus.PROCESSING,
)


class PayoutDecision(StrEnum):
    APPROVED = 'approved'
    REJECTED = 'rejected'


class RejectedPayoutPolicy(StrEnum):
    KEEP = 'keep'          # orders stay 'requested' after rejection
    RELEASE = 'release'    # orders go back to 'pending' and can be requested again


REJECTED_PAYOUT_POLICY: Final[RejectedPayoutPolicy] = RejectedPayoutPolicy(
    os.getenv('REJECTED_PAYOUT_POLICY', RejectedPayoutPolicy.KEEP.value)
)


# Admin wallet flow types
class WalletFlowType(StrEnum):
    PAYMENT = 'payment'
    PAYOUT_REQUEST = 'payout_request'
    PAYOUT = 'payout'
    PAYOUT_RELEASE = 'payout_release'


# Pagination
DEFAULT_PAGE_SIZE: Final[int] = 10
MAX_PAGE_SIZE: Final[int] = 50

# Logging
LOG_LEVEL: Final[str] = os.getenv('LOG_LEVEL', 'INFO')
LOG_DIR: Final[str] = os.getenv('LOG_DIR', os.path.join(os.path.dirname(__file__), 'logs'))
LOG_FILE: Final[str] = os.path.join(LOG_DIR, 'finance.log')
os.makedirs(LOG_DIR, exist_ok=True)
