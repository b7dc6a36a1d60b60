# database_setup.py - engine, sessions and schema for the settlement tables
import logging
import sqlite3
from decimal import Decimal

from sqlalchemy import (
    BigInteger, Boolean, Column, DateTime, ForeignKey, Index, Integer,
    MetaData, Numeric, String, Table, create_engine, text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, scoped_session
from sqlalchemy.pool import QueuePool
from config import (
    DB_CONFIG, DATABASE_URL, DEFAULT_COMMISSION_RATE,
    COMMISSION_SETTINGS_ID, ADMIN_WALLET_ID,
)

logger = logging.getLogger(__name__)

# pysqlite cannot bind Decimal parameters on its own
sqlite3.register_adapter(Decimal, str)

_engine = None
_SessionFactory = None

ID_TYPE = BigInteger().with_variant(Integer(), 'sqlite')
MONEY = Numeric(14, 2)
NOW = text('CURRENT_TIMESTAMP')

metadata = MetaData()

users = Table(
    'users', metadata,
    Column('id', ID_TYPE, primary_key=True, autoincrement=True),
    Column('name', String(100), nullable=False),
    Column('email', String(255), unique=True, nullable=False),
    Column('role', String(20), nullable=False, server_default='buyer'),
    Column('is_active', Boolean, nullable=False, server_default=text('1')),
    Column('created_at', DateTime, server_default=NOW),
    Index('idx_users_role', 'role'),
)

seller_profiles = Table(
    'seller_profiles', metadata,
    Column('id', ID_TYPE, primary_key=True, autoincrement=True),
    Column('user_id', ID_TYPE, ForeignKey('users.id'), unique=True, nullable=False),
    Column('kyc_verified', Boolean, nullable=False, server_default=text('0')),
    Column('seller_status', String(20), nullable=False, server_default='pending'),
    Column('created_at', DateTime, server_default=NOW),
)

stores = Table(
    'stores', metadata,
    Column('id', ID_TYPE, primary_key=True, autoincrement=True),
    Column('seller_id', ID_TYPE, ForeignKey('seller_profiles.id'), nullable=False),
    Column('name', String(255), nullable=False),
    Column('slug', String(255), unique=True, nullable=False),
    Column('is_verified', Boolean, nullable=False, server_default=text('0')),
    Column('is_active', Boolean, nullable=False, server_default=text('1')),
    Column('created_at', DateTime, server_default=NOW),
    Index('idx_stores_seller', 'seller_id'),
)

orders = Table(
    'orders', metadata,
    Column('id', ID_TYPE, primary_key=True, autoincrement=True),
    Column('store_id', ID_TYPE, ForeignKey('stores.id'), nullable=False),
    Column('user_id', ID_TYPE, ForeignKey('users.id'), nullable=False),
    Column('status', String(20), nullable=False, server_default='pending'),
    Column('total_amount', MONEY, nullable=False),
    Column('admin_commission', MONEY, nullable=False, server_default=text('0')),
    Column('seller_amount', MONEY, nullable=False, server_default=text('0')),
    Column('payout_status', String(20), nullable=True),
    Column('payout_id', ID_TYPE, nullable=True),
    Column('tracking_number', String(100), nullable=True),
    Column('status_notes', String(255), nullable=True),
    Column('settled_at', DateTime, nullable=True),
    Column('payment_confirmed_at', DateTime, nullable=True),
    Column('created_at', DateTime, server_default=NOW),
    Column('updated_at', DateTime, server_default=NOW),
    Index('idx_orders_store_status', 'store_id', 'status'),
    Index('idx_orders_payout_status', 'payout_status'),
)

order_status_log = Table(
    'order_status_log', metadata,
    Column('id', ID_TYPE, primary_key=True, autoincrement=True),
    Column('order_id', ID_TYPE, ForeignKey('orders.id'), nullable=False),
    Column('from_status', String(20), nullable=False),
    Column('to_status', String(20), nullable=False),
    Column('changed_by', ID_TYPE, nullable=False),
    Column('notes', String(255), nullable=True),
    Column('created_at', DateTime, server_default=NOW),
    Index('idx_status_log_order', 'order_id'),
)

payouts = Table(
    'payouts', metadata,
    Column('id', ID_TYPE, primary_key=True, autoincrement=True),
    Column('seller_id', ID_TYPE, ForeignKey('seller_profiles.id'), nullable=False),
    Column('store_id', ID_TYPE, ForeignKey('stores.id'), nullable=True),
    Column('gross_amount', MONEY, nullable=False),
    Column('commission_amount', MONEY, nullable=False),
    Column('amount', MONEY, nullable=False),
    Column('status', String(20), nullable=False, server_default='requested'),
    Column('request_notes', String(500), nullable=True),
    Column('admin_notes', String(500), nullable=True),
    Column('transaction_id', String(100), nullable=True),
    Column('processed_by', ID_TYPE, nullable=True),
    Column('processed_at', DateTime, nullable=True),
    Column('created_at', DateTime, server_default=NOW),
    Column('updated_at', DateTime, server_default=NOW),
    Index('idx_payouts_seller_status', 'seller_id', 'status'),
)

payout_orders = Table(
    'payout_orders', metadata,
    Column('payout_id', ID_TYPE, ForeignKey('payouts.id'), primary_key=True),
    Column('order_id', ID_TYPE, ForeignKey('orders.id'), primary_key=True),
    Index('idx_payout_orders_order', 'order_id'),
)

commission_settings = Table(
    'commission_settings', metadata,
    Column('id', Integer, primary_key=True, autoincrement=False),
    Column('commission_rate', Numeric(5, 4), nullable=False),
    Column('updated_by', ID_TYPE, nullable=True),
    Column('update_note', String(255), nullable=True),
    Column('updated_at', DateTime, server_default=NOW),
)

admin_wallet = Table(
    'admin_wallet', metadata,
    Column('id', Integer, primary_key=True, autoincrement=False),
    Column('total_balance', MONEY, nullable=False, server_default=text('0')),
    Column('available_balance', MONEY, nullable=False, server_default=text('0')),
    Column('pending_payouts', MONEY, nullable=False, server_default=text('0')),
    Column('total_commission_earned', MONEY, nullable=False, server_default=text('0')),
    Column('total_payouts_processed', MONEY, nullable=False, server_default=text('0')),
    Column('updated_at', DateTime, server_default=NOW),
)

wallet_flow = Table(
    'wallet_flow', metadata,
    Column('id', ID_TYPE, primary_key=True, autoincrement=True),
    Column('flow_type', String(30), nullable=False),
    Column('change_amount', MONEY, nullable=False),
    Column('available_after', MONEY, nullable=True),
    Column('related_order', ID_TYPE, nullable=True),
    Column('related_payout', ID_TYPE, nullable=True),
    Column('remark', String(255), nullable=True),
    Column('created_at', DateTime, server_default=NOW),
    Index('idx_wallet_flow_created_at', 'created_at'),
)


def build_database_url() -> str:
    if DATABASE_URL:
        return DATABASE_URL
    return (
        f"mysql+pymysql://{DB_CONFIG['user']}:{DB_CONFIG['password']}"
        f"@{DB_CONFIG['host']}:{DB_CONFIG['port']}/{DB_CONFIG['database']}"
        f"?charset={DB_CONFIG['charset']}"
    )


def create_engine_for(url: str, **kwargs) -> Engine:
    if url.startswith('sqlite'):
        return create_engine(url, **kwargs)
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=20,
        max_overflow=30,
        pool_timeout=30,
        pool_pre_ping=True,
        echo=False,
        **kwargs
    )


def get_engine():
    global _engine
    if _engine is None:
        try:
            _engine = create_engine_for(build_database_url())
            logger.info(f"✅ SQLAlchemy engine created ({_engine.dialect.name})")
        except Exception as e:
            logger.error(f"❌ Failed to create SQLAlchemy engine: {e}")
            raise
    return _engine


def get_session_factory():
    global _SessionFactory
    if _SessionFactory is None:
        engine = get_engine()
        _SessionFactory = sessionmaker(
            bind=engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False
        )
        logger.info("✅ Session factory created")
    return _SessionFactory


def get_db_session():
    factory = get_session_factory()
    db = scoped_session(factory)()
    try:
        yield db
    finally:
        db.close()


class DatabaseManager:
    def __init__(self, engine: Engine = None):
        self.engine = engine or get_engine()
        if self.engine.dialect.name == 'mysql':
            self._ensure_database_exists()

    def _ensure_database_exists(self):
        try:
            temp_config = DB_CONFIG.copy()
            database = temp_config.pop('database')
            import pymysql
            conn = pymysql.connect(**temp_config)
            cursor = conn.cursor()
            cursor.execute(
                f"CREATE DATABASE IF NOT EXISTS `{database}` "
                f"DEFAULT CHARSET utf8mb4 COLLATE utf8mb4_unicode_ci"
            )
            conn.commit()
            conn.close()
            logger.info(f"✅ Database `{database}` is ready")
        except Exception as e:
            logger.error(f"❌ Database initialisation failed: {e}")
            raise

    def init_all_tables(self, conn):
        logger.info("=== Initialising schema ===")
        metadata.create_all(conn)
        for table_name in metadata.tables:
            logger.info(f"✅ Table `{table_name}` created/confirmed")

        self._init_singletons(conn)
        logger.info("✅ Schema initialisation complete")

    def _init_singletons(self, conn):
        # Existing rows are kept; re-running init must not reset the ledger
        row = conn.execute(
            text("SELECT id FROM commission_settings WHERE id = :id"),
            {"id": COMMISSION_SETTINGS_ID}
        ).fetchone()
        if not row:
            conn.execute(
                text("""INSERT INTO commission_settings (id, commission_rate, update_note)
                        VALUES (:id, :rate, 'initial default')"""),
                {"id": COMMISSION_SETTINGS_ID, "rate": DEFAULT_COMMISSION_RATE}
            )
            logger.info(f"✅ Commission settings seeded at {DEFAULT_COMMISSION_RATE}")

        row = conn.execute(
            text("SELECT id FROM admin_wallet WHERE id = :id"),
            {"id": ADMIN_WALLET_ID}
        ).fetchone()
        if not row:
            conn.execute(
                text("INSERT INTO admin_wallet (id) VALUES (:id)"),
                {"id": ADMIN_WALLET_ID}
            )
            logger.info("✅ Admin wallet seeded")

    def create_test_data(self, conn) -> dict:
        logger.info("--- Creating demo data ---")

        admin_id = conn.execute(
            text("INSERT INTO users (name, email, role) VALUES (:name, :email, 'super_admin')"),
            {"name": 'Platform Admin', "email": 'admin@example.com'}
        ).lastrowid
        seller_user_id = conn.execute(
            text("INSERT INTO users (name, email, role) VALUES (:name, :email, 'seller')"),
            {"name": 'Demo Seller', "email": 'seller@example.com'}
        ).lastrowid
        buyer_id = conn.execute(
            text("INSERT INTO users (name, email, role) VALUES (:name, :email, 'buyer')"),
            {"name": 'Demo Buyer', "email": 'buyer@example.com'}
        ).lastrowid
        seller_id = conn.execute(
            text("""INSERT INTO seller_profiles (user_id, kyc_verified, seller_status)
                    VALUES (:user_id, 1, 'approved')"""),
            {"user_id": seller_user_id}
        ).lastrowid
        store_id = conn.execute(
            text("""INSERT INTO stores (seller_id, name, slug, is_verified)
                    VALUES (:seller_id, :name, :slug, 1)"""),
            {"seller_id": seller_id, "name": 'Demo Store', "slug": 'demo-store'}
        ).lastrowid
        order_id = conn.execute(
            text("""INSERT INTO orders (store_id, user_id, status, total_amount)
                    VALUES (:store_id, :user_id, 'pending', :total)"""),
            {"store_id": store_id, "user_id": buyer_id, "total": Decimal('1000.00')}
        ).lastrowid

        logger.info(f"✅ Demo data created | seller user: {seller_user_id} | store: {store_id}")
        return {
            "admin_id": admin_id,
            "seller_user_id": seller_user_id,
            "buyer_id": buyer_id,
            "seller_id": seller_id,
            "store_id": store_id,
            "order_id": order_id,
        }
