"""Shared fixtures: an in-memory SQLite database with the full schema."""

from decimal import Decimal
from typing import Callable, Dict, Optional

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import OrderStatus, UserRole
from database_setup import DatabaseManager, create_engine_for
from finance_logic import Actor


@pytest.fixture
def engine():
    engine = create_engine_for(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    with engine.begin() as conn:
        DatabaseManager(engine).init_all_tables(conn)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def session(session_factory) -> Session:
    db = session_factory()
    yield db
    db.close()


@pytest.fixture
def make_user(session: Session) -> Callable[..., int]:
    counter = {"n": 0}

    def _make(role: UserRole = UserRole.BUYER, is_active: bool = True) -> int:
        counter["n"] += 1
        user_id = session.execute(
            text("INSERT INTO users (name, email, role, is_active) VALUES (:name, :email, :role, :active)"),
            {
                "name": f"{role.value} {counter['n']}",
                "email": f"{role.value}{counter['n']}@example.com",
                "role": role.value,
                "active": is_active,
            },
        ).lastrowid
        session.commit()
        return user_id

    return _make


@pytest.fixture
def make_seller(session: Session, make_user) -> Callable[..., Dict[str, int]]:
    """Seller user + profile; returns ``{"user_id", "seller_id"}``."""

    def _make(kyc_verified: bool = True) -> Dict[str, int]:
        user_id = make_user(UserRole.SELLER)
        seller_id = session.execute(
            text("""INSERT INTO seller_profiles (user_id, kyc_verified, seller_status)
                    VALUES (:user_id, :kyc, 'approved')"""),
            {"user_id": user_id, "kyc": kyc_verified},
        ).lastrowid
        session.commit()
        return {"user_id": user_id, "seller_id": seller_id}

    return _make


@pytest.fixture
def make_store(session: Session) -> Callable[..., int]:
    counter = {"n": 0}

    def _make(seller_id: int, name: Optional[str] = None) -> int:
        counter["n"] += 1
        store_id = session.execute(
            text("""INSERT INTO stores (seller_id, name, slug, is_verified)
                    VALUES (:seller_id, :name, :slug, 1)"""),
            {
                "seller_id": seller_id,
                "name": name or f"Store {counter['n']}",
                "slug": f"store-{counter['n']}",
            },
        ).lastrowid
        session.commit()
        return store_id

    return _make


@pytest.fixture
def make_order(session: Session, make_user) -> Callable[..., int]:
    buyer = {}

    def _make(store_id: int, total: str = "1000.00", status: OrderStatus = OrderStatus.PENDING) -> int:
        if "id" not in buyer:
            buyer["id"] = make_user(UserRole.BUYER)
        order_id = session.execute(
            text("""INSERT INTO orders (store_id, user_id, status, total_amount)
                    VALUES (:store_id, :user_id, :status, :total)"""),
            {"store_id": store_id, "user_id": buyer["id"], "status": status.value, "total": Decimal(total)},
        ).lastrowid
        session.commit()
        return order_id

    return _make


@pytest.fixture
def admin(make_user) -> Actor:
    return Actor(user_id=make_user(UserRole.ADMIN), role=UserRole.ADMIN)


@pytest.fixture
def super_admin(make_user) -> Actor:
    return Actor(user_id=make_user(UserRole.SUPER_ADMIN), role=UserRole.SUPER_ADMIN)


@pytest.fixture
def seller(make_seller, make_store) -> Dict[str, int]:
    """KYC-verified seller owning one store."""
    info = make_seller()
    info["store_id"] = make_store(info["seller_id"])
    info["actor"] = Actor(user_id=info["user_id"], role=UserRole.SELLER)
    return info
