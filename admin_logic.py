# admin_logic.py - store verification, seller KYC and the admin store/seller directory
import logging
from dataclasses import dataclass
from typing import Optional, List, Dict, Any
from sqlalchemy import text
from config import PAYABLE_ORDER_STATUSES, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from finance_logic import FinanceService, Actor, NotFoundError, to_money, format_datetime

logger = logging.getLogger(__name__)

STORE_SELECT = """SELECT s.id, s.name, s.slug, s.is_verified, s.is_active, s.created_at,
                         sp.id AS seller_id, sp.user_id AS seller_user_id, sp.kyc_verified,
                         u.name AS seller_name, u.email AS seller_email
                  FROM stores s
                  JOIN seller_profiles sp ON s.seller_id = sp.id
                  JOIN users u ON sp.user_id = u.id"""


@dataclass
class StoreQuery:
    is_verified: Optional[bool] = None
    is_active: Optional[bool] = None
    search: Optional[str] = None
    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE


class AdminService(FinanceService):

    # ============== stores ==============

    def update_store_status(self, actor: Actor, store_id: int, is_verified: bool,
                            is_active: Optional[bool] = None) -> Dict[str, Any]:
        self._require_admin(actor)
        try:
            result = self.session.execute(
                text("""UPDATE stores
                        SET is_verified = :is_verified, is_active = COALESCE(:is_active, is_active)
                        WHERE id = :store_id"""),
                {"is_verified": is_verified, "is_active": is_active, "store_id": store_id}
            )
            if result.rowcount == 0:
                raise NotFoundError("Store not found")
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"🏪 Store #{store_id} verified={is_verified} active={is_active} (admin {actor.user_id})")
        return self.get_store(actor, store_id)

    def get_store(self, actor: Actor, store_id: int) -> Dict[str, Any]:
        self._require_admin(actor)
        store = self.session.execute(
            text(f"{STORE_SELECT} WHERE s.id = :store_id"),
            {"store_id": store_id}
        ).fetchone()
        if not store:
            raise NotFoundError("Store not found")
        return self._to_store_response(store, self._store_stats([store_id]).get(store_id))

    def list_stores(self, actor: Actor, query: StoreQuery) -> Dict[str, Any]:
        """Paginated store directory, newest first.

        ``is_verified=False`` gives the verification queue; ``search`` matches
        the store name or the seller's name or email.
        """
        self._require_admin(actor)

        conditions = []
        params: Dict[str, Any] = {}
        if query.is_verified is not None:
            conditions.append("s.is_verified = :is_verified")
            params["is_verified"] = query.is_verified
        if query.is_active is not None:
            conditions.append("s.is_active = :is_active")
            params["is_active"] = query.is_active
        if query.search:
            conditions.append("(LOWER(s.name) LIKE :search OR LOWER(u.name) LIKE :search "
                              "OR LOWER(u.email) LIKE :search)")
            params["search"] = f"%{query.search.lower()}%"

        where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
        limit = max(1, min(query.limit, MAX_PAGE_SIZE))
        page = max(1, query.page)

        total = self.session.execute(
            text(f"""SELECT COUNT(*) AS total FROM stores s
                     JOIN seller_profiles sp ON s.seller_id = sp.id
                     JOIN users u ON sp.user_id = u.id{where}"""),
            params
        ).fetchone().total
        rows = self.session.execute(
            text(f"{STORE_SELECT}{where} ORDER BY s.created_at DESC, s.id DESC LIMIT :limit OFFSET :offset"),
            {**params, "limit": limit, "offset": (page - 1) * limit}
        ).fetchall()
        stats = self._store_stats([r.id for r in rows])

        return {
            "stores": [self._to_store_response(r, stats.get(r.id)) for r in rows],
            "total": total,
            "page": page,
            "limit": limit
        }

    # ============== sellers ==============

    def set_seller_kyc(self, actor: Actor, seller_id: int, kyc_verified: bool) -> Dict[str, Any]:
        self._require_admin(actor)
        try:
            result = self.session.execute(
                text("UPDATE seller_profiles SET kyc_verified = :kyc_verified WHERE id = :seller_id"),
                {"kyc_verified": kyc_verified, "seller_id": seller_id}
            )
            if result.rowcount == 0:
                raise NotFoundError("Seller not found")
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"🪪 Seller #{seller_id} kyc_verified={kyc_verified} (admin {actor.user_id})")
        return self.get_seller(actor, seller_id)

    def get_seller(self, actor: Actor, seller_id: int) -> Dict[str, Any]:
        self._require_admin(actor)
        profile = self.session.execute(
            text("""SELECT sp.id, sp.user_id, sp.kyc_verified, sp.seller_status,
                           u.name, u.email
                    FROM seller_profiles sp JOIN users u ON sp.user_id = u.id
                    WHERE sp.id = :seller_id"""),
            {"seller_id": seller_id}
        ).fetchone()
        if not profile:
            raise NotFoundError("Seller not found")
        return self._to_seller_response(profile)

    def list_sellers(self, actor: Actor) -> List[Dict[str, Any]]:
        self._require_admin(actor)
        result = self.session.execute(
            text("""SELECT sp.id, sp.user_id, sp.kyc_verified, sp.seller_status,
                           u.name, u.email
                    FROM seller_profiles sp JOIN users u ON sp.user_id = u.id
                    ORDER BY sp.id""")
        )
        return [self._to_seller_response(p) for p in result.fetchall()]

    # ============== helpers ==============

    def _store_stats(self, store_ids: List[int]) -> Dict[int, Any]:
        if not store_ids:
            return {}
        store_placeholders, params = self._in_clause("store", store_ids)
        status_placeholders, status_params = self._in_clause("status", [s.value for s in PAYABLE_ORDER_STATUSES])
        result = self.session.execute(
            text(f"""SELECT store_id, COUNT(id) AS order_count,
                            COALESCE(SUM(total_amount), 0) AS total_revenue
                     FROM orders
                     WHERE store_id IN ({store_placeholders}) AND status IN ({status_placeholders})
                     GROUP BY store_id"""),
            {**params, **status_params}
        )
        return {row.store_id: row for row in result.fetchall()}

    def _to_seller_response(self, profile) -> Dict[str, Any]:
        stores = self.session.execute(
            text("SELECT id, name, is_verified FROM stores WHERE seller_id = :seller_id ORDER BY id"),
            {"seller_id": profile.id}
        ).fetchall()
        stats = self._store_stats([s.id for s in stores])
        total_revenue = sum((to_money(stats[s.id].total_revenue) for s in stores if s.id in stats),
                            to_money(0))
        return {
            "id": profile.id,
            "user_id": profile.user_id,
            "name": profile.name,
            "email": profile.email,
            "kyc_verified": bool(profile.kyc_verified),
            "seller_status": profile.seller_status,
            "stores": [{"id": s.id, "name": s.name, "is_verified": bool(s.is_verified)} for s in stores],
            "total_revenue": total_revenue
        }

    @staticmethod
    def _to_store_response(store, stats=None) -> Dict[str, Any]:
        return {
            "id": store.id,
            "name": store.name,
            "slug": store.slug,
            "is_verified": bool(store.is_verified),
            "is_active": bool(store.is_active),
            "created_at": format_datetime(store.created_at),
            "order_count": stats.order_count if stats else 0,
            "total_revenue": to_money(stats.total_revenue if stats else 0),
            "seller": {
                "id": store.seller_id,
                "user_id": store.seller_user_id,
                "kyc_verified": bool(store.kyc_verified),
                "name": store.seller_name,
                "email": store.seller_email
            }
        }
