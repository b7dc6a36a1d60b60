# api_interface.py - HTTP interface for order status, payouts and admin settlement
import logging
from typing import Optional, Dict, Any, List
from decimal import Decimal

from fastapi import FastAPI, HTTPException, Depends, Query, Path, Header, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from database_setup import get_db_session
from finance_logic import (
    FinanceException, Actor, CommissionService, WalletLedger, load_actor
)
from order_logic import OrderStatusService, OrderQuery
from payout_logic import PayoutService, AdminSettlementService, PayoutQuery
from report_logic import EarningsReportService
from admin_logic import AdminService, StoreQuery
from config import (
    OrderStatus, OrderPayoutStatus, PayoutStatus, PayoutDecision,
    DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
)

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


class ResponseModel(BaseModel):
    success: bool
    message: str
    data: Optional[Dict[str, Any]] = None


class OrderStatusUpdateRequest(BaseModel):
    status: OrderStatus
    tracking_number: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=255)


class PayoutCreateRequest(BaseModel):
    store_id: Optional[int] = Field(None, gt=0)
    order_ids: Optional[List[int]] = None
    request_notes: Optional[str] = Field(None, max_length=500)

    @field_validator('order_ids')
    @classmethod
    def validate_order_ids(cls, v):
        if v is None:
            return v
        if any(order_id <= 0 for order_id in v):
            raise ValueError("order_ids must be positive integers")
        return sorted(set(v))


class PayoutProcessRequest(BaseModel):
    status: PayoutDecision
    admin_notes: Optional[str] = Field(None, max_length=500)
    transaction_id: Optional[str] = Field(None, max_length=100)


class CommissionUpdateRequest(BaseModel):
    commission_rate: Decimal
    update_note: Optional[str] = Field(None, max_length=255)


class StoreStatusRequest(BaseModel):
    is_verified: bool
    is_active: Optional[bool] = None


class SellerKycRequest(BaseModel):
    kyc_verified: bool


app = FastAPI(
    title="Marketplace Settlement API",
    description="Order lifecycle, commission settlement, seller payouts and admin wallet",
    version=API_VERSION
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _http_error(e: FinanceException) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=str(e))


def get_current_actor(
        x_user_id: Optional[int] = Header(None),
        session: Session = Depends(get_db_session)
) -> Actor:
    try:
        return load_actor(session, x_user_id)
    except FinanceException as e:
        raise _http_error(e)


def get_order_service(session: Session = Depends(get_db_session)) -> OrderStatusService:
    return OrderStatusService(session, commission=CommissionService(session), wallet=WalletLedger(session))


def get_payout_service(session: Session = Depends(get_db_session)) -> PayoutService:
    return PayoutService(session, wallet=WalletLedger(session))


def get_settlement_service(session: Session = Depends(get_db_session)) -> AdminSettlementService:
    return AdminSettlementService(session, wallet=WalletLedger(session))


def get_report_service(session: Session = Depends(get_db_session)) -> EarningsReportService:
    return EarningsReportService(session, commission=CommissionService(session))


def get_commission_service(session: Session = Depends(get_db_session)) -> CommissionService:
    return CommissionService(session)


def get_wallet_ledger(session: Session = Depends(get_db_session)) -> WalletLedger:
    return WalletLedger(session)


def get_admin_service(session: Session = Depends(get_db_session)) -> AdminService:
    return AdminService(session)


@app.get("/", summary="Service status")
async def root():
    return {"message": "Marketplace settlement API is running", "version": API_VERSION}


# ============== orders ==============

@app.patch("/api/orders/{order_id}/status", response_model=ResponseModel, summary="Update order status")
def update_order_status(
        request: OrderStatusUpdateRequest,
        order_id: int = Path(..., gt=0),
        actor: Actor = Depends(get_current_actor),
        service: OrderStatusService = Depends(get_order_service)
):
    try:
        order = service.update_order_status(actor, order_id, request.status.value,
                                            request.tracking_number, request.notes)
        return ResponseModel(success=True, message="Order status updated", data=order)
    except FinanceException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Order status update failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/orders/{order_id}", response_model=ResponseModel, summary="Get order")
def get_order(
        order_id: int = Path(..., gt=0),
        actor: Actor = Depends(get_current_actor),
        service: OrderStatusService = Depends(get_order_service)
):
    try:
        order = service.get_order(actor, order_id)
        return ResponseModel(success=True, message="OK", data=order)
    except FinanceException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Order lookup failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/seller/orders", response_model=ResponseModel, summary="List seller orders")
def list_seller_orders(
        store_id: Optional[int] = Query(None, gt=0),
        order_status: Optional[OrderStatus] = Query(None, alias="status"),
        payout_status: Optional[OrderPayoutStatus] = Query(None),
        page: int = Query(1, ge=1),
        limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
        actor: Actor = Depends(get_current_actor),
        service: OrderStatusService = Depends(get_order_service)
):
    try:
        query = OrderQuery(store_id=store_id, status=order_status, payout_status=payout_status,
                           page=page, limit=limit)
        data = service.list_orders(actor, query)
        return ResponseModel(success=True, message="OK", data=data)
    except FinanceException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Order listing failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


# ============== seller payouts ==============

@app.post("/api/payouts/request", response_model=ResponseModel, status_code=status.HTTP_201_CREATED,
          summary="Request a payout")
def request_payout(
        request: PayoutCreateRequest,
        actor: Actor = Depends(get_current_actor),
        service: PayoutService = Depends(get_payout_service)
):
    try:
        payout = service.request_payout(actor.user_id, request.store_id, request.order_ids, request.request_notes)
        return ResponseModel(success=True, message="Payout request submitted", data=payout)
    except FinanceException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Payout request failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/payouts", response_model=ResponseModel, summary="List seller payouts")
def list_payouts(
        payout_status: Optional[PayoutStatus] = Query(None, alias="status"),
        store_id: Optional[int] = Query(None, gt=0),
        page: int = Query(1, ge=1),
        limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
        actor: Actor = Depends(get_current_actor),
        service: PayoutService = Depends(get_payout_service)
):
    try:
        query = PayoutQuery(status=payout_status, store_id=store_id, page=page, limit=limit)
        data = service.list_payouts(actor.user_id, query)
        return ResponseModel(success=True, message="OK", data=data)
    except FinanceException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Payout listing failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/payouts/{payout_id}", response_model=ResponseModel, summary="Get seller payout")
def get_payout(
        payout_id: int = Path(..., gt=0),
        actor: Actor = Depends(get_current_actor),
        service: PayoutService = Depends(get_payout_service)
):
    try:
        payout = service.get_payout(actor.user_id, payout_id)
        return ResponseModel(success=True, message="OK", data=payout)
    except FinanceException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Payout lookup failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/seller/earnings", response_model=ResponseModel, summary="Seller earnings summary")
def get_seller_earnings(
        actor: Actor = Depends(get_current_actor),
        service: EarningsReportService = Depends(get_report_service)
):
    try:
        data = service.get_seller_earnings(actor.user_id)
        return ResponseModel(success=True, message="OK", data=data)
    except FinanceException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Seller earnings failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/seller/earnings/stores", response_model=ResponseModel, summary="Seller earnings per store")
def get_seller_earnings_by_store(
        actor: Actor = Depends(get_current_actor),
        service: EarningsReportService = Depends(get_report_service)
):
    try:
        stores = service.get_earnings_by_store(actor.user_id)
        return ResponseModel(success=True, message="OK", data={"stores": stores})
    except FinanceException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Seller store earnings failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


# ============== admin: payouts & wallet ==============

@app.get("/api/admin/payouts", response_model=ResponseModel, summary="List payout requests")
def admin_list_payouts(
        payout_status: Optional[PayoutStatus] = Query(None, alias="status"),
        seller_id: Optional[int] = Query(None, gt=0),
        store_id: Optional[int] = Query(None, gt=0),
        page: int = Query(1, ge=1),
        limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
        actor: Actor = Depends(get_current_actor),
        service: AdminSettlementService = Depends(get_settlement_service)
):
    try:
        query = PayoutQuery(status=payout_status, seller_id=seller_id, store_id=store_id,
                            page=page, limit=limit)
        data = service.list_payouts(actor, query)
        return ResponseModel(success=True, message="OK", data=data)
    except FinanceException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Admin payout listing failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/admin/payouts/{payout_id}", response_model=ResponseModel, summary="Get payout request")
def admin_get_payout(
        payout_id: int = Path(..., gt=0),
        actor: Actor = Depends(get_current_actor),
        service: AdminSettlementService = Depends(get_settlement_service)
):
    try:
        payout = service.get_payout(actor, payout_id)
        return ResponseModel(success=True, message="OK", data=payout)
    except FinanceException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Admin payout lookup failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/admin/payouts/{payout_id}/process", response_model=ResponseModel, summary="Approve or reject payout")
def process_payout(
        request: PayoutProcessRequest,
        payout_id: int = Path(..., gt=0),
        actor: Actor = Depends(get_current_actor),
        service: AdminSettlementService = Depends(get_settlement_service)
):
    try:
        payout = service.process_payout(actor, payout_id, request.status.value,
                                        request.admin_notes, request.transaction_id)
        return ResponseModel(success=True, message=f"Payout {payout['status']}", data=payout)
    except FinanceException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Payout processing failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/admin/wallet", response_model=ResponseModel, summary="Admin wallet snapshot")
def get_admin_wallet(
        actor: Actor = Depends(get_current_actor),
        wallet: WalletLedger = Depends(get_wallet_ledger)
):
    try:
        wallet._require_admin(actor)
        return ResponseModel(success=True, message="OK", data=wallet.get_wallet())
    except FinanceException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Wallet lookup failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/admin/wallet/flow", response_model=ResponseModel, summary="Admin wallet movements")
def get_admin_wallet_flow(
        limit: int = Query(50, ge=1, le=1000),
        actor: Actor = Depends(get_current_actor),
        wallet: WalletLedger = Depends(get_wallet_ledger)
):
    try:
        wallet._require_admin(actor)
        return ResponseModel(success=True, message="OK", data={"flows": wallet.get_flow(limit)})
    except FinanceException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Wallet flow lookup failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


# ============== admin: commission ==============

@app.get("/api/admin/commission", response_model=ResponseModel, summary="Current commission settings")
def get_commission(
        actor: Actor = Depends(get_current_actor),
        service: CommissionService = Depends(get_commission_service)
):
    try:
        service._require_admin(actor)
        return ResponseModel(success=True, message="OK", data=service.get_settings())
    except FinanceException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Commission lookup failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.put("/api/admin/commission", response_model=ResponseModel, summary="Update commission rate")
def update_commission(
        request: CommissionUpdateRequest,
        actor: Actor = Depends(get_current_actor),
        service: CommissionService = Depends(get_commission_service)
):
    try:
        settings = service.update_settings(actor, request.commission_rate, request.update_note)
        return ResponseModel(success=True, message="Commission rate updated", data=settings)
    except FinanceException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Commission update failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


# ============== admin: reports ==============

@app.get("/api/admin/reports/revenue", response_model=ResponseModel, summary="Total revenue")
def get_total_revenue(
        actor: Actor = Depends(get_current_actor),
        service: EarningsReportService = Depends(get_report_service)
):
    try:
        return ResponseModel(success=True, message="OK", data=service.get_total_revenue(actor))
    except FinanceException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Revenue report failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/admin/reports/revenue-by-store", response_model=ResponseModel, summary="Revenue per store")
def get_revenue_by_store(
        actor: Actor = Depends(get_current_actor),
        service: EarningsReportService = Depends(get_report_service)
):
    try:
        return ResponseModel(success=True, message="OK", data={"stores": service.get_revenue_by_store(actor)})
    except FinanceException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Store revenue report failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/admin/reports/profit", response_model=ResponseModel, summary="Total admin profit")
def get_total_profit(
        actor: Actor = Depends(get_current_actor),
        service: EarningsReportService = Depends(get_report_service)
):
    try:
        return ResponseModel(success=True, message="OK", data=service.get_total_profit(actor))
    except FinanceException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Profit report failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/admin/reports/profit-by-store", response_model=ResponseModel, summary="Admin profit per store")
def get_profit_by_store(
        actor: Actor = Depends(get_current_actor),
        service: EarningsReportService = Depends(get_report_service)
):
    try:
        return ResponseModel(success=True, message="OK", data={"stores": service.get_profit_by_store(actor)})
    except FinanceException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Store profit report failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/admin/dashboard", response_model=ResponseModel, summary="Admin dashboard stats")
def get_dashboard(
        actor: Actor = Depends(get_current_actor),
        service: EarningsReportService = Depends(get_report_service)
):
    try:
        return ResponseModel(success=True, message="OK", data=service.get_dashboard_stats(actor))
    except FinanceException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Dashboard stats failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


# ============== admin: stores & sellers ==============

@app.get("/api/admin/stores", response_model=ResponseModel, summary="List stores")
def list_stores(
        is_verified: Optional[bool] = Query(None),
        is_active: Optional[bool] = Query(None),
        search: Optional[str] = Query(None, max_length=100),
        page: int = Query(1, ge=1),
        limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
        actor: Actor = Depends(get_current_actor),
        service: AdminService = Depends(get_admin_service)
):
    try:
        query = StoreQuery(is_verified=is_verified, is_active=is_active, search=search, page=page, limit=limit)
        return ResponseModel(success=True, message="OK", data=service.list_stores(actor, query))
    except FinanceException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Store listing failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/admin/stores/{store_id}", response_model=ResponseModel, summary="Get store")
def get_store(
        store_id: int = Path(..., gt=0),
        actor: Actor = Depends(get_current_actor),
        service: AdminService = Depends(get_admin_service)
):
    try:
        return ResponseModel(success=True, message="OK", data=service.get_store(actor, store_id))
    except FinanceException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Store lookup failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/admin/sellers", response_model=ResponseModel, summary="List sellers with their stores")
def list_sellers(
        actor: Actor = Depends(get_current_actor),
        service: AdminService = Depends(get_admin_service)
):
    try:
        return ResponseModel(success=True, message="OK", data={"sellers": service.list_sellers(actor)})
    except FinanceException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Seller listing failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/admin/sellers/{seller_id}", response_model=ResponseModel, summary="Get seller")
def get_seller(
        seller_id: int = Path(..., gt=0),
        actor: Actor = Depends(get_current_actor),
        service: AdminService = Depends(get_admin_service)
):
    try:
        return ResponseModel(success=True, message="OK", data=service.get_seller(actor, seller_id))
    except FinanceException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Seller lookup failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.patch("/api/admin/stores/{store_id}/status", response_model=ResponseModel, summary="Verify or deactivate store")
def update_store_status(
        request: StoreStatusRequest,
        store_id: int = Path(..., gt=0),
        actor: Actor = Depends(get_current_actor),
        service: AdminService = Depends(get_admin_service)
):
    try:
        store = service.update_store_status(actor, store_id, request.is_verified, request.is_active)
        return ResponseModel(success=True, message="Store status updated", data=store)
    except FinanceException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Store status update failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.patch("/api/admin/sellers/{seller_id}/kyc", response_model=ResponseModel, summary="Set seller KYC status")
def update_seller_kyc(
        request: SellerKycRequest,
        seller_id: int = Path(..., gt=0),
        actor: Actor = Depends(get_current_actor),
        service: AdminService = Depends(get_admin_service)
):
    try:
        profile = service.set_seller_kyc(actor, seller_id, request.kyc_verified)
        return ResponseModel(success=True, message="Seller KYC updated", data=profile)
    except FinanceException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Seller KYC update failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))
