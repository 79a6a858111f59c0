"""FastAPI router for orders, portfolios and the asset registry."""
from __future__ import annotations
import os
from common.logging import configure_logging
configure_logging(os.getenv("LOG_FORMAT", "json"), service_name="investments")

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, status
from prometheus_client import make_asgi_app
from pydantic import BaseModel, Field
from sqlmodel import Session

from common.auth import Identity, require_token, student_identity, teacher_identity
from common.errors import install_error_handlers
from investments.market import Market
from investments.models import Asset
from investments.orders import OrderService
from investments.portfolio import Portfolio
from ledger.db import get_session
from ledger.journal import TransactionLog
from ledger.models import TransactionType
from ledger.schemas import TransactionOut, transaction_out
from ledger.uow import atomic

# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class OrderRequest(BaseModel):
    asset_id: int
    quantity: Decimal = Field(..., gt=0)
    price: Optional[Decimal] = Field(default=None, gt=0)
    account_type: str = "investment"


class SellRequest(OrderRequest):
    expected_version: Optional[int] = None


class OrderTransaction(BaseModel):
    id: int
    asset_symbol: str
    asset_name: str
    quantity: float
    price: float
    total_amount: float
    fee: float


class BuyResponse(BaseModel):
    message: str
    transaction: OrderTransaction
    fee: float
    remaining_balance: float


class Fees(BaseModel):
    brokerage: float
    tax: float
    total: float


class Profit(BaseModel):
    amount: float
    percent: float


class SellResponse(BaseModel):
    message: str
    transaction: OrderTransaction
    fees: Fees
    net_amount: float
    profit: Profit
    new_balance: float


class AssetRequest(BaseModel):
    symbol: str = Field(..., min_length=1, max_length=24)
    name: str = Field(..., min_length=1)
    category: str
    current_price: Decimal = Field(..., gt=0)
    min_quantity: Decimal = Field(default=Decimal("1"), gt=0)
    currency: str = Field(default="KRW", min_length=3, max_length=3)


class PriceRequest(BaseModel):
    price: Decimal = Field(..., gt=0)


class AssetOut(BaseModel):
    id: int
    symbol: str
    name: str
    category: str
    currency: str
    min_quantity: float
    current_price: float


class HoldingOut(BaseModel):
    asset_id: int
    symbol: str
    name: str
    category: str
    quantity: float
    average_price: float
    current_price: float
    total_invested: float
    current_value: float
    profit_loss: float
    profit_loss_percent: float
    weight: float


class SummaryOut(BaseModel):
    total_invested: float
    current_value: float
    profit_loss: float
    profit_loss_percent: float
    cash_balance: float
    total_assets: float


class PortfolioResponse(BaseModel):
    holdings: List[HoldingOut]
    summary: SummaryOut
    recent_transactions: List[TransactionOut]


def _asset_out(asset: Asset) -> AssetOut:
    return AssetOut(
        id=asset.id,
        symbol=asset.symbol,
        name=asset.name,
        category=asset.category,
        currency=asset.currency,
        min_quantity=asset.min_quantity,
        current_price=asset.current_price,
    )


def _order_tx(receipt, fee: Decimal) -> OrderTransaction:
    return OrderTransaction(
        id=receipt.transaction.id,
        asset_symbol=receipt.asset.symbol,
        asset_name=receipt.asset.name,
        quantity=receipt.quantity,
        price=receipt.price,
        total_amount=receipt.total,
        fee=fee,
    )


# ---------------------------------------------------------------------------
# Router definition
# ---------------------------------------------------------------------------

router = APIRouter(prefix="/api/investments/v1", tags=["investments"])


@router.post("/buy", response_model=BuyResponse)
def buy(
    req: OrderRequest,
    session: Session = Depends(get_session),
    identity: Identity = Depends(student_identity),
):
    receipt = OrderService(session, identity).buy(
        req.asset_id, req.quantity, quoted_price=req.price, account_type=req.account_type
    )
    return BuyResponse(
        message=f"Bought {receipt.quantity.normalize()} {receipt.asset.symbol}",
        transaction=_order_tx(receipt, receipt.fee),
        fee=receipt.fee,
        remaining_balance=receipt.remaining_balance,
    )


@router.post("/sell", response_model=SellResponse)
def sell(
    req: SellRequest,
    session: Session = Depends(get_session),
    identity: Identity = Depends(student_identity),
):
    receipt = OrderService(session, identity).sell(
        req.asset_id,
        req.quantity,
        quoted_price=req.price,
        account_type=req.account_type,
        expected_version=req.expected_version,
    )
    return SellResponse(
        message=f"Sold {receipt.quantity.normalize()} {receipt.asset.symbol}",
        transaction=_order_tx(receipt, receipt.total_fees),
        fees=Fees(
            brokerage=receipt.brokerage_fee,
            tax=receipt.trading_tax,
            total=receipt.total_fees,
        ),
        net_amount=receipt.net_amount,
        profit=Profit(amount=receipt.profit_amount, percent=receipt.profit_percent),
        new_balance=receipt.new_balance,
    )


@router.get("/portfolio", response_model=PortfolioResponse)
def portfolio(
    session: Session = Depends(get_session),
    identity: Identity = Depends(student_identity),
):
    summary = Portfolio(session).summary(identity.student_id)
    recent = TransactionLog(session).statement(
        identity.student_id,
        types=(TransactionType.INVESTMENT_BUY, TransactionType.INVESTMENT_SELL),
        limit=10,
    )
    return PortfolioResponse(
        holdings=[HoldingOut(**vars(h)) for h in summary.holdings],
        summary=SummaryOut(
            total_invested=summary.total_invested,
            current_value=summary.current_value,
            profit_loss=summary.profit_loss,
            profit_loss_percent=summary.profit_loss_percent,
            cash_balance=summary.cash_balance,
            total_assets=summary.total_assets,
        ),
        recent_transactions=[transaction_out(t) for t in recent],
    )


@router.get("/assets", response_model=List[AssetOut])
def list_assets(
    session: Session = Depends(get_session),
    _: Identity = Depends(require_token),
):
    return [_asset_out(a) for a in Market(session).list()]


@router.post("/assets", response_model=AssetOut, status_code=status.HTTP_201_CREATED)
def register_asset(
    req: AssetRequest,
    session: Session = Depends(get_session),
    _: Identity = Depends(teacher_identity),
):
    with atomic(session):
        asset = Market(session).register(
            req.symbol,
            req.name,
            req.category,
            req.current_price,
            min_quantity=req.min_quantity,
            currency=req.currency,
        )
        body = _asset_out(asset)
    return body


@router.put("/assets/{asset_id}/price", response_model=AssetOut)
def update_price(
    asset_id: int,
    req: PriceRequest,
    session: Session = Depends(get_session),
    _: Identity = Depends(teacher_identity),
):
    with atomic(session):
        body = _asset_out(Market(session).update_price(asset_id, req.price))
    return body


# ---------------------------------------------------------------------------
# ASGI app factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:  # pragma: no cover
    app = FastAPI(title="Investments API")
    app.include_router(router)
    install_error_handlers(app)
    app.mount("/metrics", make_asgi_app())
    return app
