"""FastAPI router for the seat market."""
from __future__ import annotations
import os
from common.logging import configure_logging
configure_logging(os.getenv("LOG_FORMAT", "json"), service_name="seats")

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI
from prometheus_client import make_asgi_app
from pydantic import BaseModel, Field
from sqlmodel import Session

from common.auth import Identity, require_token, student_identity, teacher_identity
from common.errors import install_error_handlers
from ledger.db import get_session
from ledger.uow import atomic
from seats.models import Seat
from seats.pricing import current_seat_price
from seats.service import SeatMarket

# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class BuyRequest(BaseModel):
    seat_number: int = Field(..., ge=1)
    account_type: str = "checking"


class SellRequest(BaseModel):
    seat_number: int = Field(..., ge=1)


class PriceUpdateRequest(BaseModel):
    manual_student_count: Optional[int] = Field(default=None, ge=1)


class LayoutRequest(BaseModel):
    columns: List[int] = Field(..., min_length=1)


class SeatOut(BaseModel):
    seat_number: int
    column_number: int
    row_number: int
    owner_id: Optional[str] = None
    purchase_price: float
    purchase_date: Optional[datetime] = None
    current_price: float
    is_available: bool


class BuyResponse(BaseModel):
    seat: SeatOut
    price: float


class SellResponse(BaseModel):
    seat: SeatOut
    sale_price: float
    purchase_price: float
    profit: float
    new_balance: float


class PriceResponse(BaseModel):
    price: float
    updated: int


class CurrentPriceResponse(BaseModel):
    price: float


def _seat_out(seat: Seat) -> SeatOut:
    return SeatOut(
        seat_number=seat.seat_number,
        column_number=seat.column_number,
        row_number=seat.row_number,
        owner_id=seat.owner_id,
        purchase_price=seat.purchase_price,
        purchase_date=seat.purchase_date,
        current_price=seat.current_price,
        is_available=seat.is_available,
    )


# ---------------------------------------------------------------------------
# Router definition
# ---------------------------------------------------------------------------

router = APIRouter(prefix="/api/seats/v1", tags=["seats"])


@router.get("/seats", response_model=List[SeatOut])
def list_seats(
    session: Session = Depends(get_session),
    identity: Identity = Depends(require_token),
):
    return [_seat_out(s) for s in SeatMarket(session, identity.teacher_id).seats()]


@router.get("/price", response_model=CurrentPriceResponse)
def live_price(
    session: Session = Depends(get_session),
    identity: Identity = Depends(require_token),
):
    return CurrentPriceResponse(price=current_seat_price(session, identity.teacher_id))


@router.post("/buy", response_model=BuyResponse)
def buy_seat(
    req: BuyRequest,
    session: Session = Depends(get_session),
    identity: Identity = Depends(student_identity),
):
    seat = SeatMarket(session, identity.teacher_id).buy(
        identity.student_id, req.seat_number, req.account_type
    )
    return BuyResponse(seat=_seat_out(seat), price=seat.purchase_price)


@router.post("/sell", response_model=SellResponse)
def sell_seat(
    req: SellRequest,
    session: Session = Depends(get_session),
    identity: Identity = Depends(student_identity),
):
    sale = SeatMarket(session, identity.teacher_id).sell(identity.student_id, req.seat_number)
    return SellResponse(
        seat=_seat_out(sale.seat),
        sale_price=sale.sale_price,
        purchase_price=sale.purchase_price,
        profit=sale.profit,
        new_balance=sale.new_balance,
    )


@router.post("/prices/update", response_model=PriceResponse)
def update_prices(
    req: PriceUpdateRequest,
    session: Session = Depends(get_session),
    identity: Identity = Depends(teacher_identity),
):
    with atomic(session):
        result = SeatMarket(session, identity.teacher_id).update_prices(req.manual_student_count)
    return PriceResponse(price=result.price, updated=result.updated)


@router.post("/layout", response_model=List[SeatOut])
def configure_layout(
    req: LayoutRequest,
    session: Session = Depends(get_session),
    identity: Identity = Depends(teacher_identity),
):
    with atomic(session):
        body = [_seat_out(s) for s in SeatMarket(session, identity.teacher_id).configure_layout(req.columns)]
    return body


# ---------------------------------------------------------------------------
# ASGI app factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:  # pragma: no cover
    app = FastAPI(title="Seat Market API")
    app.include_router(router)
    install_error_handlers(app)
    app.mount("/metrics", make_asgi_app())
    return app
