"""FastAPI router for transfers, tax collection, allowance and statements."""
from __future__ import annotations
import os
from common.logging import configure_logging
configure_logging(os.getenv("LOG_FORMAT", "json"), service_name="transfers")

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query
from prometheus_client import make_asgi_app
from pydantic import BaseModel, Field, model_validator
from sqlmodel import Session

from common.auth import Identity, student_identity, teacher_identity
from common.datetime import parse_iso8601
from common.errors import ValidationError, install_error_handlers
from ledger.db import get_session
from ledger.schemas import TransactionOut, transaction_out
from ledger.store import LedgerStore
from transfers.service import BatchResult, TransferService

# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class TransferRequest(BaseModel):
    to_student_id: str
    amount: Decimal = Field(..., gt=0)
    from_account: str = "checking"
    description: str = ""


class AccountTransferRequest(BaseModel):
    from_account: str
    to_account: str
    amount: Decimal = Field(..., gt=0)


class TaxRequest(BaseModel):
    student_ids: List[str] = Field(..., min_length=1)
    tax_type: str = "percentage"
    rate: Optional[Decimal] = Field(default=None, gt=0, le=100)
    amount: Optional[Decimal] = Field(default=None, gt=0)
    account_type: str = "checking"
    description: str = ""

    @model_validator(mode="after")
    def _check_type(self) -> "TaxRequest":
        if self.tax_type == "percentage" and self.rate is None:
            raise ValueError("rate is required for percentage tax")
        if self.tax_type == "fixed" and self.amount is None:
            raise ValueError("amount is required for fixed tax")
        if self.tax_type not in ("percentage", "fixed"):
            raise ValueError("tax_type must be 'percentage' or 'fixed'")
        return self


class AllowanceRequest(BaseModel):
    student_ids: List[str] = Field(..., min_length=1)
    use_weekly_allowance: bool = True
    amount: Optional[Decimal] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _check_amount(self) -> "AllowanceRequest":
        if not self.use_weekly_allowance and self.amount is None:
            raise ValueError("amount is required when use_weekly_allowance is false")
        return self


class TransferResponse(BaseModel):
    transaction: TransactionOut
    balance: float


class BatchLineOut(BaseModel):
    student_id: str
    name: str
    amount: float
    transaction_id: int


class BatchResponse(BaseModel):
    count: int
    total: float
    lines: List[BatchLineOut]
    skipped: List[str]


def _batch_out(result: BatchResult) -> BatchResponse:
    return BatchResponse(
        count=len(result.lines),
        total=result.total,
        lines=[
            BatchLineOut(
                student_id=line.student_id,
                name=line.name,
                amount=line.amount,
                transaction_id=line.transaction_id,
            )
            for line in result.lines
        ],
        skipped=result.skipped,
    )


# ---------------------------------------------------------------------------
# Router definition
# ---------------------------------------------------------------------------

router = APIRouter(prefix="/api/transfers/v1", tags=["transfers"])


@router.post("/transfer", response_model=TransferResponse)
def send_transfer(
    req: TransferRequest,
    session: Session = Depends(get_session),
    identity: Identity = Depends(student_identity),
):
    entry = TransferService(session, identity.teacher_id).transfer(
        identity.student_id,
        req.to_student_id,
        req.amount,
        account_type=req.from_account,
        description=req.description,
    )
    balance = LedgerStore(session).get_balance(identity.student_id, entry.account_type)
    return TransferResponse(transaction=transaction_out(entry), balance=balance)


@router.post("/account-transfer", response_model=TransferResponse)
def move_between_accounts(
    req: AccountTransferRequest,
    session: Session = Depends(get_session),
    identity: Identity = Depends(student_identity),
):
    entry = TransferService(session, identity.teacher_id).account_transfer(
        identity.student_id, req.from_account, req.to_account, req.amount
    )
    balance = LedgerStore(session).get_balance(identity.student_id, req.to_account)
    return TransferResponse(transaction=transaction_out(entry), balance=balance)


@router.post("/tax-collection", response_model=BatchResponse)
def collect_tax(
    req: TaxRequest,
    session: Session = Depends(get_session),
    identity: Identity = Depends(teacher_identity),
):
    result = TransferService(session, identity.teacher_id).collect_tax(
        req.student_ids,
        account_type=req.account_type,
        percentage_rate=req.rate if req.tax_type == "percentage" else None,
        fixed_amount=req.amount if req.tax_type == "fixed" else None,
        description=req.description,
    )
    return _batch_out(result)


@router.post("/allowance", response_model=BatchResponse)
def pay_allowance(
    req: AllowanceRequest,
    session: Session = Depends(get_session),
    identity: Identity = Depends(teacher_identity),
):
    amount = None if req.use_weekly_allowance else req.amount
    result = TransferService(session, identity.teacher_id).pay_allowance(req.student_ids, amount=amount)
    return _batch_out(result)


@router.get("/transactions", response_model=List[TransactionOut])
def list_transactions(
    since: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    session: Session = Depends(get_session),
    identity: Identity = Depends(student_identity),
):
    try:
        since_dt = parse_iso8601(since) if since else None
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    entries = TransferService(session, identity.teacher_id).statement(
        identity.student_id, since=since_dt, limit=limit
    )
    return [transaction_out(tx) for tx in entries]


# ---------------------------------------------------------------------------
# ASGI app factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:  # pragma: no cover
    app = FastAPI(title="Transfers API")
    app.include_router(router)
    install_error_handlers(app)
    app.mount("/metrics", make_asgi_app())
    return app
