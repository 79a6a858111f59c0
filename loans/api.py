"""FastAPI router for student loans."""
from __future__ import annotations
import os
from common.logging import configure_logging
configure_logging(os.getenv("LOG_FORMAT", "json"), service_name="loans")

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, status
from prometheus_client import make_asgi_app
from pydantic import BaseModel, Field
from sqlmodel import Session

from common.auth import Identity, student_identity, teacher_identity
from common.errors import install_error_handlers
from ledger.db import get_session
from ledger.uow import atomic
from loans.models import Loan
from loans.policy import RateTier
from loans.service import LoanService, mark_overdue, progress_percent

# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class ApplyRequest(BaseModel):
    loan_amount: Decimal = Field(..., gt=0)
    duration_weeks: int = Field(..., gt=0)


class RepayRequest(BaseModel):
    loan_id: int
    payment_amount: Decimal = Field(..., gt=0)


class LoanOut(BaseModel):
    id: int
    principal: float
    annual_rate: float
    grade: str
    duration_weeks: int
    weekly_payment: float
    total_payment: float
    remaining_balance: float
    remaining_weeks: int
    status: str
    next_payment_due: Optional[datetime] = None
    progress_percentage: float
    created_at: datetime


class ApplyResponse(BaseModel):
    loan: LoanOut
    weekly_payment: float
    total_payment: float


class RepayResponse(BaseModel):
    loan_id: int
    status: str
    payment_amount: float
    payment_type: str
    remaining_balance: float
    remaining_weeks: int
    next_payment_due: Optional[datetime] = None
    checking_balance: float
    completed: bool


class TierOut(BaseModel):
    grade: str
    annual_rate: float
    max_amount: float
    max_weeks: int


class EligibilityOut(BaseModel):
    can_apply: bool
    reason: str
    current_loans_count: int
    tier: Optional[TierOut] = None


class SummaryOut(BaseModel):
    total_loans: int
    active_loans: int
    total_outstanding: float
    weekly_obligation: float


class LoansResponse(BaseModel):
    loans: List[LoanOut]
    summary: SummaryOut
    eligibility: EligibilityOut


class SweepResponse(BaseModel):
    marked_overdue: int


def _loan_out(loan: Loan) -> LoanOut:
    return LoanOut(
        id=loan.id,
        principal=loan.principal,
        annual_rate=loan.annual_rate,
        grade=loan.grade,
        duration_weeks=loan.duration_weeks,
        weekly_payment=loan.weekly_payment,
        total_payment=loan.total_payment,
        remaining_balance=loan.remaining_balance,
        remaining_weeks=loan.remaining_weeks,
        status=loan.status,
        next_payment_due=loan.next_payment_due,
        progress_percentage=progress_percent(loan),
        created_at=loan.created_at,
    )


def _tier_out(tier: Optional[RateTier]) -> Optional[TierOut]:
    if tier is None:
        return None
    return TierOut(
        grade=tier.grade,
        annual_rate=tier.annual_rate,
        max_amount=tier.max_amount,
        max_weeks=tier.max_weeks,
    )


# ---------------------------------------------------------------------------
# Router definition
# ---------------------------------------------------------------------------

router = APIRouter(prefix="/api/loans/v1", tags=["loans"])


@router.post("/apply", response_model=ApplyResponse, status_code=status.HTTP_201_CREATED)
def apply_for_loan(
    req: ApplyRequest,
    session: Session = Depends(get_session),
    identity: Identity = Depends(student_identity),
):
    loan = LoanService(session, identity).apply(req.loan_amount, req.duration_weeks)
    return ApplyResponse(
        loan=_loan_out(loan),
        weekly_payment=loan.weekly_payment,
        total_payment=loan.total_payment,
    )


@router.post("/repay", response_model=RepayResponse)
def repay_loan(
    req: RepayRequest,
    session: Session = Depends(get_session),
    identity: Identity = Depends(student_identity),
):
    result = LoanService(session, identity).repay(req.loan_id, req.payment_amount)
    loan = result.loan
    return RepayResponse(
        loan_id=loan.id,
        status=loan.status,
        payment_amount=result.charged,
        payment_type=result.payment_type.value,
        remaining_balance=loan.remaining_balance,
        remaining_weeks=loan.remaining_weeks,
        next_payment_due=loan.next_payment_due,
        checking_balance=result.new_balance,
        completed=result.completed,
    )


@router.get("/loans", response_model=LoansResponse)
def list_loans(
    session: Session = Depends(get_session),
    identity: Identity = Depends(student_identity),
):
    overview = LoanService(session, identity).overview()
    elig = overview.eligibility
    return LoansResponse(
        loans=[_loan_out(loan) for loan in overview.loans],
        summary=SummaryOut(
            total_loans=overview.summary.total_loans,
            active_loans=overview.summary.open_loans,
            total_outstanding=overview.summary.total_outstanding,
            weekly_obligation=overview.summary.weekly_obligation,
        ),
        eligibility=EligibilityOut(
            can_apply=elig.eligible,
            reason=elig.reason,
            current_loans_count=elig.open_loans,
            tier=_tier_out(elig.tier),
        ),
    )


@router.post("/overdue-sweep", response_model=SweepResponse)
def overdue_sweep(
    session: Session = Depends(get_session),
    identity: Identity = Depends(teacher_identity),
):
    with atomic(session):
        count = mark_overdue(session, identity.teacher_id)
    return SweepResponse(marked_overdue=count)


# ---------------------------------------------------------------------------
# ASGI app factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:  # pragma: no cover
    app = FastAPI(title="Loans API")
    app.include_router(router)
    install_error_handlers(app)
    app.mount("/metrics", make_asgi_app())
    return app
