"""FastAPI router for classroom bootstrap, balances and macro entities."""
from __future__ import annotations
import os
from common.logging import configure_logging
configure_logging(os.getenv("LOG_FORMAT", "json"), service_name="ledger")

from decimal import Decimal
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, status
from prometheus_client import make_asgi_app
from pydantic import BaseModel, Field
from sqlmodel import Session

from common.auth import Identity, student_identity, teacher_identity
from common.errors import install_error_handlers
from ledger.classroom import ClassroomService
from ledger.db import get_session
from ledger.entities import MacroEntities
from ledger.models import Student
from ledger.store import LedgerStore
from ledger.uow import atomic

# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class ClassroomRequest(BaseModel):
    name: str = ""


class EntityOut(BaseModel):
    kind: str
    name: str
    balance: float


class ClassroomResponse(BaseModel):
    teacher_id: str
    code: str
    name: str
    entities: List[EntityOut]


class StudentRequest(BaseModel):
    name: str = Field(..., min_length=1)
    student_code: Optional[str] = Field(default=None, min_length=1, max_length=16)
    weekly_allowance: Decimal = Field(default=Decimal("0"), ge=0)
    credit_score: int = Field(default=700, ge=350, le=850)


class StudentOut(BaseModel):
    id: str
    student_code: str
    name: str
    credit_score: int
    weekly_allowance: float
    is_active: bool
    balances: Dict[str, float]


class StudentUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    weekly_allowance: Optional[Decimal] = Field(default=None, ge=0)
    credit_score: Optional[int] = Field(default=None, ge=350, le=850)
    is_active: Optional[bool] = None


class CreditScoreRequest(BaseModel):
    adjustment: int


class CreditScoreResponse(BaseModel):
    student_id: str
    previous_score: int
    credit_score: int


class BalancesResponse(BaseModel):
    student_id: str
    balances: Dict[str, float]
    total: float


def _student_out(student: Student, store: LedgerStore) -> StudentOut:
    return StudentOut(
        id=student.id,
        student_code=student.student_code,
        name=student.name,
        credit_score=student.credit_score,
        weekly_allowance=student.weekly_allowance,
        is_active=student.is_active,
        balances=store.balances(student.id),
    )


def _entities_out(entities: MacroEntities) -> List[EntityOut]:
    return [EntityOut(kind=e.kind, name=e.name, balance=e.balance) for e in entities.list()]


# ---------------------------------------------------------------------------
# Router definition
# ---------------------------------------------------------------------------

router = APIRouter(prefix="/api/ledger/v1", tags=["ledger"])


@router.post("/classroom", response_model=ClassroomResponse, status_code=status.HTTP_201_CREATED)
def init_classroom(
    req: ClassroomRequest,
    session: Session = Depends(get_session),
    identity: Identity = Depends(teacher_identity),
):
    svc = ClassroomService(session, identity.teacher_id)
    with atomic(session):
        classroom = svc.initialize(req.name)
        entities = _entities_out(MacroEntities(session, identity.teacher_id))
        body = ClassroomResponse(
            teacher_id=classroom.teacher_id,
            code=classroom.code,
            name=classroom.name,
            entities=entities,
        )
    return body


@router.post("/students", response_model=StudentOut, status_code=status.HTTP_201_CREATED)
def create_student(
    req: StudentRequest,
    session: Session = Depends(get_session),
    identity: Identity = Depends(teacher_identity),
):
    svc = ClassroomService(session, identity.teacher_id)
    with atomic(session):
        student = svc.create_student(
            req.name,
            student_code=req.student_code,
            weekly_allowance=req.weekly_allowance,
            credit_score=req.credit_score,
        )
        body = _student_out(student, LedgerStore(session))
    return body


@router.get("/students", response_model=List[StudentOut])
def list_students(
    session: Session = Depends(get_session),
    identity: Identity = Depends(teacher_identity),
):
    store = LedgerStore(session)
    svc = ClassroomService(session, identity.teacher_id)
    return [_student_out(s, store) for s in svc.active_students()]


@router.patch("/students/{student_id}", response_model=StudentOut)
def update_student(
    student_id: str,
    req: StudentUpdateRequest,
    session: Session = Depends(get_session),
    identity: Identity = Depends(teacher_identity),
):
    svc = ClassroomService(session, identity.teacher_id)
    with atomic(session):
        student = svc.update_student(student_id, **req.model_dump(exclude_unset=True))
        body = _student_out(student, LedgerStore(session))
    return body


@router.delete("/students/{student_id}", response_model=StudentOut)
def deactivate_student(
    student_id: str,
    session: Session = Depends(get_session),
    identity: Identity = Depends(teacher_identity),
):
    """Students are deactivated, never removed; their history stays in the log."""
    svc = ClassroomService(session, identity.teacher_id)
    with atomic(session):
        student = svc.update_student(student_id, is_active=False)
        body = _student_out(student, LedgerStore(session))
    return body


@router.patch("/students/{student_id}/credit-score", response_model=CreditScoreResponse)
def adjust_credit_score(
    student_id: str,
    req: CreditScoreRequest,
    session: Session = Depends(get_session),
    identity: Identity = Depends(teacher_identity),
):
    svc = ClassroomService(session, identity.teacher_id)
    with atomic(session):
        previous = svc.student(student_id).credit_score
        student = svc.adjust_credit_score(student_id, req.adjustment)
        body = CreditScoreResponse(
            student_id=student.id, previous_score=previous, credit_score=student.credit_score
        )
    return body


@router.get("/accounts", response_model=BalancesResponse)
def my_balances(
    session: Session = Depends(get_session),
    identity: Identity = Depends(student_identity),
):
    balances = LedgerStore(session).balances(identity.student_id)
    return BalancesResponse(
        student_id=identity.student_id,
        balances=balances,
        total=sum(balances.values(), Decimal("0")),
    )


@router.get("/entities", response_model=List[EntityOut])
def list_entities(
    session: Session = Depends(get_session),
    identity: Identity = Depends(teacher_identity),
):
    return _entities_out(MacroEntities(session, identity.teacher_id))


# ---------------------------------------------------------------------------
# ASGI app factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:  # pragma: no cover
    app = FastAPI(title="Classroom Ledger API")
    app.include_router(router)
    install_error_handlers(app)
    app.mount("/metrics", make_asgi_app())
    return app
