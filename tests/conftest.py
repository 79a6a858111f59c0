import os

# Every engine built at import time points at a throwaway in-memory database.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("LOG_FORMAT", "text")

from decimal import Decimal
from typing import Callable, Iterator

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from common import secrets as secrets_module
from ledger.classroom import ClassroomService
from ledger.db import get_session, init_db, make_engine
from ledger.models import Student
from ledger.store import LedgerStore
from tests.test_helpers import TEACHER_ID, TEACHER_TOKEN


# ---------------------------------------------------------------------------
# Default auth secrets for API tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _secrets() -> None:
    """Provide default secrets for tests via the secrets manager."""

    secrets_module.secrets.set_override(
        {
            "API_TOKENS": {TEACHER_ID: TEACHER_TOKEN},
            "JWT_SECRET": "testsecret-classroom-economy-0123456789abcdef",
        }
    )
    yield
    secrets_module.secrets.set_override({})


@pytest.fixture(autouse=True)
def _env(monkeypatch) -> None:
    monkeypatch.delenv("FEE_SINK_STRICT", raising=False)
    monkeypatch.delenv("MAX_ACTIVE_LOANS", raising=False)
    monkeypatch.delenv("SEAT_DEFAULT_PRICE", raising=False)
    monkeypatch.delenv("SEAT_MIN_PRICE", raising=False)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
def engine():
    eng = make_engine("sqlite://")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine) -> Iterator[Session]:
    with Session(engine) as s:
        yield s


@pytest.fixture
def classroom(session):
    room = ClassroomService(session, TEACHER_ID).initialize("Class 3-1")
    session.commit()
    return room


@pytest.fixture
def make_student(session, classroom) -> Callable[..., Student]:
    """Create a student and seed balances (seeding bypasses the macro entities)."""

    def _make(name: str = "Minji", *, credit_score: int = 700, weekly_allowance=0, **balances) -> Student:
        student = ClassroomService(session, TEACHER_ID).create_student(
            name, credit_score=credit_score, weekly_allowance=Decimal(str(weekly_allowance))
        )
        store = LedgerStore(session)
        for kind, amount in balances.items():
            store.credit(student.id, kind, amount)
        session.commit()
        return student

    return _make


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@pytest.fixture
def client(engine) -> Iterator[TestClient]:
    from gateway.main import create_app

    app = create_app(create_tables=False)

    def _session() -> Iterator[Session]:
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = _session
    with TestClient(app) as c:
        yield c
