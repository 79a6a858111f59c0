"""Shared engine and session helpers for every service package."""
from __future__ import annotations

from typing import Iterator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from common.config import database_url


def _enable_sqlite_transactions(engine: Engine) -> None:
    """Let SQLAlchemy, not pysqlite, emit BEGIN so SAVEPOINTs nest correctly."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # pragma: no cover - driver hook
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):  # pragma: no cover - driver hook
        conn.exec_driver_sql("BEGIN")


def make_engine(url: str) -> Engine:
    """Build an engine; sqlite needs check_same_thread, Postgres can use pool_pre_ping."""
    engine_kwargs = {"echo": False, "pool_pre_ping": True}
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        engine_kwargs.pop("pool_pre_ping", None)
        if ":memory:" in url or url.rstrip("/") == "sqlite:":
            engine_kwargs["poolclass"] = StaticPool
    engine = create_engine(url, connect_args=connect_args, **engine_kwargs)
    if url.startswith("sqlite"):
        _enable_sqlite_transactions(engine)
    return engine


engine = make_engine(database_url())


def init_db(bind: Engine | None = None) -> None:
    """Create every table (idempotent). Imports all model modules first."""
    import investments.models  # noqa: F401
    import ledger.models  # noqa: F401
    import loans.models  # noqa: F401
    import seats.models  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)


# FastAPI dependency: ensures the session is closed after each request
def get_session() -> Iterator[Session]:
    with Session(engine) as session:
        yield session
