# gateway/main.py
# Single ASGI entrypoint: mounts the ledger, investments, loans, seats and
# transfers routers plus /healthz and /metrics.
from __future__ import annotations

import os

from common.logging import configure_logging

configure_logging(os.getenv("LOG_FORMAT", "json"), service_name="gateway")

from fastapi import FastAPI
from prometheus_client import make_asgi_app

from common.errors import install_error_handlers
from investments.api import router as investments_router
from ledger.api import router as ledger_router
from ledger.db import init_db
from loans.api import router as loans_router
from seats.api import router as seats_router
from transfers.api import router as transfers_router


def create_app(*, create_tables: bool = True) -> FastAPI:
    app = FastAPI(title="classroom_economy", version="1.0.0")
    if create_tables:
        init_db()

    for router in (ledger_router, investments_router, loans_router, seats_router, transfers_router):
        app.include_router(router)
    install_error_handlers(app)

    @app.get("/healthz")
    async def healthz():
        """Simple health check."""
        return {"status": "ok", "service": "gateway"}

    # expose metrics once
    app.mount("/metrics", make_asgi_app())
    return app


app = create_app()
