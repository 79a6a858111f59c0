"""Error taxonomy shared by every service package.

Business-rule failures derive from :class:`LedgerError` and carry a stable
``code`` plus a human readable reason. Routers do not translate them by hand;
:func:`install_error_handlers` renders them as JSON with the mapped status.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

__all__ = [
    "LedgerError",
    "ValidationError",
    "InsufficientFunds",
    "InsufficientHoldings",
    "BelowMinimumHolding",
    "NotEligible",
    "LimitExceeded",
    "NotFound",
    "ConflictError",
    "PersistenceError",
    "install_error_handlers",
]

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Base class for all engine errors."""

    code = "ledger_error"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, reason: str, **context: Any) -> None:
        super().__init__(reason)
        self.reason = reason
        self.context: Dict[str, Any] = context

    def as_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code, "detail": self.reason}
        if self.context:
            body["context"] = {k: str(v) for k, v in self.context.items()}
        return body


class ValidationError(LedgerError):
    code = "validation_error"


class InsufficientFunds(LedgerError):
    code = "insufficient_funds"


class InsufficientHoldings(LedgerError):
    code = "insufficient_holdings"


class BelowMinimumHolding(LedgerError):
    code = "below_minimum_holding"


class NotEligible(LedgerError):
    code = "not_eligible"
    http_status = status.HTTP_403_FORBIDDEN


class LimitExceeded(LedgerError):
    code = "limit_exceeded"


class NotFound(LedgerError):
    code = "not_found"
    http_status = status.HTTP_404_NOT_FOUND


class ConflictError(LedgerError):
    code = "conflict"
    http_status = status.HTTP_409_CONFLICT


class PersistenceError(LedgerError):
    code = "persistence_error"
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, reason: str, *, cause: Optional[BaseException] = None, **context: Any) -> None:
        super().__init__(reason, **context)
        self.cause = cause


async def _ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    if isinstance(exc, PersistenceError):
        logger.error("persistence failure on %s: %s", request.url.path, exc.reason)
    else:
        logger.info("rejected %s: %s (%s)", request.url.path, exc.reason, exc.code)
    return JSONResponse(exc.as_dict(), status_code=exc.http_status)


def install_error_handlers(app: FastAPI) -> None:
    """Register the :class:`LedgerError` handler on *app* (idempotent)."""
    app.add_exception_handler(LedgerError, _ledger_error_handler)  # type: ignore[arg-type]
