"""Unit of work: one database transaction per financial operation."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from common.errors import PersistenceError

logger = logging.getLogger(__name__)


@contextmanager
def atomic(session: Session) -> Iterator[Session]:
    """Commit everything done inside the block, or nothing.

    Any exception rolls the session back. Store failures surface as
    :class:`PersistenceError`; business errors propagate unchanged.
    """
    try:
        yield session
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("transaction rolled back: %s", exc.__class__.__name__)
        raise PersistenceError("storage failure, operation not applied", cause=exc) from exc
    except BaseException:
        session.rollback()
        raise
