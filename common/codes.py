"""Unique short-code generation backed by a database uniqueness constraint.

Instead of "check whether the code exists, then insert" (racy), the row is
inserted with a fresh candidate inside a savepoint and the unique constraint
decides; an ``IntegrityError`` triggers another attempt.
"""
from __future__ import annotations

import logging
import secrets
import string
from typing import Callable, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, SQLModel

from .errors import PersistenceError

__all__ = ["random_code", "generate_unique_code"]

logger = logging.getLogger(__name__)

# Ambiguous glyphs (0/O, 1/I) removed so codes can be read aloud in class.
ALPHABET = "".join(c for c in string.ascii_uppercase + string.digits if c not in "0O1I")

T = TypeVar("T", bound=SQLModel)


def random_code(length: int = 6) -> str:
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def generate_unique_code(
    session: Session,
    build: Callable[[str], T],
    *,
    length: int = 6,
    attempts: int = 8,
) -> T:
    """Persist ``build(code)`` with a code that is unique at the store level.

    *build* receives a candidate code and returns an unsaved row whose unique
    column holds it. The row is flushed inside a SAVEPOINT so a collision only
    discards that attempt, leaving the caller's transaction intact.
    """
    for attempt in range(1, attempts + 1):
        row = build(random_code(length))
        try:
            with session.begin_nested():
                session.add(row)
                session.flush()
        except IntegrityError:
            logger.info("code collision on attempt %d, retrying", attempt)
            continue
        return row
    raise PersistenceError(f"could not allocate a unique code after {attempts} attempts")
