"""Bearer-token authentication producing a request-scoped :class:`Identity`.

Session issuance lives outside this service. Callers present either an HS256
JWT carrying ``teacher_id`` (and ``student_id`` for students) or, for teacher
tooling such as the market-data feed, a static token listed under
``API_TOKENS`` in the secrets file.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, Header, HTTPException, status

from .secrets import api_tokens, jwt_secret

__all__ = ["Identity", "require_token", "student_identity", "teacher_identity", "issue_token"]


@dataclass(frozen=True)
class Identity:
    """Authenticated caller. ``student_id`` is ``None`` for teachers."""

    teacher_id: str
    student_id: Optional[str] = None

    @property
    def is_teacher(self) -> bool:
        return self.student_id is None


def _identity_from_claims(claims: Dict[str, Any]) -> Identity:
    teacher_id = claims.get("teacher_id")
    if not teacher_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    student_id = claims.get("student_id")
    return Identity(teacher_id=str(teacher_id), student_id=str(student_id) if student_id else None)


def require_token(authorization: str | None = Header(None)) -> Identity:
    """Validate Bearer token via JWT or per-teacher static tokens."""

    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized"
        )
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

    # Check for JWT (three segments separated by '.')
    if token.count(".") == 2:
        secret = jwt_secret()
        if not secret:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden"
            )
        try:
            payload = jwt.decode(token, secret, algorithms=["HS256"])
        except jwt.PyJWTError as exc:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden"
            ) from exc
        return _identity_from_claims(payload)

    # Fallback to static per-teacher tokens
    for teacher_id, expected in api_tokens().items():
        if token == expected:
            return Identity(teacher_id=teacher_id)
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


def student_identity(identity: Identity = Depends(require_token)) -> Identity:
    if identity.student_id is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="student token required")
    return identity


def teacher_identity(identity: Identity = Depends(require_token)) -> Identity:
    if not identity.is_teacher:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="teacher token required")
    return identity


def issue_token(teacher_id: str, student_id: Optional[str] = None) -> str:
    """Sign an identity token with ``JWT_SECRET`` (used by tooling and tests)."""
    claims: Dict[str, Any] = {"teacher_id": teacher_id}
    if student_id is not None:
        claims["student_id"] = student_id
    return jwt.encode(claims, jwt_secret(), algorithm="HS256")
