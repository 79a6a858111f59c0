"""Macro entities: the government, bank and securities house of a classroom.

Balances are shared by every student of the classroom, so they are changed
only through atomic increments and conditional decrements, never through a
read-modify-write of a loaded row.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, List

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from common.config import fee_sink_strict
from common.datetime import utcnow
from common.errors import (InsufficientFunds, NotFound, PersistenceError,
                           ValidationError)
from common.money import Number, money
from economy_observability.metrics import fee_sink_failures_total
from ledger.models import EntityKind, MacroEntity
from ledger.store import positive_amount

logger = logging.getLogger(__name__)

DEFAULT_ENTITIES = {
    EntityKind.GOVERNMENT: ("Government", Decimal("100000000")),
    EntityKind.BANK: ("Classroom Bank", Decimal("50000000")),
    EntityKind.SECURITIES: ("Securities House", Decimal("0")),
}


def entity_kind(value: str) -> EntityKind:
    try:
        return EntityKind(value)
    except ValueError as exc:
        raise ValidationError(f"unknown entity: {value}") from exc


class MacroEntities:
    """Entity balances scoped to one teacher's classroom."""

    def __init__(self, session: Session, teacher_id: str):
        self.session = session
        self.teacher_id = teacher_id

    # ------------------------------------------------------------------
    def initialize(self) -> List[MacroEntity]:
        """Create whichever default entities are missing; existing ones are kept."""
        existing = {e.kind for e in self.list()}
        for kind, (name, balance) in DEFAULT_ENTITIES.items():
            if kind.value in existing:
                continue
            self.session.add(
                MacroEntity(teacher_id=self.teacher_id, kind=kind.value, name=name, balance=balance)
            )
        self.session.flush()
        return self.list()

    def list(self) -> List[MacroEntity]:
        rows = self.session.exec(
            select(MacroEntity)
            .where(MacroEntity.teacher_id == self.teacher_id)
            .order_by(MacroEntity.kind)
        ).all()
        for row in rows:
            self.session.refresh(row)
        return list(rows)

    def get(self, kind: EntityKind) -> MacroEntity:
        entity = self.session.exec(
            select(MacroEntity).where(
                MacroEntity.teacher_id == self.teacher_id, MacroEntity.kind == kind.value
            )
        ).first()
        if entity is None:
            raise NotFound(f"{kind.value} entity not initialized", teacher_id=self.teacher_id)
        self.session.refresh(entity)
        return entity

    def balances(self) -> Dict[str, Decimal]:
        return {e.kind: money(e.balance) for e in self.list()}

    # ------------------------------------------------------------------
    def credit(self, kind: EntityKind, amount: Number) -> None:
        value = positive_amount(amount)
        result = self.session.exec(
            update(MacroEntity)
            .where(MacroEntity.teacher_id == self.teacher_id, MacroEntity.kind == kind.value)
            .values(balance=func.round(MacroEntity.balance + value, 2), updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFound(f"{kind.value} entity not initialized", teacher_id=self.teacher_id)

    def debit(self, kind: EntityKind, amount: Number) -> None:
        value = positive_amount(amount)
        result = self.session.exec(
            update(MacroEntity)
            .where(
                MacroEntity.teacher_id == self.teacher_id,
                MacroEntity.kind == kind.value,
                MacroEntity.balance >= value,
            )
            .values(balance=func.round(MacroEntity.balance - value, 2), updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            entity = self.get(kind)  # raises NotFound when missing
            raise InsufficientFunds(
                f"{kind.value} reserves are insufficient",
                required=value,
                available=money(entity.balance),
            )

    def credit_fee(self, kind: EntityKind, amount: Number) -> bool:
        """Credit a fee or tax inside a SAVEPOINT.

        Returns ``False`` when the credit could not be applied and
        ``FEE_SINK_STRICT`` is off; only the savepoint is rolled back and the
        caller's trade stands. In strict mode the failure aborts the caller's
        transaction as :class:`PersistenceError`.
        """
        if money(amount) <= 0:
            return True
        try:
            with self.session.begin_nested():
                self.credit(kind, amount)
        except (NotFound, SQLAlchemyError) as exc:
            fee_sink_failures_total.labels(entity=kind.value).inc()
            if fee_sink_strict():
                raise PersistenceError(
                    f"could not credit {kind.value} fee sink", cause=exc, entity=kind.value
                ) from exc
            logger.warning(
                "fee sink credit to %s failed, trade kept: %s",
                kind.value,
                exc,
                extra={"teacher_id": self.teacher_id, "operation": "fee_sink"},
            )
            return False
        return True
