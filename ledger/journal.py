"""Transaction Log: append-only record of every value movement."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import or_
from sqlmodel import Session, select

from common.money import money, quantity as to_quantity
from ledger.models import Transaction, TransactionStatus, TransactionType


class TransactionLog:
    def __init__(self, session: Session):
        self.session = session

    def append(
        self,
        teacher_id: str,
        type: TransactionType,
        amount: Decimal,
        *,
        from_student_id: Optional[str] = None,
        to_student_id: Optional[str] = None,
        from_entity: Optional[str] = None,
        to_entity: Optional[str] = None,
        account_type: Optional[str] = None,
        fee: Decimal = Decimal("0"),
        asset_id: Optional[int] = None,
        quantity: Optional[Decimal] = None,
        price: Optional[Decimal] = None,
        description: str = "",
        status: TransactionStatus = TransactionStatus.COMPLETED,
    ) -> Transaction:
        """Insert an entry and flush so it gets an id. Never updated afterwards."""
        entry = Transaction(
            teacher_id=teacher_id,
            type=type.value,
            amount=money(amount),
            fee=money(fee),
            from_student_id=from_student_id,
            to_student_id=to_student_id,
            from_entity=from_entity,
            to_entity=to_entity,
            account_type=account_type,
            asset_id=asset_id,
            quantity=to_quantity(quantity) if quantity is not None else None,
            price=money(price) if price is not None else None,
            description=description,
            status=status.value,
        )
        self.session.add(entry)
        self.session.flush()
        return entry

    def statement(
        self,
        student_id: str,
        *,
        since: Optional[datetime] = None,
        types: Optional[Iterable[TransactionType]] = None,
        limit: int = 100,
    ) -> List[Transaction]:
        """Entries where *student_id* is on either side, newest first."""
        stmt = select(Transaction).where(
            or_(
                Transaction.from_student_id == student_id,
                Transaction.to_student_id == student_id,
            )
        )
        if since is not None:
            stmt = stmt.where(Transaction.created_at >= since)
        if types is not None:
            stmt = stmt.where(Transaction.type.in_([t.value for t in types]))
        stmt = stmt.order_by(Transaction.created_at.desc(), Transaction.id.desc()).limit(limit)
        return list(self.session.exec(stmt).all())
