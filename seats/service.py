"""Seat market: layout, classroom-wide repricing, buy and sell."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import delete, update
from sqlmodel import Session, select

from common.datetime import utcnow
from common.errors import ConflictError, LedgerError, NotFound, ValidationError
from common.money import money
from economy_observability.metrics import seat_price_current, seat_trades_total
from ledger.entities import MacroEntities
from ledger.journal import TransactionLog
from ledger.models import AccountKind, EntityKind, TransactionType
from ledger.store import LedgerStore, account_kind
from ledger.uow import atomic
from seats.models import Seat
from seats.pricing import current_seat_price

logger = logging.getLogger(__name__)


@dataclass
class PriceUpdate:
    price: Decimal
    updated: int


@dataclass
class SeatSale:
    seat: Seat
    sale_price: Decimal
    purchase_price: Decimal
    new_balance: Decimal

    @property
    def profit(self) -> Decimal:
        return self.sale_price - self.purchase_price


class SeatMarket:
    """Seats of one teacher's classroom."""

    def __init__(self, session: Session, teacher_id: str):
        self.session = session
        self.teacher_id = teacher_id
        self.store = LedgerStore(session)
        self.journal = TransactionLog(session)
        self.entities = MacroEntities(session, teacher_id)

    # ------------------------------------------------------------------
    def seats(self) -> List[Seat]:
        return list(
            self.session.exec(
                select(Seat)
                .where(Seat.teacher_id == self.teacher_id)
                .order_by(Seat.seat_number)
                .execution_options(populate_existing=True)
            ).all()
        )

    def _seat(self, seat_number: int) -> Seat:
        seat = self.session.exec(
            select(Seat)
            .where(Seat.teacher_id == self.teacher_id, Seat.seat_number == seat_number)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).first()
        if seat is None:
            raise NotFound("seat not found", seat_number=seat_number)
        return seat

    def _write(self, seat: Seat, *, require_owner: Optional[str], **values) -> None:
        stmt = update(Seat).where(Seat.id == seat.id, Seat.version == seat.version)
        if require_owner is None:
            stmt = stmt.where(Seat.owner_id.is_(None))
        else:
            stmt = stmt.where(Seat.owner_id == require_owner)
        result = self.session.exec(
            stmt.values(version=seat.version + 1, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ConflictError("seat was modified concurrently", seat_number=seat.seat_number)
        self.session.refresh(seat)

    # ------------------------------------------------------------------
    def configure_layout(self, columns: Sequence[int]) -> List[Seat]:
        """Ensure seats ``1..sum(columns)`` exist, numbered column by column.

        Existing seats keep their owner. Un-owned seats past the new total
        are removed; owned ones block the change.
        """
        if not columns or any(c <= 0 for c in columns):
            raise ValidationError("every column needs at least one seat")
        positions = [
            (col_idx, row_idx)
            for col_idx, count in enumerate(columns, start=1)
            for row_idx in range(1, count + 1)
        ]
        total = len(positions)
        existing = {s.seat_number: s for s in self.seats()}

        owned_extra = [n for n, s in existing.items() if n > total and not s.is_available]
        if owned_extra:
            raise ConflictError("owned seats fall outside the new layout", seats=owned_extra)
        self.session.exec(
            delete(Seat)
            .where(Seat.teacher_id == self.teacher_id, Seat.seat_number > total)
            .execution_options(synchronize_session=False)
        )

        price = current_seat_price(self.session, self.teacher_id)
        for number, (col, row) in enumerate(positions, start=1):
            seat = existing.get(number)
            if seat is None:
                seat = Seat(
                    teacher_id=self.teacher_id,
                    seat_number=number,
                    current_price=price,
                )
            seat.column_number, seat.row_number = col, row
            self.session.add(seat)
        self.session.flush()
        self.session.expire_all()
        return self.seats()

    def update_prices(self, manual_student_count: Optional[int] = None) -> PriceUpdate:
        """Recompute the classroom price and show it on every un-owned seat."""
        price = current_seat_price(self.session, self.teacher_id, manual_student_count)
        result = self.session.exec(
            update(Seat)
            .where(Seat.teacher_id == self.teacher_id, Seat.owner_id.is_(None))
            .values(current_price=price, version=Seat.version + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        seat_price_current.labels(teacher_id=self.teacher_id).set(float(price))
        logger.info("seat price set to %s", price, extra={"teacher_id": self.teacher_id})
        return PriceUpdate(price=price, updated=result.rowcount or 0)

    # ------------------------------------------------------------------
    def buy(self, student_id: str, seat_number: int, account_type: str = AccountKind.CHECKING.value) -> Seat:
        """Buy an un-owned seat at its displayed price; the government receives it."""
        try:
            with atomic(self.session):
                kind = account_kind(account_type)
                seat = self._seat(seat_number)
                if not seat.is_available:
                    raise ConflictError("seat is already owned", seat_number=seat_number)
                price = money(seat.current_price)

                self.store.debit(student_id, kind.value, price)
                self.entities.credit(EntityKind.GOVERNMENT, price)
                self._write(
                    seat,
                    require_owner=None,
                    owner_id=student_id,
                    purchase_price=price,
                    purchase_date=utcnow(),
                )
                self.journal.append(
                    self.teacher_id,
                    TransactionType.REAL_ESTATE_PURCHASE,
                    price,
                    from_student_id=student_id,
                    to_entity=EntityKind.GOVERNMENT.value,
                    account_type=kind.value,
                    description=f"Bought seat {seat_number}",
                )
        except LedgerError as exc:
            seat_trades_total.labels(side="buy", outcome=exc.code).inc()
            raise
        seat_trades_total.labels(side="buy", outcome="completed").inc()
        return seat

    def sell(self, student_id: str, seat_number: int) -> SeatSale:
        """Sell an owned seat back at the live price, paid by the government to checking."""
        try:
            with atomic(self.session):
                seat = self._seat(seat_number)
                if seat.owner_id != student_id:
                    raise ConflictError("seat is not owned by this student", seat_number=seat_number)
                purchase_price = money(seat.purchase_price)
                sale_price = current_seat_price(self.session, self.teacher_id)

                self.entities.debit(EntityKind.GOVERNMENT, sale_price)
                new_balance = self.store.credit(student_id, AccountKind.CHECKING.value, sale_price)
                self._write(
                    seat,
                    require_owner=student_id,
                    owner_id=None,
                    purchase_price=Decimal("0"),
                    purchase_date=None,
                    current_price=sale_price,
                )
                self.journal.append(
                    self.teacher_id,
                    TransactionType.REAL_ESTATE_SALE,
                    sale_price,
                    from_entity=EntityKind.GOVERNMENT.value,
                    to_student_id=student_id,
                    account_type=AccountKind.CHECKING.value,
                    description=f"Sold seat {seat_number}",
                )
                sale = SeatSale(
                    seat=seat,
                    sale_price=sale_price,
                    purchase_price=purchase_price,
                    new_balance=new_balance,
                )
        except LedgerError as exc:
            seat_trades_total.labels(side="sell", outcome=exc.code).inc()
            raise
        seat_trades_total.labels(side="sell", outcome="completed").inc()
        return sale
