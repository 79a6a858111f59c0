"""Cash movements between students, between a student's own accounts, and
between students and the government (tax and allowance)."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Sequence

from sqlmodel import Session, select

from common.errors import (InsufficientFunds, LedgerError, NotFound,
                           ValidationError)
from common.money import ZERO, Number, money, to_decimal
from economy_observability.metrics import transfers_total
from ledger.entities import MacroEntities
from ledger.journal import TransactionLog
from ledger.models import (AccountKind, EntityKind, Student, Transaction,
                           TransactionType)
from ledger.store import LedgerStore, account_kind, positive_amount
from ledger.uow import atomic

logger = logging.getLogger(__name__)


@dataclass
class BatchLine:
    student_id: str
    name: str
    amount: Decimal
    transaction_id: int


@dataclass
class BatchResult:
    lines: List[BatchLine] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return sum((line.amount for line in self.lines), ZERO)


def tax_due(balance: Decimal, *, percentage_rate: Optional[Number], fixed_amount: Optional[Number]) -> Decimal:
    """Percentage tax is rounded half-up to whole currency units.

    Rounding never takes more than the balance, so a rate of at most 100%
    is always payable.
    """
    if percentage_rate is not None:
        due = (balance * to_decimal(percentage_rate) / 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return min(due, money(balance))
    return money(fixed_amount)


class TransferService:
    """Transfers inside one teacher's classroom."""

    def __init__(self, session: Session, teacher_id: str):
        self.session = session
        self.teacher_id = teacher_id
        self.store = LedgerStore(session)
        self.journal = TransactionLog(session)
        self.entities = MacroEntities(session, teacher_id)

    def _students(self, student_ids: Sequence[str]) -> List[Student]:
        if not student_ids:
            raise ValidationError("select at least one student")
        rows = self.session.exec(
            select(Student).where(Student.teacher_id == self.teacher_id, Student.id.in_(list(student_ids)))
        ).all()
        found = {s.id: s for s in rows}
        missing = [sid for sid in student_ids if sid not in found]
        if missing:
            raise NotFound("students not found", student_ids=missing)
        return [found[sid] for sid in dict.fromkeys(student_ids)]

    def _count(self, kind: str, outcome: str) -> None:
        transfers_total.labels(kind=kind, outcome=outcome).inc()

    # ------------------------------------------------------------------
    def transfer(
        self,
        from_student_id: str,
        to_student_id: str,
        amount: Number,
        *,
        account_type: str = AccountKind.CHECKING.value,
        description: str = "",
    ) -> Transaction:
        """Send money from one of the sender's accounts to the recipient's checking."""
        try:
            with atomic(self.session):
                value = positive_amount(amount)
                kind = account_kind(account_type)
                if from_student_id == to_student_id:
                    raise ValidationError("cannot transfer to yourself")
                sender, recipient = self._students([from_student_id, to_student_id])
                if not recipient.is_active:
                    raise ValidationError("recipient is not active", student_id=to_student_id)

                self.store.debit(sender.id, kind.value, value)
                self.store.credit(recipient.id, AccountKind.CHECKING.value, value)
                entry = self.journal.append(
                    self.teacher_id,
                    TransactionType.TRANSFER,
                    value,
                    from_student_id=sender.id,
                    to_student_id=recipient.id,
                    account_type=kind.value,
                    description=description or f"Transfer to {recipient.name}",
                )
        except LedgerError as exc:
            self._count("transfer", exc.code)
            raise
        self._count("transfer", "completed")
        return entry

    def account_transfer(self, student_id: str, from_account: str, to_account: str, amount: Number) -> Transaction:
        """Move money between two of the student's own accounts."""
        try:
            with atomic(self.session):
                value = positive_amount(amount)
                source, target = account_kind(from_account), account_kind(to_account)
                if source == target:
                    raise ValidationError("source and target accounts are the same")
                self._students([student_id])

                self.store.debit(student_id, source.value, value)
                self.store.credit(student_id, target.value, value)
                entry = self.journal.append(
                    self.teacher_id,
                    TransactionType.ACCOUNT_TRANSFER,
                    value,
                    from_student_id=student_id,
                    to_student_id=student_id,
                    account_type=source.value,
                    description=f"{source.value} -> {target.value}",
                )
        except LedgerError as exc:
            self._count("account_transfer", exc.code)
            raise
        self._count("account_transfer", "completed")
        return entry

    # ------------------------------------------------------------------
    def collect_tax(
        self,
        student_ids: Sequence[str],
        *,
        account_type: str = AccountKind.CHECKING.value,
        percentage_rate: Optional[Number] = None,
        fixed_amount: Optional[Number] = None,
        description: str = "",
    ) -> BatchResult:
        """Tax every listed student into the government, all or nothing.

        Students whose tax comes to zero are skipped. If any student cannot
        pay, nobody is charged and the shortfalls are reported together.
        """
        if (percentage_rate is None) == (fixed_amount is None):
            raise ValidationError("give either percentage_rate or fixed_amount")
        if percentage_rate is not None and not 0 < to_decimal(percentage_rate) <= 100:
            raise ValidationError("percentage rate must be above 0 and at most 100")
        if fixed_amount is not None and money(fixed_amount) <= 0:
            raise ValidationError("fixed amount must be positive")
        label = f"{percentage_rate}% tax" if percentage_rate is not None else f"{money(fixed_amount)} flat tax"

        try:
            with atomic(self.session):
                kind = account_kind(account_type)
                result = BatchResult()
                charges = []
                shortfalls = {}
                for student in self._students(student_ids):
                    balance = self.store.get_balance(student.id, kind.value)
                    due = tax_due(balance, percentage_rate=percentage_rate, fixed_amount=fixed_amount)
                    if due <= 0:
                        result.skipped.append(student.id)
                    elif due > balance:
                        shortfalls[student.name] = f"balance {balance}, tax {due}"
                    else:
                        charges.append((student, due))
                if shortfalls:
                    raise InsufficientFunds("some students cannot pay the tax", **shortfalls)
                if not charges:
                    raise ValidationError("no student owes any tax")

                for student, due in charges:
                    self.store.debit(student.id, kind.value, due)
                    self.entities.credit(EntityKind.GOVERNMENT, due)
                    entry = self.journal.append(
                        self.teacher_id,
                        TransactionType.TAX,
                        due,
                        from_student_id=student.id,
                        to_entity=EntityKind.GOVERNMENT.value,
                        account_type=kind.value,
                        description=f"{description} ({label})" if description else f"{label} collected",
                    )
                    result.lines.append(BatchLine(student.id, student.name, due, entry.id))
        except LedgerError as exc:
            self._count("tax", exc.code)
            raise
        self._count("tax", "completed")
        logger.info(
            "tax collected from %d students, total %s",
            len(result.lines),
            result.total,
            extra={"teacher_id": self.teacher_id, "operation": "tax"},
        )
        return result

    def pay_allowance(self, student_ids: Sequence[str], *, amount: Optional[Number] = None) -> BatchResult:
        """Pay each student's weekly allowance (or *amount*) from the government to checking."""
        fixed = None
        if amount is not None:
            fixed = positive_amount(amount)
        try:
            with atomic(self.session):
                result = BatchResult()
                for student in self._students(student_ids):
                    value = fixed if fixed is not None else money(student.weekly_allowance)
                    if value <= 0:
                        result.skipped.append(student.id)
                        continue
                    self.entities.debit(EntityKind.GOVERNMENT, value)
                    self.store.credit(student.id, AccountKind.CHECKING.value, value)
                    entry = self.journal.append(
                        self.teacher_id,
                        TransactionType.ALLOWANCE,
                        value,
                        from_entity=EntityKind.GOVERNMENT.value,
                        to_student_id=student.id,
                        account_type=AccountKind.CHECKING.value,
                        description="Weekly allowance",
                    )
                    result.lines.append(BatchLine(student.id, student.name, value, entry.id))
        except LedgerError as exc:
            self._count("allowance", exc.code)
            raise
        self._count("allowance", "completed")
        return result

    # ------------------------------------------------------------------
    def statement(self, student_id: str, *, since: Optional[datetime] = None, limit: int = 100) -> List[Transaction]:
        self._students([student_id])
        return self.journal.statement(student_id, since=since, limit=limit)
