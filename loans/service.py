"""Loan engine: eligibility, origination, repayment and the overdue sweep."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import update
from sqlmodel import Session, select

from common.auth import Identity
from common.config import max_active_loans
from common.datetime import utcnow
from common.errors import (ConflictError, LedgerError, LimitExceeded,
                           NotEligible, NotFound, ValidationError)
from common.money import ZERO, Number, money
from economy_observability.metrics import loans_total
from ledger.entities import MacroEntities
from ledger.journal import TransactionLog
from ledger.models import AccountKind, EntityKind, Student, TransactionType
from ledger.store import LedgerStore, positive_amount
from ledger.uow import atomic
from loans.models import Loan, LoanPayment, LoanStatus, PaymentType
from loans.policy import RateTier, amortize, tier_for_score

logger = logging.getLogger(__name__)

PAYMENT_INTERVAL = timedelta(days=7)


@dataclass
class Eligibility:
    eligible: bool
    reason: str
    open_loans: int
    tier: Optional[RateTier]


@dataclass
class Repayment:
    loan: Loan
    charged: Decimal
    payment_type: PaymentType
    new_balance: Decimal

    @property
    def completed(self) -> bool:
        return self.loan.status == LoanStatus.COMPLETED.value


@dataclass
class LoanSummary:
    total_loans: int = 0
    open_loans: int = 0
    total_outstanding: Decimal = ZERO
    weekly_obligation: Decimal = ZERO


@dataclass
class LoanOverview:
    loans: List[Loan] = field(default_factory=list)
    summary: LoanSummary = field(default_factory=LoanSummary)
    eligibility: Optional[Eligibility] = None


def progress_percent(loan: Loan) -> Decimal:
    if loan.duration_weeks <= 0:
        return ZERO
    paid = loan.duration_weeks - loan.remaining_weeks
    return money(Decimal(paid) / Decimal(loan.duration_weeks) * 100)


def is_past_due(loan: Loan, now: datetime) -> bool:
    if loan.status == LoanStatus.OVERDUE.value:
        return True
    return (
        loan.status == LoanStatus.ACTIVE.value
        and loan.next_payment_due is not None
        and loan.next_payment_due < now
    )


def mark_overdue(session: Session, teacher_id: str, now: Optional[datetime] = None) -> int:
    """Flag active loans of the classroom whose payment date has passed."""
    now = now or utcnow()
    result = session.exec(
        update(Loan)
        .where(
            Loan.teacher_id == teacher_id,
            Loan.status == LoanStatus.ACTIVE.value,
            Loan.next_payment_due < now,
        )
        .values(status=LoanStatus.OVERDUE.value, version=Loan.version + 1)
        .execution_options(synchronize_session=False)
    )
    count = result.rowcount or 0
    if count:
        logger.info("%d loans marked overdue", count, extra={"teacher_id": teacher_id})
    return count


class LoanService:
    """Loan operations for the student in *identity*."""

    def __init__(self, session: Session, identity: Identity):
        self.session = session
        self.identity = identity
        self.store = LedgerStore(session)
        self.journal = TransactionLog(session)
        self.entities = MacroEntities(session, identity.teacher_id)

    # ------------------------------------------------------------------
    def _student(self) -> Student:
        student = self.session.get(Student, self.identity.student_id)
        if student is None or student.teacher_id != self.identity.teacher_id:
            raise NotFound("student not found", student_id=self.identity.student_id)
        self.session.refresh(student)
        return student

    def _loans(self, student_id: str) -> List[Loan]:
        return list(
            self.session.exec(
                select(Loan)
                .where(Loan.student_id == student_id)
                .order_by(Loan.created_at.desc(), Loan.id.desc())
                .execution_options(populate_existing=True)
            ).all()
        )

    def eligibility(self, student: Optional[Student] = None, now: Optional[datetime] = None) -> Eligibility:
        student = student or self._student()
        now = now or utcnow()
        open_loans = [loan for loan in self._loans(student.id) if loan.status != LoanStatus.COMPLETED.value]
        tier = tier_for_score(student.credit_score)

        reason = ""
        if any(is_past_due(loan, now) for loan in open_loans):
            reason = "an overdue loan must be repaid first"
        elif len(open_loans) >= max_active_loans():
            reason = f"at most {max_active_loans()} open loans are allowed"
        elif tier is None:
            reason = f"credit score {student.credit_score} is below the lowest loan tier"
        return Eligibility(
            eligible=not reason,
            reason=reason,
            open_loans=len(open_loans),
            tier=tier,
        )

    # ------------------------------------------------------------------
    def apply(self, loan_amount: Number, duration_weeks: int) -> Loan:
        """Originate a loan and disburse it from the bank to checking."""
        try:
            with atomic(self.session):
                amount = positive_amount(loan_amount)
                if duration_weeks <= 0:
                    raise ValidationError("duration must be at least one week")
                student = self._student()
                elig = self.eligibility(student)
                if not elig.eligible:
                    raise NotEligible(elig.reason, open_loans=elig.open_loans)
                tier = elig.tier
                if amount > tier.max_amount:
                    raise LimitExceeded(
                        f"grade {tier.grade} allows at most {tier.max_amount} per loan",
                        requested=amount,
                    )
                if duration_weeks > tier.max_weeks:
                    raise LimitExceeded(
                        f"grade {tier.grade} allows at most {tier.max_weeks} weeks",
                        requested=duration_weeks,
                    )

                plan = amortize(amount, tier.annual_rate, duration_weeks)
                loan = Loan(
                    student_id=student.id,
                    teacher_id=student.teacher_id,
                    principal=amount,
                    annual_rate=tier.annual_rate,
                    duration_weeks=duration_weeks,
                    weekly_payment=plan.weekly_payment,
                    total_payment=plan.total_payment,
                    remaining_balance=amount,
                    remaining_weeks=duration_weeks,
                    grade=tier.grade,
                    status=LoanStatus.ACTIVE.value,
                    next_payment_due=utcnow() + PAYMENT_INTERVAL,
                )
                self.session.add(loan)
                self.session.flush()

                self.entities.debit(EntityKind.BANK, amount)
                self.store.credit(student.id, AccountKind.CHECKING.value, amount)
                self.journal.append(
                    student.teacher_id,
                    TransactionType.LOAN_DISBURSEMENT,
                    amount,
                    from_entity=EntityKind.BANK.value,
                    to_student_id=student.id,
                    account_type=AccountKind.CHECKING.value,
                    description=f"Loan disbursement: {duration_weeks} weeks at {tier.annual_rate}% a year",
                )
        except LedgerError as exc:
            loans_total.labels(action="apply", outcome=exc.code).inc()
            raise
        loans_total.labels(action="apply", outcome="completed").inc()
        logger.info(
            "loan %s originated",
            loan.id,
            extra={"teacher_id": self.identity.teacher_id, "student_id": self.identity.student_id},
        )
        return loan

    # ------------------------------------------------------------------
    def repay(self, loan_id: int, payment_amount: Number) -> Repayment:
        """Apply a payment from checking against the remaining balance.

        The charge is capped at the remaining balance. Each payment counts as
        one week; an overdue loan returns to active.
        """
        try:
            with atomic(self.session):
                amount = positive_amount(payment_amount)
                loan = self.session.exec(
                    select(Loan)
                    .where(Loan.id == loan_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).first()
                if loan is None or loan.student_id != self.identity.student_id:
                    raise NotFound("loan not found", loan_id=loan_id)
                if loan.status not in (LoanStatus.ACTIVE.value, LoanStatus.OVERDUE.value):
                    raise ValidationError("loan is already repaid", loan_id=loan_id)

                charged = min(amount, money(loan.remaining_balance))
                new_balance = self.store.debit(loan.student_id, AccountKind.CHECKING.value, charged)
                self.entities.credit(EntityKind.BANK, charged)

                remaining = max(money(loan.remaining_balance) - charged, ZERO)
                remaining_weeks = max(loan.remaining_weeks - 1, 0)
                payment_week = loan.duration_weeks - loan.remaining_weeks + 1
                if remaining <= 0:
                    status, remaining_weeks, payment_type = (
                        LoanStatus.COMPLETED, 0, PaymentType.FULL_REPAYMENT
                    )
                    next_due = None
                else:
                    status = LoanStatus.ACTIVE
                    payment_type = (
                        PaymentType.SCHEDULED
                        if charged == money(loan.weekly_payment)
                        else PaymentType.EARLY
                    )
                    next_due = (loan.next_payment_due or utcnow()) + PAYMENT_INTERVAL

                result = self.session.exec(
                    update(Loan)
                    .where(Loan.id == loan.id, Loan.version == loan.version)
                    .values(
                        remaining_balance=remaining,
                        remaining_weeks=remaining_weeks,
                        status=status.value,
                        next_payment_due=next_due,
                        version=loan.version + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    raise ConflictError("loan was modified concurrently", loan_id=loan.id)
                self.session.refresh(loan)

                self.session.add(
                    LoanPayment(
                        loan_id=loan.id,
                        payment_amount=charged,
                        payment_week=payment_week,
                        remaining_balance=remaining,
                        payment_type=payment_type.value,
                    )
                )
                self.journal.append(
                    loan.teacher_id,
                    TransactionType.LOAN_REPAYMENT,
                    charged,
                    from_student_id=loan.student_id,
                    to_entity=EntityKind.BANK.value,
                    account_type=AccountKind.CHECKING.value,
                    description=f"Loan {loan.id} repayment, week {payment_week}",
                )
                repayment = Repayment(
                    loan=loan, charged=charged, payment_type=payment_type, new_balance=new_balance
                )
        except LedgerError as exc:
            loans_total.labels(action="repay", outcome=exc.code).inc()
            raise
        loans_total.labels(action="repay", outcome="completed").inc()
        return repayment

    # ------------------------------------------------------------------
    def overview(self) -> LoanOverview:
        student = self._student()
        loans = self._loans(student.id)
        open_loans = [loan for loan in loans if loan.status != LoanStatus.COMPLETED.value]
        summary = LoanSummary(
            total_loans=len(loans),
            open_loans=len(open_loans),
            total_outstanding=sum((money(loan.remaining_balance) for loan in open_loans), ZERO),
            weekly_obligation=sum((money(loan.weekly_payment) for loan in open_loans), ZERO),
        )
        return LoanOverview(loans=loans, summary=summary, eligibility=self.eligibility(student))

    def payments(self, loan_id: int) -> List[LoanPayment]:
        loan = self.session.get(Loan, loan_id)
        if loan is None or loan.student_id != self.identity.student_id:
            raise NotFound("loan not found", loan_id=loan_id)
        return list(
            self.session.exec(
                select(LoanPayment).where(LoanPayment.loan_id == loan_id).order_by(LoanPayment.id)
            ).all()
        )
