from datetime import timedelta
from decimal import Decimal

import pytest
from sqlmodel import select

from common.auth import Identity
from common.datetime import utcnow
from common.errors import (InsufficientFunds, LimitExceeded, NotEligible,
                           NotFound, ValidationError)
from ledger.entities import MacroEntities
from ledger.models import EntityKind
from ledger.store import LedgerStore
from loans.models import Loan, LoanPayment, LoanStatus, PaymentType
from loans.policy import amortize, load_tiers, tier_for_score, weekly_rate
from loans.service import LoanService, mark_overdue, progress_percent
from tests.test_helpers import TEACHER_ID, identity_for


def test_amortize_charges_interest():
    plan = amortize(1200000, 12, 12)
    assert plan.total_payment == plan.weekly_payment * 12
    assert plan.total_payment > Decimal("1200000")
    assert plan.weekly_payment == Decimal("106618.55")


def test_amortize_without_interest():
    assert amortize(1000, 0, 4).weekly_payment == Decimal("250.00")
    with pytest.raises(ValueError):
        amortize(1000, 5, 0)


def test_weekly_rate_uses_twelve_periods():
    assert weekly_rate(12) == Decimal("0.01")


@pytest.mark.parametrize(
    "score,grade",
    [(850, "A+"), (800, "A+"), (799, "A"), (700, "B+"), (650, "B"), (600, "C+"), (550, "C"), (549, None)],
)
def test_tier_for_score(score, grade):
    tier = tier_for_score(score)
    assert (tier.grade if tier else None) == grade


def test_tiers_are_sorted_descending():
    scores = [t.min_score for t in load_tiers()]
    assert scores == sorted(scores, reverse=True)


def test_loan_lifecycle(session, make_student):
    student = make_student(credit_score=700)
    loans = LoanService(session, identity_for(student))
    store = LedgerStore(session)
    entities = MacroEntities(session, TEACHER_ID)

    loan = loans.apply(500000, 4)
    assert loan.grade == "B+"
    assert loan.remaining_balance == Decimal("500000.00")
    assert store.get_balance(student.id, "checking") == Decimal("500000.00")
    assert entities.get(EntityKind.BANK).balance == Decimal("49500000.00")

    types = []
    for _ in range(4):
        repayment = loans.repay(loan.id, loan.weekly_payment)
        types.append(repayment.payment_type)

    assert types[:3] == [PaymentType.SCHEDULED] * 3
    assert types[3] == PaymentType.FULL_REPAYMENT
    assert repayment.completed
    assert repayment.loan.remaining_balance == Decimal("0.00")
    assert repayment.loan.remaining_weeks == 0
    assert progress_percent(repayment.loan) == Decimal("100.00")
    assert store.get_balance(student.id, "checking") == Decimal("0.00")
    assert entities.get(EntityKind.BANK).balance == Decimal("50000000.00")

    payments = loans.payments(loan.id)
    assert [p.payment_week for p in payments] == [1, 2, 3, 4]

    with pytest.raises(ValidationError):
        loans.repay(loan.id, 100)


def test_overpayment_is_capped(session, make_student):
    student = make_student(checking=100000)
    loans = LoanService(session, identity_for(student))
    loan = loans.apply(50000, 2)

    repayment = loans.repay(loan.id, 90000)
    assert repayment.charged == Decimal("50000.00")
    assert repayment.new_balance == Decimal("100000.00")
    assert repayment.completed


def test_partial_payment_is_early(session, make_student):
    student = make_student()
    loans = LoanService(session, identity_for(student))
    loan = loans.apply(100000, 4)
    due = loan.next_payment_due

    repayment = loans.repay(loan.id, 1000)
    assert repayment.payment_type == PaymentType.EARLY
    assert repayment.loan.remaining_balance == Decimal("99000.00")
    assert repayment.loan.next_payment_due == due + timedelta(days=7)


def test_limits_follow_the_tier(session, make_student):
    student = make_student(credit_score=700)
    loans = LoanService(session, identity_for(student))
    with pytest.raises(LimitExceeded):
        loans.apply(2000000, 4)
    with pytest.raises(LimitExceeded):
        loans.apply(100000, 20)
    assert session.exec(select(Loan)).all() == []


def test_low_score_is_not_eligible(session, make_student):
    student = make_student(credit_score=500)
    loans = LoanService(session, identity_for(student))
    assert loans.eligibility().eligible is False
    with pytest.raises(NotEligible):
        loans.apply(1000, 1)


def test_open_loan_limit(session, make_student, monkeypatch):
    monkeypatch.setenv("MAX_ACTIVE_LOANS", "1")
    student = make_student()
    loans = LoanService(session, identity_for(student))
    loans.apply(1000, 1)
    with pytest.raises(NotEligible):
        loans.apply(1000, 1)


def test_bank_reserves_bound_disbursement(session, make_student):
    MacroEntities(session, TEACHER_ID).debit(EntityKind.BANK, 49900000)
    session.commit()
    student = make_student()
    with pytest.raises(InsufficientFunds):
        LoanService(session, identity_for(student)).apply(500000, 4)
    assert session.exec(select(Loan)).all() == []
    assert LedgerStore(session).get_balance(student.id, "checking") == Decimal("0.00")


def test_overdue_sweep_blocks_new_loans(session, make_student):
    student = make_student(checking=10000)
    loans = LoanService(session, identity_for(student))
    loan = loans.apply(10000, 2)

    assert mark_overdue(session, TEACHER_ID, now=utcnow() + timedelta(days=8)) == 1
    session.commit()
    session.refresh(loan)
    assert loan.status == LoanStatus.OVERDUE.value

    elig = loans.eligibility()
    assert not elig.eligible
    assert "overdue" in elig.reason

    repayment = loans.repay(loan.id, 1000)
    assert repayment.loan.status == LoanStatus.ACTIVE.value


def test_loans_are_private(session, make_student):
    owner = make_student("Owner")
    other = make_student("Other", checking=1000)
    loan = LoanService(session, identity_for(owner)).apply(1000, 1)
    with pytest.raises(NotFound):
        LoanService(session, identity_for(other)).repay(loan.id, 100)
    with pytest.raises(NotFound):
        LoanService(session, Identity(teacher_id="elsewhere", student_id=owner.id)).overview()


def test_overview_totals(session, make_student):
    student = make_student()
    loans = LoanService(session, identity_for(student))
    first = loans.apply(10000, 2)
    second = loans.apply(20000, 4)

    overview = loans.overview()
    assert overview.summary.total_loans == 2
    assert overview.summary.open_loans == 2
    assert overview.summary.total_outstanding == Decimal("30000.00")
    assert overview.summary.weekly_obligation == first.weekly_payment + second.weekly_payment
    assert overview.eligibility.eligible
    assert len(session.exec(select(LoanPayment)).all()) == 0
