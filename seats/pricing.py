"""Seat pricing tied to the classroom money supply.

``price = round_half_up(S * 0.6 / N)`` where ``S`` is the total of every
active student's checking, savings and investment balances and ``N`` the
number of active students (or a count supplied by the teacher). With no
students or no money the default price applies; the result never drops below
the floor. Seat ownership does not enter the formula.
"""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Tuple

from sqlalchemy import func
from sqlmodel import Session, select

from common.config import seat_default_price, seat_min_price
from common.money import ZERO, money, to_decimal
from ledger.models import Account, Student

MONEY_SUPPLY_SHARE = Decimal("0.6")


def seat_price(total_balances: Decimal, student_count: int) -> Decimal:
    """Pure form of the pricing formula."""
    if student_count <= 0 or total_balances <= 0:
        price = seat_default_price()
    else:
        price = (to_decimal(total_balances) * MONEY_SUPPLY_SHARE / student_count).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
    return max(price, seat_min_price())


def money_supply(session: Session, teacher_id: str) -> Tuple[Decimal, int]:
    """Return ``(S, N)`` for the classroom's active students."""
    count = session.exec(
        select(func.count(Student.id)).where(
            Student.teacher_id == teacher_id, Student.is_active == True  # noqa: E712
        )
    ).one()
    total = session.exec(
        select(func.coalesce(func.sum(Account.balance), 0))
        .select_from(Account)
        .join(Student, Student.id == Account.student_id)
        .where(Student.teacher_id == teacher_id, Student.is_active == True)  # noqa: E712
    ).one()
    return money(total or ZERO), int(count or 0)


def current_seat_price(
    session: Session, teacher_id: str, manual_student_count: Optional[int] = None
) -> Decimal:
    total, count = money_supply(session, teacher_id)
    if manual_student_count is not None and manual_student_count > 0:
        count = manual_student_count
    return seat_price(total, count)
