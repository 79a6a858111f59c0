from __future__ import annotations

"""SQLModel tables for student loans and their repayments."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (CheckConstraint, Column, DateTime, ForeignKey, Index,
                        Integer, Numeric, String)
from sqlmodel import Field, SQLModel

from common.datetime import utcnow
from ledger.models import MONEY


class LoanStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    OVERDUE = "overdue"


class PaymentType(str, Enum):
    SCHEDULED = "scheduled"
    EARLY = "early"
    FULL_REPAYMENT = "full_repayment"


class Loan(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: str = Field(
        sa_column=Column("student_id", String, ForeignKey("student.id"), nullable=False)
    )
    teacher_id: str = Field(sa_column=Column("teacher_id", String, nullable=False))
    principal: Decimal = Field(sa_column=Column("principal", MONEY, nullable=False))
    annual_rate: Decimal = Field(sa_column=Column("annual_rate", Numeric(6, 3), nullable=False))
    duration_weeks: int = Field(sa_column=Column("duration_weeks", Integer, nullable=False))
    weekly_payment: Decimal = Field(sa_column=Column("weekly_payment", MONEY, nullable=False))
    total_payment: Decimal = Field(sa_column=Column("total_payment", MONEY, nullable=False))
    remaining_balance: Decimal = Field(sa_column=Column("remaining_balance", MONEY, nullable=False))
    remaining_weeks: int = Field(sa_column=Column("remaining_weeks", Integer, nullable=False))
    grade: str = Field(default="", sa_column=Column("grade", String(4), nullable=False, default=""))
    status: str = Field(
        default=LoanStatus.ACTIVE.value,
        sa_column=Column("status", String(16), nullable=False, default="active"),
    )
    next_payment_due: Optional[datetime] = Field(
        default=None, sa_column=Column("next_payment_due", DateTime)
    )
    version: int = Field(default=0, sa_column=Column("version", Integer, nullable=False, default=0))
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column("created_at", DateTime, nullable=False),
    )

    __table_args__ = (
        CheckConstraint("remaining_balance >= 0", name="loan_remaining_non_negative"),
        CheckConstraint("remaining_weeks >= 0", name="loan_remaining_weeks_non_negative"),
        Index("ix_loan_student_status", "student_id", "status"),
    )


class LoanPayment(SQLModel, table=True):
    __tablename__ = "loan_payment"

    id: Optional[int] = Field(default=None, primary_key=True)
    loan_id: int = Field(sa_column=Column("loan_id", Integer, ForeignKey("loan.id"), nullable=False))
    payment_amount: Decimal = Field(sa_column=Column("payment_amount", MONEY, nullable=False))
    payment_week: int = Field(sa_column=Column("payment_week", Integer, nullable=False))
    remaining_balance: Decimal = Field(sa_column=Column("remaining_balance", MONEY, nullable=False))
    payment_type: str = Field(sa_column=Column("payment_type", String(16), nullable=False))
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column("created_at", DateTime, nullable=False),
    )
