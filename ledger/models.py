from __future__ import annotations

"""SQLModel tables for classrooms, students, cash accounts, macro entities
and the transaction log. Column names are explicit lowercase, money columns
are ``Numeric(18, 2)``.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (Boolean, CheckConstraint, Column, DateTime, ForeignKey,
                        Index, Integer, Numeric, String, UniqueConstraint, event)
from sqlmodel import Field, SQLModel

from common.datetime import utcnow

MONEY = Numeric(18, 2)
QUANTITY = Numeric(20, 8)


class AccountKind(str, Enum):
    CHECKING = "checking"
    SAVINGS = "savings"
    INVESTMENT = "investment"


class EntityKind(str, Enum):
    GOVERNMENT = "government"
    BANK = "bank"
    SECURITIES = "securities"


class TransactionType(str, Enum):
    TRANSFER = "transfer"
    ACCOUNT_TRANSFER = "account_transfer"
    ALLOWANCE = "allowance"
    TAX = "tax"
    BROKERAGE_FEE = "brokerage_fee"
    TRADING_TAX = "trading_tax"
    LOAN_DISBURSEMENT = "loan_disbursement"
    LOAN_REPAYMENT = "loan_repayment"
    INVESTMENT_BUY = "investment_buy"
    INVESTMENT_SELL = "investment_sell"
    REAL_ESTATE_PURCHASE = "real_estate_purchase"
    REAL_ESTATE_SALE = "real_estate_sale"


class TransactionStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class Classroom(SQLModel, table=True):
    """One classroom per teacher; ``code`` is what students type to join."""

    id: Optional[int] = Field(default=None, primary_key=True)
    teacher_id: str = Field(sa_column=Column("teacher_id", String, nullable=False, unique=True))
    code: str = Field(sa_column=Column("code", String(12), nullable=False, unique=True))
    name: str = Field(default="", sa_column=Column("name", String, nullable=False, default=""))
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column("created_at", DateTime, nullable=False),
    )


class Student(SQLModel, table=True):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    teacher_id: str = Field(sa_column=Column("teacher_id", String, nullable=False, index=True))
    student_code: str = Field(sa_column=Column("student_code", String(16), nullable=False))
    name: str = Field(sa_column=Column("name", String, nullable=False))
    credit_score: int = Field(
        default=700, sa_column=Column("credit_score", Integer, nullable=False, default=700)
    )
    weekly_allowance: Decimal = Field(
        default=Decimal("0"),
        sa_column=Column("weekly_allowance", MONEY, nullable=False, default=0),
    )
    is_active: bool = Field(
        default=True, sa_column=Column("is_active", Boolean, nullable=False, default=True)
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column("created_at", DateTime, nullable=False),
    )

    __table_args__ = (
        UniqueConstraint("teacher_id", "student_code", name="student_teacher_code_uniq"),
        CheckConstraint("credit_score BETWEEN 350 AND 850", name="student_credit_score_range"),
    )


class Account(SQLModel, table=True):
    """Cash account. Balances change only through ``LedgerStore``."""

    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: str = Field(
        sa_column=Column("student_id", String, ForeignKey("student.id"), nullable=False)
    )
    kind: str = Field(sa_column=Column("kind", String(16), nullable=False))
    balance: Decimal = Field(
        default=Decimal("0"), sa_column=Column("balance", MONEY, nullable=False, default=0)
    )
    version: int = Field(default=0, sa_column=Column("version", Integer, nullable=False, default=0))
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column("updated_at", DateTime, nullable=False),
    )

    __table_args__ = (
        UniqueConstraint("student_id", "kind", name="account_student_kind_uniq"),
        CheckConstraint("balance >= 0", name="account_balance_non_negative"),
    )


class MacroEntity(SQLModel, table=True):
    """Government, bank or securities house of one classroom."""

    __tablename__ = "macro_entity"

    id: Optional[int] = Field(default=None, primary_key=True)
    teacher_id: str = Field(sa_column=Column("teacher_id", String, nullable=False))
    kind: str = Field(sa_column=Column("kind", String(16), nullable=False))
    name: str = Field(sa_column=Column("name", String, nullable=False))
    balance: Decimal = Field(
        default=Decimal("0"), sa_column=Column("balance", MONEY, nullable=False, default=0)
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column("updated_at", DateTime, nullable=False),
    )

    __table_args__ = (
        UniqueConstraint("teacher_id", "kind", name="macro_entity_teacher_kind_uniq"),
        CheckConstraint("balance >= 0", name="macro_entity_balance_non_negative"),
    )


class Transaction(SQLModel, table=True):
    """Append-only record of a value movement."""

    __tablename__ = "ledger_transaction"

    id: Optional[int] = Field(default=None, primary_key=True)
    teacher_id: str = Field(sa_column=Column("teacher_id", String, nullable=False))
    from_student_id: Optional[str] = Field(default=None, sa_column=Column("from_student_id", String))
    to_student_id: Optional[str] = Field(default=None, sa_column=Column("to_student_id", String))
    from_entity: Optional[str] = Field(default=None, sa_column=Column("from_entity", String(16)))
    to_entity: Optional[str] = Field(default=None, sa_column=Column("to_entity", String(16)))
    account_type: Optional[str] = Field(default=None, sa_column=Column("account_type", String(16)))
    amount: Decimal = Field(sa_column=Column("amount", MONEY, nullable=False))
    fee: Decimal = Field(
        default=Decimal("0"), sa_column=Column("fee", MONEY, nullable=False, default=0)
    )
    asset_id: Optional[int] = Field(default=None, sa_column=Column("asset_id", Integer))
    quantity: Optional[Decimal] = Field(default=None, sa_column=Column("quantity", QUANTITY))
    price: Optional[Decimal] = Field(default=None, sa_column=Column("price", MONEY))
    type: str = Field(sa_column=Column("type", String(32), nullable=False))
    description: str = Field(default="", sa_column=Column("description", String, nullable=False, default=""))
    status: str = Field(
        default=TransactionStatus.COMPLETED.value,
        sa_column=Column("status", String(16), nullable=False, default="completed"),
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column("created_at", DateTime, nullable=False),
    )

    __table_args__ = (
        Index("ix_ledger_transaction_from_ts", "from_student_id", "created_at"),
        Index("ix_ledger_transaction_to_ts", "to_student_id", "created_at"),
        Index("ix_ledger_transaction_teacher_ts", "teacher_id", "created_at"),
    )


class ImmutableTransactionError(RuntimeError):
    pass


@event.listens_for(Transaction, "before_update")
def _reject_transaction_update(mapper, connection, target):
    raise ImmutableTransactionError(f"transaction {target.id} is immutable")
