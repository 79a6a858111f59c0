"""Ledger Store: per-student cash balances.

Debits are a single conditional ``UPDATE ... WHERE balance >= :amount`` so the
sufficiency check and the write cannot be separated by a concurrent request.
Callers own the surrounding transaction (see :func:`ledger.uow.atomic`) and
append the matching transaction log entry themselves.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict

from sqlalchemy import func, update
from sqlmodel import Session, select

from common.datetime import utcnow
from common.errors import InsufficientFunds, NotFound, ValidationError
from common.money import Number, money
from ledger.models import Account, AccountKind

logger = logging.getLogger(__name__)


def account_kind(value: str) -> AccountKind:
    try:
        return AccountKind(value)
    except ValueError as exc:
        raise ValidationError(f"unsupported account type: {value}") from exc


def positive_amount(value: Number) -> Decimal:
    try:
        amount = money(value)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    if amount <= 0:
        raise ValidationError("amount must be positive", amount=amount)
    return amount


class LedgerStore:
    """Credit/debit access to :class:`Account` rows."""

    def __init__(self, session: Session):
        self.session = session

    def _account(self, student_id: str, kind: AccountKind) -> Account:
        account = self.session.exec(
            select(Account).where(Account.student_id == student_id, Account.kind == kind.value)
        ).first()
        if account is None:
            raise NotFound(f"{kind.value} account not found", student_id=student_id)
        return account

    # ------------------------------------------------------------------
    def get_balance(self, student_id: str, kind: str) -> Decimal:
        account = self._account(student_id, account_kind(kind))
        self.session.refresh(account)
        return money(account.balance)

    def balances(self, student_id: str) -> Dict[str, Decimal]:
        rows = self.session.exec(select(Account).where(Account.student_id == student_id)).all()
        if not rows:
            raise NotFound("student has no accounts", student_id=student_id)
        for row in rows:
            self.session.refresh(row)
        return {row.kind: money(row.balance) for row in rows}

    # ------------------------------------------------------------------
    def credit(self, student_id: str, kind: str, amount: Number) -> Decimal:
        """Atomically add *amount*; returns the new balance."""
        value = positive_amount(amount)
        account = self._account(student_id, account_kind(kind))
        self.session.exec(
            update(Account)
            .where(Account.id == account.id)
            .values(
                balance=func.round(Account.balance + value, 2),
                version=Account.version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return self._reload(account)

    def debit(self, student_id: str, kind: str, amount: Number) -> Decimal:
        """Atomically subtract *amount* or raise :class:`InsufficientFunds`."""
        value = positive_amount(amount)
        account = self._account(student_id, account_kind(kind))
        result = self.session.exec(
            update(Account)
            .where(Account.id == account.id, Account.balance >= value)
            .values(
                balance=func.round(Account.balance - value, 2),
                version=Account.version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            available = self._reload(account)
            logger.info(
                "debit rejected",
                extra={"student_id": student_id, "operation": "debit"},
            )
            raise InsufficientFunds(
                f"insufficient funds in {kind} account",
                required=value,
                available=available,
            )
        return self._reload(account)

    def _reload(self, account: Account) -> Decimal:
        self.session.refresh(account)
        return money(account.balance)
