"""Market-order execution for buys and sells.

Every order runs in one database transaction and walks the states
``validated -> funds_reserved -> recorded -> fees_distributed -> completed``.
A failure at any step rolls the whole transaction back; the last state
reached is logged with the rejection.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlmodel import Session

from common.auth import Identity
from common.errors import ConflictError, LedgerError, NotFound, ValidationError
from common.money import Number, money, percent, quantity as to_quantity, to_decimal
from economy_observability.metrics import order_latency_seconds, orders_total
from investments.models import Asset
from investments.portfolio import Portfolio
from ledger.entities import MacroEntities
from ledger.journal import TransactionLog
from ledger.models import (AccountKind, EntityKind, Transaction,
                           TransactionStatus, TransactionType)
from ledger.store import LedgerStore, account_kind
from ledger.uow import atomic

logger = logging.getLogger(__name__)

BROKERAGE_RATE = Decimal("0.001")
TRADING_TAX_RATE = Decimal("0.002")


class OrderState(str, Enum):
    NEW = "new"
    VALIDATED = "validated"
    FUNDS_RESERVED = "funds_reserved"
    RECORDED = "recorded"
    FEES_DISTRIBUTED = "fees_distributed"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class BuyReceipt:
    transaction: Transaction
    asset: Asset
    quantity: Decimal
    price: Decimal
    total: Decimal
    fee: Decimal
    remaining_balance: Decimal
    fee_sink_ok: bool = True


@dataclass
class SellReceipt:
    transaction: Transaction
    asset: Asset
    quantity: Decimal
    price: Decimal
    total: Decimal
    brokerage_fee: Decimal
    trading_tax: Decimal
    net_amount: Decimal
    profit_amount: Decimal
    profit_percent: Decimal
    new_balance: Decimal
    fee_sink_ok: bool = True

    @property
    def total_fees(self) -> Decimal:
        return self.brokerage_fee + self.trading_tax


def order_quantity(asset: Asset, value: Number, *, enforce_minimum: bool = True) -> Decimal:
    """Validate an order size: whole units unless the asset is a cryptocurrency.

    Sells skip the minimum check; the remainder rule in
    :meth:`Portfolio.apply_sell` applies to them instead.
    """
    try:
        qty = to_decimal(value)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    if qty <= 0:
        raise ValidationError("quantity must be positive")
    if not asset.is_crypto and qty != qty.to_integral_value():
        raise ValidationError(f"{asset.symbol} trades in whole units only", quantity=qty)
    if to_quantity(qty) != qty:
        raise ValidationError("quantity has too many decimal places", quantity=qty)
    if enforce_minimum and qty < asset.min_quantity:
        raise ValidationError(
            f"minimum order quantity for {asset.symbol} is {asset.min_quantity}",
            quantity=qty,
        )
    return qty


class OrderService:
    """Buy/sell orders for the student in *identity*."""

    def __init__(self, session: Session, identity: Identity):
        self.session = session
        self.identity = identity
        self.store = LedgerStore(session)
        self.portfolio = Portfolio(session)
        self.journal = TransactionLog(session)
        self.entities = MacroEntities(session, identity.teacher_id)

    @property
    def student_id(self) -> str:
        return self.identity.student_id

    # ------------------------------------------------------------------
    def _asset(self, asset_id: int, quoted_price: Optional[Number]) -> Asset:
        asset = self.session.get(Asset, asset_id)
        if asset is None or not asset.is_active:
            raise NotFound("asset not found", asset_id=asset_id)
        self.session.refresh(asset)
        if quoted_price is not None and money(quoted_price) != money(asset.current_price):
            raise ConflictError(
                "price moved",
                quoted=money(quoted_price),
                current=money(asset.current_price),
            )
        return asset

    def _log(self, side: str, state: OrderState, outcome: str, reason: str = "") -> None:
        extra = {
            "teacher_id": self.identity.teacher_id,
            "student_id": self.student_id,
            "operation": side,
            "order_state": state.value,
        }
        if outcome == "completed":
            logger.info("%s order completed", side, extra=extra)
        else:
            extra["order_state"] = OrderState.FAILED.value
            logger.warning("%s order failed after %s: %s", side, state.value, reason, extra=extra)

    # ------------------------------------------------------------------
    def buy(
        self,
        asset_id: int,
        quantity: Number,
        *,
        quoted_price: Optional[Number] = None,
        account_type: str = AccountKind.INVESTMENT.value,
    ) -> BuyReceipt:
        started = time.perf_counter()
        state = OrderState.NEW
        try:
            with atomic(self.session):
                asset = self._asset(asset_id, quoted_price)
                qty = order_quantity(asset, quantity)
                kind = account_kind(account_type)
                price = money(asset.current_price)
                total = money(qty * price)
                if total <= 0:
                    raise ValidationError("order value rounds to zero")
                fee = money(total * BROKERAGE_RATE)
                state = OrderState.VALIDATED

                remaining = self.store.debit(self.student_id, kind.value, total + fee)
                self.portfolio.apply_buy(self.student_id, asset, qty, price)
                state = OrderState.FUNDS_RESERVED

                entry = self.journal.append(
                    self.identity.teacher_id,
                    TransactionType.INVESTMENT_BUY,
                    total,
                    fee=fee,
                    from_student_id=self.student_id,
                    account_type=kind.value,
                    asset_id=asset.id,
                    quantity=qty,
                    price=price,
                    description=f"Bought {qty.normalize()} {asset.symbol}",
                )
                state = OrderState.RECORDED

                sink_ok = self.entities.credit_fee(EntityKind.SECURITIES, fee)
                if not sink_ok:
                    self.journal.append(
                        self.identity.teacher_id,
                        TransactionType.BROKERAGE_FEE,
                        fee,
                        from_student_id=self.student_id,
                        to_entity=EntityKind.SECURITIES.value,
                        asset_id=asset.id,
                        description=f"{asset.symbol} buy brokerage fee",
                        status=TransactionStatus.FAILED,
                    )
                state = OrderState.FEES_DISTRIBUTED
                receipt = BuyReceipt(
                    transaction=entry,
                    asset=asset,
                    quantity=qty,
                    price=price,
                    total=total,
                    fee=fee,
                    remaining_balance=remaining,
                    fee_sink_ok=sink_ok,
                )
            state = OrderState.COMPLETED
        except LedgerError as exc:
            orders_total.labels(side="buy", outcome=exc.code).inc()
            self._log("buy", state, "failed", exc.reason)
            raise
        finally:
            order_latency_seconds.labels(side="buy").observe(time.perf_counter() - started)

        orders_total.labels(side="buy", outcome="completed").inc()
        self._log("buy", state, "completed")
        return receipt

    # ------------------------------------------------------------------
    def sell(
        self,
        asset_id: int,
        quantity: Number,
        *,
        quoted_price: Optional[Number] = None,
        account_type: str = AccountKind.INVESTMENT.value,
        expected_version: Optional[int] = None,
    ) -> SellReceipt:
        started = time.perf_counter()
        state = OrderState.NEW
        try:
            with atomic(self.session):
                asset = self._asset(asset_id, quoted_price)
                qty = order_quantity(asset, quantity, enforce_minimum=False)
                kind = account_kind(account_type)
                price = money(asset.current_price)
                total = money(qty * price)
                if total <= 0:
                    raise ValidationError("order value rounds to zero")
                brokerage = money(total * BROKERAGE_RATE)
                tax = money(total * TRADING_TAX_RATE)
                net = total - brokerage - tax
                state = OrderState.VALIDATED

                result = self.portfolio.apply_sell(
                    self.student_id, asset, qty, price, expected_version=expected_version
                )
                new_balance = self.store.credit(self.student_id, kind.value, net)
                state = OrderState.FUNDS_RESERVED

                entry = self.journal.append(
                    self.identity.teacher_id,
                    TransactionType.INVESTMENT_SELL,
                    total,
                    fee=brokerage + tax,
                    to_student_id=self.student_id,
                    account_type=kind.value,
                    asset_id=asset.id,
                    quantity=qty,
                    price=price,
                    description=f"Sold {qty.normalize()} {asset.symbol}",
                )
                state = OrderState.RECORDED

                sink_ok = True
                for entity, tx_type, amount, label in (
                    (EntityKind.SECURITIES, TransactionType.BROKERAGE_FEE, brokerage, "brokerage fee"),
                    (EntityKind.GOVERNMENT, TransactionType.TRADING_TAX, tax, "trading tax"),
                ):
                    if amount <= 0:
                        continue
                    credited = self.entities.credit_fee(entity, amount)
                    sink_ok = sink_ok and credited
                    self.journal.append(
                        self.identity.teacher_id,
                        tx_type,
                        amount,
                        from_student_id=self.student_id,
                        to_entity=entity.value,
                        asset_id=asset.id,
                        description=f"{asset.symbol} sell {label}",
                        status=TransactionStatus.COMPLETED if credited else TransactionStatus.FAILED,
                    )
                state = OrderState.FEES_DISTRIBUTED

                profit = result.realized_profit
                receipt = SellReceipt(
                    transaction=entry,
                    asset=asset,
                    quantity=qty,
                    price=price,
                    total=total,
                    brokerage_fee=brokerage,
                    trading_tax=tax,
                    net_amount=net,
                    profit_amount=profit,
                    profit_percent=percent(profit, result.cost_basis),
                    new_balance=new_balance,
                    fee_sink_ok=sink_ok,
                )
            state = OrderState.COMPLETED
        except LedgerError as exc:
            orders_total.labels(side="sell", outcome=exc.code).inc()
            self._log("sell", state, "failed", exc.reason)
            raise
        finally:
            order_latency_seconds.labels(side="sell").observe(time.perf_counter() - started)

        orders_total.labels(side="sell", outcome="completed").inc()
        self._log("sell", state, "completed")
        return receipt

