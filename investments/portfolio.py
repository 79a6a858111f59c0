"""Portfolio accounting with weighted-average cost basis.

Rows are read ``FOR UPDATE`` where the dialect supports it and every write is
conditional on the ``version`` that was read, so two orders on the same
holding serialize instead of interleaving.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from sqlalchemy import delete, update
from sqlmodel import Session, select

from common.datetime import utcnow
from common.errors import (BelowMinimumHolding, ConflictError,
                           InsufficientHoldings, ValidationError)
from common.money import ZERO, money, percent
from investments.models import Asset, PortfolioHolding
from ledger.models import AccountKind
from ledger.store import LedgerStore

logger = logging.getLogger(__name__)

AVG_STEP = Decimal("0.00000001")


def _average(value: Decimal) -> Decimal:
    return value.quantize(AVG_STEP, rounding=ROUND_HALF_UP)


@dataclass
class SellResult:
    cost_basis: Decimal
    realized_profit: Decimal


@dataclass
class HoldingValuation:
    asset_id: int
    symbol: str
    name: str
    category: str
    quantity: Decimal
    average_price: Decimal
    current_price: Decimal
    total_invested: Decimal
    current_value: Decimal
    profit_loss: Decimal
    profit_loss_percent: Decimal
    weight: Decimal = ZERO


@dataclass
class PortfolioSummary:
    holdings: List[HoldingValuation] = field(default_factory=list)
    total_invested: Decimal = ZERO
    current_value: Decimal = ZERO
    profit_loss: Decimal = ZERO
    profit_loss_percent: Decimal = ZERO
    cash_balance: Decimal = ZERO
    total_assets: Decimal = ZERO


def value_holding(holding: PortfolioHolding, asset: Asset) -> HoldingValuation:
    current_value = money(holding.quantity * asset.current_price)
    total_invested = money(holding.total_invested)
    profit_loss = current_value - total_invested
    return HoldingValuation(
        asset_id=asset.id,
        symbol=asset.symbol,
        name=asset.name,
        category=asset.category,
        quantity=holding.quantity,
        average_price=holding.average_price,
        current_price=money(asset.current_price),
        total_invested=total_invested,
        current_value=current_value,
        profit_loss=profit_loss,
        profit_loss_percent=percent(profit_loss, total_invested),
    )


class Portfolio:
    def __init__(self, session: Session):
        self.session = session

    # ------------------------------------------------------------------
    def holding(self, student_id: str, asset_id: int, *, for_update: bool = False) -> Optional[PortfolioHolding]:
        stmt = select(PortfolioHolding).where(
            PortfolioHolding.student_id == student_id,
            PortfolioHolding.asset_id == asset_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.exec(stmt.execution_options(populate_existing=True)).first()

    def holdings(self, student_id: str) -> List[PortfolioHolding]:
        return list(
            self.session.exec(
                select(PortfolioHolding)
                .where(PortfolioHolding.student_id == student_id)
                .order_by(PortfolioHolding.asset_id)
                .execution_options(populate_existing=True)
            ).all()
        )

    # ------------------------------------------------------------------
    def apply_buy(
        self,
        student_id: str,
        asset: Asset,
        qty: Decimal,
        price: Decimal,
        *,
        expected_version: Optional[int] = None,
    ) -> PortfolioHolding:
        """Add *qty* at *price*; the average becomes the quantity-weighted mean."""
        if qty <= 0 or price <= 0:
            raise ValidationError("quantity and price must be positive")
        cost = qty * price
        holding = self.holding(student_id, asset.id, for_update=True)

        if holding is None:
            if expected_version is not None:
                raise ConflictError("holding no longer exists", asset_id=asset.id)
            holding = PortfolioHolding(
                student_id=student_id,
                asset_id=asset.id,
                quantity=qty,
                average_price=_average(price),
                total_invested=money(cost),
            )
            self.session.add(holding)
            self.session.flush()
            return holding

        new_qty = holding.quantity + qty
        new_total = holding.total_invested + cost
        self._write(
            holding,
            expected_version,
            quantity=new_qty,
            average_price=_average(new_total / new_qty),
            total_invested=money(new_total),
        )
        return holding

    def apply_sell(
        self,
        student_id: str,
        asset: Asset,
        qty: Decimal,
        price: Decimal,
        *,
        expected_version: Optional[int] = None,
    ) -> SellResult:
        """Remove *qty*; the average price of what remains does not change."""
        if qty <= 0:
            raise ValidationError("quantity must be positive")
        holding = self.holding(student_id, asset.id, for_update=True)
        if holding is None or holding.quantity < qty:
            raise InsufficientHoldings(
                f"not enough {asset.symbol} to sell",
                requested=qty,
                held=holding.quantity if holding else ZERO,
            )

        remaining = holding.quantity - qty
        if ZERO < remaining < asset.min_quantity:
            raise BelowMinimumHolding(
                f"remaining {asset.symbol} would fall below the minimum of {asset.min_quantity}",
                remaining=remaining,
                min_quantity=asset.min_quantity,
            )

        average_price = holding.average_price
        cost_basis = money(average_price * qty)
        # proceeds minus cost, each rounded to cents like the cash legs
        result = SellResult(cost_basis=cost_basis, realized_profit=money(qty * price) - cost_basis)

        if remaining == 0:
            self._delete(holding, expected_version)
        else:
            self._write(
                holding,
                expected_version,
                quantity=remaining,
                average_price=average_price,
                total_invested=max(money(holding.total_invested - cost_basis), ZERO),
            )
        return result

    # ------------------------------------------------------------------
    def _write(self, holding: PortfolioHolding, expected_version: Optional[int], **values) -> None:
        version = holding.version if expected_version is None else expected_version
        result = self.session.exec(
            update(PortfolioHolding)
            .where(PortfolioHolding.id == holding.id, PortfolioHolding.version == version)
            .values(version=version + 1, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ConflictError("holding was modified concurrently", holding_id=holding.id)
        self.session.refresh(holding)

    def _delete(self, holding: PortfolioHolding, expected_version: Optional[int]) -> None:
        version = holding.version if expected_version is None else expected_version
        result = self.session.exec(
            delete(PortfolioHolding)
            .where(PortfolioHolding.id == holding.id, PortfolioHolding.version == version)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ConflictError("holding was modified concurrently", holding_id=holding.id)
        self.session.expunge(holding)

    # ------------------------------------------------------------------
    def summary(self, student_id: str) -> PortfolioSummary:
        """Value every holding at the asset's current price."""
        summary = PortfolioSummary()
        for holding in self.holdings(student_id):
            asset = self.session.get(Asset, holding.asset_id)
            summary.holdings.append(value_holding(holding, asset))

        summary.total_invested = sum((h.total_invested for h in summary.holdings), ZERO)
        summary.current_value = sum((h.current_value for h in summary.holdings), ZERO)
        summary.profit_loss = summary.current_value - summary.total_invested
        summary.profit_loss_percent = percent(summary.profit_loss, summary.total_invested)
        for h in summary.holdings:
            h.weight = percent(h.current_value, summary.current_value)

        summary.cash_balance = LedgerStore(self.session).get_balance(
            student_id, AccountKind.INVESTMENT.value
        )
        summary.total_assets = summary.current_value + summary.cash_balance
        return summary
