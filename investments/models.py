from __future__ import annotations

"""SQLModel tables for tradable assets and per-student holdings."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (Boolean, CheckConstraint, Column, DateTime, ForeignKey,
                        Integer, Numeric, String, UniqueConstraint)
from sqlmodel import Field, SQLModel

from common.datetime import utcnow
from ledger.models import MONEY, QUANTITY

CRYPTO_CATEGORY = "cryptocurrency"
CATEGORIES = ("stock", "etf", "bond", "commodity", "currency", CRYPTO_CATEGORY)

# cost basis is kept to 8 decimal places, not cents
AVERAGE_PRICE = Numeric(24, 8)


class Asset(SQLModel, table=True):
    """Tradable instrument; ``current_price`` is pushed by the market-data feed."""

    id: Optional[int] = Field(default=None, primary_key=True)
    symbol: str = Field(sa_column=Column("symbol", String(24), nullable=False, unique=True))
    name: str = Field(sa_column=Column("name", String, nullable=False))
    category: str = Field(sa_column=Column("category", String(24), nullable=False))
    currency: str = Field(
        default="KRW", sa_column=Column("currency", String(3), nullable=False, default="KRW")
    )
    min_quantity: Decimal = Field(
        default=Decimal("1"), sa_column=Column("min_quantity", QUANTITY, nullable=False, default=1)
    )
    current_price: Decimal = Field(sa_column=Column("current_price", MONEY, nullable=False))
    is_active: bool = Field(
        default=True, sa_column=Column("is_active", Boolean, nullable=False, default=True)
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column("updated_at", DateTime, nullable=False),
    )

    __table_args__ = (
        CheckConstraint("current_price > 0", name="asset_price_positive"),
        CheckConstraint("min_quantity > 0", name="asset_min_quantity_positive"),
    )

    @property
    def is_crypto(self) -> bool:
        return self.category == CRYPTO_CATEGORY


class PortfolioHolding(SQLModel, table=True):
    """Weighted-average position of one student in one asset."""

    __tablename__ = "portfolio_holding"

    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: str = Field(
        sa_column=Column("student_id", String, ForeignKey("student.id"), nullable=False)
    )
    asset_id: int = Field(
        sa_column=Column("asset_id", Integer, ForeignKey("asset.id"), nullable=False)
    )
    quantity: Decimal = Field(sa_column=Column("quantity", QUANTITY, nullable=False))
    average_price: Decimal = Field(sa_column=Column("average_price", AVERAGE_PRICE, nullable=False))
    total_invested: Decimal = Field(sa_column=Column("total_invested", MONEY, nullable=False))
    version: int = Field(default=0, sa_column=Column("version", Integer, nullable=False, default=0))
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column("updated_at", DateTime, nullable=False),
    )

    __table_args__ = (
        UniqueConstraint("student_id", "asset_id", name="portfolio_student_asset_uniq"),
        CheckConstraint("quantity >= 0", name="portfolio_quantity_non_negative"),
        CheckConstraint("average_price >= 0", name="portfolio_average_non_negative"),
    )
