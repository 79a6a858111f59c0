"""Asset registry and the price-feed seam.

Prices come from an external market-data job; this module only stores what it
is told. Orders always execute at the stored ``current_price``.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import List

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from common.datetime import utcnow
from common.errors import ConflictError, NotFound, ValidationError
from common.money import Number, money, quantity, to_decimal
from investments.models import CATEGORIES, CRYPTO_CATEGORY, Asset

logger = logging.getLogger(__name__)


def _positive_price(value: Number) -> Decimal:
    try:
        price = money(value)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    if price <= 0:
        raise ValidationError("price must be positive", price=value)
    return price


class Market:
    def __init__(self, session: Session):
        self.session = session

    def register(
        self,
        symbol: str,
        name: str,
        category: str,
        current_price: Number,
        *,
        min_quantity: Number = 1,
        currency: str = "KRW",
    ) -> Asset:
        if category not in CATEGORIES:
            raise ValidationError(f"unknown asset category: {category}")
        min_qty = quantity(to_decimal(min_quantity))
        if min_qty <= 0:
            raise ValidationError("min_quantity must be positive")
        if category != CRYPTO_CATEGORY and min_qty != min_qty.to_integral_value():
            raise ValidationError("fractional min_quantity is only allowed for cryptocurrency")

        asset = Asset(
            symbol=symbol.upper(),
            name=name,
            category=category,
            currency=currency.upper(),
            min_quantity=min_qty,
            current_price=_positive_price(current_price),
        )
        try:
            with self.session.begin_nested():
                self.session.add(asset)
                self.session.flush()
        except IntegrityError as exc:
            raise ConflictError("symbol already registered", symbol=symbol.upper()) from exc
        logger.info("asset %s registered", asset.symbol)
        return asset

    def get(self, asset_id: int) -> Asset:
        asset = self.session.get(Asset, asset_id)
        if asset is None:
            raise NotFound("asset not found", asset_id=asset_id)
        return asset

    def update_price(self, asset_id: int, price: Number) -> Asset:
        asset = self.get(asset_id)
        asset.current_price = _positive_price(price)
        asset.updated_at = utcnow()
        self.session.add(asset)
        self.session.flush()
        return asset

    def list(self) -> List[Asset]:
        return list(
            self.session.exec(
                select(Asset).where(Asset.is_active == True).order_by(Asset.symbol)  # noqa: E712
            ).all()
        )
