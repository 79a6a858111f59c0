"""Loan policy: credit-score tiers and the amortization formula.

All helpers are pure and deterministic so they can be unit-tested without
a database.

The weekly rate is ``annual_rate / 100 / 12``, a monthly figure applied once
per week. Existing loan figures depend on it, so it is kept as is.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Dict, List, Optional

from common.money import CENT, Number, to_decimal

__all__ = [
    "RateTier",
    "Amortization",
    "load_tiers",
    "tier_for_score",
    "weekly_rate",
    "amortize",
]

# ---------------------------------------------------------------------------
# Policy loading
# ---------------------------------------------------------------------------

_DEFAULT_POLICY: Dict = {
    "tiers": [
        {"min_score": 800, "grade": "A+", "annual_rate": 3.0, "max_amount": 3000000, "max_weeks": 24},
        {"min_score": 750, "grade": "A", "annual_rate": 4.0, "max_amount": 2000000, "max_weeks": 20},
        {"min_score": 700, "grade": "B+", "annual_rate": 6.0, "max_amount": 1500000, "max_weeks": 16},
        {"min_score": 650, "grade": "B", "annual_rate": 8.0, "max_amount": 1000000, "max_weeks": 12},
        {"min_score": 600, "grade": "C+", "annual_rate": 10.0, "max_amount": 700000, "max_weeks": 8},
        {"min_score": 550, "grade": "C", "annual_rate": 12.0, "max_amount": 500000, "max_weeks": 4},
    ],
}

_POLICY_PATH = Path(__file__).with_name("policy.json")


def _load_policy(path: Path = _POLICY_PATH) -> Dict:
    try:
        with path.open() as fp:
            data = json.load(fp)
            return {**_DEFAULT_POLICY, **data}
    except FileNotFoundError:
        return _DEFAULT_POLICY


@dataclass(frozen=True)
class RateTier:
    min_score: int
    grade: str
    annual_rate: Decimal
    max_amount: Decimal
    max_weeks: int


def load_tiers(path: Path = _POLICY_PATH) -> List[RateTier]:
    """Tiers sorted from the highest threshold down."""
    tiers = [
        RateTier(
            min_score=int(t["min_score"]),
            grade=str(t["grade"]),
            annual_rate=to_decimal(t["annual_rate"]),
            max_amount=to_decimal(t["max_amount"]),
            max_weeks=int(t["max_weeks"]),
        )
        for t in _load_policy(path)["tiers"]
    ]
    return sorted(tiers, key=lambda t: t.min_score, reverse=True)


_TIERS = load_tiers()


def tier_for_score(score: int, tiers: Optional[List[RateTier]] = None) -> Optional[RateTier]:
    """Best tier whose threshold *score* reaches, ``None`` below the lowest one."""
    for tier in tiers if tiers is not None else _TIERS:
        if score >= tier.min_score:
            return tier
    return None


# ---------------------------------------------------------------------------
# Amortization
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Amortization:
    weekly_payment: Decimal
    total_payment: Decimal


def weekly_rate(annual_rate: Number) -> Decimal:
    return to_decimal(annual_rate) / 100 / 12


def amortize(principal: Number, annual_rate: Number, weeks: int) -> Amortization:
    """Level weekly payment for *principal* over *weeks* (annuity formula).

    ``w == 0`` degenerates to ``P / n``. The payment is rounded half-up to
    cents and ``total_payment`` is exactly ``weekly_payment * weeks``.
    """
    if weeks <= 0:
        raise ValueError("weeks must be positive")
    p = to_decimal(principal)
    w = weekly_rate(annual_rate)
    if w == 0:
        payment = p / weeks
    else:
        growth = (1 + w) ** weeks
        payment = p * w * growth / (growth - 1)
    payment = payment.quantize(CENT, rounding=ROUND_HALF_UP)
    return Amortization(weekly_payment=payment, total_payment=payment * weeks)
