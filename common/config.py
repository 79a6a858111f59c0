"""Environment-driven settings.

Values are read at call time so tests can monkeypatch the environment per
request instead of reloading modules.
"""
from __future__ import annotations

import os
from decimal import Decimal, InvalidOperation

__all__ = [
    "env_bool",
    "env_int",
    "env_decimal",
    "database_url",
    "max_active_loans",
    "fee_sink_strict",
    "seat_default_price",
    "seat_min_price",
]


def env_bool(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on", "y"}


def env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def env_decimal(name: str, default: str) -> Decimal:
    try:
        return Decimal(os.getenv(name, default))
    except InvalidOperation:
        return Decimal(default)


def database_url() -> str:
    return os.getenv("DATABASE_URL", "sqlite:///./classroom_economy.db")


def max_active_loans() -> int:
    return env_int("MAX_ACTIVE_LOANS", 3)


def fee_sink_strict() -> bool:
    return env_bool("FEE_SINK_STRICT", "0")


def seat_default_price() -> Decimal:
    return env_decimal("SEAT_DEFAULT_PRICE", "100000")


def seat_min_price() -> Decimal:
    return env_decimal("SEAT_MIN_PRICE", "10000")
