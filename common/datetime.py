"""Datetime helpers common to multiple services.

Provides:
    utcnow(): naive UTC timestamp used for every persisted ``*_at`` column.
    parse_iso8601(s): robust ISO-8601 parser returning a naive UTC datetime
    comparable with stored timestamps. Accepts trailing "Z", explicit offsets
    and fractional seconds.
"""
from __future__ import annotations

import datetime as _dt
from typing import Union

from dateutil.parser import isoparse as _isoparse

__all__ = ["parse_iso8601", "utcnow"]


def utcnow() -> _dt.datetime:
    """Current UTC time without tzinfo (SQLite drops offsets on round trip)."""
    return _dt.datetime.now(_dt.timezone.utc).replace(tzinfo=None)


def _to_naive_utc(dt: _dt.datetime) -> _dt.datetime:
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        # naive → assume already UTC
        return dt
    return dt.astimezone(_dt.timezone.utc).replace(tzinfo=None)


def parse_iso8601(value: Union[str, _dt.datetime]) -> _dt.datetime:
    """Parse *value* into a naive UTC datetime.

    Accepts ISO-8601 strings or datetime objects.
    """
    if isinstance(value, _dt.datetime):
        return _to_naive_utc(value)

    if not isinstance(value, str):
        raise TypeError("parse_iso8601 expects str or datetime, got " + type(value).__name__)

    try:
        dt = _isoparse(value)
    except ValueError as exc:
        raise ValueError(f"invalid ISO-8601 datetime: {value}") from exc

    return _to_naive_utc(dt)
