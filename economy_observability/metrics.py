"""
Prometheus metrics for the classroom economy.

This module does NOT start a standalone HTTP server. The gateway exposes
metrics by mounting the ASGI exporter:

    from prometheus_client import make_asgi_app
    app.mount("/metrics", make_asgi_app())
"""
from __future__ import annotations

from typing import Any, Dict, Tuple, Type

from prometheus_client import Counter, Gauge, Histogram

# ----------------------------
# Registration helper (avoid duplicate collectors)
# ----------------------------
_METRICS: Dict[Tuple[Type[Any], str], Any] = {}


def get_metric(cls: Type[Any], name: str, *args, **kwargs):
    key = (cls, name)
    if key in _METRICS:
        return _METRICS[key]
    metric = cls(name, *args, **kwargs)
    _METRICS[key] = metric
    return metric


# ----------------------------
# Order execution
# ----------------------------

orders_total = get_metric(
    Counter,
    "orders_total",
    "Buy/sell orders by outcome",
    ["side", "outcome"],
)

order_latency_seconds = get_metric(
    Histogram,
    "order_latency_seconds",
    "Latency of order execution in seconds",
    ["side"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2),
)

fee_sink_failures_total = get_metric(
    Counter,
    "fee_sink_failures_total",
    "Fee or tax credits to a macro entity that could not be applied",
    ["entity"],
)

# ----------------------------
# Loans
# ----------------------------

loans_total = get_metric(
    Counter,
    "loans_total",
    "Loan actions by outcome",
    ["action", "outcome"],
)

# ----------------------------
# Seats
# ----------------------------

seat_trades_total = get_metric(
    Counter,
    "seat_trades_total",
    "Seat purchases and sales by outcome",
    ["side", "outcome"],
)

seat_price_current = get_metric(
    Gauge,
    "seat_price_current",
    "Last computed seat price per classroom",
    ["teacher_id"],
)

# ----------------------------
# Transfers, taxes, allowance
# ----------------------------

transfers_total = get_metric(
    Counter,
    "transfers_total",
    "Cash movements initiated through the transfers service",
    ["kind", "outcome"],
)
