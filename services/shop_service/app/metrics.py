"""Prometheus metrics for the shop service."""

from __future__ import annotations

from typing import Final

from prometheus_client import Counter, Histogram


SHOP_STOCK_EVENTS_TOTAL: Final = Counter(
    "shop_stock_events_total",
    "Number of stock ledger events appended.",
    labelnames=("type",),
)

SHOP_STOCK_RESERVATIONS_TOTAL: Final = Counter(
    "shop_stock_reservations_total",
    "Outcome of stock reservation attempts.",
    labelnames=("outcome",),
)

SHOP_STOCK_RESERVATION_SECONDS: Final = Histogram(
    "shop_stock_reservation_seconds",
    "Time spent checking and appending a reservation, lock wait included.",
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5),
)

SHOP_ORDERS_TOTAL: Final = Counter(
    "shop_orders_total",
    "Number of order status transitions.",
    labelnames=("status",),
)

SHOP_PAYMENTS_TOTAL: Final = Counter(
    "shop_payments_total",
    "Number of processed payments.",
    labelnames=("method", "outcome"),
)


def normalise_label(value: str | None) -> str:
    if not value:
        return "unknown"
    return value.strip().lower() or "unknown"
