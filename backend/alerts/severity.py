"""
Severity classification and order derivation for stock alerts.

Bands (lower bound inclusive):
  d == 0          OUT_OF_STOCK     CRITICAL
  0   < d < 0.5   CRITICAL_STOCK   CRITICAL
  0.5 <= d < 1.0  CRITICAL_STOCK   URGENT
  1.0 <= d < 2.0  LOW_STOCK        HIGH
  d >= 2.0        SUFFICIENT_STOCK NORMAL

These bands are fixed. Whether an alert is raised at all is decided by
the configured reorder threshold (inventory.stock.is_threshold_breached).
"""

from __future__ import annotations

import math

from core.errors import InvalidStateError
from core.types import AlertEvent, AlertKind, OrderPriority, Severity
from inventory.stock import StockState

SEVERITY_BANDS = {
    "critical_below": 0.5,
    "urgent_below": 1.0,
    "high_below": 2.0,
}

ORDER_TARGET_DAYS = 5


def classify(days_of_supply: float) -> tuple[AlertKind, Severity]:
    """Map days of supply to (alert kind, severity)."""
    if days_of_supply is None or math.isnan(days_of_supply) or days_of_supply < 0:
        raise InvalidStateError(f"Days of supply must be >= 0, got {days_of_supply!r}")

    if days_of_supply == 0:
        return AlertKind.OUT_OF_STOCK, Severity.CRITICAL
    elif days_of_supply < SEVERITY_BANDS["critical_below"]:
        return AlertKind.CRITICAL_STOCK, Severity.CRITICAL
    elif days_of_supply < SEVERITY_BANDS["urgent_below"]:
        return AlertKind.CRITICAL_STOCK, Severity.URGENT
    elif days_of_supply < SEVERITY_BANDS["high_below"]:
        return AlertKind.LOW_STOCK, Severity.HIGH
    return AlertKind.SUFFICIENT_STOCK, Severity.NORMAL


def build_alert_event(state: StockState, *, facility_id: str, product_code: str) -> AlertEvent:
    days = state.days_of_supply
    kind, severity = classify(days)
    return AlertEvent(
        kind=kind,
        severity=severity,
        count_units=state.count_units,
        consumption_rate=state.consumption_rate,
        days_of_supply=days,
        threshold=state.reorder_threshold,
        facility_id=facility_id,
        product_code=product_code,
    )


def derive_order_quantity(consumption_rate: float, target_days: int = ORDER_TARGET_DAYS) -> int:
    """Target days of consumption, rounded up to the nearest multiple of 10."""
    quantity = math.ceil(consumption_rate * target_days)
    return math.ceil(quantity / 10) * 10


def derive_order_priority(days_of_supply: float) -> OrderPriority:
    if days_of_supply < 1.0:
        return OrderPriority.URGENT
    if days_of_supply < 2.0:
        return OrderPriority.HIGH
    return OrderPriority.NORMAL


def alert_message(kind: AlertKind, days_of_supply: float) -> str:
    messages = {
        AlertKind.OUT_OF_STOCK: "CRITICAL: Stock depleted! Immediate action required.",
        AlertKind.CRITICAL_STOCK: f"CRITICAL: Only {days_of_supply:.1f} days of supply remaining!",
        AlertKind.LOW_STOCK: f"WARNING: Low stock - {days_of_supply:.1f} days remaining.",
        AlertKind.SUFFICIENT_STOCK: f"OK: Stock sufficient ({days_of_supply:.1f} days).",
    }
    return messages[kind]
