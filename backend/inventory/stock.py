"""
Stock state: current count, consumption rate and days of supply.

Days of supply = count / daily consumption, rounded half-up to two
decimals. A zero consumption rate is an invalid state, not "infinite"
supply.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

import structlog

from core.errors import InvalidStateError

logger = structlog.get_logger()

DEFAULT_REORDER_THRESHOLD = 2.0


def compute_days_of_supply(count_units: float, consumption_rate: float) -> float:
    """Days of supply rounded to 2 decimals."""
    if consumption_rate is None or math.isnan(consumption_rate) or consumption_rate <= 0:
        raise InvalidStateError(f"Consumption rate must be positive, got {consumption_rate!r}")
    if count_units is None or count_units < 0:
        raise InvalidStateError(f"Current stock cannot be negative, got {count_units!r}")

    days = Decimal(str(count_units / consumption_rate))
    return float(days.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def is_threshold_breached(days_of_supply: float, threshold: float = DEFAULT_REORDER_THRESHOLD) -> bool:
    """True when projected supply has fallen below the reorder threshold."""
    return days_of_supply < threshold


def stock_status(count_units: int, consumption_rate: float) -> str:
    days = compute_days_of_supply(count_units, consumption_rate)
    if days == 0:
        return "OUT_OF_STOCK"
    elif days < 0.5:
        return "CRITICAL"
    elif days < 1.0:
        return "URGENT"
    elif days < 2.0:
        return "LOW"
    return "SUFFICIENT"


def recommended_order_quantity(count_units: int, max_stock_level: int) -> int:
    """Shortfall to the max stock level, rounded up to the nearest 10."""
    shortfall = max(0, max_stock_level - count_units)
    return math.ceil(shortfall / 10) * 10


@dataclass(frozen=True)
class StockState:
    count_units: int
    consumption_rate: float
    reorder_threshold: float = DEFAULT_REORDER_THRESHOLD

    @property
    def days_of_supply(self) -> float:
        return compute_days_of_supply(self.count_units, self.consumption_rate)

    @property
    def threshold_breached(self) -> bool:
        return is_threshold_breached(self.days_of_supply, self.reorder_threshold)

    @classmethod
    def from_row(cls, row) -> "StockState":
        return cls(
            count_units=row.current_stock_units,
            consumption_rate=row.daily_consumption_units,
            reorder_threshold=row.reorder_threshold,
        )


async def update_stock_level(
    store,
    count_units: int,
    consumption_rate: float,
    *,
    reorder_threshold: float = DEFAULT_REORDER_THRESHOLD,
    max_stock_level: int | None = None,
) -> dict:
    """Recompute days of supply and persist the new stock figures."""
    state = StockState(count_units, consumption_rate, reorder_threshold)
    days = state.days_of_supply

    await store.upsert_stock(
        current_stock_units=count_units,
        daily_consumption_units=consumption_rate,
        days_of_supply=days,
        reorder_threshold=reorder_threshold,
        max_stock_level=max_stock_level,
    )
    logger.info(
        "stock.updated",
        count_units=count_units,
        consumption_rate=consumption_rate,
        days_of_supply=days,
    )
    return {
        "count_units": count_units,
        "consumption_rate": consumption_rate,
        "days_of_supply": days,
        "threshold_breached": state.threshold_breached,
    }
