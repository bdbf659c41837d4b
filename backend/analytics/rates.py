"""
Per-row rate derivation with ordered fallbacks.

Each rate is resolved by trying candidates in order and taking the first
finite value:
  mortality rate (%)   : precomputed mortality_rate → mortality / fish × 100
  feeding rate (kg/t)  : precomputed feeding_rate   → feed × 1000 / biomass

These functions know nothing about weighting; the aggregator decides which
rows contribute and with what weight.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable

from analytics.records import DailyInventoryRecord, ProductionSummaryRecord


def finite_or_none(value: float | int | None) -> float | None:
    """Drop None / NaN / ±inf so they never propagate downstream."""
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def first_defined(candidates: Iterable[Callable[[], float | None]]) -> float | None:
    """Evaluate candidates lazily, returning the first finite result."""
    for candidate in candidates:
        value = finite_or_none(candidate())
        if value is not None:
            return value
    return None


def safe_divide(numerator: float, denominator: float) -> float | None:
    if denominator == 0:
        return None
    return finite_or_none(numerator / denominator)


# ── Mortality ───────────────────────────────────────────────────────────────


def derived_mortality_rate(record: DailyInventoryRecord) -> float | None:
    fish = finite_or_none(record.number_of_fish)
    if fish is None or fish <= 0:
        return None
    # A day without a mortality entry counts as zero deaths.
    mortality = finite_or_none(record.number_of_fish_mortality) or 0.0
    return safe_divide(mortality * 100.0, fish)


def resolve_mortality_rate(record: DailyInventoryRecord) -> float | None:
    return first_defined(
        [
            lambda: record.mortality_rate,
            lambda: derived_mortality_rate(record),
        ]
    )


def production_mortality_rate(record: ProductionSummaryRecord) -> float | None:
    fish = finite_or_none(record.number_of_fish_inventory)
    if fish is None or fish <= 0:
        return None
    mortality = finite_or_none(record.daily_mortality_count) or 0.0
    return safe_divide(mortality * 100.0, fish)


# ── Feeding ─────────────────────────────────────────────────────────────────


def derived_feeding_rate(record: DailyInventoryRecord) -> float | None:
    biomass = finite_or_none(record.biomass_last_sampling)
    if biomass is None or biomass <= 0:
        return None
    feed = finite_or_none(record.feeding_amount) or 0.0
    return safe_divide(feed * 1000.0, biomass)


def resolve_feeding_rate(record: DailyInventoryRecord) -> float | None:
    return first_defined(
        [
            lambda: record.feeding_rate,
            lambda: derived_feeding_rate(record),
        ]
    )


# ── Biomass gain (eFCR denominator) ─────────────────────────────────────────


def adjusted_biomass_gain(record: ProductionSummaryRecord) -> float:
    """biomass_increase - transfer_out + transfer_in + harvested - stocked.

    Missing components count as zero.
    """
    increase = finite_or_none(record.biomass_increase_period) or 0.0
    transfer_out = finite_or_none(record.total_weight_transfer_out) or 0.0
    transfer_in = finite_or_none(record.total_weight_transfer_in) or 0.0
    harvested = finite_or_none(record.total_weight_harvested) or 0.0
    stocked = finite_or_none(record.total_weight_stocked) or 0.0
    return increase - transfer_out + transfer_in + harvested - stocked
