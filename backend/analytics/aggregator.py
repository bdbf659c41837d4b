"""
Weighted Metric Aggregator — farm-level KPIs for one scope and period.

KPIs (in presentation order):
  - efcr             : total feed / adjusted biomass gain (aggregate ratio, not a row mean)
  - mortality        : fish-weighted mean of per-row mortality rate (%)
  - abw              : mean average body weight over reporting rows (g)
  - biomass          : mean biomass over reporting rows (kg)
  - biomass_density  : mean biomass density over reporting rows (kg/m3)
  - feeding          : biomass-weighted mean of per-row feeding rate (kg/t)
  - water_quality    : mean ordinal rating, labelled via the rounded value

Weighted rates exclude rows whose weight is zero or missing from both the
numerator and the denominator. An empty scope or empty period yields every
KPI with value None; a failed read fails the whole set.
"""

from __future__ import annotations

import asyncio
import math
import uuid
from collections.abc import Iterable
from dataclasses import dataclass

import pandas as pd
import structlog

from analytics.cancellation import CancellationToken, check_cancelled
from analytics.errors import AggregationInputError, OperationCancelled, ReadFailure
from analytics.rates import (
    adjusted_biomass_gain,
    finite_or_none,
    production_mortality_rate,
    resolve_feeding_rate,
    resolve_mortality_rate,
    safe_divide,
)
from analytics.records import (
    KPI,
    DailyInventoryRecord,
    DateRange,
    GrowthStage,
    ProductionSummaryRecord,
    WaterQualityRatingRecord,
)
from analytics.repository import AnalyticsRepository

logger = structlog.get_logger()


@dataclass(frozen=True)
class KpiDefinition:
    key: str
    label: str
    unit: str | None
    decimals: int
    invert_trend: bool


KPI_DEFINITIONS: tuple[KpiDefinition, ...] = (
    KpiDefinition("efcr", "eFCR", None, 2, True),
    KpiDefinition("mortality", "Daily Mortality Rate", "%", 2, True),
    KpiDefinition("abw", "Avg Body Weight", "g", 1, False),
    KpiDefinition("biomass", "Avg Biomass", "kg", 1, False),
    KpiDefinition("biomass_density", "Biomass Density", "kg/m3", 2, False),
    KpiDefinition("feeding", "Feeding Rate", "kg/t", 2, False),
    KpiDefinition("water_quality", "Water Quality", None, 1, False),
)

# Ordinal water-quality rating → (label, tone, badge)
WATER_QUALITY_RATINGS: dict[int, tuple[str, str, str]] = {
    0: ("lethal", "bad", "Lethal"),
    1: ("critical", "bad", "Critical"),
    2: ("acceptable", "warn", "Acceptable"),
    3: ("optimal", "good", "Optimal"),
}
WATER_QUALITY_MIN = 0
WATER_QUALITY_MAX = 3


# ── Numeric helpers ─────────────────────────────────────────────────────────


def _num(value: float | int | None) -> float:
    number = finite_or_none(value)
    return float("nan") if number is None else number


def weighted_mean(frame: pd.DataFrame, value_col: str, weight_col: str) -> float | None:
    """Σ(value × weight) / Σ(weight) over rows with a value and weight > 0."""
    if frame.empty:
        return None
    usable = frame[frame[value_col].notna() & (frame[weight_col] > 0)]
    if usable.empty:
        return None
    total_weight = float(usable[weight_col].sum())
    if total_weight <= 0:
        return None
    return finite_or_none(float((usable[value_col] * usable[weight_col]).sum()) / total_weight)


def mean_of(values: Iterable[float | int | None]) -> float | None:
    """Arithmetic mean over values that are present; None when nothing reports."""
    series = pd.Series([v for v in map(finite_or_none, values) if v is not None], dtype="float64")
    if series.empty:
        return None
    return finite_or_none(float(series.mean()))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# ── Row → frame ─────────────────────────────────────────────────────────────


def inventory_rate_frame(records: Iterable[DailyInventoryRecord]) -> pd.DataFrame:
    """One row per inventory record with resolved rates and their weights."""
    rows = [
        {
            "system_id": record.system_id,
            "mortality_rate": _num(resolve_mortality_rate(record)),
            "fish": _num(record.number_of_fish),
            "feeding_rate": _num(resolve_feeding_rate(record)),
            "biomass": _num(record.biomass_last_sampling),
        }
        for record in records
    ]
    return pd.DataFrame(rows, columns=["system_id", "mortality_rate", "fish", "feeding_rate", "biomass"])


def production_mortality_frame(records: Iterable[ProductionSummaryRecord]) -> pd.DataFrame:
    rows = [
        {
            "mortality_rate": _num(production_mortality_rate(record)),
            "fish": _num(record.number_of_fish_inventory),
        }
        for record in records
    ]
    return pd.DataFrame(rows, columns=["mortality_rate", "fish"])


# ── KPI computations ────────────────────────────────────────────────────────


def farm_mortality_rate(
    inventory: list[DailyInventoryRecord],
    production: list[ProductionSummaryRecord] | None = None,
) -> float | None:
    """Fish-weighted mortality; production rows are the fallback source."""
    rate = weighted_mean(inventory_rate_frame(inventory), "mortality_rate", "fish")
    if rate is None and production:
        rate = weighted_mean(production_mortality_frame(production), "mortality_rate", "fish")
    return rate


def farm_feeding_rate(inventory: list[DailyInventoryRecord]) -> float | None:
    return weighted_mean(inventory_rate_frame(inventory), "feeding_rate", "biomass")


def economic_fcr(production: list[ProductionSummaryRecord]) -> float | None:
    """Total feed / Σ adjusted biomass gain; None when the gain is zero."""
    feed_total = sum(finite_or_none(record.total_feed_amount_period) or 0.0 for record in production)
    gain_total = sum(adjusted_biomass_gain(record) for record in production)
    return safe_divide(feed_total, gain_total)


@dataclass(frozen=True)
class WaterQualitySummary:
    average: float | None
    rounded: int | None
    label: str | None
    tone: str
    badge: str


def summarize_water_quality(ratings: list[WaterQualityRatingRecord]) -> WaterQualitySummary:
    average = mean_of(record.rating_numeric for record in ratings)
    if average is None:
        return WaterQualitySummary(None, None, None, "neutral", "Monitoring")

    rounded = round_half_up(average)
    if rounded < WATER_QUALITY_MIN or rounded > WATER_QUALITY_MAX:
        logger.warning(
            "water_quality.rating_out_of_range",
            average=average,
            rounded=rounded,
        )
        rounded = min(max(rounded, WATER_QUALITY_MIN), WATER_QUALITY_MAX)

    label, tone, badge = WATER_QUALITY_RATINGS[rounded]
    return WaterQualitySummary(average, rounded, label, tone, badge)


def empty_kpis() -> list[KPI]:
    """Every KPI present with value None (no scope, no data)."""
    kpis = []
    for definition in KPI_DEFINITIONS:
        extra = {"badge": "Monitoring"} if definition.key == "water_quality" else {}
        kpis.append(
            KPI(
                key=definition.key,
                label=definition.label,
                value=None,
                unit=definition.unit,
                decimals=definition.decimals,
                invert_trend=definition.invert_trend,
                **extra,
            )
        )
    return kpis


def _in_scope(records, scope: set[int]):
    return [record for record in records if record.system_id in scope]


def compute_kpis(
    inventory: list[DailyInventoryRecord],
    production: list[ProductionSummaryRecord],
    ratings: list[WaterQualityRatingRecord],
    scope: set[int],
) -> list[KPI]:
    """Pure aggregation over already-fetched rows, restricted to ``scope``."""
    if not scope:
        return empty_kpis()

    inventory = _in_scope(inventory, scope)
    production = _in_scope(production, scope)
    ratings = _in_scope(ratings, scope)

    water_quality = summarize_water_quality(ratings)
    values: dict[str, float | None] = {
        "efcr": economic_fcr(production),
        "mortality": farm_mortality_rate(inventory, production),
        "abw": mean_of(record.abw_last_sampling for record in inventory),
        "biomass": mean_of(record.biomass_last_sampling for record in inventory),
        "biomass_density": mean_of(record.biomass_density for record in inventory),
        "feeding": farm_feeding_rate(inventory),
        "water_quality": water_quality.average,
    }

    kpis = []
    for definition in KPI_DEFINITIONS:
        extra = {}
        if definition.key == "water_quality":
            extra = {"tone": water_quality.tone, "badge": water_quality.badge}
        kpis.append(
            KPI(
                key=definition.key,
                label=definition.label,
                value=values[definition.key],
                unit=definition.unit,
                decimals=definition.decimals,
                invert_trend=definition.invert_trend,
                **extra,
            )
        )
    return kpis


# ── Per-system breakdown ────────────────────────────────────────────────────


def aggregate_rates_by_system(
    inventory: list[DailyInventoryRecord],
) -> dict[int, dict[str, float | None]]:
    """Weighted feeding and mortality rate per system id."""
    frame = inventory_rate_frame(inventory)
    resolved: dict[int, dict[str, float | None]] = {}
    if frame.empty:
        return resolved
    for system_id, group in frame.groupby("system_id", sort=True):
        resolved[int(system_id)] = {
            "feeding_rate": weighted_mean(group, "feeding_rate", "biomass"),
            "mortality_rate": weighted_mean(group, "mortality_rate", "fish"),
        }
    return resolved


# ── Fetch + aggregate ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class PeriodInputs:
    """The three period-scoped row sets, already restricted to the scope."""

    inventory: list[DailyInventoryRecord]
    production: list[ProductionSummaryRecord]
    ratings: list[WaterQualityRatingRecord]

    @classmethod
    def empty(cls) -> PeriodInputs:
        return cls([], [], [])


async def fetch_period_inputs(
    repository: AnalyticsRepository,
    farm_id: uuid.UUID,
    scope: set[int],
    date_range: DateRange,
    *,
    unit_id: int | None = None,
    stage: GrowthStage | None = None,
    limit: int | None = None,
    signal: CancellationToken | None = None,
) -> PeriodInputs:
    """
    Fetch the three period-scoped inputs concurrently.

    Raises:
        AggregationInputError: any of the three reads failed or overflowed ``limit``
        OperationCancelled: the computation was aborted
    """
    check_cancelled(signal)
    if not scope:
        logger.info("aggregate.empty_scope", farm_id=str(farm_id), **date_range.to_dict())
        return PeriodInputs.empty()

    # Reads are narrowed to the scope; the row limit applies after narrowing.
    reads = {
        "daily_fish_inventory": repository.list_daily_inventory(
            farm_id, unit_id, date_range.start, date_range.end, unit_ids=scope, limit=limit, signal=signal
        ),
        "production_summary": repository.list_production_summary(
            farm_id, unit_id, stage, date_range.start, date_range.end, unit_ids=scope, limit=limit, signal=signal
        ),
        "daily_water_quality_rating": repository.list_water_quality_ratings(
            farm_id, unit_id, date_range.start, date_range.end, unit_ids=scope, limit=limit, signal=signal
        ),
    }
    outcomes = await asyncio.gather(*reads.values(), return_exceptions=True)
    results = dict(zip(reads.keys(), outcomes))

    for outcome in outcomes:
        if isinstance(outcome, OperationCancelled):
            raise outcome
    for source, outcome in results.items():
        if isinstance(outcome, ReadFailure):
            logger.error(
                "aggregate.input_failed",
                farm_id=str(farm_id),
                source=source,
                error=str(outcome),
                **date_range.to_dict(),
            )
            raise AggregationInputError(source, outcome) from outcome
        if isinstance(outcome, BaseException):
            raise outcome

    check_cancelled(signal)
    inputs = PeriodInputs(
        inventory=_in_scope(results["daily_fish_inventory"], scope),
        production=_in_scope(results["production_summary"], scope),
        ratings=_in_scope(results["daily_water_quality_rating"], scope),
    )
    logger.debug(
        "aggregate.fetched",
        farm_id=str(farm_id),
        scope_size=len(scope),
        inventory_rows=len(inputs.inventory),
        production_rows=len(inputs.production),
        rating_rows=len(inputs.ratings),
        **date_range.to_dict(),
    )
    return inputs


async def aggregate(
    repository: AnalyticsRepository,
    farm_id: uuid.UUID,
    scope: set[int],
    date_range: DateRange,
    *,
    unit_id: int | None = None,
    stage: GrowthStage | None = None,
    limit: int | None = None,
    signal: CancellationToken | None = None,
) -> list[KPI]:
    """Fetch the period inputs for ``scope`` and aggregate them into KPIs."""
    inputs = await fetch_period_inputs(
        repository,
        farm_id,
        scope,
        date_range,
        unit_id=unit_id,
        stage=stage,
        limit=limit,
        signal=signal,
    )
    return compute_kpis(inputs.inventory, inputs.production, inputs.ratings, scope)
