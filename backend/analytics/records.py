"""
Read-only projections consumed by the analytics engine.

Repositories map store rows into these frozen dataclasses; the engine never
mutates them. Optional numeric fields are ``None`` when the store has no
value: ``None`` and ``0`` mean different things everywhere downstream.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Any

from analytics.errors import InvalidFilterError

ALL = "all"


class GrowthStage(str, Enum):
    NURSING = "nursing"
    GROW_OUT = "grow_out"


# ── Store projections ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class Unit:
    """A production system (cage / pond / tank)."""

    id: int
    name: str
    growth_stage: GrowthStage
    farm_id: uuid.UUID
    is_active: bool = True


@dataclass(frozen=True)
class DailyInventoryRecord:
    system_id: int
    inventory_date: date
    number_of_fish: int | None = None
    number_of_fish_mortality: int | None = None
    mortality_rate: float | None = None  # percent
    feeding_amount: float | None = None  # kg
    feeding_rate: float | None = None  # kg per tonne biomass
    biomass_last_sampling: float | None = None  # kg
    biomass_density: float | None = None  # kg/m3
    abw_last_sampling: float | None = None  # g


@dataclass(frozen=True)
class ProductionSummaryRecord:
    system_id: int
    date: date
    efcr_period: float | None = None
    total_feed_amount_period: float | None = None
    biomass_increase_period: float | None = None
    total_biomass: float | None = None
    number_of_fish_inventory: int | None = None
    daily_mortality_count: int | None = None
    total_weight_transfer_out: float | None = None
    total_weight_transfer_in: float | None = None
    total_weight_harvested: float | None = None
    total_weight_stocked: float | None = None


@dataclass(frozen=True)
class WaterQualityRatingRecord:
    system_id: int
    rating_date: date
    rating_numeric: float | None = None


@dataclass(frozen=True)
class WaterQualityMeasurementRecord:
    system_id: int
    date: date
    parameter_name: str
    parameter_value: float | None = None


@dataclass(frozen=True)
class AlertThresholdRecord:
    farm_id: uuid.UUID
    low_do_threshold: float | None = None
    high_ammonia_threshold: float | None = None
    high_temperature_threshold: float | None = None


# ── Derived values ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DateRange:
    """Inclusive ``[start, end]`` calendar range."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(f"DateRange start {self.start} is after end {self.end}")

    @property
    def span_days(self) -> int:
        """``end - start`` in days (a single-day range has span 0)."""
        return (self.end - self.start).days

    @property
    def length_days(self) -> int:
        return self.span_days + 1

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def shift(self, days: int) -> "DateRange":
        return DateRange(self.start + timedelta(days=days), self.end + timedelta(days=days))

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass(frozen=True)
class MetricPoint:
    date: date
    value: float


@dataclass(frozen=True)
class KPI:
    """One headline metric. ``value`` and ``trend`` are None when undefined."""

    key: str
    label: str
    value: float | None
    unit: str | None = None
    decimals: int = 2
    trend: float | None = None
    invert_trend: bool = False
    tone: str = "neutral"
    badge: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ── Filter parameter object ─────────────────────────────────────────────────


def _parse_id(value: str | int | None) -> int | None:
    if value is None or value == ALL or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class AnalyticsFilters:
    """Explicit filter selection threaded into every engine call.

    ``stage``, ``system`` and ``batch`` take ``"all"`` or a concrete value.
    ``period`` is a named period (``"2 weeks"``) or ``custom_<start>_<end>``.
    """

    farm_id: uuid.UUID | None
    stage: str = ALL
    system: str = ALL
    batch: str = ALL
    period: str | None = None
    as_of: date | None = field(default=None, compare=False)

    @property
    def stage_filter(self) -> GrowthStage | None:
        if not self.stage or self.stage == ALL:
            return None
        try:
            return GrowthStage(self.stage)
        except ValueError as exc:
            raise InvalidFilterError("stage", self.stage) from exc

    @property
    def system_id(self) -> int | None:
        return _parse_id(self.system)

    @property
    def batch_id(self) -> int | None:
        return _parse_id(self.batch)

    def cache_key(self) -> str:
        return ":".join(
            [
                str(self.farm_id or ALL),
                self.stage or ALL,
                self.system or ALL,
                self.batch or ALL,
                self.period or "",
            ]
        )
