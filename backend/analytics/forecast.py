"""
Forecast / Anomaly Analyzer — short-horizon projection and z-score outliers.

Projection:
  slope = Σ((i - x̄)(yᵢ - ȳ)) / Σ((i - x̄)²) over index i = 0..N-1
  projected = last value + slope × horizon (default 3 steps)
  A threshold rule fires when the projection crosses its limit in the rule's
  unsafe direction. Series shorter than ``min_points`` never produce alerts.

Anomalies:
  deviation = actual - expected (expected comes from an external forecast or
  a trailing rolling mean); z = deviation / σ(deviations), flagged when
  |z| > threshold (2σ by default). Flags only, the series is never altered.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum

import numpy as np
import pandas as pd

from analytics.rates import finite_or_none
from analytics.records import DailyInventoryRecord, MetricPoint, WaterQualityMeasurementRecord

DEFAULT_HORIZON = 3
DEFAULT_MIN_POINTS = 4
DEFAULT_WINDOW = 7
DEFAULT_Z_THRESHOLD = 2.0


# ── Slope & projection ──────────────────────────────────────────────────────


def slope(values: Sequence[float]) -> float:
    """Least-squares slope of values against their index; 0 when degenerate."""
    n = len(values)
    if n < 2:
        return 0.0
    y = np.asarray(values, dtype="float64")
    x = np.arange(n, dtype="float64")
    x_dev = x - x.mean()
    denominator = float((x_dev**2).sum())
    if denominator == 0:
        return 0.0
    result = float((x_dev * (y - y.mean())).sum() / denominator)
    return result if np.isfinite(result) else 0.0


@dataclass(frozen=True)
class Projection:
    last_value: float
    slope: float
    horizon: int
    projected: float
    points: int


def project(
    values: Sequence[float],
    horizon: int = DEFAULT_HORIZON,
    *,
    min_points: int = DEFAULT_MIN_POINTS,
    window: int | None = DEFAULT_WINDOW,
) -> Projection | None:
    """Linear extrapolation of the last ``window`` values, or None if too short."""
    clean = [v for v in map(finite_or_none, values) if v is not None]
    if window:
        clean = clean[-window:]
    if len(clean) < min_points:
        return None
    trend_slope = slope(clean)
    return Projection(
        last_value=clean[-1],
        slope=trend_slope,
        horizon=horizon,
        projected=clean[-1] + trend_slope * horizon,
        points=len(clean),
    )


# ── Threshold rules ─────────────────────────────────────────────────────────


class BreachDirection(str, Enum):
    BELOW = "below"  # unsafe when the value falls under the limit
    ABOVE = "above"  # unsafe when the value rises over the limit


@dataclass(frozen=True)
class ThresholdRule:
    parameter: str
    limit: float
    direction: BreachDirection
    label: str = ""
    unit: str = ""
    advice: str = ""

    def is_breached(self, value: float) -> bool:
        if self.direction == BreachDirection.BELOW:
            return value < self.limit
        return value > self.limit


@dataclass(frozen=True)
class PredictiveAlert:
    parameter: str
    direction: BreachDirection
    limit: float
    projected: float
    last_value: float
    slope: float
    horizon: int
    message: str


def evaluate_rule(
    values: Sequence[float],
    rule: ThresholdRule,
    horizon: int = DEFAULT_HORIZON,
    *,
    min_points: int = DEFAULT_MIN_POINTS,
    window: int | None = DEFAULT_WINDOW,
) -> PredictiveAlert | None:
    projection = project(values, horizon, min_points=min_points, window=window)
    if projection is None or not rule.is_breached(projection.projected):
        return None

    name = rule.label or rule.parameter
    unit = f" {rule.unit}" if rule.unit else ""
    message = (
        f"{name} may breach in {horizon} days: projected {projection.projected:.2f}{unit} "
        f"vs threshold {rule.limit:.2f}{unit}."
    )
    if rule.advice:
        message = f"{message} {rule.advice}"
    return PredictiveAlert(
        parameter=rule.parameter,
        direction=rule.direction,
        limit=rule.limit,
        projected=projection.projected,
        last_value=projection.last_value,
        slope=projection.slope,
        horizon=horizon,
        message=message,
    )


def predictive_alerts(
    values: Sequence[float],
    rules: Iterable[ThresholdRule],
    horizon: int = DEFAULT_HORIZON,
    *,
    min_points: int = DEFAULT_MIN_POINTS,
    window: int | None = DEFAULT_WINDOW,
) -> list[PredictiveAlert]:
    alerts = []
    for rule in rules:
        alert = evaluate_rule(values, rule, horizon, min_points=min_points, window=window)
        if alert is not None:
            alerts.append(alert)
    return alerts


def water_quality_rules(
    low_do: float | None,
    high_ammonia: float | None,
    high_temperature: float | None,
) -> dict[str, ThresholdRule]:
    """Standard rules keyed by parameter; a None limit disables that rule."""
    rules: dict[str, ThresholdRule] = {}
    if low_do is not None:
        rules["dissolved_oxygen"] = ThresholdRule(
            "dissolved_oxygen",
            low_do,
            BreachDirection.BELOW,
            label="DO",
            unit="mg/L",
            advice="Increase aeration and reduce stress.",
        )
    if high_ammonia is not None:
        rules["ammonia_ammonium"] = ThresholdRule(
            "ammonia_ammonium",
            high_ammonia,
            BreachDirection.ABOVE,
            label="Ammonia",
            unit="mg/L",
            advice="Lower feed and increase water exchange.",
        )
    if high_temperature is not None:
        rules["temperature"] = ThresholdRule(
            "temperature",
            high_temperature,
            BreachDirection.ABOVE,
            label="Temperature",
            unit="deg C",
            advice="Review shading and circulation.",
        )
    return rules


# ── Anomaly detection ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class AnomalyPoint:
    date: object
    actual: float
    expected: float
    deviation: float
    z_score: float
    anomaly: bool


def rolling_expectation(values: Sequence[float], window: int = DEFAULT_WINDOW) -> list[float]:
    """Trailing mean over up to ``window`` points ending at each position."""
    if not values:
        return []
    series = pd.Series(values, dtype="float64")
    return [float(v) for v in series.rolling(window=window, min_periods=1).mean()]


def detect_anomalies(
    actual: Sequence[MetricPoint],
    expected: Sequence[float],
    threshold: float = DEFAULT_Z_THRESHOLD,
) -> list[AnomalyPoint]:
    """Flag points whose deviation from expectation exceeds ``threshold`` σ.

    σ is the population standard deviation of the deviation series. With
    fewer than two points or σ = 0 nothing is flagged.
    """
    if len(actual) != len(expected):
        raise ValueError(f"actual ({len(actual)}) and expected ({len(expected)}) lengths differ")
    if not actual:
        return []

    deviations = np.asarray(
        [point.value - float(base) for point, base in zip(actual, expected)],
        dtype="float64",
    )
    sigma = float(deviations.std()) if len(deviations) > 1 else 0.0
    usable = sigma > 0 and np.isfinite(sigma)

    points = []
    for point, base, deviation in zip(actual, expected, deviations):
        z_score = float(deviation / sigma) if usable else 0.0
        points.append(
            AnomalyPoint(
                date=point.date,
                actual=float(point.value),
                expected=float(base),
                deviation=float(deviation),
                z_score=z_score,
                anomaly=usable and abs(z_score) > threshold,
            )
        )
    return points


# ── Series builders ─────────────────────────────────────────────────────────


def daily_feeding_series(
    inventory: Iterable[DailyInventoryRecord],
    scope: set[int] | None = None,
) -> list[MetricPoint]:
    """Total feed per day over in-scope systems, ordered by date."""
    rows = [
        {"date": record.inventory_date, "value": finite_or_none(record.feeding_amount) or 0.0}
        for record in inventory
        if scope is None or record.system_id in scope
    ]
    if not rows:
        return []
    totals = pd.DataFrame(rows).groupby("date", sort=True)["value"].sum()
    return [MetricPoint(date=day, value=float(value)) for day, value in totals.items()]


def daily_parameter_series(
    measurements: Iterable[WaterQualityMeasurementRecord],
    scope: set[int] | None = None,
) -> list[MetricPoint]:
    """Mean reading per day over in-scope systems, ordered by date."""
    rows = []
    for record in measurements:
        if scope is not None and record.system_id not in scope:
            continue
        value = finite_or_none(record.parameter_value)
        if value is not None:
            rows.append({"date": record.date, "value": value})
    if not rows:
        return []
    means = pd.DataFrame(rows).groupby("date", sort=True)["value"].mean()
    return [MetricPoint(date=day, value=float(value)) for day, value in means.items()]
