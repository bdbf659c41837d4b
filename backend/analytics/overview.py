"""
Analytics entry points — the engine boundary.

  compute_kpi_overview      : scope + period → current and prior KPIs → trend, per-system rates
  compute_predictive_alerts : water-quality parameter series → threshold projections
  compute_feeding_anomalies : daily feed series → z-score anomaly flags
  run_latest                : wraps any entry point with latest-request-wins

Every entry point returns a ``QueryResult``: typed failures, cancellation and
missing farm context are reported as result states, never raised.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Any

import structlog

from analytics.aggregator import aggregate, aggregate_rates_by_system, compute_kpis, fetch_period_inputs
from analytics.cancellation import CancellationToken, LatestRequestGate, check_cancelled, gather_all
from analytics.errors import (
    AggregationInputError,
    AnalyticsError,
    InvalidFilterError,
    OperationCancelled,
    ReadFailure,
    ScopeLookupError,
)
from analytics.forecast import (
    AnomalyPoint,
    PredictiveAlert,
    Projection,
    daily_feeding_series,
    daily_parameter_series,
    detect_anomalies,
    predictive_alerts,
    project,
    rolling_expectation,
    water_quality_rules,
)
from analytics.periods import prior_period, resolve_period_bounds
from analytics.records import KPI, AnalyticsFilters, DateRange, MetricPoint
from analytics.repository import AnalyticsRepository
from analytics.results import QueryResult
from analytics.scope import resolve_scope_for
from analytics.trend import with_trend
from core.config import Settings, get_settings

logger = structlog.get_logger()


# ── Result payloads ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class KpiOverview:
    metrics: list[KPI]
    date_bounds: DateRange
    prior_bounds: DateRange
    scope: list[int] = field(default_factory=list)
    by_system: dict[int, dict[str, float | None]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "metrics": [kpi.to_dict() for kpi in self.metrics],
            "date_bounds": self.date_bounds.to_dict(),
            "prior_bounds": self.prior_bounds.to_dict(),
            "scope": self.scope,
            "by_system": [{"system_id": system_id, **rates} for system_id, rates in self.by_system.items()],
        }


@dataclass(frozen=True)
class WaterQualityForecast:
    parameter: str
    date_bounds: DateRange
    series: list[MetricPoint]
    projection: Projection | None
    alerts: list[PredictiveAlert]

    def to_dict(self) -> dict[str, Any]:
        projection = None
        if self.projection is not None:
            projection = {
                "last_value": self.projection.last_value,
                "slope": self.projection.slope,
                "horizon": self.projection.horizon,
                "projected": self.projection.projected,
                "points": self.projection.points,
            }
        return {
            "parameter": self.parameter,
            "date_bounds": self.date_bounds.to_dict(),
            "series": [{"date": p.date.isoformat(), "value": p.value} for p in self.series],
            "projection": projection,
            "alerts": [
                {
                    "parameter": a.parameter,
                    "direction": a.direction.value,
                    "limit": a.limit,
                    "projected": a.projected,
                    "message": a.message,
                }
                for a in self.alerts
            ],
        }


@dataclass(frozen=True)
class FeedingAnomalyReport:
    date_bounds: DateRange
    points: list[AnomalyPoint]

    @property
    def anomalies(self) -> list[AnomalyPoint]:
        return [point for point in self.points if point.anomaly]

    def to_dict(self) -> dict[str, Any]:
        def point_dict(point: AnomalyPoint) -> dict[str, Any]:
            return {
                "date": point.date.isoformat(),
                "feeding": point.actual,
                "expected": point.expected,
                "deviation": point.deviation,
                "z_score": point.z_score,
                "anomaly": point.anomaly,
            }

        return {
            "date_bounds": self.date_bounds.to_dict(),
            "points": [point_dict(p) for p in self.points],
            "anomalies": [point_dict(p) for p in self.anomalies],
        }


# ── Shared steps ────────────────────────────────────────────────────────────


async def _scope_and_bounds(
    repository: AnalyticsRepository,
    filters: AnalyticsFilters,
    settings: Settings,
    signal: CancellationToken | None,
) -> tuple[set[int], DateRange]:
    scope, bounds = await gather_all(
        resolve_scope_for(repository, filters, signal=signal),
        resolve_period_bounds(
            repository,
            filters.period,
            filters.farm_id,
            as_of=filters.as_of,
            default=settings.default_time_period,
            signal=signal,
        ),
    )
    return scope, bounds


def _failed(operation: str, filters: AnalyticsFilters, exc: AnalyticsError) -> QueryResult:
    logger.error(
        f"{operation}.failed",
        farm_id=str(filters.farm_id),
        error_kind=exc.kind,
        error=str(exc),
    )
    return QueryResult.failure(exc, filters=filters.cache_key())


def _cancelled(operation: str, filters: AnalyticsFilters, exc: OperationCancelled) -> QueryResult:
    logger.info(f"{operation}.cancelled", farm_id=str(filters.farm_id), reason=str(exc))
    return QueryResult.cancelled(filters=filters.cache_key())


# ── KPI overview ────────────────────────────────────────────────────────────


async def compute_kpi_overview(
    repository: AnalyticsRepository,
    filters: AnalyticsFilters,
    *,
    settings: Settings | None = None,
    signal: CancellationToken | None = None,
) -> QueryResult[KpiOverview]:
    """KPIs for the current period with trends against the prior period."""
    settings = settings or get_settings()
    if not filters.farm_id:
        return QueryResult.indeterminate(reason="missing farm context")

    try:
        scope, bounds = await _scope_and_bounds(repository, filters, settings, signal)
        prior = prior_period(bounds)

        aggregate_args = {
            "unit_id": filters.system_id,
            "stage": filters.stage_filter,
            "limit": settings.fetch_row_limit,
            "signal": signal,
        }
        # Join point: trends need both periods.
        current, prior_kpis = await gather_all(
            fetch_period_inputs(repository, filters.farm_id, scope, bounds, **aggregate_args),
            aggregate(repository, filters.farm_id, scope, prior, **aggregate_args),
        )
        check_cancelled(signal)
    except OperationCancelled as exc:
        return _cancelled("kpi_overview", filters, exc)
    except (InvalidFilterError, ScopeLookupError, AggregationInputError) as exc:
        return _failed("kpi_overview", filters, exc)

    current_kpis = compute_kpis(current.inventory, current.production, current.ratings, scope)
    overview = KpiOverview(
        metrics=with_trend(current_kpis, prior_kpis),
        date_bounds=bounds,
        prior_bounds=prior,
        scope=sorted(scope),
        by_system=aggregate_rates_by_system(current.inventory),
    )
    logger.info(
        "kpi_overview.computed",
        farm_id=str(filters.farm_id),
        scope_size=len(scope),
        **bounds.to_dict(),
    )
    return QueryResult.success(overview)


# ── Predictive water-quality alerts ─────────────────────────────────────────


async def compute_predictive_alerts(
    repository: AnalyticsRepository,
    filters: AnalyticsFilters,
    parameter: str,
    *,
    settings: Settings | None = None,
    signal: CancellationToken | None = None,
) -> QueryResult[WaterQualityForecast]:
    """Project a water-quality parameter forward and test it against farm thresholds."""
    settings = settings or get_settings()
    if not filters.farm_id:
        return QueryResult.indeterminate(reason="missing farm context")

    try:
        scope, bounds = await _scope_and_bounds(repository, filters, settings, signal)
        try:
            thresholds = await repository.get_alert_thresholds(filters.farm_id, signal=signal)
        except ReadFailure as exc:
            logger.warning("predictive_alerts.thresholds_unavailable", farm_id=str(filters.farm_id), error=str(exc))
            thresholds = None

        measurements = []
        if scope:
            try:
                measurements = await repository.list_water_quality_measurements(
                    filters.farm_id,
                    parameter,
                    filters.system_id,
                    bounds.start,
                    bounds.end,
                    unit_ids=scope,
                    limit=settings.fetch_row_limit,
                    signal=signal,
                )
            except ReadFailure as exc:
                raise AggregationInputError("water_quality_measurements", exc) from exc
        check_cancelled(signal)
    except OperationCancelled as exc:
        return _cancelled("predictive_alerts", filters, exc)
    except (InvalidFilterError, ScopeLookupError, AggregationInputError) as exc:
        return _failed("predictive_alerts", filters, exc)

    rules = water_quality_rules(
        low_do=_threshold(thresholds, "low_do_threshold", settings.low_do_threshold),
        high_ammonia=_threshold(thresholds, "high_ammonia_threshold", settings.high_ammonia_threshold),
        high_temperature=_threshold(thresholds, "high_temperature_threshold", settings.high_temperature_threshold),
    )
    series = daily_parameter_series(measurements, scope)
    values = [point.value for point in series]
    rule = rules.get(parameter)
    alerts = []
    if rule is not None:
        alerts = predictive_alerts(
            values,
            [rule],
            settings.forecast_horizon_days,
            min_points=settings.min_forecast_points,
            window=settings.forecast_window,
        )
    projection = project(
        values,
        settings.forecast_horizon_days,
        min_points=settings.min_forecast_points,
        window=settings.forecast_window,
    )
    return QueryResult.success(
        WaterQualityForecast(
            parameter=parameter,
            date_bounds=bounds,
            series=series,
            projection=projection,
            alerts=alerts,
        )
    )


def _threshold(thresholds, attribute: str, default: float) -> float:
    stored = getattr(thresholds, attribute, None) if thresholds is not None else None
    return default if stored is None else stored


# ── Feeding anomalies ───────────────────────────────────────────────────────


async def compute_feeding_anomalies(
    repository: AnalyticsRepository,
    filters: AnalyticsFilters,
    *,
    expected: Mapping[date, float] | None = None,
    settings: Settings | None = None,
    signal: CancellationToken | None = None,
) -> QueryResult[FeedingAnomalyReport]:
    """Flag days whose total feed deviates from expectation by more than the z threshold.

    ``expected`` comes from an external forecast when available; days it does
    not cover use the trailing rolling mean of the series.
    """
    settings = settings or get_settings()
    if not filters.farm_id:
        return QueryResult.indeterminate(reason="missing farm context")

    try:
        scope, bounds = await _scope_and_bounds(repository, filters, settings, signal)
        inventory = []
        if scope:
            try:
                inventory = await repository.list_daily_inventory(
                    filters.farm_id,
                    filters.system_id,
                    bounds.start,
                    bounds.end,
                    unit_ids=scope,
                    limit=settings.fetch_row_limit,
                    signal=signal,
                )
            except ReadFailure as exc:
                raise AggregationInputError("daily_fish_inventory", exc) from exc
        check_cancelled(signal)
    except OperationCancelled as exc:
        return _cancelled("feeding_anomalies", filters, exc)
    except (InvalidFilterError, ScopeLookupError, AggregationInputError) as exc:
        return _failed("feeding_anomalies", filters, exc)

    series = daily_feeding_series(inventory, scope)
    rolling = rolling_expectation([point.value for point in series], settings.anomaly_rolling_window)
    baseline = [
        expected[point.date] if expected is not None and point.date in expected else fallback
        for point, fallback in zip(series, rolling)
    ]
    points = detect_anomalies(series, baseline, settings.anomaly_z_threshold)
    report = FeedingAnomalyReport(date_bounds=bounds, points=points)
    if report.anomalies:
        logger.info(
            "feeding_anomalies.detected",
            farm_id=str(filters.farm_id),
            count=len(report.anomalies),
        )
    return QueryResult.success(report)


# ── Latest-request-wins wrapper ─────────────────────────────────────────────


async def run_latest(
    gate: LatestRequestGate,
    key: str,
    compute: Callable[[CancellationToken], Awaitable[QueryResult]],
) -> QueryResult:
    """Run ``compute`` under ``gate``; a superseded run reports CANCELLED."""
    try:
        return await gate.run(key, compute)
    except OperationCancelled:
        logger.info("request.discarded", key=key)
        return QueryResult.cancelled(key=key)
