"""
Analytics Router — KPI overview, predictive water-quality alerts, feeding anomalies.

Endpoints:
  GET /api/v1/analytics/kpi-overview — KPIs with trend vs prior period
  GET /api/v1/analytics/water-quality/predictive-alerts — 3-day threshold projections
  GET /api/v1/analytics/feeding/anomalies — z-score flagged feeding days

Status mapping:
  success → 200, indeterminate (no farm) → 200, cancelled (superseded) → 409,
  error (failed read) → 502.
"""

from datetime import date
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from analytics.cancellation import LatestRequestGate
from analytics.overview import (
    compute_feeding_anomalies,
    compute_kpi_overview,
    compute_predictive_alerts,
    run_latest,
)
from analytics.records import ALL, AnalyticsFilters
from analytics.repository import AnalyticsRepository
from analytics.results import QueryResult, QueryStatus
from api.deps import get_repository, get_request_gate

router = APIRouter(prefix="/api/v1/analytics", tags=["analytics"])

STATUS_CODES = {
    QueryStatus.SUCCESS: 200,
    QueryStatus.INDETERMINATE: 200,
    QueryStatus.CANCELLED: 409,
    QueryStatus.ERROR: 502,
}


def get_filters(
    farm_id: UUID | None = None,
    stage: str = Query(ALL, pattern="^(all|nursing|grow_out)$"),
    system: str = ALL,
    batch: str = ALL,
    period: str | None = None,
    as_of: date | None = None,
) -> AnalyticsFilters:
    return AnalyticsFilters(
        farm_id=farm_id,
        stage=stage,
        system=system,
        batch=batch,
        period=period,
        as_of=as_of,
    )


def _respond(result: QueryResult) -> JSONResponse:
    content: dict[str, Any] = result.to_dict(lambda data: data.to_dict())
    return JSONResponse(status_code=STATUS_CODES[result.status], content=content)


async def _run(gate: LatestRequestGate, request_key: str | None, compute) -> QueryResult:
    if not request_key:
        return await compute(None)
    return await run_latest(gate, request_key, compute)


# ── Endpoints ───────────────────────────────────────────────────────────────


@router.get("/kpi-overview")
async def kpi_overview(
    request_key: str | None = None,
    filters: AnalyticsFilters = Depends(get_filters),
    repository: AnalyticsRepository = Depends(get_repository),
    gate: LatestRequestGate = Depends(get_request_gate),
) -> JSONResponse:
    """
    Farm KPIs for the selected scope and period.

    ``request_key`` identifies the requesting widget: a newer request with the
    same key supersedes an older one still in flight.
    """
    result = await _run(
        gate,
        request_key,
        lambda token: compute_kpi_overview(repository, filters, signal=token),
    )
    return _respond(result)


@router.get("/water-quality/predictive-alerts")
async def water_quality_predictive_alerts(
    parameter: str = Query("dissolved_oxygen", pattern="^(dissolved_oxygen|ammonia_ammonium|temperature|pH)$"),
    request_key: str | None = None,
    filters: AnalyticsFilters = Depends(get_filters),
    repository: AnalyticsRepository = Depends(get_repository),
    gate: LatestRequestGate = Depends(get_request_gate),
) -> JSONResponse:
    result = await _run(
        gate,
        request_key,
        lambda token: compute_predictive_alerts(repository, filters, parameter, signal=token),
    )
    return _respond(result)


@router.get("/feeding/anomalies")
async def feeding_anomalies(
    request_key: str | None = None,
    filters: AnalyticsFilters = Depends(get_filters),
    repository: AnalyticsRepository = Depends(get_repository),
    gate: LatestRequestGate = Depends(get_request_gate),
) -> JSONResponse:
    result = await _run(
        gate,
        request_key,
        lambda token: compute_feeding_anomalies(repository, filters, signal=token),
    )
    return _respond(result)
