"""
Alert Engine — predictive and anomaly alerts for farm operations.

Alert Types:
  - water_quality_predicted: a parameter's 3-day projection crosses its threshold
  - feeding_anomaly: daily feed deviates > 2σ from expectation

The engine shapes alerts and hands them to the notification sink (Redis
pub/sub, channel ``alerts:{farm_id}``). Delivery to browsers is the sink
subscriber's job.
"""

import json
import uuid
from datetime import datetime
from typing import Any

import redis.asyncio as aioredis
import structlog

from analytics.forecast import AnomalyPoint, PredictiveAlert
from analytics.overview import compute_feeding_anomalies, compute_predictive_alerts
from analytics.records import AnalyticsFilters
from analytics.repository import AnalyticsRepository
from core.config import Settings, get_settings

logger = structlog.get_logger()

WATCHED_PARAMETERS = ("dissolved_oxygen", "ammonia_ammonium", "temperature")

# ──────────────────────────────────────────────────────────────────────────
# Severity Rules
# ──────────────────────────────────────────────────────────────────────────

SEVERITY_THRESHOLDS = {
    # |projected - limit| / |limit|
    "breach_margin": {
        "critical": 0.5,
        "high": 0.25,
        "medium": 0.1,
    },
    "anomaly_z_score": {
        "critical": 4.0,
        "high": 3.0,
        "medium": 2.5,
        "low": 2.0,
    },
}


def classify_breach_severity(projected: float, limit: float) -> str:
    """Classify predictive alert severity by how far past the limit the projection lands."""
    thresholds = SEVERITY_THRESHOLDS["breach_margin"]
    if limit == 0:
        return "critical"
    margin = abs(projected - limit) / abs(limit)
    if margin >= thresholds["critical"]:
        return "critical"
    elif margin >= thresholds["high"]:
        return "high"
    elif margin >= thresholds["medium"]:
        return "medium"
    return "low"


def classify_anomaly_severity(z_score: float) -> str:
    """Classify anomaly severity based on z-score."""
    thresholds = SEVERITY_THRESHOLDS["anomaly_z_score"]
    z = abs(z_score)
    if z >= thresholds["critical"]:
        return "critical"
    elif z >= thresholds["high"]:
        return "high"
    elif z >= thresholds["medium"]:
        return "medium"
    return "low"


# ──────────────────────────────────────────────────────────────────────────
# Alert Shaping
# ──────────────────────────────────────────────────────────────────────────


def build_predictive_alerts(
    farm_id: uuid.UUID,
    alerts: list[PredictiveAlert],
    system_id: int | None = None,
) -> list[dict[str, Any]]:
    return [
        {
            "alert_id": str(uuid.uuid4()),
            "farm_id": str(farm_id),
            "system_id": system_id,
            "alert_type": "water_quality_predicted",
            "severity": classify_breach_severity(alert.projected, alert.limit),
            "message": alert.message,
            "metadata": {
                "parameter": alert.parameter,
                "direction": alert.direction.value,
                "limit": alert.limit,
                "projected": round(alert.projected, 3),
                "last_value": round(alert.last_value, 3),
                "slope_per_day": round(alert.slope, 4),
                "horizon_days": alert.horizon,
            },
            "created_at": datetime.utcnow().isoformat(),
        }
        for alert in alerts
    ]


def build_anomaly_alerts(
    farm_id: uuid.UUID,
    points: list[AnomalyPoint],
    system_id: int | None = None,
) -> list[dict[str, Any]]:
    alerts = []
    for point in points:
        if not point.anomaly:
            continue
        direction = "above" if point.deviation > 0 else "below"
        alerts.append(
            {
                "alert_id": str(uuid.uuid4()),
                "farm_id": str(farm_id),
                "system_id": system_id,
                "alert_type": "feeding_anomaly",
                "severity": classify_anomaly_severity(point.z_score),
                "message": (
                    f"Feeding on {point.date.isoformat()} was {point.actual:.1f} kg, "
                    f"{abs(point.deviation):.1f} kg {direction} the expected {point.expected:.1f} kg "
                    f"(z={point.z_score:.2f})."
                ),
                "metadata": {
                    "date": point.date.isoformat(),
                    "actual": point.actual,
                    "expected": round(point.expected, 3),
                    "deviation": round(point.deviation, 3),
                    "z_score": round(point.z_score, 3),
                },
                "created_at": datetime.utcnow().isoformat(),
            }
        )
    return alerts


# ──────────────────────────────────────────────────────────────────────────
# Publishing
# ──────────────────────────────────────────────────────────────────────────


async def publish_alerts(
    alerts: list[dict[str, Any]],
    redis: aioredis.Redis | None = None,
) -> int:
    """
    Publish alerts to Redis pub/sub, one channel per farm.
    Returns number of subscribers notified.
    """
    if not alerts:
        return 0

    owns_client = redis is None
    if owns_client:
        redis = aioredis.from_url(get_settings().redis_url)
    try:
        total_subs = 0
        for alert in alerts:
            payload = json.dumps({"type": "alert", "payload": alert})
            channel = f"alerts:{alert['farm_id']}"
            total_subs += await redis.publish(channel, payload)
        return total_subs
    finally:
        if owns_client:
            await redis.aclose()


# ──────────────────────────────────────────────────────────────────────────
# Master Alert Pipeline (run periodically)
# ──────────────────────────────────────────────────────────────────────────


async def run_alert_pipeline(
    repository: AnalyticsRepository,
    filters: AnalyticsFilters,
    *,
    settings: Settings | None = None,
    redis: aioredis.Redis | None = None,
) -> dict[str, int]:
    """
    Full alert pipeline:
    1. Project each watched water-quality parameter
    2. Detect feeding anomalies
    3. Shape alerts
    4. Publish via Redis

    A failed computation is logged and skipped; the other detectors still run.
    Returns counts of alerts by type.
    """
    settings = settings or get_settings()
    if not filters.farm_id:
        return {"water_quality_predicted": 0, "feeding_anomaly": 0, "failed": 0, "total": 0}

    alerts: list[dict[str, Any]] = []
    failed = 0

    for parameter in WATCHED_PARAMETERS:
        result = await compute_predictive_alerts(repository, filters, parameter, settings=settings)
        if not result.ok:
            failed += 1
            logger.warning("alert_pipeline.skipped", detector=parameter, status=result.status.value)
            continue
        alerts.extend(build_predictive_alerts(filters.farm_id, result.data.alerts, filters.system_id))

    anomaly_result = await compute_feeding_anomalies(repository, filters, settings=settings)
    if anomaly_result.ok:
        alerts.extend(build_anomaly_alerts(filters.farm_id, anomaly_result.data.points, filters.system_id))
    else:
        failed += 1
        logger.warning("alert_pipeline.skipped", detector="feeding", status=anomaly_result.status.value)

    await publish_alerts(alerts, redis=redis)

    return {
        "water_quality_predicted": sum(1 for a in alerts if a["alert_type"] == "water_quality_predicted"),
        "feeding_anomaly": sum(1 for a in alerts if a["alert_type"] == "feeding_anomaly"),
        "failed": failed,
        "total": len(alerts),
    }
