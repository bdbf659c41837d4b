"""
Trend Comparator — signed percentage change versus the prior period.

The comparator always reports the raw delta; ``invert_trend`` only affects
the derived presentation tone (for mortality and eFCR a falling value is an
improvement).
"""

from __future__ import annotations

from dataclasses import replace

from analytics.rates import finite_or_none
from analytics.records import KPI


def percent_delta(current: float | None, previous: float | None) -> float | None:
    """
    (current - previous) / |previous| × 100.

    None when either side is missing, and when the baseline is zero but the
    current value is not (change from a zero baseline is undefined).
    """
    current = finite_or_none(current)
    previous = finite_or_none(previous)
    if current is None or previous is None:
        return None
    if previous == 0:
        return 0.0 if current == 0 else None
    return finite_or_none((current - previous) / abs(previous) * 100.0)


def trend_tone(trend: float | None, invert_trend: bool) -> str:
    """good / bad / neutral from the direction of change."""
    if trend is None or trend == 0:
        return "neutral"
    improving = trend < 0 if invert_trend else trend > 0
    return "good" if improving else "bad"


def with_trend(current: list[KPI], prior: list[KPI]) -> list[KPI]:
    """Attach trend (and trend-derived tone) to each current KPI.

    KPIs are matched by key. A KPI whose tone is already fixed by its value
    (water quality) keeps that tone.
    """
    prior_by_key = {kpi.key: kpi for kpi in prior}
    updated = []
    for kpi in current:
        previous = prior_by_key.get(kpi.key)
        trend = percent_delta(kpi.value, previous.value if previous else None)
        tone = kpi.tone if kpi.badge else trend_tone(trend, kpi.invert_trend)
        updated.append(replace(kpi, trend=trend, tone=tone))
    return updated
