"""
Period Resolver — named/custom period specifiers to concrete date ranges.

Specifiers:
  - presets: "day", "week", "2 weeks", "month", "quarter", "6 months", "year"
  - custom:  "custom_YYYY-MM-DD_YYYY-MM-DD" (start must not be after end)

Anything else resolves to the default period ("2 weeks").

Named periods are first looked up in the store's precomputed bounds (the
store knows each farm's latest data date); local calendar arithmetic is the
fallback when no precomputed bounds exist or the lookup fails.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from datetime import date, timedelta

import structlog

from analytics.cancellation import CancellationToken
from analytics.errors import ReadFailure
from analytics.records import DateRange
from analytics.repository import AnalyticsRepository

logger = structlog.get_logger()

DEFAULT_TIME_PERIOD = "2 weeks"

# Days looked back from the as-of date for each preset.
TIME_PERIOD_DAYS: dict[str, int] = {
    "day": 1,
    "week": 7,
    "2 weeks": 14,
    "month": 30,
    "quarter": 90,
    "6 months": 180,
    "year": 365,
}

_CUSTOM_RANGE = re.compile(r"^custom_(\d{4}-\d{2}-\d{2})_(\d{4}-\d{2}-\d{2})$")


@dataclass(frozen=True)
class ParsedPeriod:
    kind: str  # "preset" | "custom"
    period: str
    custom_range: DateRange | None = None


def is_time_period(value: str | None) -> bool:
    return bool(value) and value in TIME_PERIOD_DAYS


def parse_time_period(value: str | None, default: str = DEFAULT_TIME_PERIOD) -> ParsedPeriod:
    """Classify a period specifier; invalid input yields the default preset."""
    trimmed = (value or "").strip()
    if is_time_period(trimmed):
        return ParsedPeriod(kind="preset", period=trimmed)

    if trimmed:
        match = _CUSTOM_RANGE.match(trimmed)
        if match:
            try:
                start = date.fromisoformat(match.group(1))
                end = date.fromisoformat(match.group(2))
            except ValueError:
                start = end = None
            if start is not None and end is not None and start <= end:
                return ParsedPeriod(kind="custom", period="custom", custom_range=DateRange(start, end))

    return ParsedPeriod(kind="preset", period=default)


def date_range_for_period(period: str, as_of: date | None = None) -> DateRange:
    """Local calendar arithmetic: ``[as_of - N days, as_of]``.

    Unknown period names look back one week.
    """
    anchor = as_of or date.today()
    days = TIME_PERIOD_DAYS.get(period, 7)
    return DateRange(anchor - timedelta(days=days), anchor)


def prior_period(current: DateRange) -> DateRange:
    """Immediately preceding range of identical length.

    span = end - start; prior_end = start - 1 day; prior_start = prior_end - span.
    """
    prior_end = current.start - timedelta(days=1)
    prior_start = prior_end - timedelta(days=current.span_days)
    return DateRange(prior_start, prior_end)


async def resolve_period_bounds(
    repository: AnalyticsRepository,
    period_specifier: str | None,
    farm_id: uuid.UUID | None,
    *,
    as_of: date | None = None,
    default: str = DEFAULT_TIME_PERIOD,
    signal: CancellationToken | None = None,
) -> DateRange:
    """Concrete ``[start, end]`` for a period specifier."""
    parsed = parse_time_period(period_specifier, default=default)
    if parsed.custom_range is not None:
        return parsed.custom_range

    if farm_id is not None:
        try:
            bounds = await repository.get_period_bounds(farm_id, parsed.period, signal=signal)
        except ReadFailure as exc:
            logger.warning(
                "period_bounds.lookup_failed",
                farm_id=str(farm_id),
                time_period=parsed.period,
                error=str(exc),
            )
            bounds = None
        if bounds is not None:
            return bounds

    return date_range_for_period(parsed.period, as_of)
