"""Exception types raised inside the analytics engine.

Repositories raise ``ReadFailure``; the engine re-raises it as the typed
failure of the stage that issued the read. Nothing here escapes a top-level
entry point: ``analytics.overview`` converts them into ``QueryResult``.
"""

from __future__ import annotations


class AnalyticsError(Exception):
    """Base class for analytics engine errors."""

    kind = "analytics_error"


class ReadFailure(AnalyticsError):
    """A backing-store read did not complete."""

    kind = "read_failure"

    def __init__(self, source: str, cause: BaseException | None = None):
        self.source = source
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Read '{source}' failed{detail}")


class RowLimitExceeded(ReadFailure):
    """A read matched more rows than the fetch limit; no partial rows are returned."""

    kind = "row_limit_exceeded"

    def __init__(self, source: str, limit: int):
        self.source = source
        self.cause = None
        self.limit = limit
        AnalyticsError.__init__(self, f"Read '{source}' exceeded the fetch limit of {limit} rows")


class InvalidFilterError(AnalyticsError):
    """A filter value is neither 'all' nor a recognised concrete value."""

    kind = "invalid_filter"

    def __init__(self, field: str, value: str):
        self.field = field
        self.value = value
        super().__init__(f"Invalid {field} filter: {value!r}")


class ScopeLookupError(AnalyticsError):
    """Unit or batch-membership lookup failed; distinct from an empty scope."""

    kind = "scope_lookup_failure"

    def __init__(self, source: str, cause: BaseException | None = None):
        self.source = source
        self.cause = cause
        super().__init__(f"Scope lookup '{source}' failed")


class AggregationInputError(AnalyticsError):
    """One of the period-scoped reads failed, so the whole KPI set is failed."""

    kind = "aggregation_input_failure"

    def __init__(self, source: str, cause: BaseException | None = None):
        self.source = source
        self.cause = cause
        super().__init__(f"Aggregation input '{source}' failed")


class OperationCancelled(AnalyticsError):
    """The computation was superseded or aborted before its results applied."""

    kind = "cancelled"
