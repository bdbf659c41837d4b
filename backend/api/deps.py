"""
AquaOps API Dependencies

Dependency injection for the analytics repository and request supersession.
"""

from analytics.cancellation import LatestRequestGate
from analytics.repository import AnalyticsRepository, SqlAnalyticsRepository
from db.session import get_session_factory

# One gate per process: a newer request with the same key supersedes the older one.
_request_gate = LatestRequestGate()


def get_repository() -> AnalyticsRepository:
    """Repository over the farm-operations database."""
    return SqlAnalyticsRepository(get_session_factory())


def get_request_gate() -> LatestRequestGate:
    return _request_gate
