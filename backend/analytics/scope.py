"""
Scope Resolver — which production systems a computation covers.

Three independent lookups reconciled in application code:
  A. active systems of the farm, narrowed by growth stage and, when a specific
     system is selected, by that system id
  B. systems associated with the selected batch (only when a batch is chosen)

Scope = A ∩ B (or A when no batch is selected).

``None`` means "cannot compute" (no farm context); an empty set means
"computed, nothing matches". A failed lookup raises ``ScopeLookupError`` and
is never reported as an empty scope. An unknown stage raises
``InvalidFilterError``; a system or batch filter that is not a valid id
resolves to the empty set rather than widening to "all".
"""

from __future__ import annotations

import uuid

import structlog

from analytics.cancellation import CancellationToken
from analytics.errors import ReadFailure, ScopeLookupError
from analytics.records import ALL, AnalyticsFilters, GrowthStage
from analytics.repository import AnalyticsRepository

logger = structlog.get_logger()


def intersect_scope(stage_units: set[int], batch_units: set[int] | None) -> set[int]:
    """Pure reconciliation step; ``batch_units=None`` means no batch filter."""
    if batch_units is None:
        return set(stage_units)
    return stage_units & batch_units


async def resolve_scope(
    repository: AnalyticsRepository,
    farm_id: uuid.UUID | None,
    stage_filter: GrowthStage | str | None = ALL,
    unit_filter: int | str | None = ALL,
    batch_filter: int | str | None = ALL,
    *,
    signal: CancellationToken | None = None,
) -> set[int] | None:
    """Resolve the set of system ids in scope for a filter combination."""
    if not farm_id:
        return None

    filters = AnalyticsFilters(
        farm_id=farm_id,
        stage=_as_filter_value(stage_filter),
        system=_as_filter_value(unit_filter),
        batch=_as_filter_value(batch_filter),
    )

    stage = filters.stage_filter
    if _malformed_id(filters.system, filters.system_id) or _malformed_id(filters.batch, filters.batch_id):
        logger.warning(
            "scope.unparseable_filter",
            farm_id=str(farm_id),
            system=filters.system,
            batch=filters.batch,
        )
        return set()

    try:
        units = await repository.list_units(
            farm_id,
            stage=stage,
            unit_id=filters.system_id,
            signal=signal,
        )
    except ReadFailure as exc:
        logger.error("scope.units_lookup_failed", farm_id=str(farm_id), error=str(exc))
        raise ScopeLookupError("systems", exc) from exc
    stage_units = {unit.id for unit in units}

    batch_units: set[int] | None = None
    if filters.batch_id is not None:
        try:
            batch_units = set(await repository.list_unit_ids_for_batch(filters.batch_id, signal=signal))
        except ReadFailure as exc:
            logger.error(
                "scope.batch_lookup_failed",
                farm_id=str(farm_id),
                batch_id=filters.batch_id,
                error=str(exc),
            )
            raise ScopeLookupError("batch_systems", exc) from exc

    scope = intersect_scope(stage_units, batch_units)
    logger.debug(
        "scope.resolved",
        farm_id=str(farm_id),
        stage=filters.stage,
        system=filters.system,
        batch=filters.batch,
        scope_size=len(scope),
    )
    return scope


async def resolve_scope_for(
    repository: AnalyticsRepository,
    filters: AnalyticsFilters,
    *,
    signal: CancellationToken | None = None,
) -> set[int] | None:
    return await resolve_scope(
        repository,
        filters.farm_id,
        filters.stage,
        filters.system,
        filters.batch,
        signal=signal,
    )


def _malformed_id(value: str, parsed: int | None) -> bool:
    return value != ALL and parsed is None


def _as_filter_value(value: GrowthStage | int | str | None) -> str:
    if value is None or value == "":
        return ALL
    if isinstance(value, GrowthStage):
        return value.value
    return str(value)
