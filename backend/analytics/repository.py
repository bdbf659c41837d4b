"""
Analytics Read Repository — Abstract contract + async SQLAlchemy implementation.

The engine depends only on ``AnalyticsRepository``. Each read is independent
and substitutable, so tests swap in an in-memory implementation and the
scope / aggregation logic never knows where rows come from.

Every read:
  - accepts an optional ``CancellationToken`` and checks it before and after
    touching the store
  - raises ``ReadFailure`` when the store errors (never returns [] on failure)
  - raises ``RowLimitExceeded`` rather than returning a truncated row set
  - returns frozen projections from ``analytics.records``
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Collection
from datetime import date
from typing import TypeVar

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from analytics.cancellation import CancellationToken, check_cancelled
from analytics.errors import ReadFailure, RowLimitExceeded
from analytics.records import (
    AlertThresholdRecord,
    DailyInventoryRecord,
    DateRange,
    GrowthStage,
    ProductionSummaryRecord,
    Unit,
    WaterQualityMeasurementRecord,
    WaterQualityRatingRecord,
)
from db.models import (
    AlertThreshold,
    BatchSystem,
    DailyFishInventory,
    DailyWaterQualityRating,
    DashboardPeriodBounds,
    ProductionSummary,
    System,
    WaterQualityMeasurement,
)

logger = structlog.get_logger()

T = TypeVar("T")


# ── Abstract contract ──────────────────────────────────────────────────────


class AnalyticsRepository(ABC):
    """Read operations the analytics engine requires from the store."""

    @abstractmethod
    async def list_units(
        self,
        farm_id: uuid.UUID,
        stage: GrowthStage | None = None,
        unit_id: int | None = None,
        *,
        active_only: bool = True,
        signal: CancellationToken | None = None,
    ) -> list[Unit]:
        ...

    @abstractmethod
    async def list_unit_ids_for_batch(
        self,
        batch_id: int,
        *,
        signal: CancellationToken | None = None,
    ) -> list[int]:
        ...

    @abstractmethod
    async def list_daily_inventory(
        self,
        farm_id: uuid.UUID,
        unit_id: int | None,
        date_from: date,
        date_to: date,
        *,
        unit_ids: Collection[int] | None = None,
        limit: int | None = None,
        signal: CancellationToken | None = None,
    ) -> list[DailyInventoryRecord]:
        ...

    @abstractmethod
    async def list_production_summary(
        self,
        farm_id: uuid.UUID,
        unit_id: int | None,
        stage: GrowthStage | None,
        date_from: date,
        date_to: date,
        *,
        unit_ids: Collection[int] | None = None,
        limit: int | None = None,
        signal: CancellationToken | None = None,
    ) -> list[ProductionSummaryRecord]:
        ...

    @abstractmethod
    async def list_water_quality_ratings(
        self,
        farm_id: uuid.UUID,
        unit_id: int | None,
        date_from: date,
        date_to: date,
        *,
        unit_ids: Collection[int] | None = None,
        limit: int | None = None,
        signal: CancellationToken | None = None,
    ) -> list[WaterQualityRatingRecord]:
        ...

    @abstractmethod
    async def list_water_quality_measurements(
        self,
        farm_id: uuid.UUID,
        parameter_name: str,
        unit_id: int | None,
        date_from: date,
        date_to: date,
        *,
        unit_ids: Collection[int] | None = None,
        limit: int | None = None,
        signal: CancellationToken | None = None,
    ) -> list[WaterQualityMeasurementRecord]:
        ...

    @abstractmethod
    async def get_alert_thresholds(
        self,
        farm_id: uuid.UUID,
        *,
        signal: CancellationToken | None = None,
    ) -> AlertThresholdRecord | None:
        ...

    @abstractmethod
    async def get_period_bounds(
        self,
        farm_id: uuid.UUID,
        time_period: str,
        *,
        signal: CancellationToken | None = None,
    ) -> DateRange | None:
        """Precomputed bounds for a named period, or None when not available."""
        ...


def _narrowed(stmt, column, unit_id, unit_ids, limit):
    """Apply the unit filters and fetch one row past ``limit`` to detect overflow."""
    if unit_id is not None:
        stmt = stmt.where(column == unit_id)
    if unit_ids is not None:
        stmt = stmt.where(column.in_(sorted(unit_ids)))
    if limit:
        stmt = stmt.limit(limit + 1)
    return stmt


# ── SQLAlchemy implementation ──────────────────────────────────────────────


class SqlAnalyticsRepository(AnalyticsRepository):
    """
    Reads from the farm-operations database.

    Opens one session per read so callers may run reads concurrently
    (an AsyncSession must not be shared between concurrent awaits).
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def _read(
        self,
        source: str,
        query: Callable[[AsyncSession], Awaitable[T]],
        signal: CancellationToken | None,
        *,
        limit: int | None = None,
    ) -> T:
        check_cancelled(signal)
        try:
            async with self._session_factory() as session:
                result = await query(session)
        except SQLAlchemyError as exc:
            raise ReadFailure(source, exc) from exc
        check_cancelled(signal)
        # Queries fetch limit + 1 rows; the extra row means the read was truncated.
        if limit and len(result) > limit:
            logger.warning("repository.row_limit_exceeded", source=source, limit=limit)
            raise RowLimitExceeded(source, limit)
        return result

    async def list_units(self, farm_id, stage=None, unit_id=None, *, active_only=True, signal=None):
        stmt = select(System).where(System.farm_id == farm_id).order_by(System.name)
        if active_only:
            stmt = stmt.where(System.is_active.is_(True))
        if stage is not None:
            stmt = stmt.where(System.growth_stage == GrowthStage(stage).value)
        if unit_id is not None:
            stmt = stmt.where(System.id == unit_id)

        async def run(session: AsyncSession) -> list[Unit]:
            rows = (await session.execute(stmt)).scalars().all()
            return [
                Unit(
                    id=row.id,
                    name=row.name,
                    growth_stage=GrowthStage(row.growth_stage),
                    farm_id=row.farm_id,
                    is_active=bool(row.is_active),
                )
                for row in rows
            ]

        return await self._read("systems", run, signal)

    async def list_unit_ids_for_batch(self, batch_id, *, signal=None):
        stmt = select(BatchSystem.system_id).where(BatchSystem.batch_id == batch_id)

        async def run(session: AsyncSession) -> list[int]:
            return [int(system_id) for system_id in (await session.execute(stmt)).scalars().all()]

        return await self._read("batch_systems", run, signal)

    async def list_daily_inventory(
        self, farm_id, unit_id, date_from, date_to, *, unit_ids=None, limit=None, signal=None
    ):
        stmt = (
            select(DailyFishInventory)
            .where(
                DailyFishInventory.farm_id == farm_id,
                DailyFishInventory.inventory_date >= date_from,
                DailyFishInventory.inventory_date <= date_to,
            )
            .order_by(DailyFishInventory.inventory_date, DailyFishInventory.system_id)
        )
        stmt = _narrowed(stmt, DailyFishInventory.system_id, unit_id, unit_ids, limit)

        async def run(session: AsyncSession) -> list[DailyInventoryRecord]:
            return [
                DailyInventoryRecord(
                    system_id=row.system_id,
                    inventory_date=row.inventory_date,
                    number_of_fish=row.number_of_fish,
                    number_of_fish_mortality=row.number_of_fish_mortality,
                    mortality_rate=row.mortality_rate,
                    feeding_amount=row.feeding_amount,
                    feeding_rate=row.feeding_rate,
                    biomass_last_sampling=row.biomass_last_sampling,
                    biomass_density=row.biomass_density,
                    abw_last_sampling=row.abw_last_sampling,
                )
                for row in (await session.execute(stmt)).scalars().all()
            ]

        return await self._read("daily_fish_inventory", run, signal, limit=limit)

    async def list_production_summary(
        self, farm_id, unit_id, stage, date_from, date_to, *, unit_ids=None, limit=None, signal=None
    ):
        stmt = (
            select(ProductionSummary)
            .where(
                ProductionSummary.farm_id == farm_id,
                ProductionSummary.date >= date_from,
                ProductionSummary.date <= date_to,
            )
            .order_by(ProductionSummary.date, ProductionSummary.system_id)
        )
        if stage is not None:
            stmt = stmt.where(ProductionSummary.growth_stage == GrowthStage(stage).value)
        stmt = _narrowed(stmt, ProductionSummary.system_id, unit_id, unit_ids, limit)

        async def run(session: AsyncSession) -> list[ProductionSummaryRecord]:
            return [
                ProductionSummaryRecord(
                    system_id=row.system_id,
                    date=row.date,
                    efcr_period=row.efcr_period,
                    total_feed_amount_period=row.total_feed_amount_period,
                    biomass_increase_period=row.biomass_increase_period,
                    total_biomass=row.total_biomass,
                    number_of_fish_inventory=row.number_of_fish_inventory,
                    daily_mortality_count=row.daily_mortality_count,
                    total_weight_transfer_out=row.total_weight_transfer_out,
                    total_weight_transfer_in=row.total_weight_transfer_in,
                    total_weight_harvested=row.total_weight_harvested,
                    total_weight_stocked=row.total_weight_stocked,
                )
                for row in (await session.execute(stmt)).scalars().all()
            ]

        return await self._read("production_summary", run, signal, limit=limit)

    async def list_water_quality_ratings(
        self, farm_id, unit_id, date_from, date_to, *, unit_ids=None, limit=None, signal=None
    ):
        stmt = (
            select(DailyWaterQualityRating)
            .where(
                DailyWaterQualityRating.farm_id == farm_id,
                DailyWaterQualityRating.rating_date >= date_from,
                DailyWaterQualityRating.rating_date <= date_to,
            )
            .order_by(DailyWaterQualityRating.rating_date, DailyWaterQualityRating.system_id)
        )
        stmt = _narrowed(stmt, DailyWaterQualityRating.system_id, unit_id, unit_ids, limit)

        async def run(session: AsyncSession) -> list[WaterQualityRatingRecord]:
            return [
                WaterQualityRatingRecord(
                    system_id=row.system_id,
                    rating_date=row.rating_date,
                    rating_numeric=row.rating_numeric,
                )
                for row in (await session.execute(stmt)).scalars().all()
            ]

        return await self._read("daily_water_quality_rating", run, signal, limit=limit)

    async def list_water_quality_measurements(
        self, farm_id, parameter_name, unit_id, date_from, date_to, *, unit_ids=None, limit=None, signal=None
    ):
        stmt = (
            select(WaterQualityMeasurement)
            .where(
                WaterQualityMeasurement.farm_id == farm_id,
                WaterQualityMeasurement.parameter_name == parameter_name,
                WaterQualityMeasurement.date >= date_from,
                WaterQualityMeasurement.date <= date_to,
            )
            .order_by(WaterQualityMeasurement.date, WaterQualityMeasurement.id)
        )
        stmt = _narrowed(stmt, WaterQualityMeasurement.system_id, unit_id, unit_ids, limit)

        async def run(session: AsyncSession) -> list[WaterQualityMeasurementRecord]:
            return [
                WaterQualityMeasurementRecord(
                    system_id=row.system_id,
                    date=row.date,
                    parameter_name=row.parameter_name,
                    parameter_value=row.parameter_value,
                )
                for row in (await session.execute(stmt)).scalars().all()
            ]

        return await self._read("water_quality_measurements", run, signal, limit=limit)

    async def get_alert_thresholds(self, farm_id, *, signal=None):
        stmt = select(AlertThreshold).where(AlertThreshold.farm_id == farm_id)

        async def run(session: AsyncSession) -> AlertThresholdRecord | None:
            row = (await session.execute(stmt)).scalars().first()
            if row is None:
                return None
            return AlertThresholdRecord(
                farm_id=row.farm_id,
                low_do_threshold=row.low_do_threshold,
                high_ammonia_threshold=row.high_ammonia_threshold,
                high_temperature_threshold=row.high_temperature_threshold,
            )

        return await self._read("alert_thresholds", run, signal)

    async def get_period_bounds(self, farm_id, time_period, *, signal=None):
        stmt = select(DashboardPeriodBounds).where(
            DashboardPeriodBounds.farm_id == farm_id,
            DashboardPeriodBounds.time_period == time_period,
        )

        async def run(session: AsyncSession) -> DateRange | None:
            row = (await session.execute(stmt)).scalars().first()
            if row is None or row.input_start_date is None or row.input_end_date is None:
                return None
            if row.input_start_date > row.input_end_date:
                logger.warning(
                    "period_bounds.inverted",
                    farm_id=str(farm_id),
                    time_period=time_period,
                )
                return None
            return DateRange(row.input_start_date, row.input_end_date)

        return await self._read("dashboard_period_bounds", run, signal)

