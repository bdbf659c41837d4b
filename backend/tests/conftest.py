"""
Test Configuration — Fixtures for async DB, test client, and seeded farm data.

Each test gets its own file-backed SQLite database: the repository opens one
session per read and runs reads concurrently, so an in-memory database
(one per connection) would not be visible across reads.
"""

from datetime import date, timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from analytics.cancellation import LatestRequestGate
from analytics.repository import SqlAnalyticsRepository
from api.deps import get_repository, get_request_gate
from api.main import app
from core.config import Settings
from db.session import Base
from fakes import FARM_ID, OTHER_FARM_ID, make_fake_repository


@pytest.fixture
def settings():
    return Settings(_env_file=None, redis_url="redis://localhost:6379/15")


@pytest.fixture
async def test_engine(tmp_path):
    """Create a test database engine and build all tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'aquaops_test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def sql_repository(session_factory):
    return SqlAnalyticsRepository(session_factory)


@pytest.fixture
async def seeded_db(session_factory):
    """Seed one farm with nursing / grow-out systems, two batches and two periods of data."""
    from db.models import (
        AlertThreshold,
        Batch,
        BatchSystem,
        DailyFishInventory,
        DailyWaterQualityRating,
        DashboardPeriodBounds,
        ProductionSummary,
        System,
        WaterQualityMeasurement,
    )

    async with session_factory() as session:
        session.add_all(
            [
                System(id=1, farm_id=FARM_ID, name="Cage A", growth_stage="nursing", is_active=True),
                System(id=2, farm_id=FARM_ID, name="Cage B", growth_stage="grow_out", is_active=True),
                System(id=3, farm_id=FARM_ID, name="Pond C", growth_stage="grow_out", is_active=True),
                System(id=4, farm_id=FARM_ID, name="Tank D", growth_stage="grow_out", is_active=False),
                System(id=5, farm_id=OTHER_FARM_ID, name="Other Cage", growth_stage="grow_out", is_active=True),
            ]
        )
        session.add_all(
            [
                Batch(id=10, farm_id=FARM_ID, name="B-2024-01"),
                Batch(id=11, farm_id=FARM_ID, name="B-2024-02"),
            ]
        )
        await session.flush()
        session.add_all(
            [
                BatchSystem(batch_id=10, system_id=2),
                BatchSystem(batch_id=10, system_id=3),
                BatchSystem(batch_id=11, system_id=1),
                BatchSystem(batch_id=11, system_id=4),
            ]
        )

        def inventory(system_id, day, fish, mortality, feed, biomass, abw, density):
            return DailyFishInventory(
                farm_id=FARM_ID,
                system_id=system_id,
                inventory_date=day,
                number_of_fish=fish,
                number_of_fish_mortality=mortality,
                feeding_amount=feed,
                biomass_last_sampling=biomass,
                abw_last_sampling=abw,
                biomass_density=density,
            )

        session.add_all(
            [
                # current period
                inventory(1, date(2024, 3, 10), 100, 2, 5.0, 50.0, 10.0, 2.0),
                inventory(2, date(2024, 3, 10), 300, 18, 30.0, 600.0, 20.0, 4.0),
                # prior period
                inventory(1, date(2024, 3, 8), 100, 1, 5.0, 50.0, 9.0, 2.0),
                inventory(2, date(2024, 3, 8), 300, 3, 30.0, 600.0, 19.0, 4.0),
                # other farm, same dates
                DailyFishInventory(
                    farm_id=OTHER_FARM_ID,
                    system_id=5,
                    inventory_date=date(2024, 3, 10),
                    number_of_fish=1000,
                    number_of_fish_mortality=500,
                ),
            ]
        )
        session.add_all(
            [
                ProductionSummary(
                    farm_id=FARM_ID,
                    system_id=1,
                    growth_stage="nursing",
                    date=date(2024, 3, 10),
                    total_feed_amount_period=30.0,
                    biomass_increase_period=20.0,
                ),
                ProductionSummary(
                    farm_id=FARM_ID,
                    system_id=2,
                    growth_stage="grow_out",
                    date=date(2024, 3, 10),
                    total_feed_amount_period=45.0,
                    biomass_increase_period=30.0,
                ),
                ProductionSummary(
                    farm_id=FARM_ID,
                    system_id=1,
                    growth_stage="nursing",
                    date=date(2024, 3, 8),
                    total_feed_amount_period=10.0,
                    biomass_increase_period=0.0,
                ),
            ]
        )
        session.add_all(
            [
                DailyWaterQualityRating(farm_id=FARM_ID, system_id=1, rating_date=date(2024, 3, 9), rating_numeric=3),
                DailyWaterQualityRating(farm_id=FARM_ID, system_id=1, rating_date=date(2024, 3, 10), rating_numeric=3),
                DailyWaterQualityRating(farm_id=FARM_ID, system_id=2, rating_date=date(2024, 3, 9), rating_numeric=2),
                DailyWaterQualityRating(farm_id=FARM_ID, system_id=2, rating_date=date(2024, 3, 10), rating_numeric=3),
            ]
        )
        # Dissolved oxygen in Cage B falls 0.4 mg/L a day.
        start = date(2024, 3, 4)
        session.add_all(
            [
                WaterQualityMeasurement(
                    farm_id=FARM_ID,
                    system_id=2,
                    date=start + timedelta(days=i),
                    parameter_name="dissolved_oxygen",
                    parameter_value=6.0 - 0.4 * i,
                )
                for i in range(7)
            ]
        )
        session.add(AlertThreshold(farm_id=FARM_ID, low_do_threshold=3.0, high_ammonia_threshold=0.4))
        session.add(
            DashboardPeriodBounds(
                farm_id=FARM_ID,
                time_period="week",
                input_start_date=date(2024, 3, 4),
                input_end_date=date(2024, 3, 10),
            )
        )
        await session.commit()

    return FARM_ID


@pytest.fixture
def fake_repository():
    return make_fake_repository()


# ── API client ──────────────────────────────────────────────────────────────


@pytest.fixture
async def client(sql_repository, seeded_db):
    """Async test client reading from the seeded SQLite database."""
    gate = LatestRequestGate()
    app.dependency_overrides[get_repository] = lambda: sql_repository
    app.dependency_overrides[get_request_gate] = lambda: gate

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
