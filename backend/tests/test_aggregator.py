"""
Tests for the Weighted Metric Aggregator.

Covers:
  - Fish-weighted mortality and biomass-weighted feeding rate
  - eFCR as an aggregate ratio
  - Water-quality labelling from the rounded mean rating
  - Empty scope / empty period produce undefined values
  - Failed reads fail the whole KPI set
"""

from datetime import date

import pandas as pd
import pytest

from analytics.aggregator import (
    KPI_DEFINITIONS,
    PeriodInputs,
    aggregate,
    aggregate_rates_by_system,
    compute_kpis,
    economic_fcr,
    empty_kpis,
    farm_feeding_rate,
    farm_mortality_rate,
    fetch_period_inputs,
    mean_of,
    round_half_up,
    summarize_water_quality,
    weighted_mean,
)
from analytics.cancellation import CancellationToken
from analytics.errors import AggregationInputError, OperationCancelled
from analytics.records import (
    DailyInventoryRecord,
    DateRange,
    ProductionSummaryRecord,
    WaterQualityRatingRecord,
)
from fakes import FARM_ID, make_fake_repository

DAY = date(2024, 3, 10)
CURRENT = DateRange(date(2024, 3, 9), date(2024, 3, 10))


def _by_key(kpis):
    return {kpi.key: kpi for kpi in kpis}


def _ratings(*values):
    return [WaterQualityRatingRecord(i, DAY, value) for i, value in enumerate(values, start=1)]


class TestWeightedMean:
    def test_excludes_zero_and_missing_weights(self):
        frame = pd.DataFrame(
            {
                "value": [2.0, 100.0, 6.0, 50.0],
                "weight": [100.0, 0.0, 300.0, float("nan")],
            }
        )
        assert weighted_mean(frame, "value", "weight") == pytest.approx(5.0)

    def test_all_weights_zero_is_undefined(self):
        frame = pd.DataFrame({"value": [2.0], "weight": [0.0]})
        assert weighted_mean(frame, "value", "weight") is None

    def test_empty_frame(self):
        assert weighted_mean(pd.DataFrame(columns=["value", "weight"]), "value", "weight") is None

    def test_mean_of_skips_missing(self):
        assert mean_of([10.0, None, 20.0, float("nan")]) == 15.0
        assert mean_of([None]) is None


class TestMortality:
    def test_fish_weighted(self):
        """Rates 2% over 100 fish and 6% over 300 fish → 5%."""
        inventory = [
            DailyInventoryRecord(1, DAY, number_of_fish=100, number_of_fish_mortality=2),
            DailyInventoryRecord(2, DAY, number_of_fish=300, number_of_fish_mortality=18),
        ]
        assert farm_mortality_rate(inventory) == pytest.approx(5.0)

    def test_zero_fish_rows_do_not_contribute(self):
        inventory = [
            DailyInventoryRecord(1, DAY, number_of_fish=100, number_of_fish_mortality=2),
            DailyInventoryRecord(2, DAY, number_of_fish=0, mortality_rate=90.0),
        ]
        assert farm_mortality_rate(inventory) == pytest.approx(2.0)

    def test_every_weight_zero_is_undefined(self):
        inventory = [DailyInventoryRecord(1, DAY, number_of_fish=0, mortality_rate=4.0)]
        assert farm_mortality_rate(inventory) is None

    def test_production_fallback(self):
        inventory = [DailyInventoryRecord(1, DAY, feeding_amount=3.0)]
        production = [ProductionSummaryRecord(1, DAY, number_of_fish_inventory=200, daily_mortality_count=4)]
        assert farm_mortality_rate(inventory, production) == pytest.approx(2.0)

    def test_inventory_preferred_over_production(self):
        inventory = [DailyInventoryRecord(1, DAY, number_of_fish=100, number_of_fish_mortality=1)]
        production = [ProductionSummaryRecord(1, DAY, number_of_fish_inventory=200, daily_mortality_count=40)]
        assert farm_mortality_rate(inventory, production) == pytest.approx(1.0)


class TestFeedingRate:
    def test_biomass_weighted(self):
        inventory = [
            DailyInventoryRecord(1, DAY, feeding_amount=5.0, biomass_last_sampling=50.0),
            DailyInventoryRecord(2, DAY, feeding_amount=30.0, biomass_last_sampling=600.0),
        ]
        # (100 × 50 + 50 × 600) / 650
        assert farm_feeding_rate(inventory) == pytest.approx(35000 / 650)

    def test_by_system(self):
        inventory = [
            DailyInventoryRecord(1, DAY, feeding_amount=5.0, biomass_last_sampling=50.0, number_of_fish=100),
            DailyInventoryRecord(2, DAY, feeding_amount=30.0, biomass_last_sampling=600.0, number_of_fish=300),
            DailyInventoryRecord(2, date(2024, 3, 9), feeding_rate=40.0, biomass_last_sampling=400.0),
        ]
        rates = aggregate_rates_by_system(inventory)
        assert set(rates) == {1, 2}
        assert rates[1]["feeding_rate"] == pytest.approx(100.0)
        assert rates[2]["feeding_rate"] == pytest.approx((50.0 * 600 + 40.0 * 400) / 1000)
        assert rates[2]["mortality_rate"] == pytest.approx(0.0)

    def test_by_system_empty(self):
        assert aggregate_rates_by_system([]) == {}


class TestEconomicFcr:
    def test_aggregate_ratio(self):
        production = [
            ProductionSummaryRecord(1, DAY, total_feed_amount_period=30.0, biomass_increase_period=20.0),
            ProductionSummaryRecord(2, DAY, total_feed_amount_period=45.0, biomass_increase_period=30.0),
        ]
        assert economic_fcr(production) == pytest.approx(1.5)

    def test_single_row(self):
        production = [ProductionSummaryRecord(1, DAY, total_feed_amount_period=75.0, biomass_increase_period=50.0)]
        assert economic_fcr(production) == pytest.approx(1.5)

    def test_zero_gain_is_undefined(self):
        production = [ProductionSummaryRecord(1, DAY, total_feed_amount_period=10.0, biomass_increase_period=0.0)]
        assert economic_fcr(production) is None

    def test_adjustments_applied(self):
        production = [
            ProductionSummaryRecord(
                1,
                DAY,
                total_feed_amount_period=60.0,
                biomass_increase_period=50.0,
                total_weight_transfer_out=20.0,
                total_weight_harvested=10.0,
            )
        ]
        # gain = 50 - 20 + 10 = 40
        assert economic_fcr(production) == pytest.approx(1.5)


class TestWaterQuality:
    def test_mean_rounds_to_optimal(self):
        summary = summarize_water_quality(_ratings(3, 3, 2, 3))
        assert summary.average == pytest.approx(2.75)
        assert summary.label == "optimal"
        assert summary.tone == "good"
        assert summary.badge == "Optimal"

    def test_half_rounds_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(1.49) == 1
        assert summarize_water_quality(_ratings(2, 3)).label == "optimal"

    def test_acceptable_is_warn(self):
        summary = summarize_water_quality(_ratings(2, 2, 1))
        assert summary.label == "acceptable"
        assert summary.tone == "warn"

    def test_lethal_and_critical_are_bad(self):
        assert summarize_water_quality(_ratings(0)).tone == "bad"
        assert summarize_water_quality(_ratings(1)).badge == "Critical"

    def test_missing_ratings_excluded(self):
        summary = summarize_water_quality(_ratings(None, 1, None))
        assert summary.average == 1.0

    def test_no_ratings_is_monitoring(self):
        summary = summarize_water_quality([])
        assert summary.average is None
        assert summary.tone == "neutral"
        assert summary.badge == "Monitoring"

    def test_out_of_range_is_clamped(self):
        assert summarize_water_quality(_ratings(7)).label == "optimal"
        assert summarize_water_quality(_ratings(-2)).label == "lethal"


class TestComputeKpis:
    def test_presentation_order(self):
        kpis = compute_kpis([], [], [], {1})
        assert [kpi.key for kpi in kpis] == [d.key for d in KPI_DEFINITIONS]
        assert [kpi.key for kpi in kpis] == [
            "efcr",
            "mortality",
            "abw",
            "biomass",
            "biomass_density",
            "feeding",
            "water_quality",
        ]

    def test_empty_scope_all_undefined(self):
        repository = make_fake_repository()
        kpis = compute_kpis(repository.inventory, repository.production, repository.ratings, set())
        assert all(kpi.value is None for kpi in kpis)
        assert _by_key(kpis)["water_quality"].badge == "Monitoring"

    def test_empty_kpis_matches_definitions(self):
        kpis = empty_kpis()
        assert len(kpis) == len(KPI_DEFINITIONS)
        assert _by_key(kpis)["mortality"].invert_trend is True

    def test_rows_outside_scope_ignored(self):
        repository = make_fake_repository()
        current = [r for r in repository.inventory if r.inventory_date == DAY]
        kpis = _by_key(compute_kpis(current, [], [], {1}))
        assert kpis["mortality"].value == pytest.approx(2.0)
        assert kpis["abw"].value == pytest.approx(10.0)

    def test_means(self):
        repository = make_fake_repository()
        current = [r for r in repository.inventory if r.inventory_date == DAY]
        kpis = _by_key(compute_kpis(current, [], [], {1, 2}))
        assert kpis["abw"].value == pytest.approx(15.0)
        assert kpis["biomass"].value == pytest.approx(325.0)
        assert kpis["biomass_density"].value == pytest.approx(3.0)

    def test_water_quality_kpi(self):
        kpis = _by_key(compute_kpis([], [], _ratings(3, 3, 2, 3), {1, 2, 3, 4}))
        quality = kpis["water_quality"]
        assert quality.value == pytest.approx(2.75)
        assert quality.badge == "Optimal"
        assert quality.tone == "good"

    def test_metadata_from_definitions(self):
        kpis = _by_key(compute_kpis([], [], [], {1}))
        assert kpis["mortality"].unit == "%"
        assert kpis["feeding"].unit == "kg/t"
        assert kpis["abw"].decimals == 1
        assert kpis["efcr"].invert_trend is True


@pytest.mark.asyncio
class TestAggregate:
    async def test_farm_totals(self):
        kpis = _by_key(await aggregate(make_fake_repository(), FARM_ID, {1, 2, 3}, CURRENT))
        assert kpis["mortality"].value == pytest.approx(5.0)
        assert kpis["efcr"].value == pytest.approx(1.5)
        assert kpis["feeding"].value == pytest.approx(35000 / 650)
        assert kpis["water_quality"].value == pytest.approx(2.75)
        assert kpis["water_quality"].badge == "Optimal"

    async def test_empty_scope_issues_no_reads(self):
        repository = make_fake_repository()
        kpis = await aggregate(repository, FARM_ID, set(), CURRENT)
        assert all(kpi.value is None for kpi in kpis)
        assert repository.calls == []

    async def test_zero_gain_efcr_is_undefined(self):
        """Prior window: 10 kg fed, no biomass gain."""
        prior = DateRange(date(2024, 3, 7), date(2024, 3, 8))
        kpis = _by_key(await aggregate(make_fake_repository(), FARM_ID, {1, 2, 3}, prior))
        assert kpis["efcr"].value is None
        assert kpis["mortality"].value == pytest.approx(1.0)

    async def test_empty_period(self):
        empty = DateRange(date(2023, 1, 1), date(2023, 1, 31))
        kpis = await aggregate(make_fake_repository(), FARM_ID, {1, 2, 3}, empty)
        assert all(kpi.value is None for kpi in kpis)

    async def test_unit_filter_narrows_reads(self):
        kpis = _by_key(await aggregate(make_fake_repository(), FARM_ID, {2}, CURRENT, unit_id=2))
        assert kpis["mortality"].value == pytest.approx(6.0)
        assert kpis["efcr"].value == pytest.approx(1.5)

    @pytest.mark.parametrize(
        "failing, source",
        [
            ("list_daily_inventory", "daily_fish_inventory"),
            ("list_production_summary", "production_summary"),
            ("list_water_quality_ratings", "daily_water_quality_rating"),
        ],
    )
    async def test_any_failed_read_fails_the_set(self, failing, source):
        repository = make_fake_repository(fail_on={failing})
        with pytest.raises(AggregationInputError) as exc_info:
            await aggregate(repository, FARM_ID, {1, 2, 3}, CURRENT)
        assert exc_info.value.source == source
        assert exc_info.value.kind == "aggregation_input_failure"

    async def test_issues_three_period_reads(self):
        repository = make_fake_repository()
        await aggregate(repository, FARM_ID, {1}, CURRENT)
        assert sorted(repository.calls) == [
            "list_daily_inventory",
            "list_production_summary",
            "list_water_quality_ratings",
        ]

    async def test_cancelled_before_reads(self):
        token = CancellationToken()
        token.cancel()
        repository = make_fake_repository()
        with pytest.raises(OperationCancelled):
            await aggregate(repository, FARM_ID, {1}, CURRENT, signal=token)
        assert repository.calls == []


@pytest.mark.asyncio
class TestFetchPeriodInputs:
    async def test_rows_restricted_to_scope(self):
        inputs = await fetch_period_inputs(make_fake_repository(), FARM_ID, {1}, CURRENT)
        assert {row.system_id for row in inputs.inventory} == {1}
        assert {row.system_id for row in inputs.production} == {1}
        assert [row.rating_numeric for row in inputs.ratings] == [3, 3]

    async def test_empty_scope(self):
        repository = make_fake_repository()
        assert await fetch_period_inputs(repository, FARM_ID, set(), CURRENT) == PeriodInputs.empty()
        assert repository.calls == []

    async def test_limit_applies_after_scope(self):
        inputs = await fetch_period_inputs(make_fake_repository(), FARM_ID, {1}, CURRENT, limit=2)
        assert len(inputs.ratings) == 2

    async def test_overflow_fails_the_set(self):
        with pytest.raises(AggregationInputError) as exc_info:
            await fetch_period_inputs(make_fake_repository(), FARM_ID, {1, 2, 3}, CURRENT, limit=3)
        assert exc_info.value.source == "daily_water_quality_rating"
        assert exc_info.value.cause.kind == "row_limit_exceeded"
