"""
Aggregation Test Module

Tests for funnel_sentinel/services/aggregation.py.

Test Coverage:
- Top-level totals exclude sub-stage rows and bookkeeping stage indices
- Dimension filters are conjunctive; "All" matches everything
- Malformed records are skipped and counted, not raised
- Stage order comes from the unfiltered record set
- Stuck observations pair current rates with comparison baselines
- build_series requires records but accepts an empty list
"""

import math

import pytest

from funnel_sentinel.core.exceptions import MissingInputError
from funnel_sentinel.models import DimensionFilter, Period
from funnel_sentinel.services.aggregation import (
    REASON_BOOKKEEPING_STAGE,
    REASON_NEGATIVE_COUNT,
    REASON_NEGATIVE_STAGE,
    REASON_NON_FINITE_STAGE,
    REASON_NON_INTEGRAL_STAGE,
    StageConventions,
    aggregate,
    aggregate_sub_stages,
    build_series,
    merge_quality,
    ordered_stage_indices,
    screen_records,
    stuck_observations,
)
from funnel_sentinel.tests.conftest import (
    CHILD_LEAD,
    DISBURSED,
    WORKABLE,
    funnel,
    make_disbursal,
    make_record,
    two_period_funnel,
)


ALL_DIMENSIONS = DimensionFilter()


# =============================================================================
# Record Screening
# =============================================================================


class TestScreenRecords:
    """Malformed and bookkeeping records are skipped with a reason."""

    def test_well_formed_records_are_accepted(self, scenario_one_records):
        accepted, report = screen_records(scenario_one_records)

        assert len(accepted) == len(scenario_one_records)
        assert report.accepted == 6
        assert report.skipped == 0
        assert report.reasons == {}

    def test_each_malformation_is_counted_under_its_reason(self):
        records = [
            make_record(Period.CURRENT, float('nan'), 10),
            make_record(Period.CURRENT, -2, 10),
            make_record(Period.CURRENT, 2.5, 10),
            make_record(Period.CURRENT, 3, -1),
            make_record(Period.CURRENT, 1200, 10),
            make_record(Period.CURRENT, 1, 10),
            make_record(Period.CURRENT, 2, 10),
        ]

        accepted, report = screen_records(records)

        assert [r.stageIndex for r in accepted] == [2]
        assert report.skipped == 6
        assert report.reasons == {
            REASON_BOOKKEEPING_STAGE: 2,
            REASON_NEGATIVE_COUNT: 1,
            REASON_NEGATIVE_STAGE: 1,
            REASON_NON_FINITE_STAGE: 1,
            REASON_NON_INTEGRAL_STAGE: 1,
        }

    def test_fractional_sub_stage_index_is_not_malformed(self):
        record = make_record(Period.CURRENT, 5.1, 40, sub_stage="Manual Verification")

        accepted, report = screen_records([record])

        assert accepted == [record]
        assert report.skipped == 0

    def test_custom_conventions_move_the_sentinel_floor(self):
        conventions = StageConventions(sentinel_floor=50, placeholder_indices=frozenset())
        records = [make_record(Period.CURRENT, 1, 10), make_record(Period.CURRENT, 60, 10)]

        accepted, report = screen_records(records, conventions)

        assert [r.stageIndex for r in accepted] == [1]
        assert report.reasons == {REASON_BOOKKEEPING_STAGE: 1}

    def test_merge_quality_sums_reports(self):
        _, first = screen_records([make_record(Period.CURRENT, -1, 1)])
        _, second = screen_records([make_record(Period.CURRENT, 2, 1), make_record(Period.CURRENT, -3, 1)])

        merged = merge_quality(first, second)

        assert merged.accepted == 1
        assert merged.skipped == 2
        assert merged.reasons == {REASON_NEGATIVE_STAGE: 2}


# =============================================================================
# Stage Aggregation
# =============================================================================


class TestAggregate:
    """Top-level stage totals per period and filter."""

    def test_sums_counts_across_slices(self):
        records = (
            funnel(Period.CURRENT, {WORKABLE: 100, CHILD_LEAD: 60})
            + funnel(Period.CURRENT, {WORKABLE: 50, CHILD_LEAD: 20}, product_type="Personal Loan")
        )

        totals = aggregate(records, Period.CURRENT, ALL_DIMENSIONS)

        assert list(totals) == [WORKABLE, CHILD_LEAD]
        assert totals[WORKABLE].leadCount == 150
        assert totals[CHILD_LEAD].leadCount == 80
        assert totals[WORKABLE].stageName == "Workable"

    def test_only_requested_period_is_summed(self, scenario_one_records):
        current = aggregate(scenario_one_records, Period.CURRENT, ALL_DIMENSIONS)
        comparison = aggregate(scenario_one_records, Period.COMPARISON, ALL_DIMENSIONS)

        assert current[CHILD_LEAD].leadCount == 6000
        assert comparison[CHILD_LEAD].leadCount == 6500

    def test_bookkeeping_stages_never_contribute(self):
        records = [
            make_record(Period.CURRENT, WORKABLE, 100),
            make_record(Period.CURRENT, 1, 999, stage_name="Placeholder"),
            make_record(Period.CURRENT, 1000, 999, stage_name="Sentinel"),
            make_record(Period.CURRENT, 1450, 999, stage_name="Sentinel"),
        ]

        totals = aggregate(records, Period.CURRENT, ALL_DIMENSIONS)

        assert list(totals) == [WORKABLE]
        assert totals[WORKABLE].leadCount == 100

    def test_sub_stage_rows_never_contribute(self):
        records = [
            make_record(Period.CURRENT, CHILD_LEAD, 100),
            make_record(Period.CURRENT, CHILD_LEAD, 70, sub_stage="Bureau Pull"),
        ]

        totals = aggregate(records, Period.CURRENT, ALL_DIMENSIONS)

        assert totals[CHILD_LEAD].leadCount == 100

    def test_filters_are_conjunctive(self, multi_lender_records):
        ksf_term = DimensionFilter(lender="KSF", productType="Term Loan")
        ksf_personal = DimensionFilter(lender="KSF", productType="Personal Loan")

        assert aggregate(multi_lender_records, Period.CURRENT, ksf_term) == {}
        assert aggregate(multi_lender_records, Period.CURRENT, ksf_personal)[WORKABLE].leadCount == 4000

    def test_flow_filter(self, multi_lender_records):
        manual = aggregate(multi_lender_records, Period.CURRENT, DimensionFilter(flow="manual"))

        assert manual[WORKABLE].leadCount == 1500

    def test_empty_input_yields_empty_totals(self):
        assert aggregate([], Period.CURRENT, ALL_DIMENSIONS) == {}


class TestSubStages:
    """Sub-stage totals keyed by (parent stage, sub-stage)."""

    def test_keys_use_integral_parent_index(self):
        records = [
            make_record(Period.CURRENT, 5.1, 40, stage_name="KYC", sub_stage="Manual Verification"),
            make_record(Period.CURRENT, 5.2, 60, stage_name="KYC", sub_stage="Auto Verification"),
            make_record(Period.CURRENT, 5.1, 10, stage_name="KYC", sub_stage="Manual Verification", lender="KSF"),
        ]

        totals = aggregate_sub_stages(records, Period.CURRENT, ALL_DIMENSIONS)

        assert list(totals) == [(5, "Manual Verification"), (5, "Auto Verification")]
        assert totals[(5, "Manual Verification")].leadCount == 50
        assert totals[(5, "Auto Verification")].stageIndex == 5


class TestOrderedStageIndices:
    """Stage order ignores filters so adjacency is stable across views."""

    def test_order_spans_both_periods(self):
        records = funnel(Period.CURRENT, {WORKABLE: 10}) + funnel(Period.COMPARISON, {DISBURSED: 5})

        assert ordered_stage_indices(records) == [WORKABLE, DISBURSED]

    def test_filtered_series_keeps_unfiltered_order(self):
        records = (
            two_period_funnel({WORKABLE: 100, CHILD_LEAD: 50}, {WORKABLE: 100, CHILD_LEAD: 50})
            + two_period_funnel({CHILD_LEAD: 30, DISBURSED: 10}, {CHILD_LEAD: 30, DISBURSED: 10}, lender="KSF")
        )

        series, _ = build_series(records, filters=DimensionFilter(lender="KSF"))

        assert series.stage_indices == [WORKABLE, CHILD_LEAD, DISBURSED]
        assert list(series.current) == [CHILD_LEAD, DISBURSED]


# =============================================================================
# Stuck Observations
# =============================================================================


class TestStuckObservations:
    """Current stuck rates paired with comparison baselines."""

    def test_pairs_current_with_comparison_baseline(self, stuck_records):
        observations = stuck_observations(stuck_records, ALL_DIMENSIONS)

        assert len(observations) == 1
        obs = observations[0]
        assert obs.lender == "KSF"
        assert obs.stageIndex == 5
        assert obs.stuckPct == 45.0
        assert obs.baselinePct == 30.0
        assert obs.leadCount == 420

    def test_missing_baseline_defaults_to_zero(self):
        records = [
            make_record(Period.CURRENT, 6.2, 80, stage_name="Agreement", sub_stage="E-sign", stuck_pct=33.0),
        ]

        observations = stuck_observations(records, ALL_DIMENSIONS)

        assert observations[0].baselinePct == 0.0

    def test_baseline_is_scoped_to_lender(self, stuck_records):
        other_lender_baseline = make_record(
            Period.COMPARISON, 5.1, 400, lender="FULLERTON",
            stage_name="KYC", sub_stage="Manual Verification", stuck_pct=5.0,
        )

        observations = stuck_observations(stuck_records + [other_lender_baseline], ALL_DIMENSIONS)

        assert [obs.baselinePct for obs in observations] == [30.0]

    def test_non_finite_stuck_rates_are_ignored(self):
        records = [
            make_record(Period.CURRENT, 5.1, 10, sub_stage="Manual Verification", stuck_pct=math.inf),
        ]

        assert stuck_observations(records, ALL_DIMENSIONS) == []


# =============================================================================
# Series Assembly
# =============================================================================


class TestBuildSeries:
    """FunnelSeries assembly and its dimension catalog."""

    def test_missing_records_raise(self):
        with pytest.raises(MissingInputError) as exc_info:
            build_series(None)

        assert exc_info.value.name == "records"

    def test_empty_records_yield_empty_series(self):
        series, catalog = build_series([])

        assert series.stage_indices == []
        assert series.current == {}
        assert series.disbursals is None
        assert catalog.lenders == ()

    def test_catalog_lists_filtered_dimensions(self, multi_lender_records):
        _, catalog = build_series(multi_lender_records)

        assert catalog.lenders == ("FULLERTON", "KSF", "PIRAMAL")
        assert catalog.programs == ("Personal Loan", "Term Loan")
        assert catalog.flows == ("auto", "manual")

    def test_per_lender_totals(self, multi_lender_records):
        series, _ = build_series(multi_lender_records)

        assert series.lender_current["KSF"][CHILD_LEAD].leadCount == 1600
        assert series.lender_comparison["PIRAMAL"][WORKABLE].leadCount == 3000

    def test_disbursals_follow_the_filter(self, multi_lender_records):
        disbursals = [make_disbursal("KSF", 10), make_disbursal("PIRAMAL", 20)]

        series, _ = build_series(
            multi_lender_records,
            filters=DimensionFilter(lender="KSF"),
            disbursals=disbursals,
        )

        assert [row.lender for row in series.disbursals] == ["KSF"]
        assert series.filters.lender == "KSF"

    def test_quality_report_is_attached(self):
        records = [make_record(Period.CURRENT, WORKABLE, 10), make_record(Period.CURRENT, WORKABLE, -5)]

        series, _ = build_series(records)

        assert series.quality.accepted == 1
        assert series.quality.reasons == {REASON_NEGATIVE_COUNT: 1}

    def test_stage_name_falls_back_to_index(self, scenario_one_records):
        series, _ = build_series(scenario_one_records)

        assert series.stage_name(CHILD_LEAD) == "Child Lead Created"
        assert series.stage_name(42) == "Stage 42"
