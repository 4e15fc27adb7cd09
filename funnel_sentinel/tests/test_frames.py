"""
DataFrame Adapter Test Module

Tests for funnel_sentinel/services/frames.py.

Test Coverage:
- Required column validation
- Period label mapping and unknown-label skipping
- Missing and fractional lead counts skipped under their own reasons
- Sub-stage and stuck columns carried through
- Disbursal extract parsing with missing counts
- Alert export flattening
"""

import pandas as pd
import pytest

from funnel_sentinel.core.exceptions import FrameSchemaError
from funnel_sentinel.models import Period
from funnel_sentinel.services.aggregation import REASON_UNKNOWN_PERIOD, build_series
from funnel_sentinel.services.detectors import run_detectors
from funnel_sentinel.services.frames import (
    REASON_FRACTIONAL_LEAD_COUNT,
    REASON_MISSING_LEAD_COUNT,
    alerts_to_frame,
    disbursals_from_frame,
    records_from_frame,
)


@pytest.fixture
def lead_stage_frame() -> pd.DataFrame:
    """Dashboard extract with the scenario-one funnel plus noise rows."""
    return pd.DataFrame([
        {"lender": "FULLERTON", "month_start": "1.MTD", "product_type": "Term Loan", "isautoleadcreated": "auto",
         "major_index": 2, "original_major_stage": "Workable", "sub_stage": None, "leads": 10000, "stuck_pct": None},
        {"lender": "FULLERTON", "month_start": "1.MTD", "product_type": "Term Loan", "isautoleadcreated": "auto",
         "major_index": 3, "original_major_stage": "Child Lead Created", "sub_stage": None, "leads": 6000,
         "stuck_pct": None},
        {"lender": "FULLERTON", "month_start": "2.LMTD", "product_type": "Term Loan", "isautoleadcreated": "auto",
         "major_index": 2, "original_major_stage": "Workable", "sub_stage": None, "leads": 10000, "stuck_pct": None},
        {"lender": "FULLERTON", "month_start": "2.LMTD", "product_type": "Term Loan", "isautoleadcreated": "auto",
         "major_index": 3, "original_major_stage": "Child Lead Created", "sub_stage": None, "leads": 6500,
         "stuck_pct": None},
        {"lender": "FULLERTON", "month_start": "1.MTD", "product_type": "Term Loan", "isautoleadcreated": "auto",
         "major_index": 5.1, "original_major_stage": "KYC", "sub_stage": "Manual Verification", "leads": 300,
         "stuck_pct": 41.5},
        {"lender": "FULLERTON", "month_start": "3.L2MTD", "product_type": "Term Loan", "isautoleadcreated": "auto",
         "major_index": 2, "original_major_stage": "Workable", "sub_stage": None, "leads": 9000, "stuck_pct": None},
        {"lender": "FULLERTON", "month_start": "1.MTD", "product_type": "Term Loan", "isautoleadcreated": "auto",
         "major_index": 4, "original_major_stage": "Disbursed", "sub_stage": None, "leads": None, "stuck_pct": None},
    ])


class TestRecordsFromFrame:
    """Lead-stage extracts to records."""

    def test_rows_become_records(self, lead_stage_frame):
        records, report = records_from_frame(lead_stage_frame)

        assert len(records) == 5
        assert report.accepted == 5
        assert report.skipped == 2
        assert report.reasons == {REASON_MISSING_LEAD_COUNT: 1, REASON_UNKNOWN_PERIOD: 1}

    def test_period_labels_map_to_periods(self, lead_stage_frame):
        records, _ = records_from_frame(lead_stage_frame)

        assert [r.period for r in records[:4]] == [
            Period.CURRENT, Period.CURRENT, Period.COMPARISON, Period.COMPARISON,
        ]

    def test_sub_stage_row(self, lead_stage_frame):
        records, _ = records_from_frame(lead_stage_frame)

        sub = [r for r in records if r.subStage]
        assert len(sub) == 1
        assert sub[0].stageIndex == pytest.approx(5.1)
        assert sub[0].stuckPct == pytest.approx(41.5)
        assert sub[0].flow == "auto"

    def test_top_level_rows_have_no_sub_stage(self, lead_stage_frame):
        records, _ = records_from_frame(lead_stage_frame)

        assert records[0].subStage is None
        assert records[0].stuckPct is None
        assert records[0].productType == "Term Loan"

    def test_custom_labels(self, lead_stage_frame):
        records, report = records_from_frame(lead_stage_frame, current_label="3.L2MTD", comparison_label="1.MTD")

        assert sum(1 for r in records if r.period == Period.CURRENT) == 1
        assert report.reasons[REASON_UNKNOWN_PERIOD] == 2

    def test_column_names_are_case_insensitive(self, lead_stage_frame):
        frame = lead_stage_frame.rename(columns=str.upper)

        records, _ = records_from_frame(frame)

        assert len(records) == 5

    def test_missing_columns_raise(self, lead_stage_frame):
        with pytest.raises(FrameSchemaError) as exc_info:
            records_from_frame(lead_stage_frame.drop(columns=["leads", "major_index"]))

        assert exc_info.value.missing == ["major_index", "leads"]

    def test_optional_columns_may_be_absent(self):
        frame = pd.DataFrame([{
            "lender": "KSF", "month_start": "1.MTD", "major_index": 2,
            "original_major_stage": "Workable", "leads": 10,
        }])

        records, _ = records_from_frame(frame)

        assert records[0].productType == ""
        assert records[0].subStage is None

    def test_fractional_lead_counts_are_skipped(self):
        frame = pd.DataFrame([
            {"lender": "KSF", "month_start": "1.MTD", "major_index": 2,
             "original_major_stage": "Workable", "leads": 2.7},
            {"lender": "KSF", "month_start": "1.MTD", "major_index": 3,
             "original_major_stage": "Child Lead Created", "leads": 4.0},
        ])

        records, report = records_from_frame(frame)

        assert [(r.stageIndex, r.leadCount) for r in records] == [(3.0, 4)]
        assert report.reasons == {REASON_FRACTIONAL_LEAD_COUNT: 1}

    def test_records_feed_the_detectors(self, lead_stage_frame, rules):
        records, _ = records_from_frame(lead_stage_frame)
        series, catalog = build_series(records)

        alerts = run_detectors(series, catalog, rules, ["conversion_drop", "stuck_spike"])

        assert [a.category.value for a in alerts] == ["conversion_drop", "stuck_spike"]


class TestDisbursalsFromFrame:
    """Disbursal extracts to summary rows."""

    def test_rows_become_disbursals(self):
        frame = pd.DataFrame([
            {"lender": "FULLERTON", "product_type": "Term Loan", "isautoleadcreated": "auto",
             "child_leads": 900, "disbursed": 120},
            {"lender": "KSF", "product_type": "Term Loan", "isautoleadcreated": "manual",
             "child_leads": None, "disbursed": None},
        ])

        rows = disbursals_from_frame(frame)

        assert [(r.lender, r.disbursedCount, r.childLeadCount) for r in rows] == [
            ("FULLERTON", 120, 900),
            ("KSF", 0, 0),
        ]
        assert rows[1].flow == "manual"

    def test_missing_disbursed_column_raises(self):
        with pytest.raises(FrameSchemaError):
            disbursals_from_frame(pd.DataFrame([{"lender": "KSF"}]))


class TestAlertsToFrame:
    """Alert export."""

    def test_flattens_alerts(self, scenario_one_records, rules):
        series, catalog = build_series(scenario_one_records)
        alerts = run_detectors(series, catalog, rules)

        frame = alerts_to_frame(alerts)

        assert list(frame["id"]) == ["conv-overall-0"]
        assert frame.loc[0, "category"] == "conversion_drop"
        assert "drilldown" not in frame.columns

    def test_empty_list(self):
        assert alerts_to_frame([]).empty
