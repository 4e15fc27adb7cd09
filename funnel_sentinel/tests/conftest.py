"""
Pytest Configuration and Shared Fixtures for Funnel Sentinel Tests.

Provides:
- Custom markers (parity, slow)
- Record builders for lead-stage and disbursal data
- The worked scenarios used by the parity tests
- Default detection rules and a pinned reporting date

Stage indices in fixtures start at 2: index 1 is a bookkeeping placeholder
and never aggregates.
"""

from datetime import date
from typing import Dict, List, Optional

import pytest

from funnel_sentinel.core.config import DEFAULT_LENDER_ANNUAL_TARGETS
from funnel_sentinel.models import (
    DetectionRules,
    DisbursalSummaryRow,
    LeadStageRecord,
    Period,
)


# ============================================================
# PYTEST PLUGINS CONFIGURATION
# ============================================================

pytest_plugins: List[str] = ['pytest_asyncio']


# ============================================================
# PYTEST HOOKS
# ============================================================

def pytest_configure(config) -> None:
    """
    Register custom markers.

    - parity: worked scenarios with known expected alerts
    - slow: larger synthetic datasets (deselect with -m "not slow")
    """
    config.addinivalue_line(
        'markers',
        'parity: marks worked-scenario tests with known expected outputs'
    )
    config.addinivalue_line(
        'markers',
        'slow: marks tests as slow (deselect with -m "not slow")'
    )


# ============================================================
# RECORD BUILDERS
# ============================================================

WORKABLE = 2
CHILD_LEAD = 3
DISBURSED = 4

STAGE_NAMES: Dict[int, str] = {
    WORKABLE: "Workable",
    CHILD_LEAD: "Child Lead Created",
    DISBURSED: "Disbursed",
}


def make_record(
    period: Period,
    stage_index: float,
    lead_count: int,
    lender: str = "FULLERTON",
    stage_name: Optional[str] = None,
    product_type: str = "Term Loan",
    flow: str = "auto",
    sub_stage: Optional[str] = None,
    stuck_pct: Optional[float] = None,
) -> LeadStageRecord:
    """Build one LeadStageRecord with sensible defaults."""
    if stage_name is None:
        stage_name = STAGE_NAMES.get(stage_index, f"Stage {stage_index:g}")
    return LeadStageRecord(
        period=period,
        stageIndex=stage_index,
        stageName=stage_name,
        subStage=sub_stage,
        lender=lender,
        productType=product_type,
        flow=flow,
        leadCount=lead_count,
        stuckPct=stuck_pct,
    )


def funnel(
    period: Period,
    counts: Dict[int, int],
    lender: str = "FULLERTON",
    **kwargs,
) -> List[LeadStageRecord]:
    """Build top-level records for one lender from {stageIndex: leadCount}."""
    return [
        make_record(period, index, count, lender=lender, **kwargs)
        for index, count in counts.items()
    ]


def two_period_funnel(
    current: Dict[int, int],
    comparison: Dict[int, int],
    lender: str = "FULLERTON",
    **kwargs,
) -> List[LeadStageRecord]:
    """Current and comparison records for one lender."""
    return (
        funnel(Period.CURRENT, current, lender=lender, **kwargs)
        + funnel(Period.COMPARISON, comparison, lender=lender, **kwargs)
    )


def make_disbursal(lender: str, disbursed: int, child_leads: int = 0) -> DisbursalSummaryRow:
    return DisbursalSummaryRow(
        lender=lender,
        productType="Term Loan",
        flow="auto",
        disbursedCount=disbursed,
        childLeadCount=child_leads,
    )


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def rules() -> DetectionRules:
    """Default detection rules with the standard lender targets."""
    return DetectionRules(
        avgTicketSizeLakhs=2.5,
        lenderAnnualTargets=dict(DEFAULT_LENDER_ANNUAL_TARGETS),
    )


@pytest.fixture
def mid_month() -> date:
    """Day 15 of a 30-day month."""
    return date(2026, 6, 15)


@pytest.fixture
def scenario_one_records() -> List[LeadStageRecord]:
    """
    Child-lead conversion falls from 65% to 60% (-5pp) on a flat top of funnel.

    MTD  {Workable: 10000, Child: 6000, Disbursed: 1200}
    LMTD {Workable: 10000, Child: 6500, Disbursed: 1430}
    """
    return two_period_funnel(
        current={WORKABLE: 10000, CHILD_LEAD: 6000, DISBURSED: 1200},
        comparison={WORKABLE: 10000, CHILD_LEAD: 6500, DISBURSED: 1430},
    )


@pytest.fixture
def multi_lender_records() -> List[LeadStageRecord]:
    """
    Three lenders: KSF collapses at child-lead creation, PIRAMAL loses
    volume, FULLERTON is steady.
    """
    return (
        two_period_funnel(
            current={WORKABLE: 5000, CHILD_LEAD: 3000, DISBURSED: 600},
            comparison={WORKABLE: 5000, CHILD_LEAD: 3000, DISBURSED: 600},
            lender="FULLERTON",
        )
        + two_period_funnel(
            current={WORKABLE: 4000, CHILD_LEAD: 1600, DISBURSED: 320},
            comparison={WORKABLE: 4000, CHILD_LEAD: 2800, DISBURSED: 560},
            lender="KSF",
            product_type="Personal Loan",
        )
        + two_period_funnel(
            current={WORKABLE: 1500, CHILD_LEAD: 900, DISBURSED: 180},
            comparison={WORKABLE: 3000, CHILD_LEAD: 1800, DISBURSED: 360},
            lender="PIRAMAL",
            flow="manual",
        )
    )


@pytest.fixture
def stuck_records() -> List[LeadStageRecord]:
    """
    A sub-stage whose stuck rate rises from 30% to 45%.
    """
    return [
        make_record(
            Period.COMPARISON, 5.1, 400, lender="KSF",
            stage_name="KYC", sub_stage="Manual Verification", stuck_pct=30.0,
        ),
        make_record(
            Period.CURRENT, 5.1, 420, lender="KSF",
            stage_name="KYC", sub_stage="Manual Verification", stuck_pct=45.0,
        ),
    ]


@pytest.fixture
def concentrated_disbursals() -> List[DisbursalSummaryRow]:
    """Top-2 lenders hold 70% of disbursals."""
    return [
        make_disbursal("FULLERTON", 400),
        make_disbursal("KSF", 300),
        make_disbursal("PIRAMAL", 200),
        make_disbursal("SHRIRAM", 100),
    ]

