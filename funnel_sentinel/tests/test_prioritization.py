"""
Prioritization Test Module

Tests for funnel_sentinel/services/prioritization.py.

Test Coverage:
- Ranking is a stable total order and idempotent
- Filters treat None and "All" as wildcards
- Summary and category roll-ups
- Category weights for alert briefing items
- Positive and emerging signals from the funnel series
- Bucket assignment rules and bucket ordering
"""

from datetime import date

import pytest

from funnel_sentinel.models import (
    Alert,
    AlertCategory,
    AlertSeverity,
    AlertStatus,
    BriefingItem,
    BriefingSignal,
    BriefingTone,
    DetectionRules,
    PriorityBucket,
)
from funnel_sentinel.services.aggregation import build_series
from funnel_sentinel.services.prioritization import (
    alert_briefing_items,
    bucket_for,
    bucket_items,
    category_breakdown,
    filter_alerts,
    rank_alerts,
    signal_briefing_items,
    summarize_alerts,
)
from funnel_sentinel.tests.conftest import two_period_funnel


def make_alert(
    alert_id: str,
    severity: AlertSeverity = AlertSeverity.MEDIUM,
    category: AlertCategory = AlertCategory.CONVERSION_DROP,
    impact_cr: float = 1.0,
    impact_leads: int = 10,
    lender=None,
    change: float = -5.0,
    status: AlertStatus = AlertStatus.RECURRING,
    needs_attention: bool = False,
) -> Alert:
    return Alert(
        id=alert_id,
        category=category,
        severity=severity,
        status=status,
        title=f"Alert {alert_id}",
        description="",
        impactLeads=impact_leads,
        impactCr=impact_cr,
        lender=lender,
        metricValue=0.0,
        baselineValue=0.0,
        changePct=change,
        needsAttention=needs_attention,
    )


@pytest.fixture
def mixed_alerts():
    return [
        make_alert("conc-0", AlertSeverity.MEDIUM, AlertCategory.CONCENTRATION, impact_cr=0.0, status=AlertStatus.KNOWN),
        make_alert("conv-overall-1", AlertSeverity.HIGH, impact_cr=2.0, change=-5.0, needs_attention=True),
        make_alert("conv-lender-0", AlertSeverity.MEDIUM, impact_cr=0.5, lender="KSF", change=-6.0),
        make_alert(
            "aop-0", AlertSeverity.CRITICAL, AlertCategory.AOP_RISK,
            impact_cr=4.0, lender="FULLERTON", status=AlertStatus.KNOWN, needs_attention=True,
        ),
        make_alert(
            "conv-overall-0", AlertSeverity.CRITICAL, impact_cr=6.0, change=-10.0,
            status=AlertStatus.NEW, needs_attention=True,
        ),
        make_alert(
            "aop-total-0", AlertSeverity.HIGH, AlertCategory.AOP_RISK,
            impact_cr=2.0, status=AlertStatus.KNOWN, needs_attention=True,
        ),
    ]


# =============================================================================
# Ranking and Roll-ups
# =============================================================================


class TestRanking:
    """Severity-then-impact ordering."""

    def test_rank_order(self, mixed_alerts):
        ranked = rank_alerts(mixed_alerts)

        assert [a.id for a in ranked] == [
            "conv-overall-0",
            "aop-0",
            "conv-overall-1",
            "aop-total-0",
            "conv-lender-0",
            "conc-0",
        ]

    def test_ties_keep_input_order(self, mixed_alerts):
        ranked = rank_alerts(mixed_alerts)
        high = [a.id for a in ranked if a.severity == AlertSeverity.HIGH]

        assert high == ["conv-overall-1", "aop-total-0"]

    def test_ranking_is_idempotent(self, mixed_alerts):
        once = rank_alerts(mixed_alerts)

        assert rank_alerts(once) == once

    def test_filter_by_severity(self, mixed_alerts):
        assert {a.id for a in filter_alerts(mixed_alerts, severity="critical")} == {"conv-overall-0", "aop-0"}

    def test_filter_wildcards(self, mixed_alerts):
        assert filter_alerts(mixed_alerts) == mixed_alerts
        assert filter_alerts(mixed_alerts, severity="All", status="All", category="All") == mixed_alerts

    def test_filters_are_conjunctive(self, mixed_alerts):
        kept = filter_alerts(mixed_alerts, status="known", category="aop_risk", severity="high")

        assert [a.id for a in kept] == ["aop-total-0"]

    def test_summary(self, mixed_alerts):
        summary = summarize_alerts(mixed_alerts)

        assert summary.total == 6
        assert summary.critical == 2
        assert summary.high == 2
        assert summary.needsAttention == 4
        assert summary.newAlerts == 1
        assert summary.totalImpactCr == pytest.approx(14.5)
        assert summary.totalImpactLeads == 60

    def test_empty_summary(self):
        summary = summarize_alerts([])

        assert summary.total == 0
        assert summary.totalImpactCr == 0.0

    def test_category_breakdown(self, mixed_alerts):
        breakdown = category_breakdown(mixed_alerts)

        assert [item.category for item in breakdown] == [
            AlertCategory.CONVERSION_DROP,
            AlertCategory.AOP_RISK,
            AlertCategory.CONCENTRATION,
        ]
        assert breakdown[0].count == 3
        assert breakdown[0].impactCr == pytest.approx(8.5)


# =============================================================================
# Briefing Items
# =============================================================================


class TestAlertBriefingItems:
    """Alerts to weighted briefing items."""

    def test_weights_and_tones(self, mixed_alerts):
        items = {item.alertId: item for item in alert_briefing_items(mixed_alerts)}

        assert items["aop-total-0"].impactWeight == 100
        assert items["conv-overall-0"].impactWeight == 85
        assert items["conv-overall-1"].impactWeight == 82
        assert items["aop-0"].impactWeight == 80
        assert items["conv-lender-0"].impactWeight == 60
        assert items["conc-0"].impactWeight == 15

        assert items["conv-overall-0"].tone == BriefingTone.BAD
        assert items["conv-lender-0"].tone == BriefingTone.WARN
        assert items["conc-0"].id == "alert-conc-0"

    def test_one_item_per_alert(self, mixed_alerts):
        assert len(alert_briefing_items(mixed_alerts)) == len(mixed_alerts)


class TestSignalBriefingItems:
    """Positive and emerging signals."""

    def test_stage_gain_stable_and_slip(self, mid_month):
        # 2->3: 65% -> 70% (gain); 3->4: 80% -> 80% (stable); 4->5: 51.9% -> 50% (slip)
        records = two_period_funnel(
            {2: 1000, 3: 700, 4: 560, 5: 280},
            {2: 1000, 3: 650, 4: 520, 5: 270},
        )
        series, _ = build_series(records, as_of_date=mid_month)
        rules = DetectionRules(lenderAnnualTargets={"FULLERTON": 120})

        items = {item.id: item for item in signal_briefing_items(series, rules)}

        assert set(items) == {
            "stage-gain-3",
            "stable-stages",
            "stage-slip-5",
            "aop-on-track-FULLERTON",
        }
        assert items["stage-gain-3"].tone == BriefingTone.GOOD
        assert items["stage-gain-3"].impactWeight == 50
        assert items["stable-stages"].tone == BriefingTone.INFO
        assert items["stable-stages"].title == "1 stage holding steady"
        assert items["stage-slip-5"].signal == BriefingSignal.STAGE_SLIP
        assert items["stage-slip-5"].impactWeight == 25

    def test_lender_growth_and_slip(self):
        records = (
            two_period_funnel({2: 1000, 3: 500}, {2: 1000, 3: 450}, lender="FULLERTON")
            + two_period_funnel({2: 1000, 3: 480}, {2: 1000, 3: 500}, lender="KSF")
        )
        series, _ = build_series(records, as_of_date=date(2026, 6, 15))

        items = {item.id: item for item in signal_briefing_items(series, DetectionRules())}

        assert items["lender-growth-FULLERTON"].impactWeight == 40
        assert items["lender-growth-FULLERTON"].lender == "FULLERTON"
        assert items["lender-slip-KSF"].tone == BriefingTone.WARN
        assert items["lender-slip-KSF"].impactWeight == 30
        assert not any(key.startswith("aop-on-track") for key in items)

    def test_empty_series_has_no_signals(self):
        series, _ = build_series([])

        assert signal_briefing_items(series, DetectionRules()) == []


# =============================================================================
# Bucketing
# =============================================================================


def item(tone, weight, signal=BriefingSignal.ALERT) -> BriefingItem:
    return BriefingItem(id=f"{tone.value}-{weight}", title="", tone=tone, impactWeight=weight, signal=signal)


class TestBucketing:
    """Priority bucket rules."""

    @pytest.mark.parametrize("tone,weight,signal,expected", [
        (BriefingTone.GOOD, 50, BriefingSignal.STAGE_GAIN, PriorityBucket.POSITIVE),
        (BriefingTone.INFO, 10, BriefingSignal.STABLE_STAGES, PriorityBucket.POSITIVE),
        (BriefingTone.BAD, 85, BriefingSignal.ALERT, PriorityBucket.P0),
        (BriefingTone.BAD, 80, BriefingSignal.ALERT, PriorityBucket.P0),
        (BriefingTone.BAD, 60, BriefingSignal.ALERT, PriorityBucket.P1),
        (BriefingTone.WARN, 60, BriefingSignal.ALERT, PriorityBucket.P1),
        (BriefingTone.WARN, 50, BriefingSignal.ALERT, PriorityBucket.P2),
        (BriefingTone.WARN, 15, BriefingSignal.ALERT, PriorityBucket.P3),
        (BriefingTone.WARN, 30, BriefingSignal.LENDER_SLIP, PriorityBucket.EMERGING),
        (BriefingTone.WARN, 25, BriefingSignal.STAGE_SLIP, PriorityBucket.EMERGING),
        (BriefingTone.WARN, 30, BriefingSignal.STAGE_SLIP, PriorityBucket.P3),
    ])
    def test_bucket_for(self, tone, weight, signal, expected):
        assert bucket_for(item(tone, weight, signal)) == expected

    def test_all_buckets_present_in_display_order(self):
        buckets = bucket_items([])

        assert list(buckets) == ["P0", "P1", "P2", "P3", "emerging", "positive"]
        assert all(members == [] for members in buckets.values())

    def test_buckets_sorted_by_weight(self, mixed_alerts):
        buckets = bucket_items(alert_briefing_items(mixed_alerts))

        assert [i.alertId for i in buckets["P0"]] == [
            "aop-total-0",
            "conv-overall-0",
            "conv-overall-1",
            "aop-0",
        ]
        assert [i.alertId for i in buckets["P1"]] == ["conv-lender-0"]
        assert [i.alertId for i in buckets["P3"]] == ["conc-0"]
