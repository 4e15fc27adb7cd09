"""
Alert Prioritization Service

Ranks alerts, rolls them up and sorts briefing items into actionable tiers.

Ranking:
    Total order by (severity priority asc, impactCr desc). The sort is stable,
    so ties keep their input order and re-ranking a ranked list is a no-op.

Briefing items:
    Every alert becomes a briefing item (critical/high -> bad tone,
    medium/low -> warn) with an impactWeight drawn from a per-category
    weight table. The funnel series also contributes positive signals
    (stage gains, growing lenders, lenders on AOP pace, stable stages) and
    emerging signals (small slips on lenders or stages that were stable).

Bucketing (reads impactWeight, never recomputes it):
    good/info tone                                   -> positive
    warn, weight < 35, lender slip (or stage slip
        with weight < 30)                            -> emerging
    bad and weight >= 80                             -> P0
    bad, or warn and weight >= 60                    -> P1
    warn and weight >= 35                            -> P2
    anything else                                    -> P3
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from funnel_sentinel.models.enums import (
    SEVERITY_PRIORITY,
    AlertCategory,
    AlertSeverity,
    AlertStatus,
    BriefingSignal,
    BriefingTone,
    PriorityBucket,
)
from funnel_sentinel.models.schemas import (
    ALL,
    Alert,
    AlertSummary,
    BriefingItem,
    CategoryBreakdownItem,
    DetectionRules,
)
from funnel_sentinel.services.aggregation import FunnelSeries
from funnel_sentinel.services.conversion import (
    compute_conversions,
    compute_lender_performance,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Ranking and Roll-ups
# =============================================================================


def rank_alerts(alerts: Iterable[Alert]) -> List[Alert]:
    """Stable sort by severity priority, then impactCr descending."""
    return sorted(alerts, key=lambda alert: (SEVERITY_PRIORITY[alert.severity], -alert.impactCr))


def filter_alerts(
    alerts: Iterable[Alert],
    severity: Optional[str] = None,
    status: Optional[str] = None,
    category: Optional[str] = None,
) -> List[Alert]:
    """
    Keep alerts matching every given value. None or "All" matches anything.
    """
    def _keep(value, wanted: Optional[str]) -> bool:
        return wanted is None or wanted == ALL or value.value == wanted

    return [
        alert for alert in alerts
        if _keep(alert.severity, severity)
        and _keep(alert.status, status)
        and _keep(alert.category, category)
    ]


def summarize_alerts(alerts: List[Alert]) -> AlertSummary:
    """Headline counts and total impact over a run's alerts."""
    return AlertSummary(
        total=len(alerts),
        critical=sum(1 for a in alerts if a.severity == AlertSeverity.CRITICAL),
        high=sum(1 for a in alerts if a.severity == AlertSeverity.HIGH),
        needsAttention=sum(1 for a in alerts if a.needsAttention),
        newAlerts=sum(1 for a in alerts if a.status == AlertStatus.NEW),
        totalImpactCr=round(sum(a.impactCr for a in alerts), 2),
        totalImpactLeads=sum(a.impactLeads for a in alerts),
    )


def category_breakdown(alerts: List[Alert]) -> List[CategoryBreakdownItem]:
    """Count and impact per category, highest impactCr first."""
    grouped: Dict[AlertCategory, List[Alert]] = {}
    for alert in alerts:
        grouped.setdefault(alert.category, []).append(alert)

    items = [
        CategoryBreakdownItem(
            category=category,
            count=len(members),
            impactCr=round(sum(a.impactCr for a in members), 2),
            impactLeads=sum(a.impactLeads for a in members),
        )
        for category, members in grouped.items()
    ]
    items.sort(key=lambda item: -item.impactCr)
    return items


# =============================================================================
# Briefing Items
# =============================================================================

# Weight per alert category; lender-scoped alerts use the second value
ALERT_IMPACT_WEIGHTS: Dict[AlertCategory, Tuple[int, int]] = {
    AlertCategory.AOP_RISK: (100, 80),
    AlertCategory.CONVERSION_DROP: (85, 60),
    AlertCategory.VOLUME_DIP: (70, 60),
    AlertCategory.STUCK_SPIKE: (55, 55),
    AlertCategory.ANOMALY: (50, 50),
    AlertCategory.CONCENTRATION: (15, 15),
}

# Overall conversion drops step down by this much per rank (85, 82, 79, ...)
STAGE_DROP_WEIGHT_STEP = 3


def _tone_for(severity: AlertSeverity) -> BriefingTone:
    if severity in (AlertSeverity.CRITICAL, AlertSeverity.HIGH):
        return BriefingTone.BAD
    return BriefingTone.WARN


def alert_briefing_items(alerts: List[Alert]) -> List[BriefingItem]:
    """
    One briefing item per alert, weighted by category.

    Overall conversion drops are weighted by how deep they are: the worst
    gets the full category weight and each next one steps down.
    """
    overall_drops = sorted(
        (a for a in alerts if a.category == AlertCategory.CONVERSION_DROP and a.lender is None),
        key=lambda a: a.changePct,
    )
    drop_rank = {alert.id: rank for rank, alert in enumerate(overall_drops)}

    items = []
    for alert in alerts:
        overall_weight, lender_weight = ALERT_IMPACT_WEIGHTS[alert.category]
        weight = overall_weight if alert.lender is None else lender_weight
        if alert.id in drop_rank:
            weight = max(weight - STAGE_DROP_WEIGHT_STEP * drop_rank[alert.id], 0)

        items.append(BriefingItem(
            id=f"alert-{alert.id}",
            title=alert.title,
            detail=alert.description,
            tone=_tone_for(alert.severity),
            impactWeight=weight,
            signal=BriefingSignal.ALERT,
            alertId=alert.id,
            lender=alert.lender,
        ))
    return items


def signal_briefing_items(series: FunnelSeries, rules: DetectionRules) -> List[BriefingItem]:
    """
    Positive and emerging signals derived from the funnel series.

    Positive: stage conversion up > 1pp (weight 50-2i), lender funnel
    conversion up > 2pp (40-i), lenders pacing >= 80% of AOP (20), stable
    stages with |delta| <= 1pp and conversion > 60% (10).
    Emerging: lender funnel conversion down 1-3pp (30-i), stage conversion
    down 1-3pp (25-i).
    """
    items: List[BriefingItem] = []
    points = compute_conversions(series.current, series.comparison, series.stage_indices)
    lenders = compute_lender_performance(series, rules)

    gains = sorted((p for p in points if p.deltaPct > 1), key=lambda p: -p.deltaPct)
    for i, point in enumerate(gains):
        items.append(BriefingItem(
            id=f"stage-gain-{point.toStage}",
            title=f"{point.stageName} conversion up {point.deltaPct:.1f}pp",
            detail=f"{point.comparisonPct:.1f}% -> {point.currentPct:.1f}%",
            tone=BriefingTone.GOOD,
            impactWeight=max(50 - 2 * i, 0),
            signal=BriefingSignal.STAGE_GAIN,
        ))

    growing = sorted((row for row in lenders if row.deltaPct > 2), key=lambda row: -row.deltaPct)
    for i, row in enumerate(growing):
        items.append(BriefingItem(
            id=f"lender-growth-{row.lender}",
            title=f"{row.lender} funnel conversion up {row.deltaPct:.1f}pp",
            detail=f"{row.comparisonFunnelPct:.2f}% -> {row.currentFunnelPct:.2f}%",
            tone=BriefingTone.GOOD,
            impactWeight=max(40 - i, 0),
            signal=BriefingSignal.LENDER_GROWTH,
            lender=row.lender,
        ))

    for row in lenders:
        if row.lender in rules.lenderAnnualTargets and row.aopPacingPct >= 80:
            items.append(BriefingItem(
                id=f"aop-on-track-{row.lender}",
                title=f"{row.lender} pacing at {row.aopPacingPct:.0f}% of AOP",
                tone=BriefingTone.GOOD,
                impactWeight=20,
                signal=BriefingSignal.AOP_ON_TRACK,
                lender=row.lender,
            ))

    stable = [p for p in points if abs(p.deltaPct) <= 1 and p.currentPct > 60]
    if stable:
        items.append(BriefingItem(
            id="stable-stages",
            title=f"{len(stable)} stage{'s' if len(stable) != 1 else ''} holding steady",
            detail=", ".join(p.stageName for p in stable),
            tone=BriefingTone.INFO,
            impactWeight=10,
            signal=BriefingSignal.STABLE_STAGES,
        ))

    slipping = sorted((row for row in lenders if -3 <= row.deltaPct < -1), key=lambda row: row.deltaPct)
    for i, row in enumerate(slipping):
        items.append(BriefingItem(
            id=f"lender-slip-{row.lender}",
            title=f"{row.lender} funnel conversion slipping {abs(row.deltaPct):.1f}pp",
            detail=f"{row.comparisonFunnelPct:.2f}% -> {row.currentFunnelPct:.2f}%",
            tone=BriefingTone.WARN,
            impactWeight=max(30 - i, 0),
            signal=BriefingSignal.LENDER_SLIP,
            lender=row.lender,
        ))

    stage_slips = sorted((p for p in points if -3 <= p.deltaPct < -1), key=lambda p: p.deltaPct)
    for i, point in enumerate(stage_slips):
        items.append(BriefingItem(
            id=f"stage-slip-{point.toStage}",
            title=f"{point.stageName} conversion slipping {abs(point.deltaPct):.1f}pp",
            detail=f"{point.comparisonPct:.1f}% -> {point.currentPct:.1f}%",
            tone=BriefingTone.WARN,
            impactWeight=max(25 - i, 0),
            signal=BriefingSignal.STAGE_SLIP,
        ))

    return items


# =============================================================================
# Bucketing
# =============================================================================


def bucket_for(item: BriefingItem) -> PriorityBucket:
    """Assign one briefing item to its priority bucket."""
    tone = item.tone
    weight = item.impactWeight

    if tone in (BriefingTone.GOOD, BriefingTone.INFO):
        return PriorityBucket.POSITIVE
    if tone == BriefingTone.WARN and weight < 35:
        if item.signal == BriefingSignal.LENDER_SLIP:
            return PriorityBucket.EMERGING
        if item.signal == BriefingSignal.STAGE_SLIP and weight < 30:
            return PriorityBucket.EMERGING
    if tone == BriefingTone.BAD and weight >= 80:
        return PriorityBucket.P0
    if tone == BriefingTone.BAD or (tone == BriefingTone.WARN and weight >= 60):
        return PriorityBucket.P1
    if tone == BriefingTone.WARN and weight >= 35:
        return PriorityBucket.P2
    return PriorityBucket.P3


def bucket_items(items: Iterable[BriefingItem]) -> Dict[str, List[BriefingItem]]:
    """
    Group briefing items by bucket, each bucket sorted by impactWeight desc.

    Every bucket key is present, in display order, even when empty.
    """
    buckets: Dict[str, List[BriefingItem]] = {bucket.value: [] for bucket in PriorityBucket}
    for item in items:
        buckets[bucket_for(item).value].append(item)
    for members in buckets.values():
        members.sort(key=lambda item: -item.impactWeight)

    logger.debug(
        "Bucketed briefing items: "
        + ", ".join(f"{key}={len(members)}" for key, members in buckets.items())
    )
    return buckets


__all__ = [
    "rank_alerts",
    "filter_alerts",
    "summarize_alerts",
    "category_breakdown",
    "ALERT_IMPACT_WEIGHTS",
    "alert_briefing_items",
    "signal_briefing_items",
    "bucket_for",
    "bucket_items",
]
