"""
Anomaly Detection Service

Threshold-based detectors that turn an aggregated FunnelSeries into typed,
attributable alerts. Every detector shares one signature:

    detect(series, catalog, rules) -> List[Alert]

and registers itself with @register_detector, so the catalog is an open set
that runs in registration order and each detector can be exercised alone.

Detectors (thresholds live in DetectionRules.thresholds):
- conversion_drop: stage-to-stage conversion fell (overall and per lender)
- volume_dip: first-stage volume fell (overall and per lender)
- stuck_spike: sub-stage stuck rate spiked
- aop_pacing: projected month-end disbursal behind AOP (per lender and overall)
- concentration: top lenders hold too much of the disbursal mix

Overall and per-lender variants of the same detector carry different
thresholds (e.g. -3pp vs -5pp conversion drop). Both are kept as configured.

Zero baselines mean "no prior signal": relative-change alerts are suppressed
rather than divided by zero.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Type

from funnel_sentinel.core.exceptions import UnknownDetectorError
from funnel_sentinel.models.enums import AlertCategory, AlertSeverity, AlertStatus
from funnel_sentinel.models.schemas import (
    ALL,
    Alert,
    AlertDrilldown,
    ConversionPoint,
    DetectionRules,
    LenderStageDelta,
    StageTotals,
)
from funnel_sentinel.services.aggregation import DimensionCatalog, FunnelSeries
from funnel_sentinel.services.classification import (
    classify_drop,
    classify_rise,
    conversion_drop_status,
    fires_above,
    fires_below,
    needs_attention,
    stuck_status,
)
from funnel_sentinel.services.conversion import (
    compute_conversions,
    conversion_pct,
    relative_change_pct,
)
from funnel_sentinel.services.impact import (
    aop_gap_pct,
    downstream_conversion_pct,
    estimate_impact,
    loans_to_crore,
    project_month_end,
    round_half_up,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Detector Base and Registry
# =============================================================================


class AnomalyDetector(ABC):
    """
    Base class for all funnel anomaly detectors.

    Subclasses set a unique `name` and the `category` of the alerts they
    emit, and implement detect(). Detectors hold no state between runs.
    """

    name: str = "anomaly"
    category: AlertCategory = AlertCategory.ANOMALY

    @abstractmethod
    def detect(
        self,
        series: FunnelSeries,
        catalog: DimensionCatalog,
        rules: DetectionRules,
    ) -> List[Alert]:
        """Return zero or more alerts for the given series."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r}>"


_REGISTRY: Dict[str, Type[AnomalyDetector]] = {}


def register_detector(cls: Type[AnomalyDetector]) -> Type[AnomalyDetector]:
    """Class decorator adding a detector to the run catalog."""
    _REGISTRY[cls.name] = cls
    logger.debug(f"Registered detector: {cls.name}")
    return cls


def registered_detectors() -> List[str]:
    """Names of registered detectors, in run order."""
    return list(_REGISTRY)


def get_detector(name: str) -> AnomalyDetector:
    """Instantiate a detector by name. Raises UnknownDetectorError if missing."""
    try:
        return _REGISTRY[name]()
    except KeyError:
        raise UnknownDetectorError(name, registered_detectors()) from None


def run_detectors(
    series: FunnelSeries,
    catalog: DimensionCatalog,
    rules: DetectionRules,
    names: Optional[Sequence[str]] = None,
) -> List[Alert]:
    """
    Run the selected detectors (all registered when names is None).

    Args:
        series: Aggregated funnel series
        catalog: Dimension values in scope
        rules: Effective detection rules
        names: Optional subset of detector names

    Returns:
        Alerts in detector order, unranked

    Raises:
        UnknownDetectorError: If a requested name is not registered
    """
    detectors = [get_detector(name) for name in (names if names is not None else registered_detectors())]

    alerts: List[Alert] = []
    for detector in detectors:
        emitted = detector.detect(series, catalog, rules)
        logger.debug(f"Detector {detector.name} emitted {len(emitted)} alerts")
        alerts.extend(emitted)
    return alerts


# =============================================================================
# Helpers
# =============================================================================


def _count(totals: Dict[int, StageTotals], stage_index: int) -> int:
    entry = totals.get(stage_index)
    return entry.leadCount if entry is not None else 0


def _r2(value: float) -> float:
    return round(value, 2)


def build_drilldown(series: FunnelSeries, point: ConversionPoint, max_lenders: int = 5) -> AlertDrilldown:
    """
    Sub-stage hypotheses and worst per-lender deltas behind a stage-level drop.

    A sub-stage whose volume fell more than 10% vs the comparison window, rose
    more than 20%, or went to zero from more than 10 leads yields a
    hypothesis. When none does, the drop is reported as systemic.
    """
    stage = point.toStage
    current = {sub: totals.leadCount for (index, sub), totals in series.sub_current.items() if index == stage}
    comparison = {sub: totals.leadCount for (index, sub), totals in series.sub_comparison.items() if index == stage}

    hypotheses = []
    sub_stages = list(current) + [sub for sub in comparison if sub not in current]
    for sub in sub_stages:
        now = current.get(sub, 0)
        before = comparison.get(sub, 0)
        change = relative_change_pct(now, before)
        if change is not None and change < -10:
            hypotheses.append(
                f'Sub-stage "{sub}" volume dropped {abs(change):.0f}% ({before:,} -> {now:,})'
            )
        elif change is not None and change > 20:
            hypotheses.append(
                f'Sub-stage "{sub}" volume increased {change:.0f}%, possible quality change'
            )
        if now == 0 and before > 10:
            hypotheses.append(
                f'Sub-stage "{sub}" shows zero leads vs {before:,} last period, possible blockage'
            )

    if not hypotheses:
        hypotheses.append(
            f'No significant sub-stage anomalies detected; drop may be systemic at "{point.stageName}" level'
        )

    deltas = []
    for lender in sorted(series.lender_current):
        lender_now = series.lender_current[lender]
        lender_before = series.lender_comparison.get(lender, {})
        delta = _r2(
            conversion_pct(_count(lender_now, stage), _count(lender_now, point.fromStage))
            - conversion_pct(_count(lender_before, stage), _count(lender_before, point.fromStage))
        )
        if delta != 0:
            deltas.append(LenderStageDelta(lender=lender, deltaPct=delta))
    deltas.sort(key=lambda item: item.deltaPct)

    return AlertDrilldown(
        stage=point.stageName,
        hypotheses=hypotheses,
        lenderDeltas=deltas[:max_lenders],
    )


# =============================================================================
# Detectors
# =============================================================================


@register_detector
class ConversionDropDetector(AnomalyDetector):
    """
    Stage conversion fell vs the comparison window.

    Overall drops estimate impact with today's downstream conversion from the
    dropping stage to the final stage; per-lender drops use a fixed
    configured downstream rate.
    """

    name = "conversion_drop"
    category = AlertCategory.CONVERSION_DROP

    def detect(self, series, catalog, rules):
        return self._overall(series, rules) + self._per_lender(series, catalog, rules)

    def _overall(self, series: FunnelSeries, rules: DetectionRules) -> List[Alert]:
        t = rules.thresholds.conversionDrop
        indices = series.stage_indices
        if len(indices) < 2:
            return []

        final_count = _count(series.current, indices[-1])
        alerts = []
        for point in compute_conversions(series.current, series.comparison, indices):
            delta = point.deltaPct
            if not fires_below(delta, t.overallTrigger):
                continue

            dropped = round_half_up(_count(series.current, point.fromStage) * abs(delta) / 100)
            downstream = downstream_conversion_pct(final_count, _count(series.current, point.toStage))
            impact = estimate_impact(dropped, downstream, rules.avgTicketSizeLakhs)
            severity = classify_drop(delta, t.overallCritical, t.overallHigh)

            alerts.append(Alert(
                id=f"conv-overall-{len(alerts)}",
                category=self.category,
                severity=severity,
                status=conversion_drop_status(point.comparisonPct, delta, t),
                title=f"{point.stageName} conversion dropped {abs(delta):.1f}pp",
                description=(
                    f'The "{point.stageName}" stage conversion has fallen from '
                    f"{point.comparisonPct:.1f}% to {point.currentPct:.1f}%, a "
                    f"{abs(delta):.1f} percentage-point decline. Roughly {dropped:,} "
                    f"additional leads are being lost at this stage, which could mean "
                    f"~{impact.lostLoans:,} fewer disbursals (₹{impact.impactCr:.1f} Cr)."
                ),
                impactLeads=dropped,
                impactCr=_r2(impact.impactCr),
                stage=point.stageName,
                stageIndex=point.toStage,
                metricValue=_r2(point.currentPct),
                baselineValue=_r2(point.comparisonPct),
                changePct=_r2(delta),
                needsAttention=needs_attention(severity, severity == AlertSeverity.HIGH),
                drilldown=build_drilldown(series, point),
            ))
        return alerts

    def _per_lender(
        self,
        series: FunnelSeries,
        catalog: DimensionCatalog,
        rules: DetectionRules,
    ) -> List[Alert]:
        t = rules.thresholds.conversionDrop
        alerts = []
        for lender in catalog.lenders:
            current = series.lender_current.get(lender, {})
            comparison = series.lender_comparison.get(lender, {})
            for point in compute_conversions(current, comparison, series.stage_indices):
                delta = point.deltaPct
                if not fires_below(delta, t.lenderTrigger):
                    continue

                dropped = round_half_up(_count(current, point.fromStage) * abs(delta) / 100)
                impact = estimate_impact(dropped, t.lenderDownstreamConversionPct, rules.avgTicketSizeLakhs)
                severity = classify_drop(delta, t.lenderCritical, t.lenderHigh)
                stage_name = series.stage_name(point.toStage)

                alerts.append(Alert(
                    id=f"conv-lender-{len(alerts)}",
                    category=self.category,
                    severity=severity,
                    status=conversion_drop_status(point.comparisonPct, delta, t),
                    title=f"{lender}: {stage_name} down {abs(delta):.1f}pp",
                    description=(
                        f'{lender}\'s conversion at "{stage_name}" dropped from '
                        f"{point.comparisonPct:.1f}% to {point.currentPct:.1f}% ({delta:.1f}pp). "
                        f"About {dropped:,} extra leads are being lost at this stage for "
                        f"this lender compared to the comparison window."
                    ),
                    impactLeads=dropped,
                    impactCr=_r2(impact.impactCr),
                    lender=lender,
                    stage=stage_name,
                    stageIndex=point.toStage,
                    metricValue=_r2(point.currentPct),
                    baselineValue=_r2(point.comparisonPct),
                    changePct=_r2(delta),
                    needsAttention=needs_attention(severity),
                ))
        return alerts


@register_detector
class VolumeDipDetector(AnomalyDetector):
    """First-stage (top-of-funnel) volume fell vs the comparison window."""

    name = "volume_dip"
    category = AlertCategory.VOLUME_DIP

    def detect(self, series, catalog, rules):
        if not series.stage_indices:
            return []
        t = rules.thresholds.volumeDip
        first = series.stage_indices[0]
        stage_name = series.stage_name(first)

        alerts = []
        now = _count(series.current, first)
        before = _count(series.comparison, first)
        change = relative_change_pct(now, before)
        if change is not None and fires_below(change, t.overallTrigger):
            severity = classify_drop(change, t.overallCritical, t.overallHigh)
            impact = estimate_impact(abs(now - before), t.downstreamConversionPct, rules.avgTicketSizeLakhs)
            alerts.append(Alert(
                id=f"vol-overall-{len(alerts)}",
                category=self.category,
                severity=severity,
                status=AlertStatus.NEW,
                title=f"Top-of-funnel volume down {abs(change):.0f}%",
                description=(
                    f"{stage_name} leads dropped from {before:,} to {now:,}, a "
                    f"{abs(change):.1f}% decline. This reduces the total addressable "
                    f"funnel and will directly impact downstream disbursals unless "
                    f"conversion improves."
                ),
                impactLeads=abs(now - before),
                impactCr=_r2(impact.impactCr),
                stage=stage_name,
                stageIndex=first,
                metricValue=now,
                baselineValue=before,
                changePct=_r2(change),
                needsAttention=needs_attention(severity, fires_below(change, t.overallAttention)),
            ))

        for lender in catalog.lenders:
            now = _count(series.lender_current.get(lender, {}), first)
            before = _count(series.lender_comparison.get(lender, {}), first)
            change = relative_change_pct(now, before)
            if change is None or not fires_below(change, t.lenderTrigger):
                continue
            severity = classify_drop(change, high=t.lenderHigh)
            impact = estimate_impact(abs(now - before), t.downstreamConversionPct, rules.avgTicketSizeLakhs)
            alerts.append(Alert(
                id=f"vol-lender-{len(alerts)}",
                category=self.category,
                severity=severity,
                status=AlertStatus.NEW,
                title=f"{lender}: volume down {abs(change):.0f}%",
                description=(
                    f"{lender}'s {stage_name.lower()} leads fell from {before:,} to {now:,} "
                    f"({change:.1f}%). This volume contraction will reduce {lender}'s "
                    f"contribution to overall disbursals."
                ),
                impactLeads=abs(now - before),
                impactCr=_r2(impact.impactCr),
                lender=lender,
                stage=stage_name,
                stageIndex=first,
                metricValue=now,
                baselineValue=before,
                changePct=_r2(change),
                needsAttention=needs_attention(severity, fires_below(change, t.lenderAttention)),
            ))
        return alerts


@register_detector
class StuckSpikeDetector(AnomalyDetector):
    """
    Share of leads stuck at a sub-stage is high and rising (or simply very high).
    """

    name = "stuck_spike"
    category = AlertCategory.STUCK_SPIKE

    def detect(self, series, catalog, rules):
        t = rules.thresholds.stuckSpike
        alerts = []
        for obs in series.stuck:
            stuck = obs.stuckPct
            if not fires_above(stuck, t.floorPct):
                continue
            delta = stuck - obs.baselinePct
            if not (fires_above(delta, t.deltaPp) or fires_above(stuck, t.absolutePct)):
                continue

            severity = classify_rise(stuck, high=t.highPct)
            impact = estimate_impact(obs.leadCount, t.downstreamConversionPct, rules.avgTicketSizeLakhs)
            if obs.baselinePct > 0:
                history = (
                    f"Last period it was {obs.baselinePct:.1f}%, so this is a "
                    f"{delta:.1f}pp increase."
                )
            else:
                history = "This is a new bottleneck."

            alerts.append(Alert(
                id=f"stuck-{len(alerts)}",
                category=self.category,
                severity=severity,
                status=stuck_status(obs.baselinePct, t),
                title=f"{obs.lender}: {stuck:.0f}% stuck at {obs.subStage}",
                description=(
                    f'{obs.lender} has {stuck:.1f}% of leads stuck at "{obs.subStage}" '
                    f'(under "{obs.stageName}"). {history} High stuck rates at this '
                    f"sub-stage indicate a process or system issue that needs investigation."
                ),
                impactLeads=obs.leadCount,
                impactCr=_r2(impact.impactCr),
                lender=obs.lender,
                program=obs.productType or None,
                stage=f"{obs.stageName} → {obs.subStage}",
                stageIndex=obs.stageIndex,
                metricValue=_r2(stuck),
                baselineValue=_r2(obs.baselinePct),
                changePct=_r2(delta),
                needsAttention=needs_attention(severity, fires_above(stuck, t.highPct)),
            ))
        return alerts


@register_detector
class AopPacingDetector(AnomalyDetector):
    """
    Month-end disbursal projection is behind the monthly AOP target.

    projected = periodToDate / (dayOfMonth / daysInMonth)
    gap       = (projected - monthlyTarget) / monthlyTarget * 100
    monthlyTarget = annualTarget / 12

    Needs the disbursal summary; yields nothing when it is absent or empty.
    Lenders outside an active lender filter are not evaluated.
    """

    name = "aop_pacing"
    category = AlertCategory.AOP_RISK

    def detect(self, series, catalog, rules):
        if not series.disbursals:
            return []
        t = rules.thresholds.aopPacing
        as_of = series.as_of_date
        lender_filter = series.filters.lender

        disbursed: Dict[str, int] = {}
        for row in series.disbursals:
            disbursed[row.lender] = disbursed.get(row.lender, 0) + row.disbursedCount

        targets = {
            lender: annual
            for lender, annual in rules.lenderAnnualTargets.items()
            if lender_filter == ALL or lender == lender_filter
        }

        alerts = []
        for lender, annual in targets.items():
            monthly = annual / 12
            mtd_cr = loans_to_crore(disbursed.get(lender, 0), rules.avgTicketSizeLakhs)
            projected = project_month_end(mtd_cr, as_of)
            gap = aop_gap_pct(projected, monthly)
            if gap is None or not fires_below(gap, t.lenderTrigger):
                continue

            severity = classify_drop(gap, t.lenderCritical, t.lenderHigh)
            alerts.append(Alert(
                id=f"aop-{len(alerts)}",
                category=self.category,
                severity=severity,
                status=AlertStatus.KNOWN,
                title=f"{lender}: AOP pacing {abs(gap):.0f}% behind",
                description=(
                    f"{lender} has disbursed ₹{mtd_cr:.1f} Cr this month. At the current "
                    f"run-rate the month-end projection is ₹{projected:.1f} Cr against a "
                    f"monthly AOP target of ₹{monthly:.1f} Cr. The gap is {abs(gap):.0f}%; "
                    f"{lender} needs to accelerate to stay on track for the annual target "
                    f"of ₹{annual:g} Cr."
                ),
                impactCr=_r2(abs(projected - monthly)),
                lender=lender,
                metricValue=_r2(projected),
                baselineValue=_r2(monthly),
                changePct=_r2(gap),
                needsAttention=needs_attention(severity, fires_below(gap, t.lenderAttention)),
            ))

        total_annual = sum(targets.values())
        if total_annual > 0:
            monthly = total_annual / 12
            mtd_cr = loans_to_crore(sum(disbursed.values()), rules.avgTicketSizeLakhs)
            projected = project_month_end(mtd_cr, as_of)
            gap = aop_gap_pct(projected, monthly)
            if gap is not None and fires_below(gap, t.overallTrigger):
                severity = classify_drop(gap, t.overallCritical, t.overallHigh)
                alerts.append(Alert(
                    id="aop-total-0",
                    category=self.category,
                    severity=severity,
                    status=AlertStatus.KNOWN,
                    title=f"Overall AOP pacing {abs(gap):.0f}% behind target",
                    description=(
                        f"Total disbursals this month are ₹{mtd_cr:.1f} Cr. Projected "
                        f"month-end is ₹{projected:.1f} Cr vs a monthly target of "
                        f"₹{monthly:.1f} Cr (annual: ₹{total_annual:g} Cr). Closing a "
                        f"{abs(gap):.0f}% gap needs a significantly higher daily run-rate."
                    ),
                    impactCr=_r2(abs(projected - monthly)),
                    metricValue=_r2(projected),
                    baselineValue=_r2(monthly),
                    changePct=_r2(gap),
                    needsAttention=needs_attention(severity, fires_below(gap, t.overallAttention)),
                ))
        return alerts


@register_detector
class ConcentrationRiskDetector(AnomalyDetector):
    """
    The top lenders hold too large a share of current-period disbursals.

    Skipped when the run is filtered to a single lender, where the share is
    trivially 100%.
    """

    name = "concentration"
    category = AlertCategory.CONCENTRATION

    def detect(self, series, catalog, rules):
        if not series.disbursals or series.filters.lender != ALL:
            return []
        t = rules.thresholds.concentration

        disbursed: Dict[str, int] = {}
        for row in series.disbursals:
            disbursed[row.lender] = disbursed.get(row.lender, 0) + row.disbursedCount
        total = sum(disbursed.values())
        if total <= 0:
            return []

        shares = sorted(
            ((lender, count / total * 100) for lender, count in sorted(disbursed.items())),
            key=lambda item: item[1],
            reverse=True,
        )
        top = shares[:t.topN]
        top_share = sum(share for _, share in top)
        if not fires_above(top_share, t.triggerSharePct):
            return []

        severity = classify_rise(top_share, high=t.highSharePct)
        breakdown = " and ".join(f"{lender} ({share:.0f}%)" for lender, share in top)
        return [Alert(
            id="conc-0",
            category=self.category,
            severity=severity,
            status=AlertStatus.KNOWN,
            title=f"Top-{len(top)} lenders account for {top_share:.0f}% of disbursals",
            description=(
                f"{breakdown} together make up {top_share:.0f}% of all disbursals. "
                f"If either lender faces issues, overall numbers will be significantly "
                f"impacted. Consider diversifying the lender mix."
            ),
            lender=", ".join(lender for lender, _ in top),
            metricValue=_r2(top_share),
            baselineValue=t.idealSharePct,
            changePct=_r2(top_share - t.idealSharePct),
            needsAttention=needs_attention(severity, fires_above(top_share, t.attentionSharePct)),
        )]


__all__ = [
    "AnomalyDetector",
    "register_detector",
    "registered_detectors",
    "get_detector",
    "run_detectors",
    "build_drilldown",
    "ConversionDropDetector",
    "VolumeDipDetector",
    "StuckSpikeDetector",
    "AopPacingDetector",
    "ConcentrationRiskDetector",
]
