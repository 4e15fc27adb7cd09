"""
Conversion Calculation Service

Derives stage-to-stage conversion percentages and their period-over-period
deltas from aggregated stage totals, plus per-lender funnel performance.

Conversion% at stage N is leads at N divided by leads at the previous stage
in the caller-supplied order, times 100. A zero previous count yields 0,
never NaN or an error, so threshold comparisons stay well-defined.
"""

import logging
from typing import Dict, List, Optional, Sequence

from funnel_sentinel.models.schemas import (
    ConversionPoint,
    DetectionRules,
    LenderPerformance,
    StageTotals,
)
from funnel_sentinel.services.aggregation import FunnelSeries
from funnel_sentinel.services.impact import (
    aop_gap_pct,
    loans_to_crore,
    project_month_end,
)


logger = logging.getLogger(__name__)


def conversion_pct(current_count: int, previous_count: int) -> float:
    """Percentage of previous-stage leads reaching this stage; 0 if previous is 0."""
    if previous_count <= 0:
        return 0.0
    return current_count / previous_count * 100


def relative_change_pct(current: float, baseline: float) -> Optional[float]:
    """
    Relative change vs baseline in percent.

    Returns None for a zero (or negative) baseline: no prior signal, so no
    growth figure can be derived.
    """
    if baseline <= 0:
        return None
    return (current - baseline) / baseline * 100


def _count(totals: Dict[int, StageTotals], stage_index: int) -> int:
    entry = totals.get(stage_index)
    return entry.leadCount if entry is not None else 0


def compute_conversions(
    current_totals: Dict[int, StageTotals],
    comparison_totals: Dict[int, StageTotals],
    ordered_stage_indices: Sequence[int],
) -> List[ConversionPoint]:
    """
    Compute conversion for every adjacent stage pair in the given order.

    Args:
        current_totals: Current-period stage totals
        comparison_totals: Comparison-period stage totals
        ordered_stage_indices: Stage order to pair on; never inferred from totals

    Returns:
        One ConversionPoint per adjacent (prev, cur) pair
    """
    points = []
    for previous, stage in zip(ordered_stage_indices, ordered_stage_indices[1:]):
        current_pct = conversion_pct(_count(current_totals, stage), _count(current_totals, previous))
        comparison_pct = conversion_pct(_count(comparison_totals, stage), _count(comparison_totals, previous))

        named = current_totals.get(stage) or comparison_totals.get(stage)
        points.append(ConversionPoint(
            fromStage=previous,
            toStage=stage,
            stageName=named.stageName if named is not None else f"Stage {stage}",
            currentPct=current_pct,
            comparisonPct=comparison_pct,
            deltaPct=current_pct - comparison_pct,
        ))
    return points


def funnel_conversion_pct(
    totals: Dict[int, StageTotals],
    ordered_stage_indices: Sequence[int],
) -> float:
    """First-to-last stage conversion in percent."""
    if len(ordered_stage_indices) < 2:
        return 0.0
    return conversion_pct(
        _count(totals, ordered_stage_indices[-1]),
        _count(totals, ordered_stage_indices[0]),
    )


def compute_lender_performance(
    series: FunnelSeries,
    rules: DetectionRules,
) -> List[LenderPerformance]:
    """
    Build one funnel-performance row per lender, sorted by lender.

    Disbursed counts come from the disbursal summary when supplied, otherwise
    from the last stage of the lender's current funnel. AOP pacing is the
    projected month-end disbursal as a percentage of the monthly target
    (0 for lenders without a target).
    """
    indices = series.stage_indices
    disbursed_by_lender: Dict[str, int] = {}
    if series.disbursals is not None:
        for row in series.disbursals:
            disbursed_by_lender[row.lender] = disbursed_by_lender.get(row.lender, 0) + row.disbursedCount

    rows = []
    for lender in sorted(series.lender_current):
        current = series.lender_current[lender]
        comparison = series.lender_comparison.get(lender, {})

        current_funnel = funnel_conversion_pct(current, indices)
        comparison_funnel = funnel_conversion_pct(comparison, indices)

        growth = None
        if indices:
            growth = relative_change_pct(_count(current, indices[0]), _count(comparison, indices[0]))

        if series.disbursals is not None:
            disbursed = disbursed_by_lender.get(lender, 0)
        else:
            disbursed = _count(current, indices[-1]) if indices else 0
        disbursed_cr = loans_to_crore(disbursed, rules.avgTicketSizeLakhs)

        pacing = 0.0
        annual = rules.lenderAnnualTargets.get(lender)
        if annual:
            monthly = annual / 12
            gap = aop_gap_pct(project_month_end(disbursed_cr, series.as_of_date), monthly)
            if gap is not None:
                pacing = gap + 100

        rows.append(LenderPerformance(
            lender=lender,
            currentFunnelPct=current_funnel,
            comparisonFunnelPct=comparison_funnel,
            deltaPct=current_funnel - comparison_funnel,
            volumeGrowthPct=growth or 0.0,
            currentDisbursed=disbursed,
            disbursedCr=disbursed_cr,
            aopPacingPct=pacing,
        ))

    logger.debug(f"Computed performance rows for {len(rows)} lenders")
    return rows
