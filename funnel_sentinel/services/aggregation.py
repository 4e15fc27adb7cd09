"""
Stage Series Aggregation Service

Groups raw lead-stage records by stage index, period and dimension into the
ordered stage totals every detector consumes.

Record conventions:
- Top-level aggregation uses records with no subStage, an integral
  stageIndex, and a stageIndex outside the bookkeeping range (>= 1000, or
  one of the placeholder indices, by default 1).
- Sub-stage records aggregate separately, keyed by (parent stageIndex,
  subStage). The parent stage is the integral part of the record's index.
- Malformed records (non-finite or negative stageIndex, non-integral
  top-level stageIndex, negative leadCount) are skipped and counted in a
  RecordQualityReport so the well-formed subset still produces alerts.

Every function here is pure: it reads the records it is given and returns
new objects.
"""

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from funnel_sentinel.core.exceptions import MissingInputError
from funnel_sentinel.models.enums import Period
from funnel_sentinel.models.schemas import (
    DimensionFilter,
    DisbursalSummaryRow,
    LeadStageRecord,
    RecordQualityReport,
    StageTotals,
    StuckObservation,
    SubStageTotals,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Skip Reasons
# =============================================================================

REASON_NON_FINITE_STAGE = "non_finite_stage_index"
REASON_NEGATIVE_STAGE = "negative_stage_index"
REASON_NON_INTEGRAL_STAGE = "non_integral_stage_index"
REASON_BOOKKEEPING_STAGE = "bookkeeping_stage_index"
REASON_NEGATIVE_COUNT = "negative_lead_count"
REASON_UNKNOWN_PERIOD = "unknown_period"


@dataclass(frozen=True)
class StageConventions:
    """
    Stage-index ranges reserved for bookkeeping rows.
    """
    sentinel_floor: int = 1000
    placeholder_indices: FrozenSet[int] = frozenset({1})

    def is_bookkeeping(self, stage_index: int) -> bool:
        return stage_index >= self.sentinel_floor or stage_index in self.placeholder_indices


DEFAULT_CONVENTIONS = StageConventions()


# =============================================================================
# Record Screening
# =============================================================================


def skip_reason(
    record: LeadStageRecord,
    conventions: StageConventions = DEFAULT_CONVENTIONS,
) -> Optional[str]:
    """
    Return why a record cannot participate in aggregation, or None if it can.

    Args:
        record: The record to screen
        conventions: Bookkeeping stage ranges

    Returns:
        One of the REASON_* constants, or None for a usable record
    """
    index = record.stageIndex
    if not math.isfinite(index):
        return REASON_NON_FINITE_STAGE
    if index < 0:
        return REASON_NEGATIVE_STAGE
    if record.leadCount < 0:
        return REASON_NEGATIVE_COUNT
    if record.subStage:
        return None
    if not float(index).is_integer():
        return REASON_NON_INTEGRAL_STAGE
    if conventions.is_bookkeeping(int(index)):
        return REASON_BOOKKEEPING_STAGE
    return None


def screen_records(
    records: Iterable[LeadStageRecord],
    conventions: StageConventions = DEFAULT_CONVENTIONS,
) -> Tuple[List[LeadStageRecord], RecordQualityReport]:
    """
    Split records into usable ones and a quality report of the rest.

    Returns:
        Tuple of (accepted records in input order, RecordQualityReport)
    """
    accepted: List[LeadStageRecord] = []
    reasons: Counter = Counter()

    for record in records:
        reason = skip_reason(record, conventions)
        if reason is None:
            accepted.append(record)
        else:
            reasons[reason] += 1

    skipped = sum(reasons.values())
    if skipped:
        logger.warning(f"Skipped {skipped} lead-stage records: {dict(reasons)}")

    return accepted, RecordQualityReport(
        accepted=len(accepted),
        skipped=skipped,
        reasons=dict(sorted(reasons.items())),
    )


def merge_quality(*reports: RecordQualityReport) -> RecordQualityReport:
    """Combine quality reports from separate screening passes."""
    reasons: Counter = Counter()
    accepted = 0
    skipped = 0
    for report in reports:
        accepted += report.accepted
        skipped += report.skipped
        reasons.update(report.reasons)
    return RecordQualityReport(
        accepted=accepted,
        skipped=skipped,
        reasons=dict(sorted(reasons.items())),
    )


def _matches(record: LeadStageRecord, filters: DimensionFilter) -> bool:
    return filters.matches(record.lender, record.productType, record.flow)


def _is_top_level(record: LeadStageRecord, conventions: StageConventions) -> bool:
    return not record.subStage and skip_reason(record, conventions) is None


# =============================================================================
# Aggregation
# =============================================================================


def aggregate(
    records: Iterable[LeadStageRecord],
    period: Period,
    filters: DimensionFilter,
    conventions: StageConventions = DEFAULT_CONVENTIONS,
) -> Dict[int, StageTotals]:
    """
    Sum top-level lead counts per stage for one period and filter.

    Args:
        records: Raw lead-stage records (both periods may be mixed)
        period: Period to aggregate
        filters: Conjunctive lender/productType/flow filter
        conventions: Bookkeeping stage ranges

    Returns:
        Dict of stageIndex -> StageTotals, ordered by stageIndex ascending.
        Empty when the filter matches nothing.
    """
    counts: Dict[int, int] = {}
    names: Dict[int, str] = {}

    for record in records:
        if record.period != period or not _matches(record, filters):
            continue
        if not _is_top_level(record, conventions):
            continue
        index = int(record.stageIndex)
        counts[index] = counts.get(index, 0) + record.leadCount
        names.setdefault(index, record.stageName)

    return {
        index: StageTotals(
            period=period,
            stageIndex=index,
            stageName=names[index],
            leadCount=counts[index],
        )
        for index in sorted(counts)
    }


def aggregate_sub_stages(
    records: Iterable[LeadStageRecord],
    period: Period,
    filters: DimensionFilter,
    conventions: StageConventions = DEFAULT_CONVENTIONS,
) -> Dict[Tuple[int, str], SubStageTotals]:
    """
    Sum sub-stage lead counts keyed by (parent stageIndex, subStage).

    Returns:
        Dict ordered by parent stage then first appearance of the sub-stage.
    """
    counts: Dict[Tuple[int, str], int] = {}
    names: Dict[Tuple[int, str], str] = {}

    for record in records:
        if record.period != period or not record.subStage or not _matches(record, filters):
            continue
        if skip_reason(record, conventions) is not None:
            continue
        key = (int(math.floor(record.stageIndex)), record.subStage)
        counts[key] = counts.get(key, 0) + record.leadCount
        names.setdefault(key, record.stageName)

    ordered = sorted(counts, key=lambda key: key[0])
    return {
        key: SubStageTotals(
            period=period,
            stageIndex=key[0],
            stageName=names[key],
            subStage=key[1],
            leadCount=counts[key],
        )
        for key in ordered
    }


def ordered_stage_indices(
    records: Iterable[LeadStageRecord],
    conventions: StageConventions = DEFAULT_CONVENTIONS,
) -> List[int]:
    """
    Ascending top-level stage indices across both periods, ignoring filters.

    Conversions for a filtered view use this unfiltered order so adjacency
    stays the same when the view starts later in the funnel.
    """
    return sorted({
        int(record.stageIndex)
        for record in records
        if _is_top_level(record, conventions)
    })


def stuck_observations(
    records: Iterable[LeadStageRecord],
    filters: DimensionFilter,
    conventions: StageConventions = DEFAULT_CONVENTIONS,
) -> List[StuckObservation]:
    """
    Pair each current-period sub-stage stuck rate with its comparison baseline.

    The baseline is the comparison-period stuckPct for the same lender,
    product, parent stage and sub-stage, or 0 when there is none.
    """
    records = list(records)
    baselines: Dict[Tuple[str, str, int, str], float] = {}
    current: List[LeadStageRecord] = []

    for record in records:
        if not record.subStage or record.stuckPct is None or not _matches(record, filters):
            continue
        if skip_reason(record, conventions) is not None or not math.isfinite(record.stuckPct):
            continue
        if record.period == Period.COMPARISON:
            key = (record.lender, record.productType, int(math.floor(record.stageIndex)), record.subStage)
            baselines[key] = record.stuckPct
        else:
            current.append(record)

    observations = []
    for record in current:
        parent = int(math.floor(record.stageIndex))
        key = (record.lender, record.productType, parent, record.subStage)
        observations.append(StuckObservation(
            lender=record.lender,
            productType=record.productType,
            stageIndex=parent,
            stageName=record.stageName,
            subStage=record.subStage,
            leadCount=record.leadCount,
            stuckPct=record.stuckPct,
            baselinePct=baselines.get(key, 0.0),
        ))
    return observations


# =============================================================================
# Series Assembly
# =============================================================================


@dataclass(frozen=True)
class DimensionCatalog:
    """
    Dimension values present in a run's records after filtering.
    """
    lenders: Tuple[str, ...] = ()
    programs: Tuple[str, ...] = ()
    flows: Tuple[str, ...] = ()


@dataclass
class FunnelSeries:
    """
    Aggregated two-period view of the funnel handed to every detector.

    Attributes:
        stage_indices: Caller-supplied stage order (unfiltered view)
        current / comparison: Overall stage totals per period
        lender_current / lender_comparison: Stage totals per lender
        sub_current / sub_comparison: Sub-stage totals per period
        stuck: Current stuck rates with baselines
        disbursals: Filtered disbursal rows, or None when not supplied
        as_of_date: Reporting date used for month pacing
        quality: Record screening report
        filters: Dimension filter the series was built with
    """
    stage_indices: List[int]
    current: Dict[int, StageTotals]
    comparison: Dict[int, StageTotals]
    lender_current: Dict[str, Dict[int, StageTotals]] = field(default_factory=dict)
    lender_comparison: Dict[str, Dict[int, StageTotals]] = field(default_factory=dict)
    sub_current: Dict[Tuple[int, str], SubStageTotals] = field(default_factory=dict)
    sub_comparison: Dict[Tuple[int, str], SubStageTotals] = field(default_factory=dict)
    stuck: List[StuckObservation] = field(default_factory=list)
    disbursals: Optional[List[DisbursalSummaryRow]] = None
    as_of_date: date = field(default_factory=date.today)
    quality: RecordQualityReport = field(default_factory=RecordQualityReport)
    filters: DimensionFilter = field(default_factory=DimensionFilter)

    def stage_name(self, stage_index: int) -> str:
        totals = self.current.get(stage_index) or self.comparison.get(stage_index)
        if totals is not None:
            return totals.stageName
        for per_lender in (self.lender_current, self.lender_comparison):
            for lender_totals in per_lender.values():
                if stage_index in lender_totals:
                    return lender_totals[stage_index].stageName
        return f"Stage {stage_index}"


def build_series(
    records: Optional[List[LeadStageRecord]],
    filters: Optional[DimensionFilter] = None,
    disbursals: Optional[List[DisbursalSummaryRow]] = None,
    as_of_date: Optional[date] = None,
    conventions: StageConventions = DEFAULT_CONVENTIONS,
) -> Tuple[FunnelSeries, DimensionCatalog]:
    """
    Aggregate raw records into a FunnelSeries and its DimensionCatalog.

    Args:
        records: Lead-stage records for both periods. Required; an empty list
            yields an empty series.
        filters: Dimension filter (defaults to all dimensions)
        disbursals: Optional current-period disbursal summary
        as_of_date: Reporting date (defaults to today)
        conventions: Bookkeeping stage ranges

    Returns:
        Tuple of (FunnelSeries, DimensionCatalog)

    Raises:
        MissingInputError: If records is None
    """
    if records is None:
        raise MissingInputError("records")

    filters = filters or DimensionFilter()
    usable, quality = screen_records(records, conventions)
    stage_indices = ordered_stage_indices(usable, conventions)

    scoped = [record for record in usable if _matches(record, filters)]
    lenders = sorted({record.lender for record in scoped})
    programs = sorted({record.productType for record in scoped if record.productType})
    flows = sorted({record.flow for record in scoped if record.flow})

    lender_current: Dict[str, Dict[int, StageTotals]] = {}
    lender_comparison: Dict[str, Dict[int, StageTotals]] = {}
    for lender in lenders:
        lender_filter = filters.model_copy(update={"lender": lender})
        lender_current[lender] = aggregate(scoped, Period.CURRENT, lender_filter, conventions)
        lender_comparison[lender] = aggregate(scoped, Period.COMPARISON, lender_filter, conventions)

    scoped_disbursals = None
    if disbursals is not None:
        scoped_disbursals = [
            row for row in disbursals
            if filters.matches(row.lender, row.productType, row.flow)
        ]

    series = FunnelSeries(
        stage_indices=stage_indices,
        current=aggregate(scoped, Period.CURRENT, filters, conventions),
        comparison=aggregate(scoped, Period.COMPARISON, filters, conventions),
        lender_current=lender_current,
        lender_comparison=lender_comparison,
        sub_current=aggregate_sub_stages(scoped, Period.CURRENT, filters, conventions),
        sub_comparison=aggregate_sub_stages(scoped, Period.COMPARISON, filters, conventions),
        stuck=stuck_observations(scoped, filters, conventions),
        disbursals=scoped_disbursals,
        as_of_date=as_of_date or date.today(),
        quality=quality,
        filters=filters,
    )

    logger.debug(
        f"Aggregated {len(series.current)} current and {len(series.comparison)} "
        f"comparison stages across {len(lenders)} lenders"
    )

    catalog = DimensionCatalog(
        lenders=tuple(lenders),
        programs=tuple(programs),
        flows=tuple(flows),
    )
    return series, catalog
