"""
Pydantic models for the Funnel Sentinel backend.

This module provides type-safe validation and serialization for every contract
the detection core exposes:

- Input facts: LeadStageRecord, DisbursalSummaryRow, DimensionFilter
- Derived series: StageTotals, SubStageTotals, StuckObservation, ConversionPoint,
  LenderPerformance, ImpactEstimate
- Configuration: per-detector threshold models, DetectorThresholds, DetectionRules
- Alerts: Alert, AlertDrilldown, AlertSummary, CategoryBreakdownItem
- Prioritization: BriefingItem
- Issue lifecycle: RootCauseTemplate, IssueLifecycleItem, LifecycleSummary,
  PhasePipelineEntry, RecoveryRollup
- Run envelopes: RecordQualityReport, DetectionRunRequest, AlertRunResponse,
  IssueRunResponse

Input facts and alerts are frozen: they are created once per run and never
mutated afterwards. All models use Pydantic v2 syntax.
"""

from datetime import date as DateType
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from funnel_sentinel.models.enums import (
    AlertCategory,
    AlertSeverity,
    AlertStatus,
    BriefingSignal,
    BriefingTone,
    IssueSeverity,
    LifecyclePhase,
    Period,
)


ALL = "All"


# =============================================================================
# Input Facts
# =============================================================================


class LeadStageRecord(BaseModel):
    """
    One stage-wise lead count for a lender/product/flow slice in one period.

    Supplied by the ingestion collaborator and never mutated. Records with a
    subStage value feed stuck-rate analysis only; top-level aggregation uses
    records without one. Structural problems (non-integral stage index,
    negative counts) are not rejected here: the aggregator skips and counts
    them so the well-formed subset still produces alerts.
    """
    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        json_schema_extra={
            "example": {
                "period": "current",
                "stageIndex": 3,
                "stageName": "Child Lead Created",
                "subStage": None,
                "lender": "FULLERTON",
                "productType": "Term Loan",
                "flow": "auto",
                "leadCount": 6000,
                "stuckPct": None,
            }
        },
    )

    period: Period = Field(
        ...,
        description="Reporting window (current = MTD, comparison = LMTD)"
    )
    stageIndex: float = Field(
        ...,
        description="Ordered funnel stage index; sub-stage rows may be fractional"
    )
    stageName: str = Field(
        ...,
        description="Display name of the major stage"
    )
    subStage: Optional[str] = Field(
        default=None,
        description="Sub-stage name; None for top-level stage rows"
    )
    lender: str = Field(
        ...,
        description="External lender code"
    )
    productType: str = Field(
        default="",
        description="Loan product / program type"
    )
    flow: str = Field(
        default="",
        description="Lead-acquisition flow"
    )
    leadCount: int = Field(
        ...,
        description="Number of leads at this stage"
    )
    stuckPct: Optional[float] = Field(
        default=None,
        description="Share of leads stuck beyond expected dwell time (sub-stage rows)"
    )


class DisbursalSummaryRow(BaseModel):
    """
    Per-slice disbursal totals for the current period.

    Consumed by the AOP pacing and concentration detectors.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    lender: str = Field(..., description="External lender code")
    productType: str = Field(default="", description="Loan product / program type")
    flow: str = Field(default="", description="Lead-acquisition flow")
    disbursedCount: int = Field(..., ge=0, description="Loans disbursed in the current period")
    childLeadCount: int = Field(default=0, ge=0, description="Child leads created in the current period")


class DimensionFilter(BaseModel):
    """
    Conjunctive dimension filter. Each field is "All" or an exact match value.
    """
    model_config = ConfigDict(frozen=True)

    lender: str = Field(default=ALL, description="Lender code or 'All'")
    productType: str = Field(default=ALL, description="Product type or 'All'")
    flow: str = Field(default=ALL, description="Acquisition flow or 'All'")

    def matches(self, lender: str, product_type: str, flow: str) -> bool:
        if self.lender != ALL and lender != self.lender:
            return False
        if self.productType != ALL and product_type != self.productType:
            return False
        if self.flow != ALL and flow != self.flow:
            return False
        return True


# =============================================================================
# Derived Series
# =============================================================================


class StageTotals(BaseModel):
    """
    Lead total for one top-level stage within one period and filter.
    """
    period: Period
    stageIndex: int
    stageName: str
    leadCount: int = Field(..., ge=0)


class SubStageTotals(BaseModel):
    """
    Lead total for one (stageIndex, subStage) pair within one period.
    """
    period: Period
    stageIndex: int
    stageName: str
    subStage: str
    leadCount: int = Field(..., ge=0)


class StuckObservation(BaseModel):
    """
    Current-period stuck rate for a lender sub-stage, paired with its baseline.

    baselinePct is 0 when the comparison period has no matching row.
    """
    lender: str
    productType: str
    stageIndex: int
    stageName: str
    subStage: str
    leadCount: int = Field(..., ge=0)
    stuckPct: float
    baselinePct: float = 0.0


class ConversionPoint(BaseModel):
    """
    Stage-to-stage conversion in both periods.

    Percentages are 0 (never NaN) when the prior stage count is 0.
    deltaPct = currentPct - comparisonPct, in percentage points.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "fromStage": 2,
                "toStage": 3,
                "stageName": "Child Lead Created",
                "currentPct": 60.0,
                "comparisonPct": 65.0,
                "deltaPct": -5.0,
            }
        }
    )

    fromStage: int = Field(..., description="Prior stage index")
    toStage: int = Field(..., description="Stage index being converted into")
    stageName: str = Field(..., description="Display name of toStage")
    currentPct: float = Field(..., ge=0.0, description="Current-period conversion %")
    comparisonPct: float = Field(..., ge=0.0, description="Comparison-period conversion %")
    deltaPct: float = Field(..., description="currentPct - comparisonPct (pp)")


class LenderPerformance(BaseModel):
    """
    First-to-last stage funnel performance for one lender.
    """
    lender: str
    currentFunnelPct: float
    comparisonFunnelPct: float
    deltaPct: float
    volumeGrowthPct: float
    currentDisbursed: int = Field(..., ge=0)
    disbursedCr: float
    aopPacingPct: float = Field(
        default=0.0,
        description="Projected month-end disbursal as % of monthly AOP target (0 when no target)"
    )


class ImpactEstimate(BaseModel):
    """
    Estimated downstream loss (or gain) from a lead-count delta.
    """
    lostLoans: int
    impactCr: float


# =============================================================================
# Detection Configuration
# =============================================================================


class ConversionDropThresholds(BaseModel):
    """
    Conversion-drop triggers and bands, in percentage points.
    """
    overallTrigger: float = -3.0
    overallCritical: float = -10.0
    overallHigh: float = -5.0
    lenderTrigger: float = -5.0
    lenderCritical: float = -15.0
    lenderHigh: float = -8.0
    healthyBaselinePct: float = Field(
        default=70.0,
        description="Comparison conversion above which a sharp drop is 'new'"
    )
    newDropPp: float = Field(
        default=5.0,
        description="Drop magnitude a 'new' conversion drop must exceed"
    )
    lenderDownstreamConversionPct: float = Field(
        default=5.0,
        description="Fixed downstream conversion used for per-lender impact"
    )


class VolumeDipThresholds(BaseModel):
    """
    Volume-dip triggers and bands, as relative change %.
    """
    overallTrigger: float = -10.0
    overallCritical: float = -25.0
    overallHigh: float = -15.0
    overallAttention: float = -15.0
    lenderTrigger: float = -20.0
    lenderHigh: float = -40.0
    lenderAttention: float = -40.0
    downstreamConversionPct: float = 3.0


class StuckSpikeThresholds(BaseModel):
    """
    Stuck-rate triggers and bands, in percent of leads.
    """
    floorPct: float = 25.0
    deltaPp: float = 5.0
    absolutePct: float = 40.0
    highPct: float = 50.0
    recurringBaselinePct: float = 20.0
    downstreamConversionPct: float = 2.0


class AopPacingThresholds(BaseModel):
    """
    AOP pacing triggers and bands, as projection gap %.
    """
    lenderTrigger: float = -15.0
    lenderCritical: float = -40.0
    lenderHigh: float = -25.0
    lenderAttention: float = -30.0
    overallTrigger: float = -10.0
    overallCritical: float = -30.0
    overallHigh: float = -20.0
    overallAttention: float = -20.0


class ConcentrationThresholds(BaseModel):
    """
    Lender concentration trigger and bands, as disbursal share %.
    """
    topN: int = Field(default=2, ge=1)
    triggerSharePct: float = 65.0
    highSharePct: float = 80.0
    attentionSharePct: float = 75.0
    idealSharePct: float = 50.0


class DetectorThresholds(BaseModel):
    """
    Every detector threshold, grouped by detector.

    Overall and per-lender variants intentionally carry different values.
    """
    conversionDrop: ConversionDropThresholds = Field(default_factory=ConversionDropThresholds)
    volumeDip: VolumeDipThresholds = Field(default_factory=VolumeDipThresholds)
    stuckSpike: StuckSpikeThresholds = Field(default_factory=StuckSpikeThresholds)
    aopPacing: AopPacingThresholds = Field(default_factory=AopPacingThresholds)
    concentration: ConcentrationThresholds = Field(default_factory=ConcentrationThresholds)


class DetectionRules(BaseModel):
    """
    Effective configuration handed to every detector for one run.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "avgTicketSizeLakhs": 2.5,
                "lenderAnnualTargets": {"FULLERTON": 120, "KSF": 80},
                "thresholds": {},
            }
        }
    )

    avgTicketSizeLakhs: float = Field(
        default=2.5,
        gt=0.0,
        description="Average disbursed ticket size in Lakhs"
    )
    lenderAnnualTargets: Dict[str, float] = Field(
        default_factory=dict,
        description="Annual AOP disbursal target per lender, in Crore"
    )
    thresholds: DetectorThresholds = Field(default_factory=DetectorThresholds)


class RuleOverrides(BaseModel):
    """
    Per-request overrides merged over the configured DetectionRules.
    """
    avgTicketSizeLakhs: Optional[float] = Field(default=None, gt=0.0)
    lenderAnnualTargets: Optional[Dict[str, float]] = None
    thresholds: Optional[DetectorThresholds] = None


# =============================================================================
# Alerts
# =============================================================================


class LenderStageDelta(BaseModel):
    """Per-lender conversion delta at one stage."""
    lender: str
    deltaPct: float


class AlertDrilldown(BaseModel):
    """
    Sub-stage hypotheses and worst lender deltas behind a stage-level drop.
    """
    model_config = ConfigDict(frozen=True)

    stage: str
    hypotheses: List[str] = Field(default_factory=list)
    lenderDeltas: List[LenderStageDelta] = Field(default_factory=list)


class Alert(BaseModel):
    """
    A typed, attributable funnel anomaly.

    Created once per detector firing per run and immutable thereafter.
    """
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "id": "conv-overall-0",
                "category": "conversion_drop",
                "severity": "high",
                "status": "recurring",
                "title": "Child Lead Created conversion dropped 5.0pp",
                "description": "...",
                "impactLeads": 500,
                "impactCr": 2.5,
                "lender": None,
                "program": None,
                "stage": "Child Lead Created",
                "stageIndex": 3,
                "metricValue": 60.0,
                "baselineValue": 65.0,
                "changePct": -5.0,
                "needsAttention": True,
            }
        },
    )

    id: str = Field(..., description="Run-scoped alert identifier")
    category: AlertCategory
    severity: AlertSeverity
    status: AlertStatus
    title: str
    description: str = Field(..., description="Plain-English explanation")
    impactLeads: int = Field(default=0, ge=0, description="Estimated impact in leads")
    impactCr: float = Field(default=0.0, ge=0.0, description="Estimated impact in Crore")
    lender: Optional[str] = None
    program: Optional[str] = None
    stage: Optional[str] = None
    stageIndex: Optional[int] = Field(default=None, description="Top-level stage index, when stage-scoped")
    metricValue: float = Field(..., description="Value that triggered the alert")
    baselineValue: float = Field(..., description="Comparison value")
    changePct: float = Field(..., description="Change vs baseline (pp or %)")
    needsAttention: bool = False
    drilldown: Optional[AlertDrilldown] = None


class AlertSummary(BaseModel):
    """Headline counts over the full alert set of a run."""
    total: int = 0
    critical: int = 0
    high: int = 0
    needsAttention: int = 0
    newAlerts: int = 0
    totalImpactCr: float = 0.0
    totalImpactLeads: int = 0


class CategoryBreakdownItem(BaseModel):
    """Alert count and impact for one category."""
    category: AlertCategory
    count: int
    impactCr: float
    impactLeads: int


# =============================================================================
# Prioritization
# =============================================================================


class BriefingItem(BaseModel):
    """
    A prioritizable observation: either an alert or a derived positive/emerging signal.

    impactWeight is an opaque 0-100 score assigned by the producer; the
    bucketer reads it and never recomputes it.
    """
    id: str
    title: str
    detail: str = ""
    tone: BriefingTone
    impactWeight: float = Field(..., description="Producer-assigned priority weight")
    signal: BriefingSignal = BriefingSignal.ALERT
    alertId: Optional[str] = None
    lender: Optional[str] = None


# =============================================================================
# Issue Lifecycle
# =============================================================================


class RootCauseTemplate(BaseModel):
    """Root-cause / fix text pair from a category-keyed catalog."""
    cause: str
    fix: str


class IssueLifecycleItem(BaseModel):
    """
    A tracked issue opened from a conversion-drop or stuck-spike alert.

    beforeMetric is the comparison-window value, metricAtDrop the current
    value, afterMetric the value after the recovery achieved so far and
    targetMetric the value the fix aims to restore.
    """
    id: str
    alertId: str
    category: AlertCategory
    severity: IssueSeverity
    title: str
    detail: str = ""
    lender: Optional[str] = None
    program: Optional[str] = None
    stage: Optional[str] = None
    stageIndex: Optional[int] = None
    phase: LifecyclePhase
    ageDays: int = Field(..., ge=0)
    owner: str
    rootCause: str
    fix: str
    beforeMetric: float
    metricAtDrop: float
    afterMetric: float
    targetMetric: float
    recoveryPct: float = Field(..., ge=0.0, le=100.0)
    impactLeads: int = Field(default=0, ge=0)
    impactCr: float = Field(default=0.0, ge=0.0)
    recoveredCr: float = Field(default=0.0, ge=0.0)


class LifecycleSummary(BaseModel):
    """Headline counts and recovery over all lifecycle items."""
    total: int = 0
    open: int = 0
    fixDeployed: int = 0
    validated: int = 0
    closed: int = 0
    totalImpactCr: float = 0.0
    recoveredCr: float = 0.0
    avgRecoveryPct: float = 0.0
    avgAgeDays: float = 0.0


class PhasePipelineEntry(BaseModel):
    """Item count and impact for one lifecycle phase."""
    phase: LifecyclePhase
    step: int
    count: int
    impactCr: float


class RecoveryRollup(BaseModel):
    """Recovered currency aggregated under one key (owner or phase)."""
    key: str
    items: int
    impactCr: float
    recoveredCr: float


# =============================================================================
# Run Envelopes
# =============================================================================


class RecordQualityReport(BaseModel):
    """
    Accepted vs skipped input records, with skip reasons.
    """
    accepted: int = 0
    skipped: int = 0
    reasons: Dict[str, int] = Field(default_factory=dict)


class DetectionRunRequest(BaseModel):
    """
    Input for one stateless detection run.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "records": [],
                "disbursals": [],
                "filters": {"lender": "All", "productType": "All", "flow": "All"},
                "asOfDate": "2026-06-15",
                "detectors": None,
                "overrides": None,
            }
        }
    )

    records: Optional[List[LeadStageRecord]] = Field(
        default=None,
        description="Lead-stage records for both periods (required)"
    )
    disbursals: Optional[List[DisbursalSummaryRow]] = Field(
        default=None,
        description="Current-period disbursal summary; AOP and concentration detectors need it"
    )
    filters: DimensionFilter = Field(default_factory=DimensionFilter)
    asOfDate: Optional[DateType] = Field(
        default=None,
        description="Reporting date used for AOP pacing; defaults to today"
    )
    detectors: Optional[List[str]] = Field(
        default=None,
        description="Subset of registered detector names to run; all when omitted"
    )
    overrides: Optional[RuleOverrides] = None


class AlertRunResponse(BaseModel):
    """Ranked alerts plus run-level aggregates."""
    fingerprint: str
    alerts: List[Alert] = Field(default_factory=list)
    summary: AlertSummary = Field(default_factory=AlertSummary)
    categoryBreakdown: List[CategoryBreakdownItem] = Field(default_factory=list)
    buckets: Dict[str, List[BriefingItem]] = Field(default_factory=dict)
    recordQuality: RecordQualityReport = Field(default_factory=RecordQualityReport)


class IssueRunResponse(BaseModel):
    """Lifecycle items plus recovery aggregates."""
    fingerprint: str
    items: List[IssueLifecycleItem] = Field(default_factory=list)
    summary: LifecycleSummary = Field(default_factory=LifecycleSummary)
    phasePipeline: List[PhasePipelineEntry] = Field(default_factory=list)
    recoveryByOwner: List[RecoveryRollup] = Field(default_factory=list)
    recoveryByPhase: List[RecoveryRollup] = Field(default_factory=list)
    recordQuality: RecordQualityReport = Field(default_factory=RecordQualityReport)
