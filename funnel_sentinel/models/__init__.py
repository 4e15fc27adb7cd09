"""
Package initialization file for Funnel Sentinel models.

Re-exports the enumerations from enums.py and the Pydantic schemas from
schemas.py so callers can import data models from funnel_sentinel.models
directly.

Usage:
    from funnel_sentinel.models import (
        Alert,
        AlertCategory,
        LeadStageRecord,
        Period,
    )
"""

# =============================================================================
# Enums
# =============================================================================

from funnel_sentinel.models.enums import (
    Period,
    AlertCategory,
    AlertSeverity,
    AlertStatus,
    SEVERITY_PRIORITY,
    BriefingTone,
    BriefingSignal,
    PriorityBucket,
    LifecyclePhase,
    PHASE_STEP,
    IssueSeverity,
)

# =============================================================================
# Schemas
# =============================================================================

from funnel_sentinel.models.schemas import (
    ALL,
    # Input facts
    LeadStageRecord,
    DisbursalSummaryRow,
    DimensionFilter,
    # Derived series
    StageTotals,
    SubStageTotals,
    StuckObservation,
    ConversionPoint,
    LenderPerformance,
    ImpactEstimate,
    # Configuration
    ConversionDropThresholds,
    VolumeDipThresholds,
    StuckSpikeThresholds,
    AopPacingThresholds,
    ConcentrationThresholds,
    DetectorThresholds,
    DetectionRules,
    RuleOverrides,
    # Alerts
    LenderStageDelta,
    AlertDrilldown,
    Alert,
    AlertSummary,
    CategoryBreakdownItem,
    # Prioritization
    BriefingItem,
    # Lifecycle
    RootCauseTemplate,
    IssueLifecycleItem,
    LifecycleSummary,
    PhasePipelineEntry,
    RecoveryRollup,
    # Run envelopes
    RecordQualityReport,
    DetectionRunRequest,
    AlertRunResponse,
    IssueRunResponse,
)


__all__ = [
    # Enums
    "Period",
    "AlertCategory",
    "AlertSeverity",
    "AlertStatus",
    "SEVERITY_PRIORITY",
    "BriefingTone",
    "BriefingSignal",
    "PriorityBucket",
    "LifecyclePhase",
    "PHASE_STEP",
    "IssueSeverity",
    # Schemas
    "ALL",
    "LeadStageRecord",
    "DisbursalSummaryRow",
    "DimensionFilter",
    "StageTotals",
    "SubStageTotals",
    "StuckObservation",
    "ConversionPoint",
    "LenderPerformance",
    "ImpactEstimate",
    "ConversionDropThresholds",
    "VolumeDipThresholds",
    "StuckSpikeThresholds",
    "AopPacingThresholds",
    "ConcentrationThresholds",
    "DetectorThresholds",
    "DetectionRules",
    "RuleOverrides",
    "LenderStageDelta",
    "AlertDrilldown",
    "Alert",
    "AlertSummary",
    "CategoryBreakdownItem",
    "BriefingItem",
    "RootCauseTemplate",
    "IssueLifecycleItem",
    "LifecycleSummary",
    "PhasePipelineEntry",
    "RecoveryRollup",
    "RecordQualityReport",
    "DetectionRunRequest",
    "AlertRunResponse",
    "IssueRunResponse",
]
