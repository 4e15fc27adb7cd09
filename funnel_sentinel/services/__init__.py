"""
Funnel Sentinel Services

Stateless business logic for the detection core. Every service is a pure
function (or a stateless class) over in-memory records.

Services:
- aggregation: StageSeriesAggregator, record screening, FunnelSeries
- conversion: ConversionCalculator and lender funnel performance
- impact: ImpactEstimator and AOP projection
- classification: severity bands, status and needsAttention rules
- detectors: AnomalyDetector registry and the built-in detectors
- prioritization: AlertRanker, roll-ups, briefing items, PriorityBucketer
- lifecycle: IssueLifecycleEngine and phase providers
- frames: pandas DataFrame adapters
- pipeline: run orchestration and fingerprinting
"""

# =============================================================================
# Aggregation
# =============================================================================

from funnel_sentinel.services.aggregation import (
    DimensionCatalog,
    FunnelSeries,
    StageConventions,
    aggregate,
    aggregate_sub_stages,
    build_series,
    ordered_stage_indices,
    screen_records,
    stuck_observations,
)

# =============================================================================
# Conversion and Impact
# =============================================================================

from funnel_sentinel.services.conversion import (
    compute_conversions,
    compute_lender_performance,
    conversion_pct,
    funnel_conversion_pct,
    relative_change_pct,
)
from funnel_sentinel.services.impact import (
    aop_gap_pct,
    downstream_conversion_pct,
    estimate_impact,
    month_pace,
    project_month_end,
)

# =============================================================================
# Detection and Prioritization
# =============================================================================

from funnel_sentinel.services.detectors import (
    AnomalyDetector,
    get_detector,
    register_detector,
    registered_detectors,
    run_detectors,
)
from funnel_sentinel.services.prioritization import (
    bucket_for,
    bucket_items,
    category_breakdown,
    filter_alerts,
    rank_alerts,
    summarize_alerts,
)

# =============================================================================
# Lifecycle
# =============================================================================

from funnel_sentinel.services.lifecycle import (
    IssueLifecycleEngine,
    LifecyclePhaseProvider,
    SeededPhaseProvider,
    advance,
    summarize_lifecycle,
)

# =============================================================================
# Frames and Pipeline
# =============================================================================

from funnel_sentinel.services.frames import (
    disbursals_from_frame,
    records_from_frame,
)
from funnel_sentinel.services.pipeline import (
    DetectionRun,
    build_alert_response,
    build_issue_response,
    conventions_from_settings,
    execute_run,
    run_fingerprint,
)


__all__ = [
    "DimensionCatalog",
    "FunnelSeries",
    "StageConventions",
    "aggregate",
    "aggregate_sub_stages",
    "build_series",
    "ordered_stage_indices",
    "screen_records",
    "stuck_observations",
    "compute_conversions",
    "compute_lender_performance",
    "conversion_pct",
    "funnel_conversion_pct",
    "relative_change_pct",
    "aop_gap_pct",
    "downstream_conversion_pct",
    "estimate_impact",
    "month_pace",
    "project_month_end",
    "AnomalyDetector",
    "get_detector",
    "register_detector",
    "registered_detectors",
    "run_detectors",
    "bucket_for",
    "bucket_items",
    "category_breakdown",
    "filter_alerts",
    "rank_alerts",
    "summarize_alerts",
    "IssueLifecycleEngine",
    "LifecyclePhaseProvider",
    "SeededPhaseProvider",
    "advance",
    "summarize_lifecycle",
    "disbursals_from_frame",
    "records_from_frame",
    "DetectionRun",
    "build_alert_response",
    "build_issue_response",
    "conventions_from_settings",
    "execute_run",
    "run_fingerprint",
]
