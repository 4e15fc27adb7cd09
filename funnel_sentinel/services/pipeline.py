"""
Detection Pipeline Service

Orchestrates one stateless run:

    records -> aggregation -> detectors -> ranking -> briefing/buckets
                                       \\-> issue lifecycle

Every run is pure over its inputs: identical requests give identical
responses and the same fingerprint, so callers can cache on it.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

from funnel_sentinel.core.config import Settings
from funnel_sentinel.models.schemas import (
    Alert,
    AlertRunResponse,
    BriefingItem,
    DetectionRules,
    DetectionRunRequest,
    IssueLifecycleItem,
    IssueRunResponse,
    RecordQualityReport,
)
from funnel_sentinel.services.aggregation import (
    DEFAULT_CONVENTIONS,
    DimensionCatalog,
    FunnelSeries,
    StageConventions,
    build_series,
)
from funnel_sentinel.services.detectors import run_detectors
from funnel_sentinel.services.lifecycle import (
    IssueLifecycleEngine,
    phase_pipeline,
    recovery_by_owner,
    recovery_by_phase,
    summarize_lifecycle,
)
from funnel_sentinel.services.prioritization import (
    alert_briefing_items,
    bucket_items,
    category_breakdown,
    rank_alerts,
    signal_briefing_items,
    summarize_alerts,
)


logger = logging.getLogger(__name__)


def conventions_from_settings(settings: Settings) -> StageConventions:
    """Bookkeeping stage ranges configured in settings."""
    return StageConventions(
        sentinel_floor=settings.stage_sentinel_floor,
        placeholder_indices=frozenset(settings.stage_placeholder_indices),
    )


def run_fingerprint(request: DetectionRunRequest, rules: DetectionRules, as_of_date: date) -> str:
    """
    SHA-256 over the canonical JSON of the run inputs.

    Covers records, disbursals, filters, the effective as-of date, the
    requested detectors and the effective rules.
    """
    payload = {
        "records": [r.model_dump(mode="json") for r in (request.records or [])],
        "disbursals": (
            None if request.disbursals is None
            else [d.model_dump(mode="json") for d in request.disbursals]
        ),
        "filters": request.filters.model_dump(mode="json"),
        "asOfDate": as_of_date.isoformat(),
        "detectors": request.detectors,
        "rules": rules.model_dump(mode="json"),
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass
class DetectionRun:
    """
    Everything one run produced, before it is shaped into a response.
    """
    fingerprint: str
    series: FunnelSeries
    catalog: DimensionCatalog
    alerts: List[Alert] = field(default_factory=list)
    briefing: List[BriefingItem] = field(default_factory=list)
    buckets: Dict[str, List[BriefingItem]] = field(default_factory=dict)

    @property
    def quality(self) -> RecordQualityReport:
        return self.series.quality


def execute_run(
    request: DetectionRunRequest,
    rules: DetectionRules,
    conventions: StageConventions = DEFAULT_CONVENTIONS,
) -> DetectionRun:
    """
    Aggregate, detect, rank and bucket for one request.

    Args:
        request: Run inputs
        rules: Effective detection rules (settings merged with overrides)
        conventions: Bookkeeping stage ranges

    Returns:
        DetectionRun with ranked alerts and bucketed briefing items

    Raises:
        MissingInputError: If request.records is None
        UnknownDetectorError: If a requested detector is not registered
    """
    as_of = request.asOfDate or date.today()
    series, catalog = build_series(
        request.records,
        filters=request.filters,
        disbursals=request.disbursals,
        as_of_date=as_of,
        conventions=conventions,
    )

    alerts = rank_alerts(run_detectors(series, catalog, rules, request.detectors))
    briefing = alert_briefing_items(alerts) + signal_briefing_items(series, rules)

    run = DetectionRun(
        fingerprint=run_fingerprint(request, rules, as_of),
        series=series,
        catalog=catalog,
        alerts=alerts,
        briefing=briefing,
        buckets=bucket_items(briefing),
    )

    summary = summarize_alerts(alerts)
    logger.info(
        f"Run {run.fingerprint[:12]}: {summary.total} alerts "
        f"(critical={summary.critical}, high={summary.high}, "
        f"needsAttention={summary.needsAttention})"
    )
    return run


def build_alert_response(run: DetectionRun, alerts: Optional[List[Alert]] = None) -> AlertRunResponse:
    """
    Shape a run into an AlertRunResponse.

    Args:
        run: Completed run
        alerts: Optional narrowed alert list to return; summary and
            breakdown always cover the full set
    """
    return AlertRunResponse(
        fingerprint=run.fingerprint,
        alerts=run.alerts if alerts is None else alerts,
        summary=summarize_alerts(run.alerts),
        categoryBreakdown=category_breakdown(run.alerts),
        buckets=run.buckets,
        recordQuality=run.quality,
    )


def build_issue_response(
    run: DetectionRun,
    engine: Optional[IssueLifecycleEngine] = None,
) -> IssueRunResponse:
    """Open lifecycle items for a run's alerts and roll up recovery."""
    engine = engine or IssueLifecycleEngine()
    items: List[IssueLifecycleItem] = engine.build_items(run.alerts)
    return IssueRunResponse(
        fingerprint=run.fingerprint,
        items=items,
        summary=summarize_lifecycle(items),
        phasePipeline=phase_pipeline(items),
        recoveryByOwner=recovery_by_owner(items),
        recoveryByPhase=recovery_by_phase(items),
        recordQuality=run.quality,
    )
