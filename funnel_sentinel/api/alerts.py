"""
FastAPI router module for funnel alert detection.

Endpoints:
- POST /alerts/run: Run every (or the selected) detector over a record set
  and return ranked alerts, roll-ups and priority buckets
- GET /alerts/config: Effective detection rules and registered detectors

Runs are stateless and idempotent; the response fingerprint identifies the
inputs so clients can cache responses.
"""

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from funnel_sentinel.core.config import Settings
from funnel_sentinel.core.dependencies import DetectionRulesDep, SettingsDep
from funnel_sentinel.core.exceptions import FunnelSentinelError
from funnel_sentinel.models.enums import AlertCategory, AlertSeverity, AlertStatus
from funnel_sentinel.models.schemas import (
    AlertRunResponse,
    DetectionRules,
    DetectionRunRequest,
)
from funnel_sentinel.services.detectors import registered_detectors
from funnel_sentinel.services.pipeline import (
    DetectionRun,
    build_alert_response,
    conventions_from_settings,
    execute_run,
)
from funnel_sentinel.services.prioritization import filter_alerts


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/alerts", tags=["alerts"])


# =============================================================================
# Local Pydantic Models for API Responses
# =============================================================================

class DetectionConfigResponse(BaseModel):
    """Effective detection configuration."""
    rules: DetectionRules = Field(..., description="Rules applied when no overrides are sent")
    detectors: List[str] = Field(default_factory=list, description="Registered detector names, in run order")
    stageSentinelFloor: int = Field(..., description="Stage indices at or above this are bookkeeping rows")
    stagePlaceholderIndices: List[int] = Field(default_factory=list)
    periodLabels: Dict[str, str] = Field(default_factory=dict)


# =============================================================================
# Helpers
# =============================================================================

def run_request(request: DetectionRunRequest, settings: Settings) -> DetectionRun:
    """
    Execute one run, mapping core errors to HTTP errors.

    Raises:
        HTTPException 422: Missing records, unknown detector, or other input errors
        HTTPException 500: Unexpected failure
    """
    try:
        rules = settings.detection_rules(request.overrides)
        run = execute_run(request, rules, conventions_from_settings(settings))
        logger.info(f"Completed detection run {run.fingerprint}")
        return run
    except FunnelSentinelError as e:
        logger.warning(f"Rejected detection run: {e}")
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        logger.exception("Error executing detection run")
        raise HTTPException(
            status_code=500,
            detail=f"Error executing detection run: {str(e)}",
        )


# =============================================================================
# Endpoints
# =============================================================================

@router.post("/run", response_model=AlertRunResponse)
async def run_alerts(
    request: DetectionRunRequest,
    settings: SettingsDep,
    severity: Optional[AlertSeverity] = Query(None, description="Only return alerts of this severity"),
    status: Optional[AlertStatus] = Query(None, description="Only return alerts with this status"),
    category: Optional[AlertCategory] = Query(None, description="Only return alerts of this category"),
) -> AlertRunResponse:
    """
    Detect funnel anomalies for a two-period record set.

    The alert list is ranked by severity then impact. Query filters narrow
    the returned list only; summary and categoryBreakdown cover every alert.

    Args:
        request: Records, optional disbursals, dimension filter, as-of date,
            detector subset and rule overrides
        severity: Optional severity filter
        status: Optional status filter
        category: Optional category filter

    Returns:
        AlertRunResponse

    Raises:
        HTTPException 422: If records are missing or a detector is unknown
        HTTPException 500: If detection fails unexpectedly
    """
    run = run_request(request, settings)
    narrowed = filter_alerts(
        run.alerts,
        severity=severity.value if severity else None,
        status=status.value if status else None,
        category=category.value if category else None,
    )
    return build_alert_response(run, narrowed)


@router.get("/config", response_model=DetectionConfigResponse)
async def get_detection_config(
    settings: SettingsDep,
    rules: DetectionRulesDep,
) -> DetectionConfigResponse:
    """Return the configured rules and the registered detector catalog."""
    return DetectionConfigResponse(
        rules=rules,
        detectors=registered_detectors(),
        stageSentinelFloor=settings.stage_sentinel_floor,
        stagePlaceholderIndices=list(settings.stage_placeholder_indices),
        periodLabels={
            "current": settings.current_period_label,
            "comparison": settings.comparison_period_label,
        },
    )
