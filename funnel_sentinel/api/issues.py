"""
FastAPI router module for the issue lifecycle.

Endpoints:
- POST /issues/run: Detect alerts and open a lifecycle item for every
  conversion-drop and stuck-spike alert, with recovery roll-ups
"""

import logging

from fastapi import APIRouter, HTTPException

from funnel_sentinel.api.alerts import run_request
from funnel_sentinel.core.dependencies import SettingsDep
from funnel_sentinel.models.schemas import DetectionRunRequest, IssueRunResponse
from funnel_sentinel.services.pipeline import build_issue_response


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/issues", tags=["issues"])


@router.post("/run", response_model=IssueRunResponse)
async def run_issues(request: DetectionRunRequest, settings: SettingsDep) -> IssueRunResponse:
    """
    Build the issue lifecycle view for a record set.

    Items are ordered by phase, then severity, then impact. Phase, age and
    recovery are deterministic for identical inputs.

    Raises:
        HTTPException 422: If records are missing or a detector is unknown
        HTTPException 500: If lifecycle derivation fails unexpectedly
    """
    run = run_request(request, settings)
    try:
        return build_issue_response(run)
    except Exception as e:
        logger.exception(f"Error building lifecycle for run {run.fingerprint}")
        raise HTTPException(
            status_code=500,
            detail=f"Error building issue lifecycle: {str(e)}",
        )
