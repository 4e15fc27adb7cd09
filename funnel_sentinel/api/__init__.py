"""
Funnel Sentinel API package.

Routers:
- alerts: detection runs and configuration (/alerts)
- issues: issue lifecycle runs (/issues)
"""

from fastapi import APIRouter

from funnel_sentinel.api.alerts import router as alerts_router
from funnel_sentinel.api.issues import router as issues_router

api_router = APIRouter()

# Both routers carry their own prefix
api_router.include_router(alerts_router)
api_router.include_router(issues_router)

__all__ = [
    "api_router",
    "alerts_router",
    "issues_router",
]
