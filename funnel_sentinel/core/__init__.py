"""
Core infrastructure for the Funnel Sentinel backend.

- config: pydantic-settings Settings and the cached get_settings()
- dependencies: FastAPI Depends aliases
- exceptions: error hierarchy
"""

from funnel_sentinel.core.config import (
    DEFAULT_LENDER_ANNUAL_TARGETS,
    Settings,
    get_settings,
)
from funnel_sentinel.core.dependencies import (
    DetectionRulesDep,
    SettingsDep,
    get_detection_rules,
    get_settings_dependency,
)
from funnel_sentinel.core.exceptions import (
    FrameSchemaError,
    FunnelSentinelError,
    MissingInputError,
    PhaseTransitionError,
    UnknownDetectorError,
)


__all__ = [
    "DEFAULT_LENDER_ANNUAL_TARGETS",
    "Settings",
    "get_settings",
    "DetectionRulesDep",
    "SettingsDep",
    "get_detection_rules",
    "get_settings_dependency",
    "FrameSchemaError",
    "FunnelSentinelError",
    "MissingInputError",
    "PhaseTransitionError",
    "UnknownDetectorError",
]
