"""
FastAPI dependency injection for the Funnel Sentinel backend.

Key Dependencies Provided:
- get_settings_dependency: Returns the cached Settings singleton
- get_detection_rules: Returns the configured DetectionRules
- SettingsDep: Type alias for injecting Settings into endpoints
- DetectionRulesDep: Type alias for injecting DetectionRules into endpoints

Usage Examples:
    @router.get("/config")
    async def get_config(rules: DetectionRulesDep) -> DetectionRules:
        return rules

Tests override get_settings_dependency with app.dependency_overrides to pin
settings; get_detection_rules follows whatever settings it is handed.
"""

from typing import Annotated

from fastapi import Depends

from funnel_sentinel.core.config import Settings, get_settings
from funnel_sentinel.models.schemas import DetectionRules


# =============================================================================
# Configuration Dependencies
# =============================================================================

def get_settings_dependency() -> Settings:
    """
    Return the application settings singleton.

    Wraps get_settings() so endpoints can declare the dependency and tests can
    swap it through app.dependency_overrides.
    """
    return get_settings()


def get_detection_rules(
    settings: Annotated[Settings, Depends(get_settings_dependency)],
) -> DetectionRules:
    """Return the configured detection rules without per-request overrides."""
    return settings.detection_rules()


# =============================================================================
# Type Aliases for Dependency Injection
# =============================================================================

SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]
"""Type alias for injecting application settings."""

DetectionRulesDep = Annotated[DetectionRules, Depends(get_detection_rules)]
"""Type alias for injecting the configured detection rules."""
