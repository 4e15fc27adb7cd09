"""
Settings and environment management for the Funnel Sentinel backend.

Configuration is loaded with pydantic-settings from environment variables and
an optional .env file. Every variable carries the FUNNEL_ prefix; nested
threshold values use a double underscore delimiter.

Environment Variables:
- FUNNEL_AVG_TICKET_SIZE_LAKHS: Average disbursed loan size (default: 2.5)
- FUNNEL_LENDER_ANNUAL_TARGETS: JSON map of lender -> annual AOP in Crore
- FUNNEL_THRESHOLDS__CONVERSIONDROP__OVERALLTRIGGER (and siblings): detector thresholds
- FUNNEL_CURRENT_PERIOD_LABEL / FUNNEL_COMPARISON_PERIOD_LABEL: source period labels
- FUNNEL_CORS_ORIGINS: JSON list of allowed origins

Usage:
    from funnel_sentinel.core.config import get_settings

    settings = get_settings()
    rules = settings.detection_rules()
"""

from functools import lru_cache
from typing import Any, Dict, List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from funnel_sentinel.models.schemas import (
    DetectionRules,
    DetectorThresholds,
    RuleOverrides,
)


# Annual AOP disbursal targets in Crore (total 465)
DEFAULT_LENDER_ANNUAL_TARGETS: Dict[str, float] = {
    "FULLERTON": 120,
    "KSF": 80,
    "PIRAMAL": 60,
    "SHRIRAM": 55,
    "NACL": 45,
    "PYFL": 40,
    "MFL": 35,
    "UCL": 30,
}


def _deep_merge(base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge update over base; nested dicts merge key by key."""
    merged = dict(base)
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes:
        avg_ticket_size_lakhs: Average disbursed ticket size, in Lakhs.
        lender_annual_targets: Annual AOP target per lender, in Crore.
        thresholds: Every detector trigger and severity band.
        stage_sentinel_floor: Stage indices at or above this are bookkeeping rows.
        stage_placeholder_indices: Additional bookkeeping stage indices.
        current_period_label: Source label mapped to the current period.
        comparison_period_label: Source label mapped to the comparison period.
        cors_origins: Origins allowed by the CORS middleware.
    """

    model_config = SettingsConfigDict(
        env_prefix='FUNNEL_',
        env_file='.env',
        env_file_encoding='utf-8',
        env_nested_delimiter='__',
        extra='ignore',
        case_sensitive=False,
    )

    # =========================================================================
    # Business Constants
    # =========================================================================

    avg_ticket_size_lakhs: float = Field(default=2.5, gt=0.0)

    lender_annual_targets: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_LENDER_ANNUAL_TARGETS)
    )

    # =========================================================================
    # Detector Thresholds
    # =========================================================================

    thresholds: DetectorThresholds = Field(default_factory=DetectorThresholds)

    # =========================================================================
    # Record Conventions
    # =========================================================================

    # Stage indices >= floor (and the placeholders) never enter top-level totals
    stage_sentinel_floor: int = 1000
    stage_placeholder_indices: List[int] = Field(default_factory=lambda: [1])

    current_period_label: str = '1.MTD'
    comparison_period_label: str = '2.LMTD'

    # =========================================================================
    # Service
    # =========================================================================

    cors_origins: List[str] = Field(
        default_factory=lambda: [
            'http://localhost:3000',
            'http://127.0.0.1:3000',
        ]
    )

    def detection_rules(self, overrides: Optional[RuleOverrides] = None) -> DetectionRules:
        """
        Project the economic and threshold settings into DetectionRules.

        Args:
            overrides: Optional per-request values merged over these settings.

        Returns:
            DetectionRules: The effective rules for one run.
        """
        rules = DetectionRules(
            avgTicketSizeLakhs=self.avg_ticket_size_lakhs,
            lenderAnnualTargets=dict(self.lender_annual_targets),
            thresholds=self.thresholds.model_copy(deep=True),
        )
        if overrides is None:
            return rules

        update = {}
        if overrides.avgTicketSizeLakhs is not None:
            update['avgTicketSizeLakhs'] = overrides.avgTicketSizeLakhs
        if overrides.lenderAnnualTargets is not None:
            update['lenderAnnualTargets'] = dict(overrides.lenderAnnualTargets)
        if overrides.thresholds is not None:
            # Only fields the request actually sent replace configured values
            update['thresholds'] = DetectorThresholds.model_validate(_deep_merge(
                self.thresholds.model_dump(),
                overrides.thresholds.model_dump(exclude_unset=True),
            ))
        return rules.model_copy(update=update)


@lru_cache()
def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Returns:
        Settings: The cached settings instance.

    Note:
        To refresh settings in tests, clear the cache:
        >>> get_settings.cache_clear()
    """
    return Settings()
