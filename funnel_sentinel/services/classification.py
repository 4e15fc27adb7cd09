"""
Alert Classification Service

Severity bands, novelty status and needsAttention rules shared by the
detectors.

Band boundaries:
- Drop-direction metrics (conversion delta, volume change, AOP gap) are
  negative numbers; a value at or below a band's bound falls in that band,
  so a -5pp delta with a -5 high bound is high and a -40% gap with a -40
  critical bound is critical.
- Rise-direction metrics (stuck %, concentration share) must exceed a
  band's bound, so 45% stuck with a 50 high bound is medium and an 80%
  share with an 80 high bound is medium.

Values are compared after rounding to 6 decimals so float noise from
percentage arithmetic cannot move a value across a boundary.
"""

from typing import Optional

from funnel_sentinel.models.enums import AlertSeverity, AlertStatus
from funnel_sentinel.models.schemas import (
    ConversionDropThresholds,
    StuckSpikeThresholds,
)


PRECISION = 6


def _clean(value: float) -> float:
    return round(value, PRECISION)


def fires_below(value: float, trigger: float) -> bool:
    """Strict trigger for drop-direction metrics."""
    return _clean(value) < trigger


def fires_above(value: float, trigger: float) -> bool:
    """Strict trigger for rise-direction metrics."""
    return _clean(value) > trigger


def classify_drop(
    value: float,
    critical: Optional[float] = None,
    high: Optional[float] = None,
) -> AlertSeverity:
    """
    Severity for a drop-direction metric.

    Args:
        value: The (negative) change
        critical: Bound at or below which the alert is critical; None to skip
        high: Bound at or below which the alert is high; None to skip

    Returns:
        AlertSeverity (MEDIUM when no band matches)
    """
    value = _clean(value)
    if critical is not None and value <= critical:
        return AlertSeverity.CRITICAL
    if high is not None and value <= high:
        return AlertSeverity.HIGH
    return AlertSeverity.MEDIUM


def classify_rise(
    value: float,
    high: Optional[float] = None,
    critical: Optional[float] = None,
) -> AlertSeverity:
    """Severity for a rise-direction metric; bounds are exclusive."""
    value = _clean(value)
    if critical is not None and value > critical:
        return AlertSeverity.CRITICAL
    if high is not None and value > high:
        return AlertSeverity.HIGH
    return AlertSeverity.MEDIUM


def conversion_drop_status(
    comparison_pct: float,
    delta_pct: float,
    thresholds: ConversionDropThresholds,
) -> AlertStatus:
    """
    NEW when the comparison conversion was healthy and the drop is sharp,
    otherwise RECURRING.
    """
    healthy = _clean(comparison_pct) > thresholds.healthyBaselinePct
    sharp = _clean(delta_pct) < -thresholds.newDropPp
    return AlertStatus.NEW if healthy and sharp else AlertStatus.RECURRING


def stuck_status(baseline_pct: float, thresholds: StuckSpikeThresholds) -> AlertStatus:
    """RECURRING when leads were already stuck in the comparison window."""
    if _clean(baseline_pct) > thresholds.recurringBaselinePct:
        return AlertStatus.RECURRING
    return AlertStatus.NEW


def needs_attention(severity: AlertSeverity, condition: bool = False) -> bool:
    """Critical alerts always need attention; detectors add their own conditions."""
    return severity == AlertSeverity.CRITICAL or condition
