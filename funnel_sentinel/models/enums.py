"""
Enumeration definitions for the Funnel Sentinel backend.

All enums inherit from both `str` and `Enum` so they serialize to their plain
string values inside Pydantic models and FastAPI responses.

Groups:
- Record periods: Period
- Alert vocabulary: AlertCategory, AlertSeverity, AlertStatus
- Prioritization vocabulary: BriefingTone, BriefingSignal, PriorityBucket
- Issue lifecycle vocabulary: LifecyclePhase, IssueSeverity
"""

from enum import Enum


class Period(str, Enum):
    """
    Reporting window a lead-stage record belongs to.

    - CURRENT: the in-progress window (MTD)
    - COMPARISON: the prior-equivalent baseline window (LMTD)
    """
    CURRENT = "current"
    COMPARISON = "comparison"


class AlertCategory(str, Enum):
    """
    Detector family that produced an alert.
    """
    CONVERSION_DROP = "conversion_drop"
    VOLUME_DIP = "volume_dip"
    STUCK_SPIKE = "stuck_spike"
    AOP_RISK = "aop_risk"
    CONCENTRATION = "concentration"
    ANOMALY = "anomaly"


class AlertSeverity(str, Enum):
    """
    Severity levels for funnel alerts.

    Ranking priority runs critical=0 through low=3; see SEVERITY_PRIORITY.
    """
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Sort priority used by the alert ranker (lower sorts first)
SEVERITY_PRIORITY = {
    AlertSeverity.CRITICAL: 0,
    AlertSeverity.HIGH: 1,
    AlertSeverity.MEDIUM: 2,
    AlertSeverity.LOW: 3,
}


class AlertStatus(str, Enum):
    """
    Novelty of an alert, inferred within a single run.

    - new: the comparison window was healthy and the deviation is sharp
    - recurring: the comparison window already showed weakness
    - known: structural conditions (AOP pacing, concentration) tracked every run
    """
    NEW = "new"
    RECURRING = "recurring"
    KNOWN = "known"


class BriefingTone(str, Enum):
    """
    Tone of a briefing item, used by the priority bucketer.
    """
    GOOD = "good"
    WARN = "warn"
    BAD = "bad"
    INFO = "info"


class BriefingSignal(str, Enum):
    """
    What kind of observation a briefing item carries.

    LENDER_SLIP and STAGE_SLIP mark small deteriorations on dimensions that
    were stable in the comparison window; they feed the emerging bucket.
    """
    ALERT = "alert"
    STAGE_GAIN = "stage_gain"
    LENDER_GROWTH = "lender_growth"
    AOP_ON_TRACK = "aop_on_track"
    STABLE_STAGES = "stable_stages"
    LENDER_SLIP = "lender_slip"
    STAGE_SLIP = "stage_slip"


class PriorityBucket(str, Enum):
    """
    Actionable tiers for briefing items, in display order.
    """
    P0 = "P0"
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"
    EMERGING = "emerging"
    POSITIVE = "positive"


class LifecyclePhase(str, Enum):
    """
    Resolution phase of a tracked issue.

    Phases are totally ordered; PHASE_STEP gives the ordinal used for sorting
    and for forward-only transition checks.
    """
    IDENTIFIED = "identified"
    RCA_IN_PROGRESS = "rca_in_progress"
    FIX_DEPLOYED = "fix_deployed"
    VALIDATED = "validated"
    CLOSED = "closed"


PHASE_STEP = {
    LifecyclePhase.IDENTIFIED: 1,
    LifecyclePhase.RCA_IN_PROGRESS: 2,
    LifecyclePhase.FIX_DEPLOYED: 3,
    LifecyclePhase.VALIDATED: 4,
    LifecyclePhase.CLOSED: 5,
}


class IssueSeverity(str, Enum):
    """
    Severity carried by lifecycle items (alerts below medium never open issues).
    """
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
