"""
Issue Lifecycle Service

Tracks each conversion-drop and stuck-spike alert as an issue moving through
five ordered phases:

    IDENTIFIED (1) -> RCA_IN_PROGRESS (2) -> FIX_DEPLOYED (3) -> VALIDATED (4) -> CLOSED (5)

Phase, age and recovery come from a LifecyclePhaseProvider. The default
SeededPhaseProvider derives them deterministically from the issue's lender
and stage, standing in for a real workflow store; an event-driven provider
can replace it without touching detection. Providers may skip phases but
the order above is total and transitions only move forward.

Seeded assignment:
    seed = (ord(first char of lender) + stageIndex) mod 10   (overall issues use "ALL")
    seed 0-1 -> IDENTIFIED,      recovery 0
    seed 2-3 -> RCA_IN_PROGRESS, recovery 0
    seed 4-6 -> FIX_DEPLOYED,    recovery 0.30 + 0.08 * seed
    seed 7-8 -> VALIDATED,       recovery 0.60 + 0.04 * seed
    seed 9   -> CLOSED,          recovery 0.95

Conversion issues recover upward (afterMetric = metricAtDrop + |delta| * recovery);
stuck issues recover downward. Recovered currency = impactCr * recoveryPct / 100.

Root-cause/fix text and owners are picked round-robin from injected catalogs.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from funnel_sentinel.core.exceptions import PhaseTransitionError
from funnel_sentinel.models.enums import (
    PHASE_STEP,
    AlertCategory,
    AlertSeverity,
    IssueSeverity,
    LifecyclePhase,
)
from funnel_sentinel.models.schemas import (
    Alert,
    IssueLifecycleItem,
    LifecycleSummary,
    PhasePipelineEntry,
    RecoveryRollup,
    RootCauseTemplate,
)
from funnel_sentinel.services.impact import round_half_up


logger = logging.getLogger(__name__)


OVERALL_LENDER_KEY = "ALL"

TRACKED_CATEGORIES = (AlertCategory.CONVERSION_DROP, AlertCategory.STUCK_SPIKE)

# Phases whose recovery counts as realized
RECOVERING_PHASES = (
    LifecyclePhase.FIX_DEPLOYED,
    LifecyclePhase.VALIDATED,
    LifecyclePhase.CLOSED,
)


# =============================================================================
# Template Catalogs
# =============================================================================

DEFAULT_OWNERS: List[str] = [
    "Rahul (PM)",
    "Priya (Ops)",
    "Amit (Eng)",
    "Neha (Risk)",
    "Vikram (BD)",
    "Sonia (PM)",
]

DEFAULT_ROOT_CAUSES: Dict[AlertCategory, List[RootCauseTemplate]] = {
    AlertCategory.CONVERSION_DROP: [
        RootCauseTemplate(
            cause="Lender API response time increased from 2s to 8s, causing timeouts during offer generation",
            fix="Coordinated with lender tech team to optimize API; added retry logic with exponential backoff",
        ),
        RootCauseTemplate(
            cause="Bureau pull failure rate spiked due to upstream provider maintenance window",
            fix="Implemented fallback bureau provider; added graceful degradation for bureau-dependent stages",
        ),
        RootCauseTemplate(
            cause="Updated KYC validation rules rejected valid documents due to stricter regex pattern",
            fix="Rolled back regex change; added comprehensive test suite for document patterns before deploy",
        ),
        RootCauseTemplate(
            cause="Lender credit policy tightened: minimum score raised from 650 to 700 without notice",
            fix="Escalated with lender; negotiated phased rollout; updated pre-qualification filters to avoid wasted leads",
        ),
    ],
    AlertCategory.VOLUME_DIP: [
        RootCauseTemplate(
            cause="Marketing campaign paused for budget reallocation, reducing top-of-funnel traffic by 30%",
            fix="Reallocated budget from underperforming channels; launched targeted re-engagement campaign",
        ),
        RootCauseTemplate(
            cause="App update introduced navigation bug on loan discovery page, reducing click-through",
            fix="Hotfix deployed within 24hrs; A/B test confirmed recovery; added smoke tests for critical flows",
        ),
    ],
    AlertCategory.STUCK_SPIKE: [
        RootCauseTemplate(
            cause="Manual verification queue backlogged due to 2 verifiers on leave + holiday rush",
            fix="Temporary staff augmentation; escalated SLA monitoring; implemented auto-approval for low-risk cases",
        ),
        RootCauseTemplate(
            cause="E-sign provider downtime caused leads to pile up at agreement stage",
            fix="Switched to backup e-sign provider; added real-time provider health monitoring dashboard",
        ),
        RootCauseTemplate(
            cause="Penny drop verification failing for certain bank IFSCs due to NPCI routing change",
            fix="Updated IFSC mapping table; added fallback validation via UPI for affected banks",
        ),
    ],
}

# Stuck issues start their owner rotation this many places later
STUCK_OWNER_OFFSET = 2


# =============================================================================
# Phase Providers
# =============================================================================


@dataclass(frozen=True)
class PhaseAssignment:
    """Phase, age and recovery fraction for one issue."""
    phase: LifecyclePhase
    age_days: int
    recovery_fraction: float
    seed: int = 0


class LifecyclePhaseProvider(ABC):
    """
    Strategy that decides where an issue stands in its lifecycle.
    """

    @abstractmethod
    def assign(self, alert: Alert) -> PhaseAssignment:
        """Return the phase assignment for the issue opened from this alert."""


class SeededPhaseProvider(LifecyclePhaseProvider):
    """
    Deterministic phase assignment from a seed over (lender, stageIndex).

    Identical alerts always get identical phase, age and recovery.
    """

    max_conversion_age_days = 30
    max_stuck_age_days = 20

    @staticmethod
    def seed_for(lender: Optional[str], stage_index: Optional[int]) -> int:
        key = lender or OVERALL_LENDER_KEY
        return (ord(key[0]) + (stage_index or 0)) % 10

    @staticmethod
    def phase_for_seed(seed: int):
        if seed < 2:
            return LifecyclePhase.IDENTIFIED, 0.0
        if seed < 4:
            return LifecyclePhase.RCA_IN_PROGRESS, 0.0
        if seed < 7:
            return LifecyclePhase.FIX_DEPLOYED, 0.3 + seed * 0.08
        if seed < 9:
            return LifecyclePhase.VALIDATED, 0.6 + seed * 0.04
        return LifecyclePhase.CLOSED, 0.95

    def assign(self, alert: Alert) -> PhaseAssignment:
        seed = self.seed_for(alert.lender, alert.stageIndex)
        phase, fraction = self.phase_for_seed(seed)

        if alert.category == AlertCategory.STUCK_SPIKE:
            rise = max(round_half_up(alert.metricValue - alert.baselineValue), 0)
            age = min(rise + seed, self.max_stuck_age_days)
        else:
            age = min(abs(round_half_up(alert.changePct)) + seed, self.max_conversion_age_days)

        return PhaseAssignment(phase=phase, age_days=age, recovery_fraction=fraction, seed=seed)


# =============================================================================
# Engine
# =============================================================================


def _issue_severity(severity: AlertSeverity) -> Optional[IssueSeverity]:
    if severity == AlertSeverity.LOW:
        return None
    return IssueSeverity(severity.value)


class IssueLifecycleEngine:
    """
    Opens lifecycle items for conversion-drop and stuck-spike alerts.

    Args:
        provider: Phase strategy (defaults to SeededPhaseProvider)
        root_causes: Category-keyed root-cause/fix catalog
        owners: Owner rotation
    """

    def __init__(
        self,
        provider: Optional[LifecyclePhaseProvider] = None,
        root_causes: Optional[Dict[AlertCategory, List[RootCauseTemplate]]] = None,
        owners: Optional[Sequence[str]] = None,
    ):
        self.provider = provider or SeededPhaseProvider()
        self.root_causes = root_causes if root_causes is not None else DEFAULT_ROOT_CAUSES
        self.owners = list(owners) if owners is not None else list(DEFAULT_OWNERS)
        if not self.owners:
            raise ValueError("Owner rotation must not be empty")

    def _template(self, category: AlertCategory, index: int) -> RootCauseTemplate:
        templates = self.root_causes.get(category) or self.root_causes.get(AlertCategory.CONVERSION_DROP)
        if not templates:
            return RootCauseTemplate(cause="Root cause under investigation", fix="Fix pending RCA")
        return templates[index % len(templates)]

    def _owner(self, category: AlertCategory, index: int) -> str:
        offset = STUCK_OWNER_OFFSET if category == AlertCategory.STUCK_SPIKE else 0
        return self.owners[(index + offset) % len(self.owners)]

    def build_item(self, alert: Alert, index: int) -> Optional[IssueLifecycleItem]:
        """
        Open one lifecycle item from an alert, or None if the alert is not tracked.

        Args:
            alert: Originating alert
            index: Round-robin position for template and owner selection
        """
        if alert.category not in TRACKED_CATEGORIES:
            return None
        severity = _issue_severity(alert.severity)
        if severity is None:
            return None

        assignment = self.provider.assign(alert)
        recovery_pct = round_half_up(assignment.recovery_fraction * 100)
        change = abs(alert.changePct)
        at_drop = alert.metricValue
        baseline = alert.baselineValue

        if alert.category == AlertCategory.STUCK_SPIKE:
            # Absolute-rule spikes can sit below their baseline; aim under the spike instead
            target = baseline if 0 < baseline < at_drop else at_drop * 0.6
            after = max(at_drop - change * assignment.recovery_fraction, target)
            prefix = "rca-stuck"
        else:
            after = at_drop + change * assignment.recovery_fraction
            target = baseline
            prefix = "rca"

        template = self._template(alert.category, index)
        logger.debug(
            f"Lifecycle item for {alert.id}: phase={assignment.phase.value} seed={assignment.seed}"
        )

        return IssueLifecycleItem(
            id=f"{prefix}-{index}",
            alertId=alert.id,
            category=alert.category,
            severity=severity,
            title=alert.title,
            detail=alert.description,
            lender=alert.lender,
            program=alert.program,
            stage=alert.stage,
            stageIndex=alert.stageIndex,
            phase=assignment.phase,
            ageDays=assignment.age_days,
            owner=self._owner(alert.category, index),
            rootCause=template.cause,
            fix=template.fix,
            beforeMetric=round(baseline, 1),
            metricAtDrop=round(at_drop, 1),
            afterMetric=round(after, 1),
            targetMetric=round(target, 1),
            recoveryPct=recovery_pct,
            impactLeads=alert.impactLeads,
            impactCr=alert.impactCr,
            recoveredCr=round(alert.impactCr * recovery_pct / 100, 2),
        )

    def build_items(self, alerts: Iterable[Alert]) -> List[IssueLifecycleItem]:
        """
        Lifecycle items for every tracked alert, in lifecycle order.
        """
        items = []
        for alert in alerts:
            item = self.build_item(alert, len(items))
            if item is not None:
                items.append(item)
        return sort_items(items)


def advance(item: IssueLifecycleItem, phase: LifecyclePhase) -> IssueLifecycleItem:
    """
    Move an item to a later (or the same) phase.

    Raises:
        PhaseTransitionError: If the requested phase is earlier than the current one
    """
    if PHASE_STEP[phase] < PHASE_STEP[item.phase]:
        raise PhaseTransitionError(item.id, item.phase.value, phase.value)
    return item.model_copy(update={"phase": phase})


# =============================================================================
# Ordering and Roll-ups
# =============================================================================

_ISSUE_SEVERITY_ORDER = {
    IssueSeverity.CRITICAL: 0,
    IssueSeverity.HIGH: 1,
    IssueSeverity.MEDIUM: 2,
}


def sort_items(items: Iterable[IssueLifecycleItem]) -> List[IssueLifecycleItem]:
    """Phase step asc, then severity (critical first), then impactCr desc."""
    return sorted(
        items,
        key=lambda item: (PHASE_STEP[item.phase], _ISSUE_SEVERITY_ORDER[item.severity], -item.impactCr),
    )


def summarize_lifecycle(items: List[IssueLifecycleItem]) -> LifecycleSummary:
    """
    Counts, impact and recovery over lifecycle items.

    open counts IDENTIFIED and RCA_IN_PROGRESS; recoveredCr counts only
    phases with a deployed fix; avgRecoveryPct averages items with recovery.
    """
    if not items:
        return LifecycleSummary()

    recovering = [item for item in items if item.recoveryPct > 0]
    return LifecycleSummary(
        total=len(items),
        open=sum(1 for i in items if i.phase in (LifecyclePhase.IDENTIFIED, LifecyclePhase.RCA_IN_PROGRESS)),
        fixDeployed=sum(1 for i in items if i.phase == LifecyclePhase.FIX_DEPLOYED),
        validated=sum(1 for i in items if i.phase == LifecyclePhase.VALIDATED),
        closed=sum(1 for i in items if i.phase == LifecyclePhase.CLOSED),
        totalImpactCr=round(sum(i.impactCr for i in items), 2),
        recoveredCr=round(sum(i.recoveredCr for i in items if i.phase in RECOVERING_PHASES), 2),
        avgRecoveryPct=(
            round(sum(i.recoveryPct for i in recovering) / len(recovering), 1) if recovering else 0.0
        ),
        avgAgeDays=round(sum(i.ageDays for i in items) / len(items), 1),
    )


def phase_pipeline(items: List[IssueLifecycleItem]) -> List[PhasePipelineEntry]:
    """Count and impact per phase, every phase present, in phase order."""
    return [
        PhasePipelineEntry(
            phase=phase,
            step=PHASE_STEP[phase],
            count=sum(1 for i in items if i.phase == phase),
            impactCr=round(sum(i.impactCr for i in items if i.phase == phase), 2),
        )
        for phase in LifecyclePhase
    ]


def _rollup(items: List[IssueLifecycleItem], key) -> List[RecoveryRollup]:
    grouped: Dict[str, List[IssueLifecycleItem]] = {}
    for item in items:
        grouped.setdefault(key(item), []).append(item)
    return [
        RecoveryRollup(
            key=name,
            items=len(members),
            impactCr=round(sum(i.impactCr for i in members), 2),
            recoveredCr=round(sum(i.recoveredCr for i in members), 2),
        )
        for name, members in grouped.items()
    ]


def recovery_by_owner(items: List[IssueLifecycleItem]) -> List[RecoveryRollup]:
    """Recovered currency per owner, highest first."""
    rollups = _rollup(items, lambda item: item.owner)
    rollups.sort(key=lambda rollup: -rollup.recoveredCr)
    return rollups


def recovery_by_phase(items: List[IssueLifecycleItem]) -> List[RecoveryRollup]:
    """Recovered currency per phase, in phase order."""
    rollups = {r.key: r for r in _rollup(items, lambda item: item.phase.value)}
    return [rollups[phase.value] for phase in LifecyclePhase if phase.value in rollups]


__all__ = [
    "DEFAULT_OWNERS",
    "DEFAULT_ROOT_CAUSES",
    "PhaseAssignment",
    "LifecyclePhaseProvider",
    "SeededPhaseProvider",
    "IssueLifecycleEngine",
    "advance",
    "sort_items",
    "summarize_lifecycle",
    "phase_pipeline",
    "recovery_by_owner",
    "recovery_by_phase",
]
