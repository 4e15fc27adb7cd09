"""
Impact Estimation Service

Converts lead-count deltas into estimated loans and currency, and projects
month-to-date disbursal against monthly AOP targets.

The loan estimate is an approximation, not a causal estimate: it answers
"if these leads had not been lost, how many would plausibly reach disbursal
at today's efficiency". The downstream conversion used is the current-period
ratio of final-stage volume to the volume at the stage under analysis, or a
fixed configured rate where no such ratio exists (per-lender drops, volume
dips, stuck leads).

Currency conventions: ticket size is in Lakhs, impact in Crore
(1 Crore = 100 Lakhs).
"""

import calendar
import math
from datetime import date
from typing import Optional

from funnel_sentinel.models.schemas import ImpactEstimate


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves rounded up."""
    return int(math.floor(value + 0.5))


def loans_to_crore(loans: float, avg_ticket_size_lakhs: float) -> float:
    """Currency value in Crore of a loan count at the average ticket size."""
    return loans * avg_ticket_size_lakhs / 100


def downstream_conversion_pct(final_stage_count: int, stage_count: int) -> float:
    """
    Percentage of leads at a stage that reach the final stage, 0 if the stage is empty.
    """
    if stage_count <= 0:
        return 0.0
    return final_stage_count / stage_count * 100


def estimate_impact(
    lead_delta: float,
    downstream_conversion: float,
    avg_ticket_size_lakhs: float,
) -> ImpactEstimate:
    """
    Estimate loans and currency behind a lead-count delta.

    lostLoans = round(leadDelta * downstreamConversionPct / 100)
    impactCr  = lostLoans * avgTicketSizeLakhs / 100

    Monotonic in lead_delta for a fixed conversion and ticket size.

    Args:
        lead_delta: Leads lost (positive) or gained
        downstream_conversion: Downstream conversion in percent
        avg_ticket_size_lakhs: Average ticket size in Lakhs

    Returns:
        ImpactEstimate with lostLoans and impactCr
    """
    lost_loans = round_half_up(lead_delta * downstream_conversion / 100)
    return ImpactEstimate(
        lostLoans=lost_loans,
        impactCr=loans_to_crore(lost_loans, avg_ticket_size_lakhs),
    )


# =============================================================================
# AOP Pacing
# =============================================================================


def month_pace(as_of_date: date) -> float:
    """Fraction of the month elapsed: dayOfMonth / daysInMonth."""
    days_in_month = calendar.monthrange(as_of_date.year, as_of_date.month)[1]
    return as_of_date.day / days_in_month


def project_month_end(period_to_date: float, as_of_date: date) -> float:
    """Linear month-end projection of a month-to-date amount."""
    return period_to_date / month_pace(as_of_date)


def aop_gap_pct(projected: float, monthly_target: float) -> Optional[float]:
    """
    Projection gap vs target in percent; None when there is no positive target.
    """
    if monthly_target <= 0:
        return None
    return (projected - monthly_target) / monthly_target * 100
