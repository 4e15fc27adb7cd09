"""
DataFrame Adapter Service

Converts tabular extracts (pandas DataFrames, e.g. read from CSV) into the
records the detection core consumes.

Lead-stage frames use the dashboard extract columns:
    lender, month_start, product_type, isautoleadcreated, major_index,
    original_major_stage, sub_stage, leads, stuck_pct

Disbursal frames:
    lender, product_type, isautoleadcreated, child_leads, disbursed

Column names are matched case-insensitively. month_start values are mapped
to periods with the configured labels ("1.MTD" -> current, "2.LMTD" ->
comparison); rows with any other label are skipped and counted, as are rows
whose lead count is missing or fractional.
"""

import logging
from collections import Counter
from typing import Any, Dict, List, Tuple

import pandas as pd

from funnel_sentinel.core.exceptions import FrameSchemaError
from funnel_sentinel.models.enums import Period
from funnel_sentinel.models.schemas import (
    DisbursalSummaryRow,
    LeadStageRecord,
    RecordQualityReport,
)
from funnel_sentinel.services.aggregation import REASON_UNKNOWN_PERIOD


logger = logging.getLogger(__name__)


# =============================================================================
# Column Definitions
# =============================================================================

LEAD_STAGE_REQUIRED_COLUMNS: List[str] = [
    'lender',
    'month_start',
    'major_index',
    'original_major_stage',
    'leads',
]

LEAD_STAGE_OPTIONAL_COLUMNS: List[str] = [
    'product_type',
    'isautoleadcreated',
    'sub_stage',
    'stuck_pct',
]

DISBURSAL_REQUIRED_COLUMNS: List[str] = [
    'lender',
    'disbursed',
]

DISBURSAL_OPTIONAL_COLUMNS: List[str] = [
    'product_type',
    'isautoleadcreated',
    'child_leads',
]

REASON_MISSING_LEAD_COUNT = "missing_lead_count"
REASON_FRACTIONAL_LEAD_COUNT = "fractional_lead_count"


def _normalize_columns(df: pd.DataFrame, required: List[str], optional: List[str]) -> pd.DataFrame:
    """
    Lower-case column names, check required ones and add absent optional ones.

    Raises:
        FrameSchemaError: If any required column is missing
    """
    frame = df.copy()
    frame.columns = [str(col).strip().lower() for col in frame.columns]

    missing = [col for col in required if col not in frame.columns]
    if missing:
        raise FrameSchemaError(missing=missing, available=list(frame.columns))

    for col in optional:
        if col not in frame.columns:
            frame[col] = None
    return frame


def _text(value: Any) -> str:
    if value is None or pd.isna(value):
        return ""
    return str(value).strip()


def _optional_float(value: Any):
    if value is None or pd.isna(value):
        return None
    return float(value)


# =============================================================================
# Lead-Stage Frames
# =============================================================================


def records_from_frame(
    df: pd.DataFrame,
    current_label: str = '1.MTD',
    comparison_label: str = '2.LMTD',
) -> Tuple[List[LeadStageRecord], RecordQualityReport]:
    """
    Convert a lead-stage extract into LeadStageRecords.

    Args:
        df: Extract with the lead-stage columns
        current_label: month_start value of current-period rows
        comparison_label: month_start value of comparison-period rows

    Returns:
        Tuple of (records, quality report of rows dropped here)

    Raises:
        FrameSchemaError: If required columns are missing
    """
    frame = _normalize_columns(df, LEAD_STAGE_REQUIRED_COLUMNS, LEAD_STAGE_OPTIONAL_COLUMNS)
    frame['major_index'] = pd.to_numeric(frame['major_index'], errors='coerce')
    frame['leads'] = pd.to_numeric(frame['leads'], errors='coerce')
    frame['stuck_pct'] = pd.to_numeric(frame['stuck_pct'], errors='coerce')

    periods = {current_label: Period.CURRENT, comparison_label: Period.COMPARISON}
    records: List[LeadStageRecord] = []
    reasons: Counter = Counter()

    for row in frame.to_dict(orient='records'):
        period = periods.get(_text(row['month_start']))
        if period is None:
            reasons[REASON_UNKNOWN_PERIOD] += 1
            continue
        if pd.isna(row['leads']):
            reasons[REASON_MISSING_LEAD_COUNT] += 1
            continue
        if not float(row['leads']).is_integer():
            reasons[REASON_FRACTIONAL_LEAD_COUNT] += 1
            continue

        records.append(LeadStageRecord(
            period=period,
            stageIndex=float(row['major_index']),
            stageName=_text(row['original_major_stage']),
            subStage=_text(row['sub_stage']) or None,
            lender=_text(row['lender']),
            productType=_text(row['product_type']),
            flow=_text(row['isautoleadcreated']),
            leadCount=int(row['leads']),
            stuckPct=_optional_float(row['stuck_pct']),
        ))

    skipped = sum(reasons.values())
    if skipped:
        logger.warning(f"Dropped {skipped} extract rows before aggregation: {dict(reasons)}")
    logger.info(f"Parsed {len(records)} lead-stage records from {len(frame)} rows")

    return records, RecordQualityReport(
        accepted=len(records),
        skipped=skipped,
        reasons=dict(sorted(reasons.items())),
    )


# =============================================================================
# Disbursal Frames
# =============================================================================


def disbursals_from_frame(df: pd.DataFrame) -> List[DisbursalSummaryRow]:
    """
    Convert a disbursal summary extract into DisbursalSummaryRows.

    Missing counts are treated as 0.

    Raises:
        FrameSchemaError: If required columns are missing
    """
    frame = _normalize_columns(df, DISBURSAL_REQUIRED_COLUMNS, DISBURSAL_OPTIONAL_COLUMNS)
    for col in ('disbursed', 'child_leads'):
        frame[col] = pd.to_numeric(frame[col], errors='coerce').fillna(0).clip(lower=0).astype(int)

    rows = [
        DisbursalSummaryRow(
            lender=_text(row['lender']),
            productType=_text(row['product_type']),
            flow=_text(row['isautoleadcreated']),
            disbursedCount=int(row['disbursed']),
            childLeadCount=int(row['child_leads']),
        )
        for row in frame.to_dict(orient='records')
    ]
    logger.info(f"Parsed {len(rows)} disbursal rows")
    return rows


def alerts_to_frame(alerts: List[Any]) -> pd.DataFrame:
    """
    Flatten alerts (or lifecycle items) into a DataFrame for export.

    Nested drill-down data is dropped.
    """
    data: List[Dict[str, Any]] = [
        item.model_dump(mode='json', exclude={'drilldown'}) for item in alerts
    ]
    return pd.DataFrame(data)
