"""Record classification: raw survey rows -> eligibility/consent/completion attributes.

Every derived column is a pure function of the same row's raw fields, so the
mapping can be applied to any subset of records (including a single new record
at scoring time) and gives the same answer.
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from pit_nonresponse.config import (
    COUNTY_LEVELS,
    DEMOGRAPHIC_LEVELS,
    RAW_OPTIONAL_COLUMNS,
    RAW_REQUIRED_COLUMNS,
    SITE_LEVELS,
    UNRECOGNIZED_ELIGIBILITY_LABEL,
    WEIGHT_COL,
)
from .coding import coerce_closed_category, recode_completed, recode_eligibility
from .ingest import resolve_raw_columns
from .validate import assert_required_columns

INDICATOR_COLS = [
    "eligibility_determined",
    "ineligible",
    "eligible",
    "consented",
    "did_not_consent",
    "did_not_finish",
    "response",
    "non_response",
]


def _data_quality_flag(
    label: pd.Series, status: pd.Series, completed: pd.Series, completion_recognized: pd.Series
) -> pd.Series:
    flag = pd.Series("ok", index=label.index, dtype=object)
    flag.loc[~completion_recognized] = "unrecognized_completion_code"
    flag.loc[label == UNRECOGNIZED_ELIGIBILITY_LABEL] = "unrecognized_eligibility_code"
    flag.loc[completed & (status == "ineligible")] = "completed_while_ineligible"
    flag.loc[completed & (status != "ineligible") & (label != "eligible_consented")] = "completed_without_consent"
    return flag


def classify_records(raw: pd.DataFrame) -> pd.DataFrame:
    """Classify raw survey records.

    Returns one row per input row (same index) with cleaned categorical fields,
    the sample weight, and the boolean disposition indicators. Exactly one of
    response / non_response / ineligible holds for every row; records whose
    eligibility was not determined are never ineligible and count as
    non-response. Unrecognized codes are kept and flagged, never dropped.
    """

    df = resolve_raw_columns(raw, RAW_REQUIRED_COLUMNS + RAW_OPTIONAL_COLUMNS)
    assert_required_columns(df, RAW_REQUIRED_COLUMNS)

    out = pd.DataFrame(index=df.index)

    out["county"] = coerce_closed_category(df["county"], COUNTY_LEVELS)

    label, status = recode_eligibility(df["eligibility_code"])
    completed, completion_recognized = recode_completed(df["completed"])
    out["eligibility_label"] = label
    out["eligibility_status"] = status
    out["completed"] = completed

    out["eligibility_determined"] = status != "undetermined"
    out["ineligible"] = status == "ineligible"
    out["eligible"] = status == "eligible"
    out["consented"] = label == "eligible_consented"
    out["did_not_consent"] = label == "eligible_no_consent"
    out["did_not_finish"] = out["consented"] & ~completed
    out["response"] = out["consented"] & completed
    out["non_response"] = ~out["ineligible"] & ~out["response"]
    out["data_quality_flag"] = _data_quality_flag(label, status, completed, completion_recognized)

    out["site_category"] = coerce_closed_category(df["site_category"], SITE_LEVELS)
    for dim, levels in DEMOGRAPHIC_LEVELS.items():
        out[f"{dim}_perceived"] = coerce_closed_category(df[f"{dim}_perceived"], levels)
        actual_col = f"{dim}_actual"
        actual = df[actual_col] if actual_col in df.columns else pd.Series(np.nan, index=df.index, name=actual_col)
        out[actual_col] = coerce_closed_category(actual, levels)

    if WEIGHT_COL in df.columns:
        weight = pd.to_numeric(df[WEIGHT_COL], errors="coerce")
        if (weight < 0).any():
            raise ValueError(f"Column {WEIGHT_COL} contains negative sample weights.")
        out[WEIGHT_COL] = weight.fillna(1.0).astype(float)
    else:
        out[WEIGHT_COL] = 1.0

    return out


def disposition_counts(classified: pd.DataFrame) -> pd.DataFrame:
    """Unweighted record counts along the screening flow (approached -> response)."""

    steps = [
        ("approached", len(classified)),
        ("eligibility_not_determined", int((~classified["eligibility_determined"]).sum())),
        ("ineligible", int(classified["ineligible"].sum())),
        ("eligible", int(classified["eligible"].sum())),
        ("did_not_consent", int(classified["did_not_consent"].sum())),
        ("consented", int(classified["consented"].sum())),
        ("did_not_finish", int(classified["did_not_finish"].sum())),
        ("response", int(classified["response"].sum())),
    ]
    return pd.DataFrame(steps, columns=["disposition", "n"])

