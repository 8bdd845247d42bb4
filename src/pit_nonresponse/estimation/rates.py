"""Initial and eligibility-adjusted non-response rates by county.

The adjustment imputes ineligibility among records whose eligibility was never
determined, at the ineligible share observed among determined records:

    adjusted_non_response = non_response
        - (approached - eligibility_determined) * ineligible / eligibility_determined

That share is assumed missing-at-random; the comparability diagnostics exist to
judge whether the assumption is defensible. Negative adjusted counts are
possible and are reported as-is.
"""

from __future__ import annotations

import logging
from typing import List

import numpy as np
import pandas as pd

from pit_nonresponse.config import COUNTIES, MISSING_LEVEL, TOTAL_LABEL, WEIGHT_COL
from pit_nonresponse.data.classify import INDICATOR_COLS
from pit_nonresponse.data.validate import assert_required_columns

logger = logging.getLogger(__name__)

COUNT_COLS = ["approached"] + INDICATOR_COLS[:1] + ["eligibility_not_determined"] + INDICATOR_COLS[1:]


def _safe_ratio(num, den) -> np.ndarray:
    num = np.asarray(num, dtype=float)
    den = np.asarray(den, dtype=float)
    out = np.full(np.broadcast(num, den).shape, np.nan, dtype=float)
    np.divide(num, den, out=out, where=den != 0)
    return out


def adjusted_non_response(non_response, approached, eligibility_determined, ineligible) -> np.ndarray:
    """Non-response net of imputed ineligibles among undetermined records.

    NaN where no record had its eligibility determined. Not clamped at zero.
    """

    share_ineligible = _safe_ratio(ineligible, eligibility_determined)
    undetermined = np.asarray(approached, dtype=float) - np.asarray(eligibility_determined, dtype=float)
    return np.asarray(non_response, dtype=float) - undetermined * share_ineligible


def initial_rate(non_response, response) -> np.ndarray:
    nr = np.asarray(non_response, dtype=float)
    return _safe_ratio(nr, np.asarray(response, dtype=float) + nr)


def adjusted_rate(adjusted_nr, response) -> np.ndarray:
    adj = np.asarray(adjusted_nr, dtype=float)
    return _safe_ratio(adj, np.asarray(response, dtype=float) + adj)


def _stratum_order(observed: List[str]) -> List[str]:
    known = [c for c in COUNTIES if c in observed]
    extra = sorted(c for c in observed if c not in COUNTIES and c != MISSING_LEVEL)
    tail = [MISSING_LEVEL] if MISSING_LEVEL in observed else []
    return known + extra + tail


def stratum_counts(classified: pd.DataFrame, *, weighted: bool = True, weight_col: str = WEIGHT_COL) -> pd.DataFrame:
    """(Weighted) sums of the disposition indicators per county, plus a Total row.

    The Total row sums the stratum counts; it is never a mean of stratum rates.
    """

    assert_required_columns(classified, ["county"] + INDICATOR_COLS)
    if weighted:
        assert_required_columns(classified, [weight_col])
        w = classified[weight_col].to_numpy(dtype=float)
    else:
        w = np.ones(len(classified), dtype=float)

    sums = pd.DataFrame({"county": classified["county"].astype(str).to_numpy(), "approached": w})
    for col in INDICATOR_COLS:
        sums[col] = w * classified[col].to_numpy(dtype=float)

    by_county = sums.groupby("county", sort=False).sum()
    by_county = by_county.reindex(_stratum_order(by_county.index.tolist()))
    total = by_county.sum(axis=0).to_frame(TOTAL_LABEL).T
    table = pd.concat([by_county, total], axis=0)
    table.index.name = "county"

    table["eligibility_not_determined"] = table["approached"] - table["eligibility_determined"]
    return table[COUNT_COLS].reset_index()


def _rate_status(row: pd.Series) -> str:
    if row["eligibility_determined"] == 0:
        return "undefined_no_determined_eligibility"
    if pd.isna(row["initial_rate"]) or pd.isna(row["adjusted_rate"]):
        return "undefined_no_eligible_denominator"
    if row["adjusted_non_response"] < 0:
        return "negative_adjusted_non_response"
    return "ok"


def nonresponse_rate_table(
    classified: pd.DataFrame, *, weighted: bool = True, weight_col: str = WEIGHT_COL
) -> pd.DataFrame:
    """Stratum summary with initial and adjusted non-response rates.

    Degenerate strata get NaN rates and a descriptive `rate_status`; they do
    not suppress the Total row.
    """

    table = stratum_counts(classified, weighted=weighted, weight_col=weight_col)
    table["initial_rate"] = initial_rate(table["non_response"], table["response"])
    table["adjusted_non_response"] = adjusted_non_response(
        table["non_response"], table["approached"], table["eligibility_determined"], table["ineligible"]
    )
    table["adjusted_rate"] = adjusted_rate(table["adjusted_non_response"], table["response"])
    table["rate_status"] = table.apply(_rate_status, axis=1)
    table.insert(1, "weighted", bool(weighted))

    flagged = table.loc[table["rate_status"] != "ok", ["county", "rate_status"]]
    for county, status in flagged.itertuples(index=False):
        logger.warning("Non-response rate for %s: %s", county, status)
    return table


def format_rate_table(table: pd.DataFrame, digits: int = 4) -> pd.DataFrame:
    """Presentation copy: rates rounded, undefined rates spelled out."""

    out = table.copy()
    for col in ["initial_rate", "adjusted_rate"]:
        out[col] = out[col].map(lambda v: "undefined" if pd.isna(v) else f"{v:.{digits}f}")
    out["adjusted_non_response"] = out["adjusted_non_response"].map(
        lambda v: "undefined" if pd.isna(v) else round(float(v), 2)
    )
    count_cols = [c for c in COUNT_COLS if c in out.columns]
    out[count_cols] = out[count_cols].round(2)
    return out
