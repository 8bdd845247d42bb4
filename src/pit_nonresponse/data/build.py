import logging

import numpy as np
import pandas as pd

from pit_nonresponse.config import CASE_WEIGHT_COL, WEIGHT_COL
from .validate import assert_required_columns

logger = logging.getLogger(__name__)


def observed_eligibility_rate(classified: pd.DataFrame, weight_col: str = WEIGHT_COL) -> float:
    """Weighted share of eligible records among those with a determined eligibility outcome."""

    assert_required_columns(classified, ["eligibility_determined", "eligible", weight_col])
    w = classified[weight_col].to_numpy(dtype=float)
    determined = float(np.sum(w * classified["eligibility_determined"].to_numpy(dtype=float)))
    if determined <= 0:
        return np.nan
    return float(np.sum(w * classified["eligible"].to_numpy(dtype=float)) / determined)


def build_analysis_table(classified: pd.DataFrame, weight_col: str = WEIGHT_COL) -> pd.DataFrame:
    """Attach model case weights.

    Undetermined records are down-weighted by the observed eligibility rate so
    their expected contribution matches the ineligibility imputation used in
    the adjusted non-response rate. Without any determined record the rate is
    undefined and those case weights are left NaN.
    """

    rate = observed_eligibility_rate(classified, weight_col)
    if np.isnan(rate):
        logger.warning(
            "No record has a determined eligibility outcome; %s is undefined for undetermined records.",
            CASE_WEIGHT_COL,
        )

    out = classified.copy()
    factor = np.where(out["eligibility_determined"].to_numpy(dtype=bool), 1.0, rate)
    out[CASE_WEIGHT_COL] = out[weight_col].to_numpy(dtype=float) * factor
    return out
