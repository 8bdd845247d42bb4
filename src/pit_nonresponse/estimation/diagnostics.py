from __future__ import annotations

from typing import Iterable, Optional

import numpy as np
import pandas as pd
from statsmodels.stats.weightstats import DescrStatsW

from pit_nonresponse.config import DEMOGRAPHIC_DIMENSIONS, MISSING_LEVEL, WEIGHT_COL
from pit_nonresponse.data.validate import assert_required_columns


def _weights(df: pd.DataFrame, weighted: bool, weight_col: str) -> pd.Series:
    if weighted:
        return df[weight_col].astype(float)
    return pd.Series(1.0, index=df.index)


def _distribution(values: pd.Series, w: pd.Series) -> pd.Series:
    total = float(w.sum())
    sums = w.groupby(values, observed=False, sort=False).sum()
    if total <= 0:
        return sums * np.nan
    return sums / total


def eligibility_comparison(
    classified: pd.DataFrame,
    dimensions: Iterable[str] = DEMOGRAPHIC_DIMENSIONS,
    *,
    weighted: bool = True,
    weight_col: str = WEIGHT_COL,
) -> pd.DataFrame:
    """Perceived-demographic distributions among determined vs undetermined records.

    One row per (dimension, category), including the explicit Missing level.
    Large differences argue against treating undetermined eligibility as
    missing at random.
    """

    dimensions = list(dimensions)
    cols = ["eligibility_determined"] + [f"{d}_perceived" for d in dimensions]
    assert_required_columns(classified, cols + ([weight_col] if weighted else []))

    w = _weights(classified, weighted, weight_col)
    determined = classified["eligibility_determined"].astype(bool)

    frames = []
    for dim in dimensions:
        values = classified[f"{dim}_perceived"]
        share_det = _distribution(values[determined], w[determined])
        share_undet = _distribution(values[~determined], w[~determined])
        n_det = values[determined].value_counts(sort=False)
        n_undet = values[~determined].value_counts(sort=False)

        categories = list(values.cat.categories) if isinstance(values.dtype, pd.CategoricalDtype) else sorted(
            values.astype(str).unique()
        )
        frame = pd.DataFrame({"dimension": dim, "category": categories})
        frame["n_determined"] = [int(n_det.get(c, 0)) for c in categories]
        frame["n_undetermined"] = [int(n_undet.get(c, 0)) for c in categories]
        frame["share_determined"] = [float(share_det.get(c, 0.0)) for c in categories]
        frame["share_undetermined"] = [float(share_undet.get(c, 0.0)) for c in categories]
        frames.append(frame)

    out = pd.concat(frames, ignore_index=True)
    out["share_difference"] = out["share_undetermined"] - out["share_determined"]
    out.insert(2, "weighted", bool(weighted))
    return out


def _weighted_agreement_ci(agree: np.ndarray, w: np.ndarray, alpha: float = 0.05):
    if agree.size == 0 or float(w.sum()) <= 0:
        return np.nan, np.nan, np.nan
    ds = DescrStatsW(agree.astype(float), weights=w.astype(float), ddof=0)
    mean = float(ds.mean)
    if agree.size < 2:
        return mean, np.nan, np.nan
    lo, hi = ds.tconfint_mean(alpha=alpha)
    return mean, float(max(0.0, lo)), float(min(1.0, hi))


def perceived_actual_agreement(
    classified: pd.DataFrame,
    dimensions: Iterable[str] = DEMOGRAPHIC_DIMENSIONS,
    *,
    weight_col: str = WEIGHT_COL,
) -> pd.DataFrame:
    """Agreement between perceived and self-reported demographics among respondents.

    Only response records with both values observed (neither is Missing) count.
    CIs are weight-only (DescrStatsW t-interval), not design-based.
    """

    dimensions = list(dimensions)
    cols = ["response", weight_col] + [f"{d}_{kind}" for d in dimensions for kind in ("perceived", "actual")]
    assert_required_columns(classified, cols)

    rows = []
    respondents = classified.loc[classified["response"].astype(bool)]
    for dim in dimensions:
        perceived = respondents[f"{dim}_perceived"].astype(str)
        actual = respondents[f"{dim}_actual"].astype(str)
        observed = (perceived != MISSING_LEVEL) & (actual != MISSING_LEVEL)
        agree = (perceived[observed] == actual[observed]).to_numpy()
        w = respondents.loc[observed, weight_col].to_numpy(dtype=float)
        rate, lo, hi = _weighted_agreement_ci(agree, w)
        rows.append(
            {
                "dimension": dim,
                "n_observed": int(observed.sum()),
                "n_agree": int(agree.sum()),
                "unweighted_agreement": float(agree.mean()) if agree.size else np.nan,
                "weighted_agreement": rate,
                "ci95_low_approx": lo,
                "ci95_high_approx": hi,
            }
        )
    return pd.DataFrame(rows)


def perceived_actual_crosstab(
    classified: pd.DataFrame, dimension: str, *, respondents_only: Optional[bool] = True
) -> pd.DataFrame:
    """Perceived (rows) x self-reported (columns) counts for one dimension, all levels shown."""

    df = classified
    if respondents_only:
        df = df.loc[df["response"].astype(bool)]
    counts = df.groupby([f"{dimension}_perceived", f"{dimension}_actual"], observed=False).size()
    return counts.unstack(fill_value=0).rename_axis(index="perceived", columns="actual")
