from __future__ import annotations

import logging
from typing import Iterable, Sequence

import numpy as np
import pandas as pd

from pit_nonresponse.config import MODEL_COMPLEXITY_ORDER, SELECTION_Z

logger = logging.getLogger(__name__)

RANKING_COLS = [
    "rank",
    "family",
    "params_id",
    "params_json",
    "complexity_rank",
    "n_folds",
    "n_ok",
    "roc_auc_mean",
    "roc_auc_se",
    "roc_auc_ci_low",
    "roc_auc_ci_high",
    "accuracy_mean",
    "log_loss_mean",
    "pr_auc_mean",
    "average_precision_mean",
    "f1_mean",
]


def rank_candidates(
    candidates: Iterable[pd.DataFrame],
    *,
    complexity_order: Sequence[str] = MODEL_COMPLEXITY_ORDER,
    z: float = SELECTION_Z,
) -> pd.DataFrame:
    """Stack per-family best rows and rank by mean CV AUC with z-based intervals.

    Rows without a usable AUC are kept at the bottom with NaN intervals so
    failed families stay visible in the ranking table.
    """

    frames = [c for c in candidates if c is not None and not c.empty]
    if not frames:
        return pd.DataFrame(columns=RANKING_COLS)
    ranking = pd.concat(frames, ignore_index=True)
    se = ranking["roc_auc_se"].fillna(0.0)
    ranking["roc_auc_ci_low"] = ranking["roc_auc_mean"] - z * se
    ranking["roc_auc_ci_high"] = ranking["roc_auc_mean"] + z * se
    ranking["complexity_rank"] = ranking["family"].map({f: i for i, f in enumerate(complexity_order)})
    if ranking["complexity_rank"].isna().any():
        unknown = sorted(ranking.loc[ranking["complexity_rank"].isna(), "family"].unique())
        raise ValueError(f"Families without a complexity rank: {unknown}")
    ranking = ranking.sort_values(
        ["roc_auc_mean", "complexity_rank"], ascending=[False, True], na_position="last", kind="mergesort"
    ).reset_index(drop=True)
    ranking["rank"] = np.arange(1, len(ranking) + 1)
    return ranking[[c for c in RANKING_COLS if c in ranking.columns]]


def select_model(ranking: pd.DataFrame) -> pd.Series:
    """Simplest candidate whose AUC interval overlaps the best candidate's interval.

    The best candidate is the one with the highest mean AUC; any candidate whose
    upper bound reaches the best's lower bound is statistically
    indistinguishable from it, and the lowest complexity rank among those wins.
    """

    usable = ranking.loc[ranking["roc_auc_mean"].notna()]
    if usable.empty:
        raise ValueError("No candidate model produced cross-validated AUC; nothing to select.")
    best = usable.loc[usable["roc_auc_mean"].idxmax()]
    tied = usable.loc[usable["roc_auc_ci_high"] >= best["roc_auc_ci_low"]]
    chosen = tied.sort_values(["complexity_rank", "roc_auc_mean"], ascending=[True, False], kind="mergesort").iloc[0]
    if chosen["family"] != best["family"]:
        logger.info(
            "Selected %s (AUC %.4f) over best %s (AUC %.4f): intervals overlap.",
            chosen["family"],
            chosen["roc_auc_mean"],
            best["family"],
            best["roc_auc_mean"],
        )
    return chosen
