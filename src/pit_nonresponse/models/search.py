"""Repeated cross-validated hyperparameter search.

Each (family, parameter combination, repeat, fold) fit is an independent joblib
task that returns its own metrics row and validation-fold probabilities; the
reduction to per-combination mean / standard error runs only after every task
has finished. A fit that fails to converge or errors out yields NaN metrics and
a status for that cell only.
"""

from __future__ import annotations

import json
import logging
import warnings
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.exceptions import ConvergenceWarning
from sklearn.model_selection import ParameterGrid, ParameterSampler
from sklearn.utils.validation import has_fit_parameter

from pit_nonresponse.config import MODEL_COMPLEXITY_ORDER
from pit_nonresponse.evaluation.metrics import METRIC_NAMES, compute_binary_metrics, empty_metrics
from pit_nonresponse.models.families import SEARCH_SPACES, build_fold_pipeline

logger = logging.getLogger(__name__)

# Share of folds that must finish for a combination to be a selection candidate.
MIN_FOLD_COMPLETION = 0.8

Split = Tuple[int, int, np.ndarray, np.ndarray]


@dataclass
class SearchResult:
    folds: pd.DataFrame
    summary: pd.DataFrame
    params: Dict[Tuple[str, int], dict]
    # (family, params_id) -> out-of-fold probabilities, shape (n_repeats, n_samples)
    oof: Dict[Tuple[str, int], np.ndarray] = field(repr=False)
    n_repeats: int = 0


def params_to_json(params: dict) -> str:
    return json.dumps(params, sort_keys=True)


def sample_param_combos(space: Dict[str, List], n_iter: int, seed: int) -> List[dict]:
    """Random subset of the grid (all of it when the grid is smaller than n_iter)."""

    if not space:
        return [{}]
    grid_size = len(ParameterGrid(space))
    return list(ParameterSampler(space, n_iter=min(n_iter, grid_size), random_state=seed))


def fit_weighted(estimator, X, y, sample_weight=None):
    """Fit a Pipeline, passing case weights to its final step when it accepts them."""

    final = estimator.steps[-1][1]
    if sample_weight is not None and has_fit_parameter(final, "sample_weight"):
        return estimator.fit(X, y, **{f"{estimator.steps[-1][0]}__sample_weight": sample_weight})
    if sample_weight is not None:
        logger.debug("%s does not accept sample_weight; fitting unweighted.", type(final).__name__)
    return estimator.fit(X, y)


def fold_row(family: str, params_id: int, params: dict, repeat: int, fold: int, train_idx, valid_idx) -> dict:
    """Metadata of one (combination, fold) result; metrics are added by the caller."""

    return {
        "family": family,
        "params_id": params_id,
        "params_json": params_to_json(params),
        "repeat": repeat,
        "fold": fold,
        "n_train": int(len(train_idx)),
        "n_valid": int(len(valid_idx)),
        "n_features_dropped": 0,
        "status": "ok",
        "message": "",
    }


def fit_and_score(
    family: str,
    params_id: int,
    params: dict,
    repeat: int,
    fold: int,
    X: np.ndarray,
    y: np.ndarray,
    w: Optional[np.ndarray],
    train_idx: np.ndarray,
    valid_idx: np.ndarray,
    seed: int,
) -> Tuple[dict, np.ndarray]:
    row = fold_row(family, params_id, params, repeat, fold, train_idx, valid_idx)
    probs = np.full(valid_idx.size, np.nan, dtype=float)
    w_tr = None if w is None else w[train_idx]
    w_va = None if w is None else w[valid_idx]

    estimator = build_fold_pipeline(family, params, seed)
    with warnings.catch_warnings():
        warnings.simplefilter("error", ConvergenceWarning)
        try:
            fit_weighted(estimator, X[train_idx], y[train_idx], w_tr)
            probs = estimator.predict_proba(X[valid_idx])[:, 1]
        except ConvergenceWarning as exc:
            row.update(status="not_converged", message=str(exc).splitlines()[0])
        except (ValueError, FloatingPointError, np.linalg.LinAlgError) as exc:
            row.update(status="fit_error", message=str(exc).splitlines()[0])

    if row["status"] == "ok":
        kept = estimator.named_steps["variance"].get_support()
        row["n_features_dropped"] = int((~kept).sum())
        row.update(compute_binary_metrics(y[valid_idx], probs, w_va))
    else:
        row.update(empty_metrics())
    return row, probs


def run_cv_tasks(tasks: Sequence[dict], splits: Sequence[Split], y, w, seed: int, n_jobs: int):
    """Run fit_and_score for every (task, split); returns (rows, per-task OOF matrices).

    Each task dict carries family / params_id / params and the design matrix `X`.
    """

    y = np.asarray(y, dtype=int)
    w = None if w is None else np.asarray(w, dtype=float)
    n_repeats = max(s[0] for s in splits) + 1

    jobs = []
    for task in tasks:
        for repeat, fold, tr, va in splits:
            jobs.append(
                delayed(fit_and_score)(
                    task["family"], task["params_id"], task["params"], repeat, fold, task["X"], y, w, tr, va, seed
                )
            )

    logger.info("Running %d cross-validation fits on %s worker(s).", len(jobs), n_jobs)
    results = Parallel(n_jobs=n_jobs)(jobs)

    rows = []
    oof: Dict[Tuple[str, int], np.ndarray] = {}
    i = 0
    for task in tasks:
        key = (task["family"], task["params_id"])
        mat = np.full((n_repeats, y.size), np.nan, dtype=float)
        for repeat, _fold, _tr, va in splits:
            row, probs = results[i]
            i += 1
            rows.append(row)
            mat[repeat, va] = probs
        oof[key] = mat
    return rows, oof


def summarize_search(folds: pd.DataFrame) -> pd.DataFrame:
    """Mean, std and standard error of fold metrics per (family, params_id).

    NaN folds (failed fits) are excluded from the moments and counted in
    `n_failed`. Row order is deterministic: complexity order, then params_id.
    """

    keys = ["family", "params_id", "params_json"]
    rows = []
    for (family, params_id, params_json), g in folds.groupby(keys, sort=False):
        row = {
            "family": family,
            "params_id": int(params_id),
            "params_json": params_json,
            "n_folds": int(len(g)),
            "n_ok": int((g["status"] == "ok").sum()),
        }
        row["n_failed"] = row["n_folds"] - row["n_ok"]
        for m in METRIC_NAMES:
            vals = g[m].dropna().to_numpy(dtype=float)
            row[f"{m}_mean"] = float(vals.mean()) if vals.size else np.nan
            row[f"{m}_std"] = float(vals.std(ddof=1)) if vals.size > 1 else np.nan
            row[f"{m}_se"] = row[f"{m}_std"] / np.sqrt(vals.size) if vals.size > 1 else np.nan
        rows.append(row)

    summary = pd.DataFrame(rows)
    if summary.empty:
        return summary
    order = {f: i for i, f in enumerate(MODEL_COMPLEXITY_ORDER)}
    summary["_order"] = summary["family"].map(order).fillna(len(order))
    summary = summary.sort_values(["_order", "params_id"], kind="mergesort").drop(columns="_order")
    return summary.reset_index(drop=True)


def best_params_by_family(summary: pd.DataFrame, min_completion: float = MIN_FOLD_COMPLETION) -> pd.DataFrame:
    """Highest mean-AUC combination per family among sufficiently complete combinations."""

    if summary.empty:
        return summary.copy()
    usable = summary.loc[
        summary["roc_auc_mean"].notna() & (summary["n_ok"] >= np.ceil(min_completion * summary["n_folds"]))
    ]
    for family in sorted(set(summary["family"]) - set(usable["family"])):
        logger.warning("No complete results for %s; excluded from selection.", family)
    if usable.empty:
        return usable.copy()
    ranked = usable.sort_values(["roc_auc_mean", "params_id"], ascending=[False, True], kind="mergesort")
    best = ranked.groupby("family", sort=False).head(1)
    order = {f: i for i, f in enumerate(MODEL_COMPLEXITY_ORDER)}
    return best.sort_values("family", key=lambda s: s.map(order), kind="mergesort").reset_index(drop=True)


def run_hyperparameter_search(
    X,
    y,
    w,
    splits: Sequence[Split],
    *,
    families: Sequence[str],
    n_iter: int,
    seed: int,
    n_jobs: int = 1,
) -> SearchResult:
    """Repeated-CV random search over each family's space on identical splits."""

    X = np.asarray(X, dtype=float)
    tasks = []
    params_lookup: Dict[Tuple[str, int], dict] = {}
    for family in families:
        if family not in SEARCH_SPACES:
            raise ValueError(f"Unknown model family: {family}")
        combos = sample_param_combos(SEARCH_SPACES[family], n_iter, seed)
        logger.info("%s: %d hyperparameter combination(s).", family, len(combos))
        for params_id, params in enumerate(combos):
            params_lookup[(family, params_id)] = params
            tasks.append({"family": family, "params_id": params_id, "params": params, "X": X})

    rows, oof = run_cv_tasks(tasks, splits, y, w, seed, n_jobs)
    folds = pd.DataFrame(rows)
    n_failed = int((folds["status"] != "ok").sum())
    if n_failed:
        logger.warning("%d of %d fits failed or did not converge; marked missing.", n_failed, len(folds))
    return SearchResult(
        folds=folds,
        summary=summarize_search(folds),
        params=params_lookup,
        oof=oof,
        n_repeats=max(s[0] for s in splits) + 1,
    )


def results_snapshot(result: SearchResult) -> pd.DataFrame:
    """Fold-level results joined with per-combination summaries, for persistence."""

    summary = result.summary.drop(columns=["params_json"]).add_prefix("cv_")
    summary = summary.rename(columns={"cv_family": "family", "cv_params_id": "params_id"})
    return result.folds.merge(summary, on=["family", "params_id"], how="left")
