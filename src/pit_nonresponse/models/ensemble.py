"""Stacked ensemble over the tuned first-stage models.

Search-time evaluation is nested: for each outer (repeat, fold) split the
first-stage features are built from that fold's complement only. Training rows
get inner cross-validated probabilities of every family's best combination,
held-out rows get probabilities from the same models refit on the whole
complement, and an L1 logistic meta-learner is scored for each penalty in a
geometric grid. The final ensemble is an sklearn StackingClassifier refit on
the whole training split.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.ensemble import StackingClassifier
from sklearn.exceptions import ConvergenceWarning
from sklearn.model_selection import StratifiedKFold

from pit_nonresponse.config import STACKED_ENSEMBLE, STACKING_INNER_FOLDS, STACKING_PENALTY_GRID
from pit_nonresponse.evaluation.metrics import empty_metrics
from pit_nonresponse.models.families import build_estimator, build_fold_pipeline
from pit_nonresponse.models.search import (
    SearchResult,
    Split,
    best_params_by_family,
    fit_and_score,
    fit_weighted,
    fold_row,
    summarize_search,
)

logger = logging.getLogger(__name__)


@dataclass
class StackingResult:
    folds: pd.DataFrame
    summary: pd.DataFrame
    # (family, params_id) of each first-stage column, in column order
    base_models: List[Tuple[str, int]]


def _fit_predict(family, params, X, y, w, train_idx, predict_idx, seed) -> np.ndarray:
    model = build_fold_pipeline(family, params, seed)
    fit_weighted(model, X[train_idx], y[train_idx], None if w is None else w[train_idx])
    return model.predict_proba(X[predict_idx])[:, 1]


def fold_meta_features(
    X: np.ndarray,
    y: np.ndarray,
    w: Optional[np.ndarray],
    train_idx: np.ndarray,
    valid_idx: np.ndarray,
    base_specs: Sequence[Tuple[str, dict]],
    *,
    inner_folds: int,
    seed: int,
) -> np.ndarray:
    """First-stage probabilities for one outer fold, using labels of `train_idx` only.

    Rows in `train_idx` get inner cross-validated probabilities; rows in
    `valid_idx` get probabilities from base models refit on all of `train_idx`.
    Any other row stays NaN.
    """

    Z = np.full((y.size, len(base_specs)), np.nan, dtype=float)
    inner = StratifiedKFold(n_splits=inner_folds, shuffle=True, random_state=seed)
    inner_splits = list(inner.split(np.zeros(train_idx.size), y[train_idx]))
    for j, (family, params) in enumerate(base_specs):
        for in_tr, in_va in inner_splits:
            Z[train_idx[in_va], j] = _fit_predict(family, params, X, y, w, train_idx[in_tr], train_idx[in_va], seed)
        Z[valid_idx, j] = _fit_predict(family, params, X, y, w, train_idx, valid_idx, seed)
    return Z


def score_stacking_fold(
    repeat: int,
    fold: int,
    X: np.ndarray,
    y: np.ndarray,
    w: Optional[np.ndarray],
    train_idx: np.ndarray,
    valid_idx: np.ndarray,
    base_specs: Sequence[Tuple[str, dict]],
    penalties: Sequence[float],
    inner_folds: int,
    seed: int,
) -> List[Tuple[dict, np.ndarray]]:
    """One (row, held-out probabilities) pair per meta-learner penalty for a single outer fold."""

    failure = None
    with warnings.catch_warnings():
        warnings.simplefilter("error", ConvergenceWarning)
        try:
            Z = fold_meta_features(X, y, w, train_idx, valid_idx, base_specs, inner_folds=inner_folds, seed=seed)
        except ConvergenceWarning as exc:
            failure = ("not_converged", str(exc).splitlines()[0])
        except (ValueError, FloatingPointError, np.linalg.LinAlgError) as exc:
            failure = ("fit_error", str(exc).splitlines()[0])

    results = []
    for params_id, c in enumerate(penalties):
        params = {"C": float(c)}
        if failure is None:
            results.append(
                fit_and_score(STACKED_ENSEMBLE, params_id, params, repeat, fold, Z, y, w, train_idx, valid_idx, seed)
            )
            continue
        row = fold_row(STACKED_ENSEMBLE, params_id, params, repeat, fold, train_idx, valid_idx)
        row.update(status=failure[0], message=f"first stage: {failure[1]}")
        row.update(empty_metrics())
        results.append((row, np.full(valid_idx.size, np.nan, dtype=float)))
    return results


def _complete_base_models(search: SearchResult) -> List[Tuple[str, int]]:
    best = best_params_by_family(search.summary)
    keys = []
    for family, params_id in best[["family", "params_id"]].itertuples(index=False):
        key = (family, int(params_id))
        if np.isnan(search.oof[key]).any():
            logger.warning("%s has missing out-of-fold predictions; left out of the stack.", family)
            continue
        keys.append(key)
    return keys


def run_stacking(
    search: SearchResult,
    X,
    y,
    w,
    splits: Sequence[Split],
    *,
    penalties: Sequence[float] = STACKING_PENALTY_GRID,
    inner_folds: int = STACKING_INNER_FOLDS,
    seed: int,
    n_jobs: int = 1,
) -> StackingResult:
    """Nested cross-validated evaluation of the meta-learner penalty grid on the search splits."""

    base_models = _complete_base_models(search)
    if len(base_models) < 2:
        logger.warning("Fewer than two complete first-stage models; stacked ensemble skipped.")
        empty = pd.DataFrame(columns=search.folds.columns)
        return StackingResult(folds=empty, summary=summarize_search(empty), base_models=base_models)

    X = np.asarray(X, dtype=float)
    y = np.asarray(y, dtype=int)
    w = None if w is None else np.asarray(w, dtype=float)
    base_specs = [(family, search.params[(family, params_id)]) for family, params_id in base_models]

    logger.info(
        "Stacking %s over %d outer folds (%d inner folds each) on %s worker(s).",
        [family for family, _ in base_specs],
        len(splits),
        inner_folds,
        n_jobs,
    )
    per_fold = Parallel(n_jobs=n_jobs)(
        delayed(score_stacking_fold)(repeat, fold, X, y, w, tr, va, base_specs, penalties, inner_folds, seed)
        for repeat, fold, tr, va in splits
    )

    rows = [row for fold_results in per_fold for row, _probs in fold_results]
    folds = pd.DataFrame(rows).sort_values(["params_id", "repeat", "fold"], kind="mergesort").reset_index(drop=True)
    return StackingResult(folds=folds, summary=summarize_search(folds), base_models=base_models)


def build_stacked_ensemble(
    base_specs: Sequence[Tuple[str, dict]], meta_params: dict, *, cv_folds: int, seed: int, n_jobs: int = 1
) -> StackingClassifier:
    """StackingClassifier whose meta-learner sees out-of-fold positive-class probabilities."""

    return StackingClassifier(
        estimators=[(family, build_estimator(family, params, seed)) for family, params in base_specs],
        final_estimator=build_estimator(STACKED_ENSEMBLE, meta_params, seed),
        cv=StratifiedKFold(n_splits=cv_folds, shuffle=True, random_state=seed),
        stack_method="predict_proba",
        n_jobs=n_jobs,
    )
