from __future__ import annotations

import json
import logging
from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd

from pit_nonresponse.config import STACKED_ENSEMBLE
from pit_nonresponse.evaluation.calibration import calibration_bins
from pit_nonresponse.evaluation.metrics import compute_binary_metrics
from pit_nonresponse.models.ensemble import StackingResult, build_stacked_ensemble
from pit_nonresponse.models.families import build_fold_pipeline
from pit_nonresponse.models.search import SearchResult, fit_weighted

logger = logging.getLogger(__name__)


def fit_selected_model(
    selected: pd.Series,
    search: SearchResult,
    stacking: Optional[StackingResult],
    X,
    y,
    w,
    *,
    cv_folds: int,
    seed: int,
    n_jobs: int = 1,
):
    """Refit the selected family/hyperparameters on the full training split."""

    family = selected["family"]
    params = json.loads(selected["params_json"])
    X = np.asarray(X, dtype=float)
    y = np.asarray(y, dtype=int)
    w = None if w is None else np.asarray(w, dtype=float)

    if family == STACKED_ENSEMBLE:
        if stacking is None or not stacking.base_models:
            raise ValueError("Stacked ensemble selected but no stacking result is available.")
        base_specs = [(fam, search.params[(fam, pid)]) for fam, pid in stacking.base_models]
        model = build_stacked_ensemble(base_specs, params, cv_folds=cv_folds, seed=seed, n_jobs=n_jobs)
        logger.info("Fitting stacked ensemble over %s.", [fam for fam, _ in base_specs])
        return model.fit(X, y, sample_weight=w)

    model = build_fold_pipeline(family, params, seed)
    logger.info("Fitting %s with %s.", family, params)
    return fit_weighted(model, X, y, w)


def evaluate_holdout(model, X_test, y_test, w_test=None) -> Tuple[Dict[str, float], pd.DataFrame, np.ndarray]:
    """Single held-out evaluation: metrics, calibration bins, and the probabilities."""

    y_prob = model.predict_proba(np.asarray(X_test, dtype=float))[:, 1]
    metrics = compute_binary_metrics(y_test, y_prob, w_test)
    bins = calibration_bins(y_test, y_prob, sample_weight=w_test)
    return metrics, bins, y_prob
