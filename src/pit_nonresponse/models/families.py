"""Classifier families and their hyperparameter spaces.

Spaces are plain lists so the grid size is known and sampling without
replacement is deterministic for a given seed.
"""

from __future__ import annotations

from typing import Dict, List

from sklearn.ensemble import HistGradientBoostingClassifier, RandomForestClassifier
from sklearn.feature_selection import VarianceThreshold
from sklearn.linear_model import LogisticRegression
from sklearn.neural_network import MLPClassifier
from sklearn.pipeline import Pipeline

from pit_nonresponse.config import STACKED_ENSEMBLE, STACKING_PENALTY_GRID

SEARCH_SPACES: Dict[str, Dict[str, List]] = {
    "logistic": {},
    "elastic_net": {
        "C": [0.001, 0.003, 0.01, 0.03, 0.1, 0.3, 1.0, 3.0, 10.0, 30.0],
        "l1_ratio": [0.0, 0.25, 0.5, 0.75, 1.0],
    },
    "random_forest": {
        "n_estimators": [200, 500],
        "max_features": ["sqrt", 0.33, 0.5],
        "min_samples_leaf": [1, 5, 10, 20],
        "max_depth": [None, 6, 12],
    },
    "gradient_boosting": {
        "learning_rate": [0.01, 0.03, 0.05, 0.1],
        "max_depth": [2, 3, 4, 6],
        "max_iter": [100, 200, 400],
        "l2_regularization": [0.0, 0.1, 1.0],
        "min_samples_leaf": [10, 20, 40],
    },
    "neural_network": {
        "hidden_layer_size": [2, 4, 8, 16, 32],
        "alpha": [1e-4, 1e-3, 1e-2, 1e-1, 1.0],
    },
    STACKED_ENSEMBLE: {"C": list(STACKING_PENALTY_GRID)},
}


def build_estimator(family: str, params: Dict, seed: int):
    """Bare classifier for `family` with `params` applied."""

    params = dict(params)
    if family == "logistic":
        # Near-unpenalized fit; mirrors an ordinary maximum-likelihood logistic model.
        return LogisticRegression(C=1e6, solver="lbfgs", max_iter=5000)
    if family == "elastic_net":
        return LogisticRegression(
            penalty="elasticnet",
            solver="saga",
            C=params["C"],
            l1_ratio=params["l1_ratio"],
            max_iter=5000,
            random_state=seed,
        )
    if family == "random_forest":
        return RandomForestClassifier(n_jobs=1, random_state=seed, **params)
    if family == "gradient_boosting":
        return HistGradientBoostingClassifier(
            early_stopping=True,
            validation_fraction=0.1,
            random_state=seed,
            **params,
        )
    if family == "neural_network":
        size = params.pop("hidden_layer_size")
        return MLPClassifier(
            hidden_layer_sizes=(size,),
            solver="adam",
            max_iter=1000,
            random_state=seed,
            **params,
        )
    if family == STACKED_ENSEMBLE:
        return LogisticRegression(penalty="l1", solver="liblinear", C=params["C"], max_iter=5000)
    raise ValueError(f"Unknown model family: {family}")


def build_fold_pipeline(family: str, params: Dict, seed: int) -> Pipeline:
    """Classifier preceded by a zero-variance filter fitted on the training rows only."""

    return Pipeline(
        steps=[
            ("variance", VarianceThreshold(threshold=0.0)),
            ("model", build_estimator(family, params, seed)),
        ]
    )
