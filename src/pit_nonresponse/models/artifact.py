"""Self-contained scoring artifact for future survey waves.

The artifact carries the fitted classifier together with the record
classification and feature preparation callables that produced its training
data, so a raw record can be scored without re-deriving anything from the
report.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List

import joblib
import numpy as np
import pandas as pd
from sklearn.ensemble import StackingClassifier
from sklearn.pipeline import Pipeline

from pit_nonresponse.data.classify import classify_records
from pit_nonresponse.features.encoding import ReferenceLevelEncoder, prepare_model_features

# Fitted attributes recorded for diagnostics only; prediction never reads them.
TRAINING_ONLY_ATTRS = (
    "loss_curve_",
    "validation_scores_",
    "best_validation_score_",
    "best_loss_",
    "train_score_",
    "validation_score_",
    "oob_decision_function_",
    "_optimizer",
    "_best_coefs",
    "_best_intercepts",
    "_no_improvement_count",
)


def strip_training_state(estimator):
    """Drop training-only fitted state in place (recursing into pipelines and stacks)."""

    if isinstance(estimator, Pipeline):
        for _name, step in estimator.steps:
            strip_training_state(step)
        return estimator
    if isinstance(estimator, StackingClassifier):
        for fitted in estimator.estimators_:
            strip_training_state(fitted)
        strip_training_state(estimator.final_estimator_)
        return estimator
    for attr in TRAINING_ONLY_ATTRS:
        if attr in vars(estimator):
            delattr(estimator, attr)
    return estimator


@dataclass
class NonResponseModelArtifact:
    model: object
    encoder: ReferenceLevelEncoder
    family: str
    params: Dict
    feature_names: List[str]
    classify: Callable[[pd.DataFrame], pd.DataFrame] = classify_records
    prepare_features: Callable[..., pd.DataFrame] = prepare_model_features
    metadata: Dict = field(default_factory=dict)

    def design_matrix(self, classified: pd.DataFrame) -> np.ndarray:
        X = self.prepare_features(classified, self.encoder)
        if list(X.columns) != list(self.feature_names):
            raise ValueError("Prepared features do not match the columns the model was trained on.")
        return X.to_numpy(dtype=float)

    def predict_proba(self, raw: pd.DataFrame) -> np.ndarray:
        return self.model.predict_proba(self.design_matrix(self.classify(raw)))[:, 1]

    def score(self, raw: pd.DataFrame) -> pd.DataFrame:
        """Classified records with the predicted probability of non-response."""

        classified = self.classify(raw)
        out = classified.copy()
        out["p_non_response"] = self.model.predict_proba(self.design_matrix(classified))[:, 1]
        return out


def save_artifact(artifact: NonResponseModelArtifact, path: Path) -> Path:
    strip_training_state(artifact.model)
    path.parent.mkdir(parents=True, exist_ok=True)
    joblib.dump(artifact, path, compress=3)
    return path


def load_artifact(path: Path) -> NonResponseModelArtifact:
    artifact = joblib.load(path)
    if not isinstance(artifact, NonResponseModelArtifact):
        raise ValueError(f"{path} does not contain a NonResponseModelArtifact (got {type(artifact).__name__}).")
    return artifact
