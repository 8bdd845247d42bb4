from typing import Dict, Optional

import numpy as np
from sklearn.metrics import (
    accuracy_score,
    auc,
    average_precision_score,
    f1_score,
    log_loss,
    precision_recall_curve,
    roc_auc_score,
)

METRIC_NAMES = ["roc_auc", "accuracy", "log_loss", "pr_auc", "average_precision", "f1"]


def _safe_clip_probs(y_prob) -> np.ndarray:
    return np.clip(np.asarray(y_prob, dtype=float), 1e-6, 1.0 - 1e-6)


def empty_metrics() -> Dict[str, float]:
    return {m: np.nan for m in METRIC_NAMES}


def compute_binary_metrics(y_true, y_prob, sample_weight: Optional[np.ndarray] = None) -> Dict[str, float]:
    """Fold/test metrics on positive-class probabilities (threshold 0.5 for accuracy/F1).

    Ranking metrics are NaN when y_true holds a single class.
    """

    y = np.asarray(y_true, dtype=int)
    p = _safe_clip_probs(y_prob)
    w = None if sample_weight is None else np.asarray(sample_weight, dtype=float)
    out = empty_metrics()
    if y.size == 0:
        return out

    y_pred = (p >= 0.5).astype(int)
    out["accuracy"] = float(accuracy_score(y, y_pred, sample_weight=w))
    out["f1"] = float(f1_score(y, y_pred, sample_weight=w, zero_division=0))
    out["log_loss"] = float(log_loss(y, p, sample_weight=w, labels=[0, 1]))
    if np.unique(y).size >= 2:
        out["roc_auc"] = float(roc_auc_score(y, p, sample_weight=w))
        out["average_precision"] = float(average_precision_score(y, p, sample_weight=w))
        precision, recall, _ = precision_recall_curve(y, p, sample_weight=w)
        out["pr_auc"] = float(auc(recall, precision))
    return out
