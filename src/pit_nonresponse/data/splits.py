from typing import Tuple
import numpy as np
from sklearn.model_selection import RepeatedStratifiedKFold, StratifiedShuffleSplit


def make_holdout_split(X, y, test_size: float, seed: int) -> Tuple[np.ndarray, np.ndarray]:
    splitter = StratifiedShuffleSplit(n_splits=1, test_size=test_size, random_state=seed)
    train_idx, test_idx = next(splitter.split(X, y))
    return train_idx, test_idx


def make_repeated_folds(y, n_splits: int, n_repeats: int, seed: int) -> list:
    """Materialize (repeat, fold, train_idx, valid_idx) tuples so every model sees identical splits."""

    cv = RepeatedStratifiedKFold(n_splits=n_splits, n_repeats=n_repeats, random_state=seed)
    y = np.asarray(y, dtype=int)
    splits = []
    for i, (tr, va) in enumerate(cv.split(np.zeros(len(y)), y)):
        splits.append((i // n_splits, i % n_splits, tr, va))
    return splits
