from __future__ import annotations

from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator, TransformerMixin

from pit_nonresponse.config import MISSING_LEVEL, PREDICTOR_LEVELS, REFERENCE_LEVELS
from pit_nonresponse.data.validate import assert_required_columns


class ReferenceLevelEncoder(TransformerMixin, BaseEstimator):
    """Dummy-code categorical predictors against explicit reference levels.

    Levels come from configuration, not from the data, so the output columns
    are identical for every dataset (no first-alphabetical defaults). Each
    predictor yields one indicator per non-reference level, the Missing level
    included; values outside the level list are encoded as Missing.
    """

    def __init__(
        self,
        levels: Optional[Dict[str, Sequence[str]]] = None,
        reference_levels: Optional[Dict[str, str]] = None,
        missing_level: str = MISSING_LEVEL,
    ):
        self.levels = levels
        self.reference_levels = reference_levels
        self.missing_level = missing_level

    def _resolved(self):
        levels = {k: list(v) for k, v in (self.levels or PREDICTOR_LEVELS).items()}
        refs = dict(self.reference_levels or REFERENCE_LEVELS)
        for col, col_levels in levels.items():
            if self.missing_level not in col_levels:
                raise ValueError(f"Levels for {col} must include {self.missing_level!r}: {col_levels}")
            if col not in refs:
                raise ValueError(f"No reference level configured for predictor {col}.")
            if refs[col] not in col_levels:
                raise ValueError(f"Reference level {refs[col]!r} for {col} is not one of {col_levels}")
        return levels, refs

    def fit(self, X, y=None):
        levels, refs = self._resolved()
        self.levels_ = levels
        self.reference_levels_ = refs
        self.encoded_levels_ = {col: [lv for lv in lv_list if lv != refs[col]] for col, lv_list in levels.items()}
        self.feature_names_out_ = [f"{col}={lv}" for col, lvs in self.encoded_levels_.items() for lv in lvs]
        return self

    def _clean(self, X: pd.DataFrame) -> pd.DataFrame:
        assert_required_columns(X, list(self.levels_))
        cleaned = {}
        for col, col_levels in self.levels_.items():
            s = X[col].astype(object)
            s = s.where(s.isin(col_levels), self.missing_level)
            cleaned[col] = s
        return pd.DataFrame(cleaned, index=X.index)

    def transform(self, X: pd.DataFrame) -> pd.DataFrame:
        cleaned = self._clean(X)
        blocks = {}
        for col, lvs in self.encoded_levels_.items():
            values = cleaned[col].to_numpy()
            for lv in lvs:
                blocks[f"{col}={lv}"] = (values == lv).astype(float)
        return pd.DataFrame(blocks, index=X.index, columns=self.feature_names_out_)

    def inverse_transform(self, Xt) -> pd.DataFrame:
        """Recover categories: the set indicator's level, or the reference level for an all-zero block."""

        Xt = pd.DataFrame(Xt, columns=self.feature_names_out_) if not isinstance(Xt, pd.DataFrame) else Xt
        out = {}
        for col, lvs in self.encoded_levels_.items():
            block = Xt[[f"{col}={lv}" for lv in lvs]].to_numpy(dtype=float)
            if (block.sum(axis=1) > 1).any():
                raise ValueError(f"More than one indicator set for predictor {col}.")
            idx = block.argmax(axis=1)
            decoded = np.where(block.max(axis=1) > 0, np.asarray(lvs, dtype=object)[idx], self.reference_levels_[col])
            out[col] = decoded
        return pd.DataFrame(out, index=Xt.index)

    def get_feature_names_out(self, input_features=None) -> np.ndarray:
        return np.asarray(self.feature_names_out_, dtype=object)

    def reference_table(self) -> pd.DataFrame:
        rows = [
            {"predictor": col, "reference_level": self.reference_levels_[col], "n_indicators": len(lvs)}
            for col, lvs in self.encoded_levels_.items()
        ]
        return pd.DataFrame(rows)


def prepare_model_features(classified: pd.DataFrame, encoder: Optional[ReferenceLevelEncoder] = None) -> pd.DataFrame:
    """Predictor dummies for classified records (county, site category, perceived demographics)."""

    if encoder is None:
        encoder = ReferenceLevelEncoder().fit(classified)
    return encoder.transform(classified)
