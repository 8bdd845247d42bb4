from typing import Iterable

import pandas as pd


def assert_required_columns(df, required: Iterable[str]) -> None:
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")


def assert_binary_target(y: pd.Series, name: str) -> None:
    if y.isna().any():
        raise ValueError(f"Target column {name} contains missing values.")
    vals = set(pd.Series(y).astype(int).unique().tolist())
    if not vals.issubset({0, 1}):
        raise ValueError(f"Target column {name} must be binary {{0,1}}; observed values: {sorted(vals)}")
    if len(vals) < 2:
        raise ValueError(f"Target column {name} has a single class {sorted(vals)}; cannot fit a classifier.")
