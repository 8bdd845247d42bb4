from pathlib import Path
from typing import Optional

import pandas as pd

from .coding import normalize_column_names


def load_survey_raw(path: Path, nrows: Optional[int] = None) -> pd.DataFrame:
    suffix = path.suffix.lower()
    if suffix == ".csv":
        return pd.read_csv(path, nrows=nrows)
    if suffix in {".xlsx", ".xls"}:
        return pd.read_excel(path, nrows=nrows)
    if suffix == ".parquet":
        df = pd.read_parquet(path)
        return df.head(nrows).copy() if nrows is not None else df
    raise ValueError(f"Unsupported survey file type: {path.suffix!r} ({path})")


def resolve_raw_columns(df: pd.DataFrame, canonical) -> pd.DataFrame:
    """Rename columns whose normalized name matches a canonical column name."""

    mapping = normalize_column_names(df)
    renames = {}
    for name in canonical:
        exact = mapping.get(name)
        if exact is not None and exact != name:
            renames[exact] = name
    return df.rename(columns=renames)
