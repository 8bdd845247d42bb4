from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Sequence, Tuple

import numpy as np
import pandas as pd

from pit_nonresponse.config import (
    COMPLETED_NO_VALUES,
    COMPLETED_YES_VALUES,
    ELIGIBILITY_CODES,
    MISSING_LEVEL,
    UNRECOGNIZED_ELIGIBILITY_LABEL,
)

logger = logging.getLogger(__name__)

_NORMALIZE_RE = re.compile(r"[^0-9a-zA-Z]+")


def _normalize_name(name: str) -> str:
    return _NORMALIZE_RE.sub("_", name).strip("_").lower()


def normalize_column_names(df: pd.DataFrame) -> Dict[str, str]:
    """Return a normalized-name -> exact-name mapping for df columns.

    This does not modify the DataFrame. It exists to support resilient lookups
    across files where column casing/spacing might differ.
    """

    mapping: Dict[str, str] = {}
    collisions: Dict[str, list[str]] = {}

    for col in df.columns.astype(str).tolist():
        norm = _normalize_name(col)
        if norm in mapping and mapping[norm] != col:
            collisions.setdefault(norm, sorted({mapping[norm], col}))
        mapping[norm] = col

    if collisions:
        raise ValueError(f"Normalized column name collisions: {collisions}")

    return mapping


def _as_int_if_integer_like(v):
    if isinstance(v, (bool, np.bool_)):
        return int(v)
    try:
        fv = float(v)
    except (TypeError, ValueError):
        return v
    if np.isfinite(fv) and fv.is_integer():
        return int(fv)
    return v


def _code_key(v):
    if pd.isna(v):
        return None
    v = _as_int_if_integer_like(v)
    if isinstance(v, str):
        return v.strip().lower()
    return v


def _completion_masks(series: pd.Series, yes_values: Tuple, no_values: Tuple) -> Tuple[pd.Series, pd.Series]:
    keys = series.map(_code_key)
    is_yes = keys.isin(yes_values)
    recognized = is_yes | keys.isin(no_values) | keys.isna()
    return is_yes, recognized


def unrecognized_completion_values(
    series: pd.Series,
    *,
    yes_values: Tuple = COMPLETED_YES_VALUES,
    no_values: Tuple = COMPLETED_NO_VALUES,
) -> List[str]:
    """Raw completion values outside the yes/no tables (for the decisions log)."""

    _is_yes, recognized = _completion_masks(series, yes_values, no_values)
    return sorted({str(v).strip() for v in series.loc[~recognized].unique().tolist()})


def recode_completed(
    series: pd.Series,
    *,
    yes_values: Tuple = COMPLETED_YES_VALUES,
    no_values: Tuple = COMPLETED_NO_VALUES,
) -> Tuple[pd.Series, pd.Series]:
    """Recode a completion flag to (completed, recognized).

    - yes_values map to True
    - no_values and NaN map to False (an unrecorded completion is not a completion)
    - any other value maps to False with recognized=False, so callers can flag it
    """

    is_yes, recognized = _completion_masks(series, yes_values, no_values)

    if not recognized.all():
        logger.warning(
            "Unexpected completion codes %s treated as not completed (expected yes=%s, no=%s).",
            unrecognized_completion_values(series, yes_values=yes_values, no_values=no_values),
            yes_values,
            no_values,
        )

    return is_yes.astype(bool), recognized.astype(bool)


def recode_eligibility(series: pd.Series) -> Tuple[pd.Series, pd.Series]:
    """Map raw screening codes to (label, status).

    Codes outside the configured table, including missing codes, become the
    explicit "unrecognized" label with "undetermined" status.
    """

    keys = series.map(_code_key)
    labels = keys.map(lambda k: ELIGIBILITY_CODES[k][0] if k in ELIGIBILITY_CODES else UNRECOGNIZED_ELIGIBILITY_LABEL)
    status = keys.map(lambda k: ELIGIBILITY_CODES[k][1] if k in ELIGIBILITY_CODES else "undetermined")
    return labels.astype(str), status.astype(str)


def _level_lookup(levels: Sequence[str]) -> Dict[str, str]:
    return {str(level).strip().lower(): level for level in levels}


def coerce_closed_category(
    series: pd.Series, levels: Sequence[str], *, missing_level: str = MISSING_LEVEL
) -> pd.Series:
    """Map a Series onto a closed enumeration with an explicit missing level.

    Matching is case/whitespace-insensitive; NaN and values outside `levels`
    map to `missing_level`, so every record stays visible in groupings.
    """

    if missing_level not in levels:
        raise ValueError(f"Level list must contain the missing level {missing_level!r}: {list(levels)}")
    lookup = _level_lookup(levels)

    def _to_level(v):
        if pd.isna(v):
            return missing_level
        return lookup.get(str(_as_int_if_integer_like(v)).strip().lower(), missing_level)

    out = series.map(_to_level)
    return pd.Series(pd.Categorical(out, categories=list(levels)), index=series.index, name=series.name)


def unrecognized_values(series: pd.Series, levels: Iterable[str]) -> List[str]:
    """Non-missing raw values that fall outside `levels` (for the decisions log)."""

    lookup = _level_lookup(list(levels))
    observed = series.dropna().map(lambda v: str(_as_int_if_integer_like(v)).strip())
    return sorted({v for v in observed.unique().tolist() if v.lower() not in lookup})


def summarize_missingness(df: pd.DataFrame) -> pd.DataFrame:
    """Return per-column missingness summary in stable column order.

    Categorical columns count the explicit missing level as missing.
    """

    n = len(df)
    rows = []
    for col in df.columns.astype(str).tolist():
        s = df[col]
        is_missing = s.isna()
        if isinstance(s.dtype, pd.CategoricalDtype):
            is_missing = is_missing | (s.astype(object) == MISSING_LEVEL)
        n_missing = int(is_missing.sum())
        missing_rate = round(n_missing / n, 6) if n else np.nan
        rows.append({"column": col, "n": n, "n_missing": n_missing, "missing_rate": missing_rate})
    return pd.DataFrame(rows)
