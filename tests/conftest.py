import numpy as np
import pandas as pd
import pytest

from pit_nonresponse.config import COUNTIES, DEMOGRAPHIC_LEVELS, MISSING_LEVEL, SITE_LEVELS


def make_raw_records(n: int = 600, seed: int = 7) -> pd.DataFrame:
    """Synthetic census records with a non-response signal on intoxication and site."""

    rng = np.random.default_rng(seed)

    def _draw(levels, p_missing=0.05):
        observed = [lv for lv in levels if lv != MISSING_LEVEL]
        values = rng.choice(observed, size=n).astype(object)
        values[rng.random(n) < p_missing] = np.nan
        return values

    df = pd.DataFrame(
        {
            "county": rng.choice(COUNTIES, size=n),
            "site_category": _draw(SITE_LEVELS),
            "weight": rng.uniform(0.5, 3.0, size=n).round(3),
        }
    )
    for dim, levels in DEMOGRAPHIC_LEVELS.items():
        df[f"{dim}_perceived"] = _draw(levels)

    risk = 0.15 + 0.35 * (df["intoxication_perceived"] == "Yes") + 0.15 * (df["site_category"] == "Encampment")
    u = rng.random(n)
    codes = np.where(
        rng.random(n) < 0.08,
        3,
        np.where(u < risk * 0.6, rng.choice([4, 5, 6], size=n), np.where(u < risk, 2, 1)),
    )
    df["eligibility_code"] = codes
    df["completed"] = np.where((codes == 1) & (rng.random(n) < 0.9), 1, 0)

    respondent = (codes == 1) & (df["completed"] == 1)
    for dim in DEMOGRAPHIC_LEVELS:
        actual = df[f"{dim}_perceived"].copy()
        flip = rng.random(n) < 0.2
        actual[flip] = np.nan
        actual[~respondent] = np.nan
        df[f"{dim}_actual"] = actual
    return df


def make_record(county="Alameda", code=1, completed=1, weight=1.0, **overrides) -> dict:
    """One raw record; demographics default to the first level, self-report equal to perception."""

    rec = {
        "county": county,
        "eligibility_code": code,
        "completed": completed,
        "site_category": "Street",
        "weight": weight,
    }
    for dim, levels in DEMOGRAPHIC_LEVELS.items():
        rec[f"{dim}_perceived"] = levels[0]
        rec[f"{dim}_actual"] = levels[0]
    rec.update(overrides)
    return rec


@pytest.fixture
def record():
    return make_record


@pytest.fixture
def raw_records() -> pd.DataFrame:
    return make_raw_records()


@pytest.fixture
def synthetic_records():
    return make_raw_records


@pytest.fixture
def classified(raw_records):
    from pit_nonresponse.data.classify import classify_records

    return classify_records(raw_records)
