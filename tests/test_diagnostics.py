import numpy as np
import pandas as pd
import pytest

from pit_nonresponse.config import DEMOGRAPHIC_DIMENSIONS, DEMOGRAPHIC_LEVELS, MISSING_LEVEL
from pit_nonresponse.data.classify import classify_records
from pit_nonresponse.estimation.diagnostics import (
    eligibility_comparison,
    perceived_actual_agreement,
    perceived_actual_crosstab,
)


def test_comparison_shares_sum_to_one_per_dimension(classified):
    table = eligibility_comparison(classified, DEMOGRAPHIC_DIMENSIONS, weighted=True)
    sums = table.groupby("dimension")[["share_determined", "share_undetermined"]].sum()
    assert np.allclose(sums.to_numpy(), 1.0)

    # every level, Missing included, gets a row
    expected_rows = sum(len(levels) for levels in DEMOGRAPHIC_LEVELS.values())
    assert len(table) == expected_rows
    assert (table.loc[table["category"] == MISSING_LEVEL, "dimension"].nunique()) == len(DEMOGRAPHIC_DIMENSIONS)

    n_det = table.groupby("dimension")["n_determined"].sum()
    assert (n_det == int(classified["eligibility_determined"].sum())).all()


def test_comparison_reports_share_differences(record):
    raw = pd.DataFrame(
        [
            record(code=1, age_perceived="Under 25"),
            record(code=3, age_perceived="55+"),
            record(code=4, age_perceived="Under 25"),
            record(code=5, age_perceived="Under 25"),
        ]
    )
    table = eligibility_comparison(classify_records(raw), ["age"], weighted=False).set_index("category")
    assert table.loc["Under 25", "share_determined"] == pytest.approx(0.5)
    assert table.loc["Under 25", "share_undetermined"] == pytest.approx(1.0)
    assert table.loc["Under 25", "share_difference"] == pytest.approx(0.5)
    assert table.loc["55+", "n_undetermined"] == 0


def test_agreement_counts_only_respondents_with_both_values(record):
    raw = pd.DataFrame(
        [
            record(age_perceived="Under 25", age_actual="Under 25", weight=1.0),
            record(age_perceived="25-39", age_actual="25-39", weight=1.0),
            record(age_perceived="40-54", age_actual="55+", weight=2.0),
            record(age_perceived="40-54", age_actual=np.nan, weight=5.0),
            # non-respondent: ignored even though both values are present
            record(code=2, completed=0, age_perceived="40-54", age_actual="55+", weight=5.0),
        ]
    )
    out = perceived_actual_agreement(classify_records(raw), ["age"]).iloc[0]
    assert out["n_observed"] == 3
    assert out["n_agree"] == 2
    assert out["unweighted_agreement"] == pytest.approx(2 / 3)
    assert out["weighted_agreement"] == pytest.approx(0.5)
    assert 0.0 <= out["ci95_low_approx"] <= out["weighted_agreement"] <= out["ci95_high_approx"] <= 1.0


def test_crosstab_has_perceived_rows_and_actual_columns(classified):
    table = perceived_actual_crosstab(classified, "disability")
    assert table.index.name == "perceived"
    assert table.columns.name == "actual"
    assert int(table.to_numpy().sum()) == int(classified["response"].sum())
