import logging

import numpy as np
import pandas as pd
import pytest

from pit_nonresponse.config import MISSING_LEVEL, TOTAL_LABEL
from pit_nonresponse.data.classify import classify_records
from pit_nonresponse.estimation.rates import (
    COUNT_COLS,
    adjusted_non_response,
    adjusted_rate,
    format_rate_table,
    initial_rate,
    nonresponse_rate_table,
)


def _records(record, county, n, **kwargs):
    return [record(county=county, **kwargs) for _ in range(n)]


def _county_rows(table, county):
    return table.set_index("county").loc[county]


def test_adjustment_is_a_no_op_without_undetermined_records():
    adj = adjusted_non_response(20, 100, 100, 10)
    assert float(adj) == pytest.approx(20.0)
    assert float(adjusted_rate(adj, 70)) == pytest.approx(float(initial_rate(20, 70)))
    assert float(initial_rate(20, 70)) == pytest.approx(20 / 90)


def test_adjustment_imputes_ineligibles_among_undetermined():
    # 90 determined of 100 approached, 10 of them ineligible
    adj = float(adjusted_non_response(20, 100, 90, 10))
    assert adj == pytest.approx(20 - 10 * 10 / 90)
    assert adj == pytest.approx(18.8889, abs=1e-4)

    adj = float(adjusted_non_response(20, 110, 90, 10))
    assert adj == pytest.approx(17.7778, abs=1e-4)
    assert float(adjusted_rate(adj, 70)) == pytest.approx(0.2026, abs=1e-4)


def test_negative_adjusted_count_is_not_clamped():
    adj = float(adjusted_non_response(5, 110, 90, 60))
    assert adj < 0
    assert float(adjusted_rate(adj, 70)) < 0


def test_rates_are_undefined_without_determined_records():
    assert np.isnan(adjusted_non_response(5, 5, 0, 0))
    assert np.isnan(initial_rate(0, 0))


def test_record_level_rates_match_hand_computation(record):
    rows = (
        _records(record, "Alameda", 70, code=1, completed=1)
        + _records(record, "Alameda", 10, code=3, completed=0)
        + _records(record, "Alameda", 20, code=4, completed=0)
    )
    table = nonresponse_rate_table(classify_records(pd.DataFrame(rows)), weighted=False)
    row = _county_rows(table, "Alameda")

    assert row["approached"] == 100
    assert row["eligibility_determined"] == 80
    assert row["eligibility_not_determined"] == 20
    assert row["ineligible"] == 10
    assert row["non_response"] == 20
    assert row["initial_rate"] == pytest.approx(20 / 90)
    assert row["adjusted_non_response"] == pytest.approx(17.5)
    assert row["adjusted_rate"] == pytest.approx(0.2)
    assert row["rate_status"] == "ok"


def test_total_row_sums_counts_rather_than_averaging_rates(record):
    rows = (
        _records(record, "Alameda", 70, code=1, completed=1)
        + _records(record, "Alameda", 10, code=3, completed=0)
        + _records(record, "Alameda", 20, code=4, completed=0)
        + _records(record, "Napa", 10, code=1, completed=1)
        + _records(record, "Napa", 10, code=2, completed=0)
    )
    table = nonresponse_rate_table(classify_records(pd.DataFrame(rows)), weighted=False)
    assert table["county"].tolist() == ["Alameda", "Napa", TOTAL_LABEL]

    total = _county_rows(table, TOTAL_LABEL)
    assert total["approached"] == 120
    assert total["initial_rate"] == pytest.approx(30 / 110)
    assert total["adjusted_non_response"] == pytest.approx(28.0)
    assert total["adjusted_rate"] == pytest.approx(28 / 108)

    county_rates = table.loc[table["county"] != TOTAL_LABEL, "adjusted_rate"]
    assert total["adjusted_rate"] != pytest.approx(county_rates.mean())


def test_weights_change_the_rate(record):
    rows = [record(code=1, completed=1, weight=3.0), record(code=2, completed=0, weight=1.0)]
    classified = classify_records(pd.DataFrame(rows))

    weighted = nonresponse_rate_table(classified, weighted=True)
    unweighted = nonresponse_rate_table(classified, weighted=False)
    assert _county_rows(weighted, "Alameda")["initial_rate"] == pytest.approx(0.25)
    assert _county_rows(unweighted, "Alameda")["initial_rate"] == pytest.approx(0.5)
    assert weighted["weighted"].all()
    assert not unweighted["weighted"].any()


def test_stratum_without_determined_eligibility_is_undefined(record, caplog):
    rows = _records(record, "Alameda", 9, code=1, completed=1) + _records(record, "Marin", 5, code=4, completed=0)
    with caplog.at_level(logging.WARNING):
        table = nonresponse_rate_table(classify_records(pd.DataFrame(rows)), weighted=True)

    marin = _county_rows(table, "Marin")
    assert marin["rate_status"] == "undefined_no_determined_eligibility"
    assert np.isnan(marin["adjusted_rate"])
    assert "undefined_no_determined_eligibility" in caplog.text

    total = _county_rows(table, TOTAL_LABEL)
    assert np.isfinite(total["adjusted_rate"])

    formatted = format_rate_table(table).set_index("county")
    assert formatted.loc["Marin", "adjusted_rate"] == "undefined"
    assert formatted.loc["Alameda", "adjusted_rate"] == "0.0000"


def test_unrecognized_county_stratum_sorts_last_as_missing(record):
    rows = [record(county="Atlantis"), record(county="Sonoma"), record(county="Alameda")]
    table = nonresponse_rate_table(classify_records(pd.DataFrame(rows)), weighted=False)
    assert table["county"].tolist() == ["Alameda", "Sonoma", MISSING_LEVEL, TOTAL_LABEL]


def test_weighted_total_sums_unequal_weights_across_counties(record):
    rows = [
        record(county="Alameda", code=1, completed=1, weight=2.0),
        record(county="Alameda", code=1, completed=1, weight=2.0),
        record(county="Alameda", code=3, completed=0, weight=3.0),
        record(county="Alameda", code=4, completed=0, weight=1.5),
        record(county="Napa", code=1, completed=1, weight=1.0),
        record(county="Napa", code=2, completed=0, weight=4.0),
    ]
    table = nonresponse_rate_table(classify_records(pd.DataFrame(rows)), weighted=True)
    total = _county_rows(table, TOTAL_LABEL)

    assert total["approached"] == pytest.approx(13.5)
    assert total["eligibility_determined"] == pytest.approx(12.0)
    assert total["eligibility_not_determined"] == pytest.approx(1.5)
    assert total["ineligible"] == pytest.approx(3.0)
    assert total["non_response"] == pytest.approx(5.5)
    assert total["response"] == pytest.approx(5.0)
    assert total["initial_rate"] == pytest.approx(5.5 / 10.5)
    assert total["adjusted_non_response"] == pytest.approx(5.125)
    assert total["adjusted_rate"] == pytest.approx(5.125 / 10.125)
    assert total["rate_status"] == "ok"

    counties = table.loc[table["county"] != TOTAL_LABEL, COUNT_COLS]
    np.testing.assert_allclose(counties.sum(axis=0).to_numpy(), total[COUNT_COLS].to_numpy(dtype=float))

    county_adjusted = table.loc[table["county"] != TOTAL_LABEL, "adjusted_non_response"].sum()
    assert total["adjusted_non_response"] != pytest.approx(county_adjusted)
