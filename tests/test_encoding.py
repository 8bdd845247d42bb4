import pandas as pd
import pytest

from pit_nonresponse.config import MISSING_LEVEL, PREDICTOR_LEVELS, REFERENCE_LEVELS
from pit_nonresponse.features.encoding import ReferenceLevelEncoder, prepare_model_features


def _all_levels_frame() -> pd.DataFrame:
    n = max(len(levels) for levels in PREDICTOR_LEVELS.values())
    return pd.DataFrame({col: [levels[i % len(levels)] for i in range(n)] for col, levels in PREDICTOR_LEVELS.items()})


def test_columns_come_from_configuration_not_data(classified):
    enc_full = ReferenceLevelEncoder().fit(classified)
    enc_sub = ReferenceLevelEncoder().fit(classified.head(5))
    assert enc_full.feature_names_out_ == enc_sub.feature_names_out_
    expected = sum(len(levels) - 1 for levels in PREDICTOR_LEVELS.values())
    assert len(enc_full.feature_names_out_) == expected
    assert "county=Alameda" not in enc_full.feature_names_out_
    assert f"age_perceived={MISSING_LEVEL}" in enc_full.feature_names_out_


def test_reference_level_encodes_as_all_zeros():
    frame = pd.DataFrame([REFERENCE_LEVELS])
    X = ReferenceLevelEncoder().fit(frame).transform(frame)
    assert (X.to_numpy() == 0).all()


def test_every_level_round_trips():
    frame = _all_levels_frame()
    enc = ReferenceLevelEncoder().fit(frame)
    X = enc.transform(frame)
    per_predictor = X.T.groupby(lambda c: c.split("=")[0]).sum()
    assert (per_predictor.to_numpy() <= 1).all()
    decoded = enc.inverse_transform(X)
    pd.testing.assert_frame_equal(decoded.astype(str), frame.astype(str))


def test_unseen_values_encode_as_missing():
    frame = pd.DataFrame([{**REFERENCE_LEVELS, "county": "Unknown", "site_category": "Rooftop"}])
    enc = ReferenceLevelEncoder().fit(frame)
    X = enc.transform(frame)
    assert X.loc[0, f"county={MISSING_LEVEL}"] == 1.0
    assert X.loc[0, f"site_category={MISSING_LEVEL}"] == 1.0
    assert enc.inverse_transform(X).loc[0, "county"] == MISSING_LEVEL


def test_invalid_reference_level_raises():
    with pytest.raises(ValueError, match="Reference level"):
        ReferenceLevelEncoder(reference_levels={**REFERENCE_LEVELS, "county": "Atlantis"}).fit(_all_levels_frame())


def test_inverse_transform_rejects_two_indicators():
    frame = pd.DataFrame([REFERENCE_LEVELS])
    enc = ReferenceLevelEncoder().fit(frame)
    X = enc.transform(frame)
    X.loc[0, "county=Napa"] = 1.0
    X.loc[0, "county=Marin"] = 1.0
    with pytest.raises(ValueError, match="county"):
        enc.inverse_transform(X)


def test_prepare_model_features_reuses_a_fitted_encoder(classified):
    enc = ReferenceLevelEncoder().fit(classified)
    X = prepare_model_features(classified.head(10), enc)
    assert list(X.columns) == enc.feature_names_out_
    assert X.shape[0] == 10
    assert set(enc.reference_table()["predictor"]) == set(PREDICTOR_LEVELS)


def test_unrecognized_county_record_sets_the_missing_indicator(record):
    from pit_nonresponse.data.classify import classify_records

    classified = classify_records(pd.DataFrame([record(county="Atlantis"), record(county="marin")]))
    X = prepare_model_features(classified)
    assert X[f"county={MISSING_LEVEL}"].tolist() == [1.0, 0.0]
    assert X["county=Marin"].tolist() == [0.0, 1.0]
