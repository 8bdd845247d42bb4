import numpy as np
import pytest

from pit_nonresponse.config import CASE_WEIGHT_COL, TARGET_COL
from pit_nonresponse.data.build import build_analysis_table
from pit_nonresponse.data.classify import classify_records
from pit_nonresponse.features.encoding import ReferenceLevelEncoder, prepare_model_features
from pit_nonresponse.models.artifact import (
    NonResponseModelArtifact,
    load_artifact,
    save_artifact,
    strip_training_state,
)
from pit_nonresponse.models.families import build_fold_pipeline
from pit_nonresponse.models.search import fit_weighted


@pytest.fixture
def fitted_artifact(synthetic_records):
    classified = classify_records(synthetic_records(n=300, seed=9))
    model_df = build_analysis_table(classified.loc[~classified["ineligible"]].reset_index(drop=True))
    encoder = ReferenceLevelEncoder().fit(model_df)
    X = prepare_model_features(model_df, encoder)
    model = build_fold_pipeline("neural_network", {"hidden_layer_size": 4, "alpha": 0.01}, seed=0)
    fit_weighted(model, X.to_numpy(dtype=float), model_df[TARGET_COL].astype(int).to_numpy(), model_df[CASE_WEIGHT_COL])
    return NonResponseModelArtifact(
        model=model,
        encoder=encoder,
        family="neural_network",
        params={"hidden_layer_size": 4, "alpha": 0.01},
        feature_names=list(X.columns),
    )


def test_saved_artifact_scores_raw_records(fitted_artifact, synthetic_records, tmp_path):
    raw = synthetic_records(n=40, seed=21)
    before = fitted_artifact.predict_proba(raw)

    path = save_artifact(fitted_artifact, tmp_path / "models" / "model.joblib")
    loaded = load_artifact(path)
    scored = loaded.score(raw)

    assert len(scored) == len(raw)
    assert {"non_response", "eligibility_status", "p_non_response"} <= set(scored.columns)
    assert scored["p_non_response"].between(0, 1).all()
    np.testing.assert_allclose(scored["p_non_response"].to_numpy(), before)


def test_saving_strips_training_only_state(fitted_artifact, tmp_path):
    mlp = fitted_artifact.model.named_steps["model"]
    assert hasattr(mlp, "loss_curve_")
    save_artifact(fitted_artifact, tmp_path / "model.joblib")
    assert not hasattr(mlp, "loss_curve_")
    assert not hasattr(mlp, "_optimizer")
    # prediction state survives
    assert hasattr(mlp, "coefs_")


def test_strip_training_state_handles_plain_estimators():
    class Dummy:
        pass

    est = Dummy()
    est.loss_curve_ = [1.0]
    est.coef_ = [0.5]
    strip_training_state(est)
    assert not hasattr(est, "loss_curve_")
    assert est.coef_ == [0.5]


def test_feature_mismatch_is_rejected(fitted_artifact, synthetic_records):
    fitted_artifact.feature_names = fitted_artifact.feature_names[:-1]
    with pytest.raises(ValueError, match="do not match"):
        fitted_artifact.predict_proba(synthetic_records(n=5, seed=1))


def test_load_rejects_other_objects(tmp_path):
    import joblib

    path = tmp_path / "not_an_artifact.joblib"
    joblib.dump({"model": None}, path)
    with pytest.raises(ValueError, match="NonResponseModelArtifact"):
        load_artifact(path)
