import numpy as np
import pandas as pd
import pytest

from pit_nonresponse.models.selection import rank_candidates, select_model


def _candidates(rows):
    frame = pd.DataFrame(rows)
    frame["params_id"] = 0
    frame["params_json"] = "{}"
    frame["n_folds"] = 50
    frame["n_ok"] = 50
    return frame


def test_simpler_model_wins_when_intervals_overlap():
    ranking = rank_candidates(
        [
            _candidates(
                [
                    {"family": "logistic", "roc_auc_mean": 0.70, "roc_auc_se": 0.02},
                    {"family": "random_forest", "roc_auc_mean": 0.72, "roc_auc_se": 0.02},
                ]
            )
        ]
    )
    assert ranking["family"].tolist() == ["random_forest", "logistic"]
    assert ranking["rank"].tolist() == [1, 2]
    assert select_model(ranking)["family"] == "logistic"


def test_best_model_wins_when_intervals_do_not_overlap():
    ranking = rank_candidates(
        [
            _candidates(
                [
                    {"family": "logistic", "roc_auc_mean": 0.60, "roc_auc_se": 0.01},
                    {"family": "neural_network", "roc_auc_mean": 0.75, "roc_auc_se": 0.01},
                ]
            )
        ]
    )
    assert select_model(ranking)["family"] == "neural_network"


def test_ties_on_mean_prefer_the_simpler_family():
    ranking = rank_candidates(
        [
            _candidates([{"family": "stacked_ensemble", "roc_auc_mean": 0.8, "roc_auc_se": 0.0}]),
            _candidates([{"family": "elastic_net", "roc_auc_mean": 0.8, "roc_auc_se": 0.0}]),
        ]
    )
    assert ranking["family"].tolist() == ["elastic_net", "stacked_ensemble"]
    assert select_model(ranking)["family"] == "elastic_net"


def test_candidates_without_auc_stay_in_the_table_but_are_not_selected():
    ranking = rank_candidates(
        [
            _candidates(
                [
                    {"family": "logistic", "roc_auc_mean": np.nan, "roc_auc_se": np.nan},
                    {"family": "gradient_boosting", "roc_auc_mean": 0.66, "roc_auc_se": 0.03},
                ]
            )
        ]
    )
    assert ranking["family"].tolist() == ["gradient_boosting", "logistic"]
    assert select_model(ranking)["family"] == "gradient_boosting"


def test_nothing_to_select_raises():
    ranking = rank_candidates([_candidates([{"family": "logistic", "roc_auc_mean": np.nan, "roc_auc_se": np.nan}])])
    with pytest.raises(ValueError, match="nothing to select"):
        select_model(ranking)
    assert rank_candidates([pd.DataFrame()]).empty


def test_unknown_family_has_no_complexity_rank():
    with pytest.raises(ValueError, match="complexity rank"):
        rank_candidates([_candidates([{"family": "svm", "roc_auc_mean": 0.7, "roc_auc_se": 0.01}])])
