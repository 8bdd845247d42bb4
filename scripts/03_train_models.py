from __future__ import annotations

import argparse
import hashlib
import json
import logging
import os
import random
import sys
import tempfile
from pathlib import Path

import numpy as np
import pandas as pd

# Matplotlib must be configured before importing pyplot.
_mpl_cache_dir = Path(tempfile.gettempdir()) / "matplotlib"
_mpl_cache_dir.mkdir(parents=True, exist_ok=True)
os.environ.setdefault("MPLCONFIGDIR", str(_mpl_cache_dir))

import matplotlib

matplotlib.use("Agg")


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT / "src") not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT / "src"))

from pit_nonresponse.config import (  # noqa: E402
    ANALYSIS_FILE,
    CASE_WEIGHT_COL,
    CV_FOLDS,
    CV_REPEATS,
    DATASET_VERSION,
    EXPERIMENT_NAMESPACE,
    MODEL_FAMILIES,
    N_BOOT_DEFAULT,
    N_PARAM_SAMPLES,
    RANDOM_SEED,
    STACKING_INNER_FOLDS,
    STACKING_PENALTY_GRID,
    TARGET_COL,
    TEST_SIZE,
    resolve_n_jobs,
)
from pit_nonresponse.data.build import build_analysis_table  # noqa: E402
from pit_nonresponse.data.splits import make_holdout_split, make_repeated_folds  # noqa: E402
from pit_nonresponse.data.validate import assert_binary_target  # noqa: E402
from pit_nonresponse.evaluation.bootstrap import (  # noqa: E402
    stratified_bootstrap_metric_draws,
    summarize_bootstrap_ci,
)
from pit_nonresponse.features.encoding import ReferenceLevelEncoder, prepare_model_features  # noqa: E402
from pit_nonresponse.models.artifact import NonResponseModelArtifact, save_artifact  # noqa: E402
from pit_nonresponse.models.ensemble import StackingResult, run_stacking  # noqa: E402
from pit_nonresponse.models.final import evaluate_holdout, fit_selected_model  # noqa: E402
from pit_nonresponse.models.search import (  # noqa: E402
    best_params_by_family,
    results_snapshot,
    run_hyperparameter_search,
)
from pit_nonresponse.models.selection import rank_candidates, select_model  # noqa: E402
from pit_nonresponse.reporting.figures import plot_calibration_bins, plot_roc  # noqa: E402
from pit_nonresponse.utils.logging import configure_logging, runtime_metadata, write_json  # noqa: E402

logger = logging.getLogger("03_train_models")


def sha256_file(path: Path, chunk_size: int = 1024 * 1024) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(chunk_size)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def save_npz(path: Path, **arrays) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    np.savez_compressed(path, **arrays)


def main() -> None:
    parser = argparse.ArgumentParser(description="Non-response model search, stacking, selection and final fit.")
    parser.add_argument("--input", type=Path, default=ANALYSIS_FILE, help="Analysis table from 01_build_dataset.py.")
    parser.add_argument("--outdir", type=Path, default=Path("outputs"), help="Output directory (default: outputs/).")
    parser.add_argument("--seed", type=int, default=RANDOM_SEED, help="Seed for the holdout split, folds and models.")
    parser.add_argument("--cv-folds", type=int, default=CV_FOLDS)
    parser.add_argument("--cv-repeats", type=int, default=CV_REPEATS)
    parser.add_argument("--n-iter", type=int, default=N_PARAM_SAMPLES, help="Hyperparameter combinations per family.")
    parser.add_argument("--families", nargs="+", choices=MODEL_FAMILIES, default=MODEL_FAMILIES)
    parser.add_argument("--no-stacking", action="store_true", help="Skip the stacked ensemble.")
    parser.add_argument("--n-jobs", type=int, default=None, help="Worker processes (default: env or 2).")
    parser.add_argument("--n-boot", type=int, default=N_BOOT_DEFAULT, help="Bootstrap resamples for test-set CIs.")
    parser.add_argument("--run-id", type=str, default=None, help="Optional run id; otherwise deterministic.")
    args = parser.parse_args()
    configure_logging()

    if args.cv_folds < 2 or args.cv_repeats < 1 or args.n_iter < 1:
        raise SystemExit("--cv-folds must be >= 2; --cv-repeats and --n-iter must be >= 1.")
    if args.n_boot < 0:
        raise SystemExit("--n-boot must be >= 0.")
    try:
        n_jobs = resolve_n_jobs(args.n_jobs)
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc

    random.seed(args.seed)
    np.random.seed(args.seed)

    if not args.input.exists():
        raise SystemExit(f"Analysis table not found: {args.input}. Run scripts/01_build_dataset.py first.")
    df = pd.read_parquet(args.input)
    if CASE_WEIGHT_COL not in df.columns:
        df = build_analysis_table(df)

    # Ineligible records are outside the non-response population.
    model_df = df.loc[~df["ineligible"].astype(bool)].reset_index(drop=True)
    if model_df[CASE_WEIGHT_COL].isna().any():
        raise SystemExit(
            f"{CASE_WEIGHT_COL} is undefined (no record has a determined eligibility outcome); cannot train models."
        )
    y = model_df[TARGET_COL].astype(int)
    try:
        assert_binary_target(y, TARGET_COL)
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc
    w = model_df[CASE_WEIGHT_COL].to_numpy(dtype=float)

    encoder = ReferenceLevelEncoder().fit(model_df)
    X_df = prepare_model_features(model_df, encoder)
    X = X_df.to_numpy(dtype=float)
    y_arr = y.to_numpy(dtype=int)

    run_id = args.run_id or f"{EXPERIMENT_NAMESPACE}_seed{args.seed}"
    out_metrics = args.outdir / "metrics"
    out_tables = args.outdir / "tables"
    out_figures = args.outdir / "figures"
    out_models = args.outdir / "models"
    out_splits = args.outdir / "splits"
    out_logs = args.outdir / "logs"
    for d in [out_metrics, out_tables, out_figures, out_models, out_splits, out_logs]:
        d.mkdir(parents=True, exist_ok=True)

    encoder.reference_table().to_csv(out_tables / "predictor_reference_levels.csv", index=False)

    # Frozen holdout split, stratified on non-response
    train_idx, test_idx = make_holdout_split(X, y_arr, TEST_SIZE, args.seed)
    save_npz(out_splits / f"holdout_seed{args.seed}.npz", train_idx=train_idx, test_idx=test_idx)
    X_train, y_train, w_train = X[train_idx], y_arr[train_idx], w[train_idx]
    X_test, y_test, w_test = X[test_idx], y_arr[test_idx], w[test_idx]

    splits = make_repeated_folds(y_train, args.cv_folds, args.cv_repeats, args.seed)
    fold_id = np.full((args.cv_repeats, len(train_idx)), -1, dtype=int)
    for repeat, fold, _tr, va in splits:
        fold_id[repeat, va] = fold
    save_npz(out_splits / f"cvfolds_seed{args.seed}.npz", train_idx=train_idx, fold_id=fold_id)

    # Hyperparameter search
    search = run_hyperparameter_search(
        X_train,
        y_train,
        w_train,
        splits,
        families=args.families,
        n_iter=args.n_iter,
        seed=args.seed,
        n_jobs=n_jobs,
    )
    search_path = out_metrics / "hyperparameter_search.parquet"
    results_snapshot(search).to_parquet(search_path, index=False)
    search.summary.to_csv(out_tables / "hyperparameter_search_summary.csv", index=False)

    # Stacked ensemble
    stacking = None
    stacking_path = None
    stacking_inner_folds = min(STACKING_INNER_FOLDS, args.cv_folds)
    if not args.no_stacking:
        stacking = run_stacking(
            search,
            X_train,
            y_train,
            w_train,
            splits,
            penalties=STACKING_PENALTY_GRID,
            inner_folds=stacking_inner_folds,
            seed=args.seed,
            n_jobs=n_jobs,
        )
        stacking_path = out_metrics / "stacking_search.parquet"
        stacking.folds.to_parquet(stacking_path, index=False)
        stacking.summary.to_csv(out_tables / "stacking_search_summary.csv", index=False)

    # Selection: simplest model statistically indistinguishable from the best
    candidates = [best_params_by_family(search.summary)]
    if isinstance(stacking, StackingResult) and not stacking.summary.empty:
        candidates.append(best_params_by_family(stacking.summary))
    ranking = rank_candidates(candidates)
    ranking.to_csv(out_tables / "model_ranking.csv", index=False)
    try:
        selected = select_model(ranking)
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc
    family = selected["family"]
    logger.info("Selected model: %s %s", family, selected["params_json"])

    # Final fit on the training split, single evaluation on the test split
    model = fit_selected_model(
        selected, search, stacking, X_train, y_train, w_train, cv_folds=args.cv_folds, seed=args.seed, n_jobs=n_jobs
    )
    test_metrics, bins, y_prob = evaluate_holdout(model, X_test, y_test, w_test)
    bins.to_csv(out_tables / "calibration_bins_test.csv", index=False)

    draws = stratified_bootstrap_metric_draws(
        y_true=y_test, y_prob=y_prob, n_boot=args.n_boot, seed=args.seed + 101, sample_weight=w_test
    )
    draws.to_csv(out_tables / "bootstrap_draws_test.csv", index=False)
    ci = summarize_bootstrap_ci(draws)

    test_row = {
        "dataset_version": DATASET_VERSION,
        "run_id": run_id,
        "seed": args.seed,
        "model": family,
        "params_json": selected["params_json"],
        "n_train": int(len(train_idx)),
        "n_test": int(len(test_idx)),
        **test_metrics,
        **{f"{m}_ci95_low": lo for m, (lo, _hi) in ci.items()},
        **{f"{m}_ci95_high": hi for m, (_lo, hi) in ci.items()},
        "ci_method": "stratified_bootstrap_percentile",
    }
    pd.DataFrame([test_row]).to_csv(out_metrics / "metrics_test.csv", index=False)

    plot_roc(
        y_test, y_prob, out_figures / "roc_curve_test.png", f"ROC Curve (Test): {family}", sample_weight=w_test
    )
    plot_calibration_bins(bins, out_figures / "calibration_test.png", f"Calibration (Test): {family}")

    artifact = NonResponseModelArtifact(
        model=model,
        encoder=encoder,
        family=family,
        params=json.loads(selected["params_json"]),
        feature_names=list(X_df.columns),
        metadata={
            "dataset_version": DATASET_VERSION,
            "run_id": run_id,
            "seed": args.seed,
            "test_roc_auc": test_metrics["roc_auc"],
            "cv_roc_auc_mean": float(selected["roc_auc_mean"]),
        },
    )
    model_path = save_artifact(artifact, out_models / f"nonresponse_model_seed{args.seed}.joblib")

    meta = {
        "dataset_version": DATASET_VERSION,
        "experiment_namespace": EXPERIMENT_NAMESPACE,
        "run_id": run_id,
        "seed": args.seed,
        "selected_model": family,
        "selected_params": json.loads(selected["params_json"]),
        "target_col": TARGET_COL,
        "case_weight_col": CASE_WEIGHT_COL,
        "feature_names": list(X_df.columns),
        "validation_protocol": {
            "test_size": TEST_SIZE,
            "cv_folds": args.cv_folds,
            "cv_repeats": args.cv_repeats,
            "n_iter": args.n_iter,
            "families": list(args.families),
            "stacking": not args.no_stacking,
            "stacking_inner_folds": stacking_inner_folds,
            "n_jobs": n_jobs,
        },
        "search": {
            "n_fits": int(len(search.folds)),
            "n_failed": int((search.folds["status"] != "ok").sum()),
            "stacked_base_models": [fam for fam, _ in stacking.base_models] if stacking else [],
        },
        "inputs": {"analysis_parquet": str(args.input), "analysis_sha256": sha256_file(args.input)},
        "artifacts": {
            "model_joblib": str(model_path),
            "hyperparameter_search_parquet": str(search_path),
            "stacking_search_parquet": str(stacking_path) if stacking_path else None,
            "model_ranking_csv": str(out_tables / "model_ranking.csv"),
            "metrics_test_csv": str(out_metrics / "metrics_test.csv"),
            "calibration_bins_csv": str(out_tables / "calibration_bins_test.csv"),
        },
        "runtime": {**runtime_metadata(), "n_boot": int(args.n_boot)},
        "scope_notes": [
            "Case weights: sample weight x observed eligibility rate for eligibility-undetermined records.",
            "CV and test metrics are computed with the same case weights.",
            "Selection picks the simplest model whose AUC interval overlaps the best model's interval.",
        ],
    }
    write_json(out_models / f"nonresponse_model_seed{args.seed}.meta.json", meta)
    write_json(out_logs / f"run_{run_id}.json", meta)

    print(f"Wrote modeling artifacts to {args.outdir}/")


if __name__ == "__main__":
    main()
