import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT / "src") not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT / "src"))

import argparse
import hashlib
import logging

import numpy as np
import pandas as pd

from pit_nonresponse.config import (
    ANALYSIS_FILE,
    COUNTIES,
    DEMOGRAPHIC_LEVELS,
    LOGS_DIR,
    RAW_FILE,
    RAW_OPTIONAL_COLUMNS,
    RAW_REQUIRED_COLUMNS,
    SITE_LEVELS,
    TABLES_DIR,
)
from pit_nonresponse.data.build import build_analysis_table, observed_eligibility_rate
from pit_nonresponse.data.classify import classify_records, disposition_counts
from pit_nonresponse.data.coding import (
    summarize_missingness,
    unrecognized_completion_values,
    unrecognized_values,
)
from pit_nonresponse.data.ingest import load_survey_raw, resolve_raw_columns
from pit_nonresponse.utils.logging import configure_logging, runtime_metadata, write_json

logger = logging.getLogger("01_build_dataset")


def _sha256_df(df: pd.DataFrame) -> str:
    h = hashlib.sha256()
    h.update("||".join(df.columns.astype(str).tolist()).encode("utf-8"))
    h.update("||".join(map(str, df.dtypes.tolist())).encode("utf-8"))
    row_hashes = pd.util.hash_pandas_object(df, index=True).to_numpy()
    h.update(row_hashes.tobytes())
    return h.hexdigest()


def _value_counts(series: pd.Series) -> dict:
    return {str(k): int(v) for k, v in series.value_counts(dropna=False).sort_index().items()}


def coding_decisions(raw: pd.DataFrame, classified: pd.DataFrame) -> dict:
    """Auditable record of every recode: unrecognized raw values and resulting buckets."""

    raw = resolve_raw_columns(raw, RAW_REQUIRED_COLUMNS + RAW_OPTIONAL_COLUMNS)
    unrecognized = {
        "county": unrecognized_values(raw["county"], COUNTIES),
        "site_category": unrecognized_values(raw["site_category"], SITE_LEVELS),
    }
    for dim, levels in DEMOGRAPHIC_LEVELS.items():
        for kind in ("perceived", "actual"):
            col = f"{dim}_{kind}"
            if col in raw.columns:
                unrecognized[col] = unrecognized_values(raw[col], levels)

    rate = observed_eligibility_rate(classified)
    return {
        "columns": {
            "required": list(RAW_REQUIRED_COLUMNS),
            "optional_present": [c for c in RAW_OPTIONAL_COLUMNS if c in raw.columns],
        },
        "eligibility_labels": _value_counts(classified["eligibility_label"]),
        "eligibility_status": _value_counts(classified["eligibility_status"]),
        "data_quality_flags": _value_counts(classified["data_quality_flag"]),
        "unrecognized_values_mapped_to_missing": unrecognized,
        "unrecognized_completion_codes": unrecognized_completion_values(raw["completed"]),
        "observed_eligibility_rate_weighted": None if np.isnan(rate) else rate,
        "row_filters": [],
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Classify raw census survey records into an analysis table.")
    parser.add_argument("--input", type=Path, default=RAW_FILE, help="Raw survey file (csv, xlsx or parquet).")
    parser.add_argument("--nrows", type=int, default=None, help="Optional: read only the first N rows (for tests).")
    parser.add_argument("--out-parquet", type=Path, default=ANALYSIS_FILE, help="Output parquet path.")
    parser.add_argument(
        "--missingness-csv",
        type=Path,
        default=TABLES_DIR / "missingness_analysis_table.csv",
        help="Output missingness summary CSV path.",
    )
    parser.add_argument(
        "--dispositions-csv",
        type=Path,
        default=TABLES_DIR / "record_dispositions.csv",
        help="Output record disposition counts CSV path.",
    )
    parser.add_argument(
        "--decisions-json",
        type=Path,
        default=LOGS_DIR / "decisions.json",
        help="Output JSON file for coding decisions.",
    )
    args = parser.parse_args()
    configure_logging()

    if not args.input.exists():
        raise SystemExit(f"Input file not found: {args.input}")
    if args.nrows is not None and args.nrows <= 0:
        raise SystemExit("--nrows must be a positive integer.")

    raw = load_survey_raw(args.input, nrows=args.nrows)
    try:
        classified = classify_records(raw)
        analysis = build_analysis_table(classified)
    except ValueError as exc:
        raise SystemExit(f"Cannot build analysis table from {args.input}: {exc}") from exc
    logger.info("Classified %d records from %s.", len(analysis), args.input)

    decisions = coding_decisions(raw, classified)

    args.missingness_csv.parent.mkdir(parents=True, exist_ok=True)
    summarize_missingness(analysis).to_csv(args.missingness_csv, index=False)

    args.dispositions_csv.parent.mkdir(parents=True, exist_ok=True)
    disposition_counts(analysis).to_csv(args.dispositions_csv, index=False)

    args.out_parquet.parent.mkdir(parents=True, exist_ok=True)
    analysis.to_parquet(args.out_parquet, index=False)

    write_json(
        args.decisions_json,
        {
            **decisions,
            "input_file": str(args.input),
            "raw_rows": int(len(raw)),
            "analysis_rows": int(len(analysis)),
            "analysis_cols": int(analysis.shape[1]),
            "output_parquet": str(args.out_parquet),
            "content_hash_sha256": _sha256_df(analysis),
            "runtime": runtime_metadata(),
        },
    )

    print(f"Wrote {args.out_parquet}")
    print(f"Wrote {args.missingness_csv}")
    print(f"Wrote {args.dispositions_csv}")
    print(f"Wrote {args.decisions_json}")


if __name__ == "__main__":
    main()
