from __future__ import annotations

import argparse
import logging
import os
import sys
import tempfile
from pathlib import Path

_mpl_cache_dir = Path(tempfile.gettempdir()) / "matplotlib"
_mpl_cache_dir.mkdir(parents=True, exist_ok=True)
os.environ.setdefault("MPLCONFIGDIR", str(_mpl_cache_dir))

import matplotlib

matplotlib.use("Agg")

import pandas as pd


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT / "src") not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT / "src"))

from pit_nonresponse.config import ANALYSIS_FILE, DEMOGRAPHIC_DIMENSIONS, TOTAL_LABEL  # noqa: E402
from pit_nonresponse.data.classify import disposition_counts  # noqa: E402
from pit_nonresponse.estimation.diagnostics import (  # noqa: E402
    eligibility_comparison,
    perceived_actual_agreement,
    perceived_actual_crosstab,
)
from pit_nonresponse.estimation.rates import format_rate_table, nonresponse_rate_table  # noqa: E402
from pit_nonresponse.reporting.figures import plot_disposition_flow, plot_eligibility_comparison  # noqa: E402
from pit_nonresponse.utils.logging import configure_logging, runtime_metadata, write_json  # noqa: E402

logger = logging.getLogger("02_nonresponse_rates")


def main() -> None:
    parser = argparse.ArgumentParser(description="Non-response rates by county and comparability diagnostics.")
    parser.add_argument("--input", type=Path, default=ANALYSIS_FILE, help="Analysis table from 01_build_dataset.py.")
    parser.add_argument("--outdir", type=Path, default=Path("outputs"), help="Output directory (default: outputs/).")
    args = parser.parse_args()
    configure_logging()

    if not args.input.exists():
        raise SystemExit(f"Analysis table not found: {args.input}. Run scripts/01_build_dataset.py first.")
    df = pd.read_parquet(args.input)

    tables_dir = args.outdir / "tables"
    figures_dir = args.outdir / "figures"
    logs_dir = args.outdir / "logs"
    for d in [tables_dir, figures_dir, logs_dir]:
        d.mkdir(parents=True, exist_ok=True)

    # Rates: weighted (primary) and unweighted (sensitivity)
    totals = {}
    for weighted, tag in [(True, "weighted"), (False, "unweighted")]:
        table = nonresponse_rate_table(df, weighted=weighted)
        table.to_csv(tables_dir / f"nonresponse_rates_{tag}.csv", index=False)
        format_rate_table(table).to_csv(tables_dir / f"nonresponse_rates_{tag}_formatted.csv", index=False)
        total = table.loc[table["county"] == TOTAL_LABEL].iloc[0]
        totals[tag] = {
            "initial_rate": None if pd.isna(total["initial_rate"]) else float(total["initial_rate"]),
            "adjusted_rate": None if pd.isna(total["adjusted_rate"]) else float(total["adjusted_rate"]),
            "rate_status": total["rate_status"],
        }

    # Comparability diagnostics
    comparison = eligibility_comparison(df, DEMOGRAPHIC_DIMENSIONS, weighted=True)
    comparison.to_csv(tables_dir / "eligibility_comparison_weighted.csv", index=False)
    eligibility_comparison(df, DEMOGRAPHIC_DIMENSIONS, weighted=False).to_csv(
        tables_dir / "eligibility_comparison_unweighted.csv", index=False
    )
    agreement = perceived_actual_agreement(df, DEMOGRAPHIC_DIMENSIONS)
    agreement.to_csv(tables_dir / "perceived_actual_agreement.csv", index=False)
    for dim in DEMOGRAPHIC_DIMENSIONS:
        perceived_actual_crosstab(df, dim).to_csv(tables_dir / f"perceived_actual_crosstab_{dim}.csv")

    # Figures
    dispositions = disposition_counts(df)
    plot_disposition_flow(dispositions, figures_dir / "record_disposition_flow.png")
    for dim in DEMOGRAPHIC_DIMENSIONS:
        plot_eligibility_comparison(comparison, dim, figures_dir / f"eligibility_comparison_{dim}.png")

    write_json(
        logs_dir / "nonresponse_rates_run_metadata.json",
        {
            **runtime_metadata(),
            "input_parquet": str(args.input),
            "n_records": int(len(df)),
            "total_rates": totals,
            "notes": [
                "Adjusted rates impute ineligibility among undetermined records at the observed ineligible share.",
                "Negative adjusted non-response counts are reported unclamped (rate_status flags them).",
                "Agreement CIs are weight-only (DescrStatsW), not design-based.",
            ],
        },
    )

    print(f"Wrote non-response rate artifacts to {args.outdir}/")


if __name__ == "__main__":
    main()
