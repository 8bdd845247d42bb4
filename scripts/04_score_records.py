import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT / "src") not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT / "src"))

import argparse
import logging

from pit_nonresponse.data.ingest import load_survey_raw
from pit_nonresponse.models.artifact import load_artifact
from pit_nonresponse.utils.logging import configure_logging

logger = logging.getLogger("04_score_records")


def main() -> None:
    parser = argparse.ArgumentParser(description="Score raw survey records with a saved non-response model.")
    parser.add_argument("--model", type=Path, required=True, help="Artifact written by 03_train_models.py.")
    parser.add_argument("--input", type=Path, required=True, help="Raw survey file (csv, xlsx or parquet).")
    parser.add_argument("--out-csv", type=Path, required=True, help="Output CSV with p_non_response.")
    args = parser.parse_args()
    configure_logging()

    for path in [args.model, args.input]:
        if not path.exists():
            raise SystemExit(f"File not found: {path}")

    artifact = load_artifact(args.model)
    raw = load_survey_raw(args.input)
    try:
        scored = artifact.score(raw)
    except ValueError as exc:
        raise SystemExit(f"Cannot score {args.input}: {exc}") from exc
    logger.info("Scored %d records with %s.", len(scored), artifact.family)

    args.out_csv.parent.mkdir(parents=True, exist_ok=True)
    scored.to_csv(args.out_csv, index=False)
    print(f"Wrote {args.out_csv}")


if __name__ == "__main__":
    main()
