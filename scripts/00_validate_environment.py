import platform
import sys

from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT / "src") not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT / "src"))

from pit_nonresponse.config import ANALYSIS_FILE, LOGS_DIR, RAW_FILE, resolve_n_jobs
from pit_nonresponse.utils.logging import package_versions, write_json


def main() -> None:
    info = {
        "python_version": sys.version,
        "platform": platform.platform(),
        "packages": package_versions(),
        "raw_file": str(RAW_FILE),
        "raw_file_exists": RAW_FILE.exists(),
        "analysis_file_exists": ANALYSIS_FILE.exists(),
        "n_jobs": resolve_n_jobs(),
    }
    write_json(LOGS_DIR / "environment_check.json", info)
    print("Wrote outputs/logs/environment_check.json")


if __name__ == "__main__":
    main()
