from __future__ import annotations

import json
import logging
import os
import platform
import sys
from datetime import datetime, timezone
from importlib import metadata
from pathlib import Path
from typing import Dict, Iterable, Optional

from pit_nonresponse.config import LOG_LEVEL_ENV_VAR

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

RUNTIME_PACKAGES = ["pandas", "numpy", "pyarrow", "openpyxl", "scikit-learn", "matplotlib", "joblib", "statsmodels"]


def configure_logging(level: Optional[str] = None) -> None:
    """Route library log records to stderr. Level: argument, env var, else INFO."""

    level_name = (level or os.environ.get(LOG_LEVEL_ENV_VAR) or "INFO").upper()
    logging.basicConfig(level=level_name, format=LOG_FORMAT, stream=sys.stderr, force=True)


def write_json(path: Path, payload: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, sort_keys=True, default=str), encoding="utf-8")


def package_versions(packages: Iterable[str] = RUNTIME_PACKAGES) -> Dict[str, Optional[str]]:
    out: Dict[str, Optional[str]] = {}
    for pkg in packages:
        try:
            out[pkg] = metadata.version(pkg)
        except metadata.PackageNotFoundError:
            out[pkg] = None
    return out


def runtime_metadata() -> dict:
    return {
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
        "python_version": sys.version,
        "platform": platform.platform(),
        "argv": sys.argv,
        "packages": package_versions(),
    }
