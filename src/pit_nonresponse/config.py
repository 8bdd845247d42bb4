import os
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]

DATA_DIR = PROJECT_ROOT / "data"
RAW_DIR = DATA_DIR / "raw"
PROCESSED_DIR = DATA_DIR / "processed"

OUTPUTS_DIR = PROJECT_ROOT / "outputs"
FIGURES_DIR = OUTPUTS_DIR / "figures"
METRICS_DIR = OUTPUTS_DIR / "metrics"
TABLES_DIR = OUTPUTS_DIR / "tables"
MODELS_DIR = OUTPUTS_DIR / "models"
LOGS_DIR = OUTPUTS_DIR / "logs"
SPLITS_DIR = OUTPUTS_DIR / "splits"

RAW_FILE = RAW_DIR / "pit_survey_records.csv"
ANALYSIS_FILE = PROCESSED_DIR / "pit_analysis_table.parquet"

# Dataset and experiment identifiers (used in outputs/ metadata)
DATASET_VERSION = "pit_census_nonresponse_v1"
EXPERIMENT_NAMESPACE = "nonresponse_models_v1"

# Explicit level used for absent/unrecognized values of every categorical field.
MISSING_LEVEL = "Missing"
TOTAL_LABEL = "Total"

COUNTIES = [
    "Alameda",
    "Contra Costa",
    "Marin",
    "Napa",
    "San Mateo",
    "Santa Clara",
    "Solano",
    "Sonoma",
]
# Unrecognized or absent counties share the explicit missing level.
COUNTY_LEVELS = COUNTIES + [MISSING_LEVEL]

# Screening codes -> (label, eligibility status). Anything not listed is "unrecognized"/undetermined.
ELIGIBILITY_CODES = {
    1: ("eligible_consented", "eligible"),
    2: ("eligible_no_consent", "eligible"),
    3: ("ineligible", "ineligible"),
    4: ("could_not_determine", "undetermined"),
    5: ("declined", "undetermined"),
    6: ("language_barrier", "undetermined"),
}
UNRECOGNIZED_ELIGIBILITY_LABEL = "unrecognized"

COMPLETED_YES_VALUES = (1, "1", "yes", "y", "true", "t", "complete", "completed")
COMPLETED_NO_VALUES = (0, "0", "no", "n", "false", "f", "incomplete", "partial")

# Demographic dimensions: closed level lists (MISSING_LEVEL always last) and the
# reference level each dimension is dummy-coded against.
DEMOGRAPHIC_LEVELS = {
    "age": ["Under 25", "25-39", "40-54", "55+", MISSING_LEVEL],
    "disability": ["Yes", "No", MISSING_LEVEL],
    "intoxication": ["Yes", "No", MISSING_LEVEL],
    "gender": ["Man", "Woman", "Transgender/Non-binary", MISSING_LEVEL],
    "race": ["White", "Black", "Hispanic/Latino", "Asian", "Multiple/Other", MISSING_LEVEL],
}
DEMOGRAPHIC_DIMENSIONS = list(DEMOGRAPHIC_LEVELS)
PERCEIVED_COLS = [f"{d}_perceived" for d in DEMOGRAPHIC_DIMENSIONS]
ACTUAL_COLS = [f"{d}_actual" for d in DEMOGRAPHIC_DIMENSIONS]

SITE_LEVELS = ["Street", "Encampment", "Vehicle", "Transit", "Shelter", "Other", MISSING_LEVEL]

RAW_REQUIRED_COLUMNS = ["county", "eligibility_code", "completed", "site_category"] + PERCEIVED_COLS
RAW_OPTIONAL_COLUMNS = ["weight"] + ACTUAL_COLS

# Model predictors (analysis-column names) and their fixed reference levels.
PREDICTOR_LEVELS = {
    "county": COUNTY_LEVELS,
    "site_category": SITE_LEVELS,
    **{f"{d}_perceived": levels for d, levels in DEMOGRAPHIC_LEVELS.items()},
}
REFERENCE_LEVELS = {
    "county": "Alameda",
    "site_category": "Street",
    "age_perceived": "25-39",
    "disability_perceived": "No",
    "intoxication_perceived": "No",
    "gender_perceived": "Man",
    "race_perceived": "White",
}
PREDICTOR_COLS = list(PREDICTOR_LEVELS)

TARGET_COL = "non_response"
WEIGHT_COL = "weight"
CASE_WEIGHT_COL = "importance_weight"

# Frozen validation protocol
TEST_SIZE = 0.25
CV_FOLDS = 10
CV_REPEATS = 5
N_PARAM_SAMPLES = 25
RANDOM_SEED = 2026

MODEL_FAMILIES = ["logistic", "elastic_net", "random_forest", "gradient_boosting", "neural_network"]
STACKED_ENSEMBLE = "stacked_ensemble"
# Simplest first; ties in selection are broken toward the front of this list.
MODEL_COMPLEXITY_ORDER = MODEL_FAMILIES + [STACKED_ENSEMBLE]

# Geometric grid of inverse L1 penalties for the stacking meta-learner.
STACKING_PENALTY_GRID = [10.0 ** k for k in (-3, -2.5, -2, -1.5, -1, -0.5, 0, 0.5, 1, 1.5, 2)]
# Inner folds used to build first-stage features inside each outer training fold.
STACKING_INNER_FOLDS = 5

SELECTION_Z = 1.959963984540054

CALIBRATION_BIN_EDGES = [0.0, 0.1, 0.2, 0.3, 0.4, 1.0]
N_BOOT_DEFAULT = 500

N_JOBS_ENV_VAR = "PIT_NONRESPONSE_N_JOBS"
N_JOBS_DEFAULT = 2
LOG_LEVEL_ENV_VAR = "PIT_NONRESPONSE_LOG_LEVEL"


def resolve_n_jobs(cli_value=None) -> int:
    """Worker pool size: CLI value, else the environment variable, else a small default."""

    if cli_value is not None:
        return int(cli_value)
    raw = os.environ.get(N_JOBS_ENV_VAR, "").strip()
    if not raw:
        return N_JOBS_DEFAULT
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{N_JOBS_ENV_VAR} must be an integer; got {raw!r}") from exc
    if value == 0:
        raise ValueError(f"{N_JOBS_ENV_VAR} must be non-zero (use -1 for all cores).")
    return value
