import os
from dataclasses import dataclass, fields

from dotenv import find_dotenv, load_dotenv

from budget_reconciler.logger import get_logger

logger = get_logger(__name__)


CONFIG_FILENAME = "config.yaml"

_CONFIG_FILE_PATH: str | None = None
_CONFIG_FILE_VALUES: dict[str, str] = {}

_CONFIG_KEYS = (
    "LOG_LEVEL",
    "LOG_DIR",
    "LOG_LEVEL_MATCHING",
    "LOG_LEVEL_DETECTION",
    "LOG_LEVEL_BULK",
    "LOG_LEVEL_STORAGE",
    "LOG_LEVEL_ACCESS",
    "DATA_DIR",
    "BULK_BATCH_SIZE",
    "FUZZY_MATCH_THRESHOLD",
    "MATCH_MIN_CONFIDENCE",
    "AMOUNT_TOLERANCE",
    "MATCH_WINDOW_DAYS",
    "DETECTION_MIN_CONFIDENCE",
    "AMOUNT_STABILITY_FLOOR",
    "SUGGESTION_HISTORY_MONTHS",
)


def _resolve_dotenv_path() -> str | None:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        candidate = os.path.join(config_dir, ".env")
        if os.path.exists(candidate):
            return candidate
    resolved = find_dotenv(usecwd=True)
    return resolved or None


def _resolve_config_path() -> str:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        return os.path.join(config_dir, CONFIG_FILENAME)
    cwd = os.getcwd()
    candidate = os.path.join(cwd, "config", CONFIG_FILENAME)
    if os.path.exists(candidate):
        return candidate
    return os.path.join(cwd, CONFIG_FILENAME)


def _clean_value(raw_value: str) -> str:
    value = raw_value.strip()
    if value.startswith(("'", '"')) and len(value) >= 2 and value[-1] == value[0]:
        return value[1:-1]
    if "#" in value:
        value = value.split("#", 1)[0].rstrip()
    return value


def read_config_file(path: str | None) -> dict[str, str]:
    """Read flat ``KEY: value`` lines; comments and blank values are skipped."""
    if not path or not os.path.exists(path):
        return {}

    values: dict[str, str] = {}
    with open(path, encoding="utf-8") as handle:
        for line in handle:
            stripped = line.strip()
            if not stripped or stripped.startswith("#") or ":" not in stripped:
                continue
            key, raw_value = stripped.split(":", 1)
            key = key.strip()
            value = _clean_value(raw_value)
            if key and value:
                values[key] = value
    return values


def load_environment() -> None:
    global _CONFIG_FILE_PATH
    global _CONFIG_FILE_VALUES

    dotenv_path = _resolve_dotenv_path()
    if dotenv_path:
        load_dotenv(dotenv_path=dotenv_path, override=False)

    _CONFIG_FILE_PATH = _resolve_config_path()
    _CONFIG_FILE_VALUES = read_config_file(_CONFIG_FILE_PATH)

    for key in _CONFIG_KEYS:
        if key not in os.environ and key in _CONFIG_FILE_VALUES:
            os.environ[key] = _CONFIG_FILE_VALUES[key]


def get_config_path() -> str | None:
    return _CONFIG_FILE_PATH


def ensure_dir(path: str | None) -> None:
    if path and path not in {".", "./"}:
        os.makedirs(path, exist_ok=True)


def get_env_int(name: str, default: int, min_value: int | None = None) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning(
            "[ENV] %s='%s' below minimum %s, using default %s.",
            name,
            raw,
            min_value,
            default,
        )
        return default
    return value


def get_env_float(
    name: str,
    default: float,
    min_value: float | None = None,
    max_value: float | None = None,
) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default
    if (min_value is not None and value < min_value) or (
        max_value is not None and value > max_value
    ):
        logger.warning(
            "[ENV] %s='%s' outside [%s, %s], using default %s.",
            name,
            raw,
            min_value,
            max_value,
            default,
        )
        return default
    return value


@dataclass(frozen=True)
class MatcherTuning:
    fuzzy_threshold: float = 0.8
    min_confidence: float = 0.7
    amount_tolerance: float = 0.05
    monthly_window_days: int = 7
    min_window_days: int = 2
    exact_score: float = 1.0
    regex_score: float = 0.9
    pattern_weight: float = 0.5
    amount_weight: float = 0.25
    date_weight: float = 0.25

    @classmethod
    def from_env(cls) -> "MatcherTuning":
        return cls(
            fuzzy_threshold=get_env_float("FUZZY_MATCH_THRESHOLD", cls.fuzzy_threshold, 0.0, 1.0),
            min_confidence=get_env_float("MATCH_MIN_CONFIDENCE", cls.min_confidence, 0.0, 1.0),
            amount_tolerance=get_env_float("AMOUNT_TOLERANCE", cls.amount_tolerance, 0.0, 1.0),
            monthly_window_days=get_env_int("MATCH_WINDOW_DAYS", cls.monthly_window_days, 1),
        )


@dataclass(frozen=True)
class DetectorTuning:
    min_occurrences: int = 2
    fuzzy_group_threshold: float = 0.8
    period_tolerance_ratio: float = 0.15
    period_tolerance_days: float = 5.0
    stability_floor: float = 0.7
    near_perfect_regularity: float = 0.95
    regularity_weight: float = 0.6
    stability_weight: float = 0.4
    min_confidence: float = 0.5
    stale_monthly_months: int = 4
    duplicate_name_similarity: float = 0.6
    duplicate_amount_tolerance: float = 1.0

    @classmethod
    def from_env(cls) -> "DetectorTuning":
        return cls(
            fuzzy_group_threshold=get_env_float(
                "FUZZY_MATCH_THRESHOLD", cls.fuzzy_group_threshold, 0.0, 1.0
            ),
            stability_floor=get_env_float("AMOUNT_STABILITY_FLOOR", cls.stability_floor, 0.0, 1.0),
            min_confidence=get_env_float("DETECTION_MIN_CONFIDENCE", cls.min_confidence, 0.0, 1.0),
        )


def log_environment() -> None:
    logger.info("[ENV] Effective configuration (config file: %s).", get_config_path() or "<none>")
    for key in _CONFIG_KEYS:
        raw_value = os.getenv(key)
        value = "<unset>" if raw_value is None else raw_value.replace("\n", "\\n")
        logger.info("[ENV] %s=%s", key, value)
    for tuning in (MatcherTuning.from_env(), DetectorTuning.from_env()):
        summary = ", ".join(f"{f.name}={getattr(tuning, f.name)}" for f in fields(tuning))
        logger.debug("[ENV] %s(%s)", type(tuning).__name__, summary)


DEFAULT_BULK_BATCH_SIZE = 50
DEFAULT_SUGGESTION_HISTORY_MONTHS = 6
INDEFINITE_YEAR = 9999


load_environment()

DATA_DIR = os.getenv("DATA_DIR", ".")
LOG_DIR = os.getenv("LOG_DIR")

BULK_BATCH_SIZE = get_env_int("BULK_BATCH_SIZE", DEFAULT_BULK_BATCH_SIZE, min_value=1)
SUGGESTION_HISTORY_MONTHS = get_env_int(
    "SUGGESTION_HISTORY_MONTHS",
    DEFAULT_SUGGESTION_HISTORY_MONTHS,
    min_value=1,
)
