import os

from dotenv import find_dotenv, load_dotenv

from ledger_categorizer.logger import get_logger

logger = get_logger(__name__)


CONFIG_FILENAME = "config.yaml"

_CONFIG_FILE_PATH: str | None = None
_CONFIG_FILE_VALUES: dict[str, str] = {}
_EXTERNAL_ENV_KEYS: set[str] = set()

CONFIG_KEYS = (
    "LOG_LEVEL",
    "LOG_DIR",
    "DATA_DIR",
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "OPENAI_BASE_URL",
    "DEFAULT_JURISDICTION",
    "ENGINE_USER_ID",
    "CACHE_TTL_SECONDS",
    "RESULT_CACHE_SIZE",
    "PATTERN_CACHE_SIZE",
    "FUZZY_THRESHOLD",
    "EXACT_RULE_MIN_CONFIDENCE",
    "KEYWORD_RULE_MIN_CONFIDENCE",
    "LEARNED_MIN_CONFIDENCE",
    "FUZZY_MIN_CONFIDENCE",
    "REMOTE_MIN_CONFIDENCE",
    "REMOTE_TIMEOUT",
    "CORRECTION_PENALTY",
    "MIN_CONFIDENCE",
    "LARGE_EXPENSE_THRESHOLD",
    "BATCH_CONCURRENCY",
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


def _strip_inline_comment(raw_value: str) -> str:
    quote: str | None = None
    escaped = False
    for index, char in enumerate(raw_value):
        if escaped:
            escaped = False
        elif char == "\\":
            escaped = True
        elif char in {'"', "'"}:
            if quote is None:
                quote = char
            elif quote == char:
                quote = None
        elif char == "#" and quote is None:
            return raw_value[:index].rstrip()
    return raw_value


def _unquote_value(raw_value: str) -> str:
    if len(raw_value) >= 2 and raw_value[0] == raw_value[-1] and raw_value[0] in {'"', "'"}:
        quote = raw_value[0]
        return raw_value[1:-1].replace(f"\\{quote}", quote).replace("\\\\", "\\")
    return raw_value


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
            value = _unquote_value(_strip_inline_comment(raw_value).strip())
            if key and value:
                values[key] = value
    return values


def load_environment() -> None:
    global _CONFIG_FILE_PATH
    global _CONFIG_FILE_VALUES
    global _EXTERNAL_ENV_KEYS

    dotenv_path = _resolve_dotenv_path()
    if dotenv_path:
        load_dotenv(dotenv_path=dotenv_path, override=False)

    _EXTERNAL_ENV_KEYS = set(os.environ.keys())

    _CONFIG_FILE_PATH = _resolve_config_path()
    _CONFIG_FILE_VALUES = read_config_file(_CONFIG_FILE_PATH)

    # The config file never overrides the real environment.
    for key in CONFIG_KEYS:
        if key not in os.environ and key in _CONFIG_FILE_VALUES:
            os.environ[key] = _CONFIG_FILE_VALUES[key]


def get_config_path() -> str | None:
    return _CONFIG_FILE_PATH


def is_env_override(name: str) -> bool:
    return name in _EXTERNAL_ENV_KEYS


def ensure_dirs(*paths: str | None) -> None:
    for path in paths:
        if path and path not in {".", "./"}:
            os.makedirs(path, exist_ok=True)


def get_env_int(
    name: str,
    default: int,
    min_value: int | None = None,
    max_value: int | None = None,
) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning("[ENV] %s='%s' below minimum %s, using default %s.", name, raw, min_value, default)
        return default
    if max_value is not None and value > max_value:
        logger.warning("[ENV] %s='%s' above maximum %s, using default %s.", name, raw, max_value, default)
        return default
    return value


_SENSITIVE_MARKERS = ("KEY", "TOKEN", "SECRET", "PASSWORD", "AUTH", "BEARER", "PRIVATE")


def _mask_env_value(name: str, value: str) -> str:
    sanitized = value.replace("\r", "\\r").replace("\n", "\\n")
    sensitive = any(marker in name.upper() for marker in _SENSITIVE_MARKERS) or sanitized.startswith(("sk-", "rk-"))
    if not sensitive:
        return sanitized
    if len(sanitized) <= 4:
        return "****"
    return f"{sanitized[:2]}...{sanitized[-2:]}"


def log_environment() -> None:
    logger.info("[ENV] Logging configured environment variables (masked where needed).")
    logger.info("[ENV] Config file: %s", get_config_path() or "<none>")
    for key in CONFIG_KEYS:
        raw_value = os.getenv(key)
        value = "<unset>" if raw_value is None else _mask_env_value(key, raw_value)
        origin = "" if raw_value is None or is_env_override(key) else " (config file)"
        logger.info("[ENV] %s=%s%s", key, value, origin)


load_environment()

DATA_DIR = os.getenv("DATA_DIR", ".")
LOG_DIR = os.getenv("LOG_DIR")
CONFIG_DIR = os.getenv("CONFIG_DIR")

ensure_dirs(DATA_DIR, LOG_DIR, CONFIG_DIR)
