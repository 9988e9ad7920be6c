import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal

from ledger_categorizer.logger import get_logger
from ledger_categorizer.models import ResultSource

ValueType = Literal["string", "int", "float"]

logger = get_logger(__name__)


@dataclass(frozen=True)
class ConfigField:
    key: str
    description: str
    default: Any
    value_type: ValueType = "string"
    sensitive: bool = False
    options: tuple[str, ...] | None = None
    min_value: float | int | None = None
    max_value: float | int | None = None

    @property
    def attr(self) -> str:
        return self.key.lower()


CONFIG_FIELDS: tuple[ConfigField, ...] = (
    ConfigField(
        key="DATA_DIR",
        description="Directory holding rules.json.",
        default=".",
    ),
    ConfigField(
        key="DEFAULT_JURISDICTION",
        description="Chart of accounts used when a request names none or an unknown one.",
        default="ON",
        options=("ON", "BC", "AB"),
    ),
    ConfigField(
        key="ENGINE_USER_ID",
        description="User identity mixed into result-cache keys.",
        default="default",
    ),
    ConfigField(
        key="OPENAI_API_KEY",
        description="API key for the remote classifier. Unset disables remote classification.",
        default=None,
        sensitive=True,
    ),
    ConfigField(
        key="OPENAI_MODEL",
        description="Model name for the OpenAI-compatible client.",
        default="gpt-4o-mini",
    ),
    ConfigField(
        key="OPENAI_BASE_URL",
        description="Override the OpenAI base URL for compatible providers.",
        default=None,
    ),
    ConfigField(
        key="REMOTE_TIMEOUT",
        description="Seconds to wait for a remote categorization before falling back.",
        default=30.0,
        value_type="float",
        min_value=0.1,
    ),
    ConfigField(
        key="REMOTE_MIN_CONFIDENCE",
        description="Remote answers below this confidence are discarded.",
        default=70,
        value_type="int",
        min_value=0,
        max_value=100,
    ),
    ConfigField(
        key="CACHE_TTL_SECONDS",
        description="Lifetime of cached results and pattern outcomes.",
        default=1800.0,
        value_type="float",
        min_value=0,
    ),
    ConfigField(
        key="RESULT_CACHE_SIZE",
        description="Maximum number of cached categorization results.",
        default=2000,
        value_type="int",
        min_value=1,
    ),
    ConfigField(
        key="PATTERN_CACHE_SIZE",
        description="Maximum number of cached local matching outcomes.",
        default=5000,
        value_type="int",
        min_value=1,
    ),
    ConfigField(
        key="FUZZY_THRESHOLD",
        description="Minimum similarity (0-100) for a fuzzy merchant match.",
        default=85.0,
        value_type="float",
        min_value=0,
        max_value=100,
    ),
    ConfigField(
        key="EXACT_RULE_MIN_CONFIDENCE",
        description="Confidence an exact pattern needs to stop the cascade.",
        default=85,
        value_type="int",
        min_value=0,
        max_value=100,
    ),
    ConfigField(
        key="KEYWORD_RULE_MIN_CONFIDENCE",
        description="Confidence a keyword rule needs to stop the cascade.",
        default=50,
        value_type="int",
        min_value=0,
        max_value=100,
    ),
    ConfigField(
        key="LEARNED_MIN_CONFIDENCE",
        description="Confidence a learned correction needs to stop the cascade.",
        default=70,
        value_type="int",
        min_value=0,
        max_value=100,
    ),
    ConfigField(
        key="FUZZY_MIN_CONFIDENCE",
        description="Confidence a fuzzy merchant match needs to stop the cascade.",
        default=70,
        value_type="int",
        min_value=0,
        max_value=100,
    ),
    ConfigField(
        key="CORRECTION_PENALTY",
        description="Confidence removed when the validator corrects a result.",
        default=20,
        value_type="int",
        min_value=0,
        max_value=100,
    ),
    ConfigField(
        key="MIN_CONFIDENCE",
        description="Floor for confidence after a correction.",
        default=10,
        value_type="int",
        min_value=0,
        max_value=100,
    ),
    ConfigField(
        key="LARGE_EXPENSE_THRESHOLD",
        description="Unmatched outflows above this amount fall back to the direct-cost account.",
        default=1000.0,
        value_type="float",
        min_value=0,
    ),
    ConfigField(
        key="BATCH_CONCURRENCY",
        description="Number of transactions categorized concurrently in a batch.",
        default=4,
        value_type="int",
        min_value=1,
        max_value=64,
    ),
)


@dataclass(frozen=True)
class EngineConfig:
    data_dir: str = "."
    default_jurisdiction: str = "ON"
    engine_user_id: str = "default"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str | None = None
    remote_timeout: float = 30.0
    remote_min_confidence: int = 70
    cache_ttl_seconds: float = 1800.0
    result_cache_size: int = 2000
    pattern_cache_size: int = 5000
    fuzzy_threshold: float = 85.0
    exact_rule_min_confidence: int = 85
    keyword_rule_min_confidence: int = 50
    learned_min_confidence: int = 70
    fuzzy_min_confidence: int = 70
    correction_penalty: int = 20
    min_confidence: int = 10
    large_expense_threshold: float = 1000.0
    batch_concurrency: int = 4

    @property
    def stage_floors(self) -> dict[ResultSource, int]:
        return {
            ResultSource.EXACT_RULE: self.exact_rule_min_confidence,
            ResultSource.KEYWORD_RULE: self.keyword_rule_min_confidence,
            ResultSource.LEARNED: self.learned_min_confidence,
            ResultSource.FUZZY: self.fuzzy_min_confidence,
        }


def _validate_value(field: ConfigField, raw_value: str) -> tuple[Any, str | None]:
    value = raw_value.strip()
    if not value:
        return field.default, None

    if "\n" in value or "\r" in value:
        return value, "Value must be a single line."

    if field.options:
        normalized = value.upper()
        if normalized not in field.options:
            return value, f"Must be one of: {', '.join(field.options)}."
        return normalized, None

    parsed: int | float
    if field.value_type == "int":
        try:
            parsed = int(value)
        except ValueError:
            return value, "Must be a whole number."
    elif field.value_type == "float":
        try:
            parsed = float(value)
        except ValueError:
            return value, "Must be a number."
    else:
        return value, None

    if field.min_value is not None and parsed < field.min_value:
        return value, f"Must be at least {field.min_value}."
    if field.max_value is not None and parsed > field.max_value:
        return value, f"Must be at most {field.max_value}."
    return parsed, None


def load_engine_config(environ: Mapping[str, str] | None = None) -> EngineConfig:
    """Build an :class:`EngineConfig` from the environment.

    Invalid values are logged and replaced by the field default rather than
    aborting startup.
    """
    source = os.environ if environ is None else environ
    values: dict[str, Any] = {}
    for field in CONFIG_FIELDS:
        raw_value = source.get(field.key)
        if raw_value is None:
            values[field.attr] = field.default
            continue
        parsed, error = _validate_value(field, raw_value)
        if error:
            shown = "****" if field.sensitive else raw_value
            logger.warning(
                "[CONFIG] Invalid %s='%s' (%s) Using default %s.",
                field.key,
                shown,
                error,
                field.default,
            )
            parsed = field.default
        values[field.attr] = parsed
    return EngineConfig(**values)
