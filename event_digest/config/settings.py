"""Application settings with Pydantic Settings validation.

Secrets (tokens, API keys) are loaded from the environment or a .env file.
Non-sensitive configuration is loaded from config/*.yaml files, validated
against JSON schemas, and applied as defaults that never override values
coming from the environment or the constructor.
"""

import json
from pathlib import Path
from typing import Annotated, Any, Final, Literal, cast

import yaml
from jsonschema import ValidationError as JSONSchemaValidationError
from jsonschema import validate
from pydantic import Field, SecretStr, ValidationInfo, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from event_digest.config.logging_config import get_logger
from event_digest.domain.constants import (
    DEFAULT_GUIDE_META,
    DEFAULT_MAX_ROUNDS,
    DEFAULT_RETENTION_DAYS,
    DEFAULT_ROUND_DELAY_SECONDS,
    FALLBACK_CHUNK_LEN,
    TELEGRAM_SAFE_CHUNK_LEN,
)
from event_digest.domain.exceptions import ConfigurationError
from event_digest.domain.models import EventFilters

SOURCE_PAGE_URL_DEFAULT: Final[str] = "https://www.sescsp.org.br/editorial/emcartaz/"
LLM_MODEL_DEFAULT: Final[str] = "gpt-4o-mini"
LLM_TIMEOUT_SECONDS_DEFAULT: Final[int] = 180
HTTP_TIMEOUT_SECONDS_DEFAULT: Final[float] = 60.0
PROMPT_FILE_DEFAULT: Final[str] = "config/prompts/events.yaml"
CONFIG_DIR: Final[Path] = Path("config")

logger = cast(Any, get_logger(__name__))


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries.

    Args:
        base: Base dictionary
        override: Dictionary to merge into base (takes precedence)

    Returns:
        Merged dictionary
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_schema(schema_name: str, config_dir: Path = CONFIG_DIR) -> dict[str, Any]:
    """Load JSON Schema from config/schemas/.

    Args:
        schema_name: Schema name without extension (e.g., "main")
        config_dir: Configuration directory

    Returns:
        JSON Schema dictionary or empty dict if not found
    """
    schema_path = config_dir / "schemas" / f"{schema_name}.schema.json"
    if not schema_path.exists():
        return {}

    try:
        with open(schema_path, encoding="utf-8") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(
            "config_schema_load_failed",
            schema=schema_name,
            error=str(e),
        )
        return {}


def validate_config_section(
    config: dict[str, Any],
    schema_name: str,
    file_path: str = "",
    config_dir: Path = CONFIG_DIR,
) -> None:
    """Validate config section against JSON Schema.

    Args:
        config: Configuration dictionary to validate
        schema_name: Name of schema to validate against
        file_path: Optional file path for error messages
        config_dir: Configuration directory

    Raises:
        ValueError: If validation fails
    """
    schema = load_schema(schema_name, config_dir)
    if not schema:
        return

    try:
        validate(instance=config, schema=schema)
        logger.debug("config_validation_succeeded", schema=schema_name)
    except JSONSchemaValidationError as e:
        error_msg = f"Config validation failed for {schema_name}"
        if file_path:
            error_msg += f" (file: {file_path})"
        error_msg += f": {e.message}"
        raise ValueError(error_msg) from e


def load_all_configs(config_dir: Path = CONFIG_DIR) -> dict[str, Any]:
    """Load and merge all YAML configs from the config directory.

    Loading order (later overrides earlier):
    1. config/main.yaml
    2. All other config/*.yaml files (sorted alphabetically)

    Each file is validated against the schema named after its stem, if any.

    Returns:
        Merged configuration dictionary

    Raises:
        ValueError: If a file fails schema validation
    """
    merged_config: dict[str, Any] = {}
    if not config_dir.is_dir():
        return merged_config

    main_path = config_dir / "main.yaml"
    others = sorted(f for f in config_dir.glob("*.yaml") if f.name != "main.yaml")
    paths = ([main_path] if main_path.exists() else []) + others

    for path in paths:
        try:
            with open(path, encoding="utf-8") as f:
                file_config = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            logger.warning("config_file_load_failed", path=str(path), error=str(e))
            continue

        if not isinstance(file_config, dict):
            logger.warning("config_file_not_mapping", path=str(path))
            continue

        try:
            validate_config_section(file_config, path.stem, str(path), config_dir)
        except ValueError as e:
            logger.error(
                "config_validation_failed",
                path=str(path),
                schema=path.stem,
                error=str(e),
            )
            raise

        merged_config = deep_merge(merged_config, file_config)
        logger.debug("config_file_loaded", path=str(path), schema=path.stem)

    logger.debug("config_load_complete", file_count=len(paths))
    return merged_config


def _split_csv(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.startswith("["):
            return json.loads(stripped)
        return [item.strip() for item in stripped.split(",") if item.strip()]
    return value


class Settings(BaseSettings):
    """Application settings.

    Secrets are loaded from .env file.
    Non-sensitive config is loaded from config/main.yaml with fallback to defaults.
    """

    model_config = SettingsConfigDict(
        env_file=".env" if Path(".env").exists() else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === SECRETS (from .env) ===

    openai_api_key: SecretStr = Field(..., description="OpenAI API key (from .env)")

    telegram_bot_token: SecretStr | None = Field(
        default=None, description="Telegram Bot API token (from .env)"
    )
    telegram_chat_id: str | None = Field(
        default=None, description="Telegram destination chat id (from .env)"
    )
    slack_bot_token: SecretStr | None = Field(
        default=None, description="Slack Bot User OAuth Token (from .env)"
    )

    # === NON-SENSITIVE CONFIG (from config/main.yaml or defaults) ===

    # Source document
    source_page_url: str = Field(
        default=SOURCE_PAGE_URL_DEFAULT,
        description="Page linking the monthly guide PDF",
    )
    http_timeout_seconds: float = Field(
        default=HTTP_TIMEOUT_SECONDS_DEFAULT,
        gt=0,
        description="Timeout for page and PDF downloads",
    )

    # LLM
    llm_model: str = Field(default=LLM_MODEL_DEFAULT, description="OpenAI model id")
    llm_timeout_seconds: int = Field(
        default=LLM_TIMEOUT_SECONDS_DEFAULT, gt=0, description="LLM request timeout"
    )
    llm_prompt_file: str = Field(
        default=PROMPT_FILE_DEFAULT, description="Versioned extraction prompt"
    )

    # Extraction pagination
    max_rounds: int = Field(
        default=DEFAULT_MAX_ROUNDS, ge=1, description="Hard cap on extraction rounds"
    )
    round_delay_seconds: float = Field(
        default=DEFAULT_ROUND_DELAY_SECONDS,
        ge=0,
        description="Pause between extraction rounds",
    )
    selected_units: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Unit allow-list sent to the model (comma-separated in env)",
    )

    # Advanced filters
    filter_price_min: int | None = Field(default=None, ge=0)
    filter_price_max: int | None = Field(default=None, ge=0)
    filter_categories: Annotated[list[str], NoDecode] = Field(default_factory=list)
    filter_min_age: int | None = Field(default=None, ge=0)
    filter_locations: Annotated[list[str], NoDecode] = Field(default_factory=list)

    # Delivery
    delivery_channel: Literal["telegram", "slack"] = Field(
        default="telegram", description="Messaging sink used for the digest"
    )
    slack_channel_id: str | None = Field(
        default=None, description="Slack channel receiving the digest"
    )
    chunk_max_length: int = Field(
        default=TELEGRAM_SAFE_CHUNK_LEN, gt=0, description="Pre-split chunk size"
    )
    fallback_chunk_length: int = Field(
        default=FALLBACK_CHUNK_LEN, gt=0, description="Re-split size after oversize"
    )

    # Persistence
    db_path: str = Field(
        default="data/event_digest.db", description="SQLite database path"
    )
    persist_events: bool = Field(
        default=True, description="Store qualifying events and execution history"
    )
    event_retention_days: int = Field(
        default=DEFAULT_RETENTION_DAYS,
        ge=1,
        description="Delete events not seen for this many days",
    )

    # Processing
    tz_default: str = Field(
        default="America/Sao_Paulo", description="Timezone defining 'today'"
    )
    guide_meta: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_GUIDE_META),
        description="Default guide metadata before the model reports its own",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    json_logs: bool = Field(default=False, description="Render logs as JSON")

    @field_validator("openai_api_key", mode="before")
    @classmethod
    def _ensure_secret(
        cls, value: SecretStr | str | None, info: ValidationInfo
    ) -> SecretStr:
        if value is None:
            raise ValueError(f"{info.field_name} must be provided")

        if isinstance(value, SecretStr):
            secret_value = value.get_secret_value()
        else:
            secret_value = str(value)

        if not secret_value.strip():
            raise ValueError(f"{info.field_name} must not be empty")

        return value if isinstance(value, SecretStr) else SecretStr(secret_value)

    @field_validator(
        "selected_units", "filter_categories", "filter_locations", mode="before"
    )
    @classmethod
    def _parse_list(cls, value: Any) -> Any:
        return _split_csv(value)

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()

    def __init__(self, **data: Any):
        """Initialize settings with auto-loaded configs from all YAML files."""
        config = load_all_configs()

        super().__init__(**data)
        self._apply_yaml_defaults(config)

    def _apply_yaml_defaults(self, config: dict[str, Any]) -> None:
        """Apply YAML-sourced defaults without overriding env-provided values."""

        fields_from_env = set(self.model_fields_set)

        def _assign(field_name: str, value: Any) -> None:
            if value is None:
                return
            if field_name in fields_from_env:
                return

            object.__setattr__(self, field_name, value)
            self.model_fields_set.add(field_name)

        source_config = config.get("source") or {}
        _assign("source_page_url", source_config.get("page_url"))
        _assign("http_timeout_seconds", source_config.get("timeout_seconds"))

        llm_config = config.get("llm") or {}
        _assign("llm_model", llm_config.get("model"))
        _assign("llm_timeout_seconds", llm_config.get("timeout_seconds"))
        _assign("llm_prompt_file", llm_config.get("prompt_file"))

        extraction_config = config.get("extraction") or {}
        _assign("max_rounds", extraction_config.get("max_rounds"))
        _assign("round_delay_seconds", extraction_config.get("round_delay_seconds"))
        _assign("selected_units", extraction_config.get("selected_units"))

        filters_config = config.get("filters") or {}
        _assign("filter_price_min", filters_config.get("price_min"))
        _assign("filter_price_max", filters_config.get("price_max"))
        _assign("filter_categories", filters_config.get("categories"))
        _assign("filter_min_age", filters_config.get("min_age"))
        _assign("filter_locations", filters_config.get("locations"))

        delivery_config = config.get("delivery") or {}
        _assign("delivery_channel", delivery_config.get("channel"))
        _assign("slack_channel_id", delivery_config.get("slack_channel_id"))
        _assign("chunk_max_length", delivery_config.get("chunk_max_length"))
        _assign("fallback_chunk_length", delivery_config.get("fallback_chunk_length"))

        database_config = config.get("database") or {}
        _assign("db_path", database_config.get("path"))
        _assign("persist_events", database_config.get("persist_events"))
        _assign("event_retention_days", database_config.get("retention_days"))

        processing_config = config.get("processing") or {}
        _assign("tz_default", processing_config.get("tz_default"))

        guide_config = config.get("guide")
        if isinstance(guide_config, dict):
            _assign("guide_meta", {**DEFAULT_GUIDE_META, **guide_config})

        logging_config = config.get("logging") or {}
        level = logging_config.get("level")
        _assign("log_level", level.upper() if isinstance(level, str) else None)
        _assign("json_logs", logging_config.get("json"))

    @property
    def event_filters(self) -> EventFilters:
        """Advanced pre-filters built from the flat filter fields."""
        return EventFilters(
            price_min=self.filter_price_min,
            price_max=self.filter_price_max,
            categories=list(self.filter_categories),
            min_age=self.filter_min_age,
            locations=list(self.filter_locations),
        )

    @property
    def delivery_target(self) -> str | None:
        """Chat/channel id for the configured delivery channel."""
        if self.delivery_channel == "slack":
            return self.slack_channel_id
        return self.telegram_chat_id

    def require_delivery_credentials(self) -> None:
        """Fail fast when the configured sink cannot be reached.

        Raises:
            ConfigurationError: If a token or destination is missing
        """
        missing: list[str] = []
        if self.delivery_channel == "slack":
            if not _secret_present(self.slack_bot_token):
                missing.append("SLACK_BOT_TOKEN")
            if not self.slack_channel_id:
                missing.append("SLACK_CHANNEL_ID")
        else:
            if not _secret_present(self.telegram_bot_token):
                missing.append("TELEGRAM_BOT_TOKEN")
            if not self.telegram_chat_id:
                missing.append("TELEGRAM_CHAT_ID")

        if missing:
            raise ConfigurationError(
                f"Missing configuration for {self.delivery_channel} delivery: "
                + ", ".join(missing)
            )


def _secret_present(secret: SecretStr | None) -> bool:
    return secret is not None and bool(secret.get_secret_value().strip())


def load_settings(**overrides: Any) -> Settings:
    """Build settings, converting validation problems into ConfigurationError.

    Raises:
        ConfigurationError: Required values are missing or invalid
    """
    try:
        return Settings(**overrides)
    except PydanticValidationError as e:
        fields = sorted({".".join(str(part) for part in err["loc"]) for err in e.errors()})
        raise ConfigurationError(
            f"Invalid or missing configuration: {', '.join(fields)}"
        ) from e
    except ValueError as e:
        raise ConfigurationError(str(e)) from e


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create global settings instance.

    Returns:
        Settings instance

    Raises:
        ConfigurationError: Required values are missing or invalid
    """
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
