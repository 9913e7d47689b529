"""Application settings with Pydantic Settings validation.

Secrets and per-host values (broker host, credentials) are loaded from the
environment or a .env file. Non-sensitive defaults may come from
config/main.yaml and other config/*.yaml files, which are merged and
validated against JSON schemas from config/schemas/ when present.
"""

import json
import tempfile
from pathlib import Path
from typing import Any, Final, cast

import yaml
from jsonschema import ValidationError as JSONSchemaValidationError
from jsonschema import validate
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from rpi_common.config.logging_config import DEFAULT_LOG_RETENTION_DAYS, get_logger
from rpi_common.domain.models import (
    DEFAULT_MQTT_KEEPALIVE_SECONDS,
    DEFAULT_MQTT_PORT,
    DEFAULT_MQTT_TIMEOUT_SECONDS,
    BrokerConfig,
)

DEFAULT_CONFIG_DIR: Final[Path] = Path("config")
DEFAULT_LOG_DIR: Final[str] = "logs"

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


def load_schema(schema_name: str, config_dir: Path = DEFAULT_CONFIG_DIR) -> dict[str, Any]:
    """Load JSON Schema from <config_dir>/schemas/.

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
    config_dir: Path = DEFAULT_CONFIG_DIR,
) -> None:
    """Validate config section against JSON Schema.

    Args:
        config: Configuration dictionary to validate
        schema_name: Name of schema to validate against
        file_path: Optional file path for error messages
        config_dir: Configuration directory holding schemas/

    Raises:
        ValueError: If validation fails
    """
    schema = load_schema(schema_name, config_dir)
    if not schema:
        # No schema available, skip validation
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


def load_all_configs(config_dir: Path = DEFAULT_CONFIG_DIR) -> dict[str, Any]:
    """Load and merge all YAML configs from the config directory.

    Loading order (later overrides earlier):
    1. main.yaml
    2. All other *.yaml files (sorted alphabetically)

    Each file is validated against its JSON Schema if available.

    Returns:
        Merged configuration dictionary
    """
    merged_config: dict[str, Any] = {}
    if not config_dir.is_dir():
        return merged_config

    main_path = config_dir / "main.yaml"
    yaml_files = sorted(f for f in config_dir.glob("*.yaml") if f.name != "main.yaml")
    if main_path.exists():
        yaml_files.insert(0, main_path)

    for yaml_file in yaml_files:
        schema_name = yaml_file.stem
        try:
            with open(yaml_file, encoding="utf-8") as f:
                file_config = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            logger.warning(
                "config_file_load_failed",
                path=str(yaml_file),
                error=str(e),
            )
            continue

        try:
            validate_config_section(file_config, schema_name, str(yaml_file), config_dir)
        except ValueError as e:
            logger.error(
                "config_validation_failed",
                path=str(yaml_file),
                schema=schema_name,
                error=str(e),
            )
            raise

        merged_config = deep_merge(merged_config, file_config)
        logger.debug("config_file_loaded", path=str(yaml_file), schema=schema_name)

    logger.debug("config_load_complete", file_count=len(yaml_files))
    return merged_config


class Settings(BaseSettings):
    """Application settings.

    Environment variables (and .env) win over YAML values, which win over
    the defaults declared here.
    """

    model_config = SettingsConfigDict(
        env_file=".env" if Path(".env").exists() else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === BROKER (from .env / environment) ===

    mqtt_host: str | None = Field(default=None, description="MQTT broker host")
    mqtt_username: str | None = Field(default=None, description="MQTT username")
    mqtt_password: SecretStr | None = Field(
        default=None, description="MQTT password (from .env, optional)"
    )

    # === NON-SENSITIVE CONFIG (from config/*.yaml or defaults) ===

    mqtt_port: int = Field(default=DEFAULT_MQTT_PORT, description="MQTT broker port")
    mqtt_keepalive_seconds: int = Field(
        default=DEFAULT_MQTT_KEEPALIVE_SECONDS, description="MQTT keepalive"
    )
    mqtt_timeout_seconds: float = Field(
        default=DEFAULT_MQTT_TIMEOUT_SECONDS,
        description="Timeout for broker round trips",
    )

    lock_dir: str = Field(
        default_factory=tempfile.gettempdir,
        description="Directory holding job lock files",
    )
    lock_blocking: bool = Field(
        default=False,
        description="Wait for a running instance instead of exiting immediately",
    )

    log_level: str = Field(default="INFO", description="Logging level")
    log_dir: str | None = Field(
        default=DEFAULT_LOG_DIR,
        description="Directory for per-job log files (empty disables file logs)",
    )
    log_retention_days: int = Field(
        default=DEFAULT_LOG_RETENTION_DAYS,
        description="Number of daily log files kept per job",
    )
    json_logs: bool = Field(default=False, description="Emit JSON logs on stdout")

    @field_validator("mqtt_host", "mqtt_username", "log_dir", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("log_retention_days")
    @classmethod
    def _validate_retention(cls, value: int) -> int:
        if value <= 0:
            msg = "log_retention_days must be positive"
            raise ValueError(msg)
        return value

    def __init__(self, config_dir: Path = DEFAULT_CONFIG_DIR, **data: Any):
        """Initialize settings with auto-loaded configs from all YAML files."""
        config = load_all_configs(config_dir)

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

        mqtt_config = config.get("mqtt") or {}
        _assign("mqtt_host", mqtt_config.get("host"))
        _assign("mqtt_port", mqtt_config.get("port"))
        _assign("mqtt_keepalive_seconds", mqtt_config.get("keepalive_seconds"))
        _assign("mqtt_timeout_seconds", mqtt_config.get("timeout_seconds"))

        locking_config = config.get("locking") or {}
        _assign("lock_dir", locking_config.get("directory"))
        _assign("lock_blocking", locking_config.get("blocking"))

        logging_config = config.get("logging") or {}
        _assign("log_level", logging_config.get("level"))
        _assign("log_dir", logging_config.get("directory"))
        _assign("log_retention_days", logging_config.get("retention_days"))
        _assign("json_logs", logging_config.get("json"))

    def broker_config(self) -> BrokerConfig:
        """Explicit broker settings for a communications facade."""
        return BrokerConfig(
            host=self.mqtt_host,
            port=self.mqtt_port,
            username=self.mqtt_username,
            password=self.mqtt_password,
            keepalive_seconds=self.mqtt_keepalive_seconds,
            timeout_seconds=self.mqtt_timeout_seconds,
        )

    def log_file_for(self, job_name: str) -> Path | None:
        """Per-job log file, or None when file logging is disabled."""
        if not self.log_dir:
            return None
        return Path(self.log_dir) / f"{job_name}.log"


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create global settings instance.

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
