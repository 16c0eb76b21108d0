"""Configuration management for the merge service.

Configuration comes from three layers, later ones winning:

1. a YAML/JSON file (`calendars`, `outputPath`, `syncIntervalMinutes`, ...)
2. a `.env` file, which only fills variables not already set
3. ICALMERGER_* environment variables
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from icalmerger.calendar.models import IcsSource
from icalmerger.core.exceptions import ConfigError
from icalmerger.core.timezone_utils import DEFAULT_OUTPUT_TIMEZONE, validate_timezone

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/app/config.json"
DEFAULT_OUTPUT_PATH = "/app/output/merged.ics"
DEFAULT_CALENDAR_DIR = "./calendars"

CONFIG_PATH_ENV_VARS = ("ICALMERGER_CONFIG", "CONFIG_PATH")

# Environment variable -> config field, checked in order (first match wins)
ENV_OVERRIDES: dict[str, tuple[str, ...]] = {
    "output_timezone": ("ICALMERGER_OUTPUT_TIMEZONE", "OUTPUT_TIMEZONE"),
    "output_path": ("ICALMERGER_OUTPUT_PATH",),
    "sync_interval_minutes": ("ICALMERGER_SYNC_INTERVAL_MINUTES",),
    "server_bind": ("ICALMERGER_SERVER_BIND",),
    "server_port": ("ICALMERGER_SERVER_PORT",),
    "log_level": ("ICALMERGER_LOG_LEVEL",),
}


class MergerConfig(BaseModel):
    """Validated service configuration.

    Field aliases match the camelCase keys of the JSON config file; snake_case
    names are accepted too.
    """

    model_config = ConfigDict(populate_by_name=True)

    calendars: list[IcsSource] = Field(default_factory=list)
    output_path: str = Field(default=DEFAULT_OUTPUT_PATH, alias="outputPath")
    sync_interval_minutes: int = Field(default=15, ge=1, alias="syncIntervalMinutes")
    output_timezone: str = Field(default=DEFAULT_OUTPUT_TIMEZONE, alias="outputTimezone")
    server_bind: str = Field(default="0.0.0.0", alias="serverBind")  # nosec B104
    server_port: int = Field(default=8080, ge=1, le=65535, alias="serverPort")
    request_timeout: int = Field(default=30, ge=1, alias="requestTimeout")
    max_concurrent_fetches: int = Field(default=4, ge=1, alias="maxConcurrentFetches")
    summary_days_back: int = Field(default=30, ge=0, alias="summaryDaysBack")
    summary_days_forward: int = Field(default=30, ge=0, alias="summaryDaysForward")
    log_level: str = Field(default="INFO", alias="logLevel")

    @field_validator("output_timezone")
    @classmethod
    def _valid_timezone(cls, value: str) -> str:
        return validate_timezone(value)

    @field_validator("calendars")
    @classmethod
    def _unique_names(cls, value: list[IcsSource]) -> list[IcsSource]:
        names = [source.name for source in value]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"duplicate calendar names: {', '.join(duplicates)}")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.strip().upper() or "INFO"

    def with_local_sources(self, calendar_dir: str = DEFAULT_CALENDAR_DIR) -> MergerConfig:
        """Point every calendar at `<calendar_dir>/<name>.ics` on disk."""
        directory = calendar_dir.rstrip("/") or "."
        calendars = [
            source.model_copy(update={"url": f"file://{directory}/{source.name}.ics"})
            for source in self.calendars
        ]
        return self.model_copy(update={"calendars": calendars})


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a .env file into key/value pairs.

    Skips blank lines and comments and strips surrounding quotes from values.
    Returns an empty dict when the file is missing or unreadable.
    """
    if not path.exists():
        return {}

    result: dict[str, str] = {}
    try:
        content = path.read_text(encoding="utf-8")
    except OSError:
        logger.debug("Failed to read .env file (continuing): %s", path, exc_info=True)
        return result

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, val = line.split("=", 1)
        key = key.strip()
        if key:
            result[key] = val.strip().strip('"').strip("'")
    return result


class ConfigManager:
    """Loads MergerConfig from file, .env and environment."""

    def __init__(self, env_file_path: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            env_file_path: Optional path to .env file (defaults to .env in current directory)
        """
        self.env_file_path = env_file_path or Path.cwd() / ".env"

    def load_env_file(self) -> list[str]:
        """Load the .env file without overriding variables already set.

        Returns:
            Keys that were taken from the .env file
        """
        parsed = parse_env_file(self.env_file_path)
        set_keys = []
        for key, val in parsed.items():
            if key not in os.environ:
                os.environ[key] = val
                set_keys.append(key)

        if set_keys:
            logger.debug("Loaded .env defaults for keys: %s", ", ".join(set_keys))
        return set_keys

    @staticmethod
    def resolve_config_path(explicit: Optional[str] = None) -> Path:
        """Pick the config path: argument, ICALMERGER_CONFIG, CONFIG_PATH, default."""
        if explicit:
            return Path(explicit)
        for var in CONFIG_PATH_ENV_VARS:
            value = os.environ.get(var)
            if value:
                return Path(value)
        return Path(DEFAULT_CONFIG_PATH)

    @staticmethod
    def read_config_file(path: Path) -> dict[str, Any]:
        """Read a YAML or JSON config file.

        Returns:
            Mapping from the file, or an empty mapping if the file is missing

        Raises:
            ConfigError: If the file cannot be parsed or is not a mapping
        """
        if not path.exists():
            logger.warning("Config file %s not found; no calendars configured", path)
            return {}

        try:
            loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Unable to read config file {path}: {e}") from e

        if loaded is None:
            return {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"Config file {path} must contain a mapping at top level")
        return loaded

    @staticmethod
    def apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
        """Return a copy of `data` with environment overrides applied."""
        merged = dict(data)
        for field_name, env_vars in ENV_OVERRIDES.items():
            for var in env_vars:
                value = os.environ.get(var)
                if value:
                    model_field = MergerConfig.model_fields[field_name]
                    merged.pop(model_field.alias, None)
                    merged[field_name] = value
                    logger.debug("Config %s overridden by %s", field_name, var)
                    break
        return merged

    def load_full_config(self, config_path: Optional[str] = None) -> MergerConfig:
        """Load .env, the config file and environment overrides.

        Args:
            config_path: Explicit config file path

        Returns:
            Validated MergerConfig

        Raises:
            ConfigError: When the file is unreadable or values fail validation
        """
        self.load_env_file()
        path = self.resolve_config_path(config_path)
        data = self.apply_env_overrides(self.read_config_file(path))

        try:
            config = MergerConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration in {path}: {e}") from e

        logger.info(
            "Loaded configuration from %s: %d calendars, output %s",
            path,
            len(config.calendars),
            config.output_path,
        )
        return config
