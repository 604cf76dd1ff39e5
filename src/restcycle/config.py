"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (RESTCYCLE__HTTP__TIMEOUT_SECONDS=5)
  2. restcycle.yaml         (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional; every field has a default.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)


def _find_config_file() -> str | None:
    """Return the path of the first restcycle.yaml found, or None."""
    candidates = [
        Path("restcycle.yaml"),
        Path(platformdirs.user_config_dir("restcycle")) / "restcycle.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class HttpSettings(BaseModel):
    timeout_seconds: float = 30.0
    max_connections: int = 10
    max_keepalive_connections: int = 5
    user_agent: str = "restcycle/1.0"


class PollSettings(BaseModel):
    # Seconds the server may hold a long-poll request open
    wait_seconds: int = 60
    # Seconds between two polls when the server answered early
    interval_seconds: float = 1.0
    index_header: str = "x-polling-index"
    prefer_header: str = "Prefer"


class DebounceDefaults(BaseModel):
    """Used when a controller is configured with ``debounce=True``."""

    wait_seconds: float = Field(default=0.0, ge=0.0)
    leading: bool = False
    trailing: bool = True
    max_wait_seconds: float | None = None


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: RESTCYCLE__POLL__WAIT_SECONDS=30
        env_prefix="RESTCYCLE__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    http: HttpSettings = HttpSettings()
    poll: PollSettings = PollSettings()
    debounce: DebounceDefaults = DebounceDefaults()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
