"""Engine configuration loading and management."""

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ensemble_conductor.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "conductor.yaml"
LOCAL_CONFIG_DIR = ".conductor"


class NotificationSettings(BaseModel):
    """Delivery defaults for webhook notifications."""

    model_config = ConfigDict(extra="forbid")

    max_retries: int = Field(default=3, ge=0)
    timeout: float = Field(default=5.0, gt=0)
    initial_backoff: float = Field(default=1.0, ge=0)


class EngineConfig(BaseModel):
    """Process-wide engine settings.

    Durations are in seconds.
    """

    model_config = ConfigDict(extra="forbid")

    default_timeout: float = Field(default=30.0, gt=0)
    resumption_ttl: int = Field(default=86400, gt=0)
    status_close_grace: float = Field(default=1.0, ge=0)
    state_dir: str = LOCAL_CONFIG_DIR
    ensembles_dir: str = f"{LOCAL_CONFIG_DIR}/ensembles"
    agent_modules: list[str] = Field(default_factory=list)
    log_level: str = "WARNING"
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into a copy of ``base``, recursing into dicts."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigurationManager:
    """Loads engine configuration from global and project-local YAML files.

    Local settings in ``.conductor/conductor.yaml`` override the global
    ``$XDG_CONFIG_HOME/conductor/conductor.yaml``.
    """

    def __init__(
        self,
        global_config_dir: Path | str | None = None,
        project_dir: Path | str | None = None,
    ) -> None:
        if global_config_dir is None:
            xdg = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
            global_config_dir = Path(xdg) / "conductor"
        self.global_config_dir = Path(global_config_dir)
        self.project_dir = Path(project_dir) if project_dir else Path.cwd()

    @property
    def local_config_dir(self) -> Path:
        return self.project_dir / LOCAL_CONFIG_DIR

    def _read_yaml(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse config file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
        return data

    def load_engine_config(self) -> EngineConfig:
        """Load and validate the merged engine configuration.

        Raises:
            ConfigurationError: If a file cannot be parsed or has invalid keys
        """
        data = _deep_merge(
            self._read_yaml(self.global_config_dir / CONFIG_FILE_NAME),
            self._read_yaml(self.local_config_dir / CONFIG_FILE_NAME),
        )
        try:
            config = EngineConfig(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid engine configuration: {e}") from e

        logger.debug("Loaded engine configuration: %s", config.model_dump())
        return config
