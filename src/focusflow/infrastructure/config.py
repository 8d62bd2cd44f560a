"""Configuration management with hierarchical loading."""

import os
from datetime import tzinfo
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field

from focusflow.infrastructure.logger import get_logger

logger = get_logger(__name__)


class DatabaseConfig(BaseModel):
    """Task store configuration."""

    path: str | None = None  # None = <project_root>/.focusflow/focusflow.db
    busy_timeout_ms: int = Field(default=5000, ge=0)
    lock_timeout_seconds: float = Field(default=5.0, gt=0)


class ReminderConfig(BaseModel):
    """Reminder polling configuration."""

    poll_interval_seconds: float = Field(default=15.0, gt=0)
    batch_size: int = Field(default=20, ge=1, le=500)


class StatsConfig(BaseModel):
    """Statistics configuration."""

    timezone: str | None = None  # IANA name; None = system local time


class Config(BaseModel):
    """Main configuration model."""

    version: str = "0.1.0"
    log_level: str = "INFO"
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    reminders: ReminderConfig = Field(default_factory=ReminderConfig)
    stats: StatsConfig = Field(default_factory=StatsConfig)


class ConfigManager:
    """Manage configuration loading from multiple sources with hierarchy."""

    def __init__(self, project_root: Path | None = None) -> None:
        """Initialize config manager.

        Args:
            project_root: Root directory of the project (default: current directory)
        """
        self.project_root = project_root or Path.cwd()
        self._config: Config | None = None

    def load_config(self) -> Config:
        """Load configuration from all sources in hierarchy order.

        Configuration hierarchy (highest priority last):
        1. System defaults (embedded in Config model)
        2. Project defaults (.focusflow/config.yaml)
        3. User overrides (~/.focusflow/config.yaml)
        4. Local overrides (.focusflow/local.yaml)
        5. Environment variables (FOCUSFLOW_* prefix)

        Returns:
            Merged configuration
        """
        if self._config is not None:
            return self._config

        config_dict: dict[str, Any] = {}

        for path in (
            self.project_root / ".focusflow" / "config.yaml",
            Path.home() / ".focusflow" / "config.yaml",
            self.project_root / ".focusflow" / "local.yaml",
        ):
            if path.exists():
                config_dict = self._merge_dicts(config_dict, self._load_yaml(path))

        config_dict = self._apply_env_vars(config_dict)

        self._config = Config(**config_dict)
        return self._config

    def _load_yaml(self, path: Path) -> dict[str, Any]:
        """Load YAML configuration file."""
        with open(path) as f:
            return yaml.safe_load(f) or {}

    def _merge_dicts(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Recursively merge two dictionaries."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_dicts(result[key], value)
            else:
                result[key] = value
        return result

    def _apply_env_vars(self, config_dict: dict[str, Any]) -> dict[str, Any]:
        """Apply environment variables with FOCUSFLOW_ prefix."""
        env_mappings = {
            "FOCUSFLOW_LOG_LEVEL": ["log_level"],
            "FOCUSFLOW_DB_PATH": ["database", "path"],
            "FOCUSFLOW_BUSY_TIMEOUT_MS": ["database", "busy_timeout_ms"],
            "FOCUSFLOW_REMINDER_INTERVAL": ["reminders", "poll_interval_seconds"],
            "FOCUSFLOW_TIMEZONE": ["stats", "timezone"],
        }

        for env_var, path in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                current = config_dict
                for key in path[:-1]:
                    if key not in current:
                        current[key] = {}
                    current = current[key]
                # pydantic coerces numeric strings for typed fields
                current[path[-1]] = value

        return config_dict

    def get_database_path(self) -> Path:
        """Get path to the SQLite task store."""
        config = self.load_config()
        if config.database.path:
            return Path(config.database.path).expanduser()
        db_dir = self.project_root / ".focusflow"
        db_dir.mkdir(exist_ok=True)
        return db_dir / "focusflow.db"

    def get_log_dir(self) -> Path:
        """Get path to log directory."""
        log_dir = self.project_root / ".focusflow" / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir

    def get_timezone(self) -> tzinfo | None:
        """Resolve the configured time zone.

        Returns:
            ZoneInfo for the configured name, or None for system local time
            (also when the name is unknown, which is logged).
        """
        name = self.load_config().stats.timezone
        if not name:
            return None
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("unknown_timezone", timezone=name)
            return None
