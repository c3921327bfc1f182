"""Configuration loading and migration service.

Handles loading config.yaml, including settings exported by the desktop
viewer (camelCase keys), into the AppConfig schema.
"""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from history_monitor.models.config import AppConfig

logger = logging.getLogger(__name__)

# desktop viewer key -> AppConfig field
_LEGACY_KEYS = {
    "savePath": "save_path",
    "recordEnabled": "record_enabled",
    "claudeDir": "claude_dir",
    "historyFile": "history_file",
}


class ConfigService:
    """Service for loading and managing application configuration.

    Handles:
    - Loading config from config.yaml
    - Validating against Pydantic schema
    - Migrating desktop viewer settings
    - Saving updated config
    """

    def __init__(self, config_path: str | Path = "config.yaml"):
        """Initialize the config service.

        Args:
            config_path: Path to the config file.
        """
        self.config_path = Path(config_path)
        self._config: AppConfig | None = None

    def load(self) -> AppConfig:
        """Load and validate configuration.

        A missing, unreadable or invalid file yields the defaults.
        """
        if not self.config_path.exists():
            logger.info(f"Config file not found at {self.config_path}, using defaults")
            self._config = AppConfig()
            return self._config

        try:
            with open(self.config_path, encoding="utf-8") as f:
                raw_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Error reading config file: {e}, using defaults")
            self._config = AppConfig()
            return self._config

        if not isinstance(raw_config, dict):
            logger.warning("Config file is not a mapping, using defaults")
            self._config = AppConfig()
            return self._config

        migrated = self._migrate_config(raw_config)

        try:
            self._config = AppConfig(**migrated)
        except ValidationError as e:
            logger.warning(f"Config validation error: {e}, using defaults")
            self._config = AppConfig()

        return self._config

    def get_config(self) -> AppConfig:
        """Get the current configuration, loading it on first use."""
        if self._config is None:
            return self.load()
        return self._config

    def reload(self) -> AppConfig:
        """Force reload configuration from disk."""
        self._config = None
        return self.load()

    def save(self, config: AppConfig | None = None) -> bool:
        """Save configuration to disk.

        Args:
            config: Config to save. Uses current config if not provided.

        Returns:
            True if save succeeded.
        """
        config = config or self._config
        if config is None:
            return False

        try:
            config_dict = config.model_dump(mode="json")
            with open(self.config_path, "w", encoding="utf-8") as f:
                yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False)
        except OSError as e:
            logger.error(f"Error saving config: {e}")
            return False
        self._config = config
        return True

    def _migrate_config(self, raw: dict[str, Any]) -> dict[str, Any]:
        """Map desktop viewer settings onto the AppConfig schema.

        Handles:
        - camelCase top-level keys (savePath, recordEnabled, ...)
        - the autoCleanup block ({enabled, intervalMs, retainMs})

        Keys already in snake_case take precedence.
        """
        migrated: dict[str, Any] = {}

        for legacy, field in _LEGACY_KEYS.items():
            if legacy in raw and raw[legacy] not in (None, ""):
                migrated[field] = raw[legacy]

        auto_cleanup = raw.get("autoCleanup")
        if isinstance(auto_cleanup, dict):
            retention: dict[str, Any] = {}
            if "enabled" in auto_cleanup:
                retention["enabled"] = auto_cleanup["enabled"]
            if "intervalMs" in auto_cleanup:
                retention["interval_ms"] = auto_cleanup["intervalMs"]
            if "retainMs" in auto_cleanup:
                retention["retain_ms"] = auto_cleanup["retainMs"]
            migrated["retention"] = retention

        for key, value in raw.items():
            if key in _LEGACY_KEYS or key == "autoCleanup":
                continue
            if key in AppConfig.model_fields:
                migrated[key] = value
            else:
                logger.info(f"Ignoring unknown config field: {key}")

        return migrated


_config_service: ConfigService | None = None


def get_config_service(config_path: str | Path = "config.yaml") -> ConfigService:
    """Get the global config service instance.

    Args:
        config_path: Path to config file (only used on first call).
    """
    global _config_service
    if _config_service is None:
        _config_service = ConfigService(config_path)
    return _config_service


def reset_config_service() -> None:
    """Reset the global config service (for testing)."""
    global _config_service
    _config_service = None
