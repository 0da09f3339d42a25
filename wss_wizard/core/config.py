"""
Configuration system for WSS Wizard.

Provides YAML-based configuration with:
- Dot-notation access
- Environment variable overrides
- Hot reload support
- Pydantic validation
"""

from __future__ import annotations

import logging
import os
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, TypeVar

import yaml
from pydantic import BaseModel, Field, field_validator
from watchdog.events import FileModifiedEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

T = TypeVar("T")

ENV_PREFIX = "WSS_WIZARD_"


# ============================================================================
# Typed Configuration Models
# ============================================================================


class DeviceSettings(BaseModel):
    """Connection to the device being set up."""

    url: str = "http://192.168.4.1"
    timeout_seconds: float = Field(default=5.0, gt=0.0, le=60.0)
    poll_interval_seconds: float = Field(default=2.0, ge=0.5, le=60.0)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Device URL must start with http:// or https://, got '{v}'")
        return v.rstrip("/")


class WizardSettings(BaseModel):
    """Client-side wizard state and provisioning behavior."""

    state_file: str = "~/.config/wss-wizard/state.json"
    nfc_provision_mode: str = "add_admin"

    @property
    def state_path(self) -> Path:
        return Path(self.state_file).expanduser()


class ServerSettings(BaseModel):
    """Local API server exposing the wizard."""

    host: str = "127.0.0.1"
    port: int = Field(default=9540, ge=1, le=65535)


class SystemSettings(BaseModel):
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level '{v}'")
        return level


class WizardAppConfig(BaseModel):
    """Complete WSS Wizard configuration."""

    system: SystemSettings = Field(default_factory=SystemSettings)
    device: DeviceSettings = Field(default_factory=DeviceSettings)
    wizard: WizardSettings = Field(default_factory=WizardSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)


# ============================================================================
# Configuration Change Tracking
# ============================================================================


@dataclass
class ConfigChange:
    """Represents a configuration change."""

    path: str  # Dot-notation path
    old_value: Any
    new_value: Any
    timestamp: float


# ============================================================================
# Configuration Loader
# ============================================================================


class ConfigLoader:
    """Loads configuration from YAML files."""

    # ${VAR} or ${VAR:-default}
    ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")

    def load_yaml(self, path: Path) -> dict[str, Any]:
        """Load single YAML file with env var substitution."""
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        content = self._substitute_env_vars(path.read_text())
        data = yaml.safe_load(content) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file must contain a mapping: {path}")
        return data

    def merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge override into base."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self.merge(result[key], value)
            else:
                result[key] = value

        return result

    def _substitute_env_vars(self, content: str) -> str:
        def replacer(match: re.Match) -> str:
            value = os.environ.get(match.group(1))
            if value is not None:
                return value
            if match.group(2) is not None:
                return match.group(2)
            return match.group(0)

        return self.ENV_PATTERN.sub(replacer, content)

    def apply_env_overrides(self, config: dict[str, Any]) -> dict[str, Any]:
        """
        Apply environment variable overrides.

        WSS_WIZARD_DEVICE_URL=http://10.0.0.2 -> device.url
        WSS_WIZARD_DEVICE_POLL_INTERVAL_SECONDS=5 -> device.poll_interval_seconds
        """
        for key, value in os.environ.items():
            if not key.startswith(ENV_PREFIX):
                continue

            # First segment is the section, the rest is the field name
            section, _, name = key[len(ENV_PREFIX) :].lower().partition("_")
            if not section or not name:
                continue
            self.set_nested(config, [section, name], self._parse_value(value))

        return config

    def set_nested(self, obj: dict[str, Any], path: list[str], value: Any) -> None:
        for key in path[:-1]:
            if not isinstance(obj.get(key), dict):
                obj[key] = {}
            obj = obj[key]
        obj[path[-1]] = value

    def _parse_value(self, value: str) -> Any:
        """Parse string value to appropriate type."""
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        return value


# ============================================================================
# Configuration Watcher
# ============================================================================


class ConfigWatcher:
    """Watches the config file for changes."""

    def __init__(self, paths: list[Path]):
        self._paths = paths
        self._observer = Observer()
        self._callbacks: list[Callable[[Path], None]] = []
        self._started = False

    def start(self) -> None:
        if self._started:
            return

        handler = _ConfigFileHandler(self._on_change)
        for path in self._paths:
            watch_path = path.parent if path.is_file() else path
            self._observer.schedule(handler, str(watch_path), recursive=False)

        self._observer.start()
        self._started = True

    def stop(self) -> None:
        if not self._started:
            return

        self._observer.stop()
        self._observer.join()
        self._started = False

    def add_callback(self, callback: Callable[[Path], None]) -> None:
        self._callbacks.append(callback)

    def _on_change(self, path: Path) -> None:
        for callback in self._callbacks:
            callback(path)


class _ConfigFileHandler(FileSystemEventHandler):
    def __init__(self, callback: Callable[[Path], None]):
        self._callback = callback

    def on_modified(self, event: FileModifiedEvent) -> None:
        if event.is_directory:
            return
        src = str(event.src_path)
        if src.endswith((".yaml", ".yml")):
            self._callback(Path(src))


# ============================================================================
# Main Configuration Class
# ============================================================================


class Config:
    """
    Configuration container with hot reload support.

    Usage:
        config = Config.load(Path("~/.config/wss-wizard/config.yaml"))
        url = config.get("device.url", "http://192.168.4.1")

        # Or typed:
        interval = config.device.poll_interval_seconds
    """

    def __init__(self, data: dict[str, Any], source_path: Path | None = None):
        self._data = data
        self._source_path = source_path
        self._loader = ConfigLoader()
        self._watcher: ConfigWatcher | None = None
        self._change_callbacks: list[Callable[[list[ConfigChange]], None]] = []
        self._overrides: dict[str, Any] = {}

        self._typed = WizardAppConfig.model_validate(data)

    @classmethod
    def load(cls, path: Path) -> Config:
        """Load configuration from YAML file."""
        loader = ConfigLoader()
        data = loader.load_yaml(path)
        data = loader.apply_env_overrides(data)
        logger.info(f"Configuration loaded from {path}")
        return cls(data, source_path=path)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        return cls(data)

    @classmethod
    def default(cls) -> Config:
        """Defaults plus any environment overrides."""
        return cls(ConfigLoader().apply_env_overrides({}))

    def get(self, path: str, default: T = None) -> T:
        """
        Get config value by dot-notation path.

        Example: config.get("device.url", "http://192.168.4.1")
        """
        value: Any = self._data

        for key in path.split("."):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default  # type: ignore

        return value  # type: ignore

    def set(self, path: str, value: Any) -> None:
        """
        Set config value (in-memory only, call save() to persist).

        Values set here win over the file on reload.
        """
        keys = path.split(".")
        obj = self._data

        for key in keys[:-1]:
            if not isinstance(obj.get(key), dict):
                obj[key] = {}
            obj = obj[key]

        obj[keys[-1]] = value
        self._typed = WizardAppConfig.model_validate(self._data)
        self._overrides[path] = value

    def save(self, path: Path | None = None) -> None:
        """Save configuration to YAML file."""
        save_path = path or self._source_path
        if not save_path:
            raise ValueError("No path specified and no source path available")

        save_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = save_path.with_suffix(".yaml.tmp")
        temp_path.write_text(yaml.dump(self._data, default_flow_style=False, sort_keys=False))
        temp_path.replace(save_path)

    def reload(self) -> list[ConfigChange]:
        """Reload from disk, return list of changes."""
        if not self._source_path:
            return []

        old_data = self._data
        data = self._loader.apply_env_overrides(self._loader.load_yaml(self._source_path))
        for path, value in self._overrides.items():
            self._loader.set_nested(data, path.split("."), value)
        self._typed = WizardAppConfig.model_validate(data)
        self._data = data

        changes = self._diff(old_data, self._data)
        if changes:
            logger.info(f"Configuration reloaded ({len(changes)} changes)")
        return changes

    def enable_hot_reload(self, callback: Callable[[list[ConfigChange]], None] | None = None) -> None:
        """Enable file watching for automatic reload."""
        if not self._source_path:
            raise ValueError("Cannot enable hot reload without a source path")

        if callback:
            self._change_callbacks.append(callback)

        if self._watcher:
            return

        self._watcher = ConfigWatcher([self._source_path])
        self._watcher.add_callback(self._on_file_change)
        self._watcher.start()

    def disable_hot_reload(self) -> None:
        if self._watcher:
            self._watcher.stop()
            self._watcher = None

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors: list[str] = []

        try:
            WizardAppConfig.model_validate(self._data)
        except ValueError as e:
            errors.append(str(e))

        return errors

    @property
    def source_path(self) -> Path | None:
        return self._source_path

    @property
    def hot_reload_enabled(self) -> bool:
        return self._watcher is not None

    def to_dict(self) -> dict[str, Any]:
        return self._data.copy()

    def _on_file_change(self, path: Path) -> None:
        try:
            changes = self.reload()
        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.warning(f"Ignoring invalid configuration change in {path}: {e}")
            return

        for callback in self._change_callbacks:
            callback(changes)

    def _diff(self, old: dict[str, Any], new: dict[str, Any], prefix: str = "") -> list[ConfigChange]:
        changes: list[ConfigChange] = []
        now = time.time()

        for key in set(old.keys()) | set(new.keys()):
            path = f"{prefix}.{key}" if prefix else key
            old_val = old.get(key)
            new_val = new.get(key)

            if old_val == new_val:
                continue

            if isinstance(old_val, dict) and isinstance(new_val, dict):
                changes.extend(self._diff(old_val, new_val, path))
            else:
                changes.append(ConfigChange(path, old_val, new_val, now))

        return changes

    # ========================================================================
    # Typed Accessors
    # ========================================================================

    @property
    def system(self) -> SystemSettings:
        return self._typed.system

    @property
    def device(self) -> DeviceSettings:
        return self._typed.device

    @property
    def wizard(self) -> WizardSettings:
        return self._typed.wizard

    @property
    def server(self) -> ServerSettings:
        return self._typed.server
