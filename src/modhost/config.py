"""Host configuration loading and module option validation."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from .types import DEFAULT_SETTINGS_FILE, ModuleOptions

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.config/modhost/config.yaml")
DEFAULT_ROOT_DIR = Path("~/.local/lib/modhost")
DEFAULT_LOG_LEVEL = "info"

# Manifest spellings inherited from JavaScript-era module packages.
_LEGACY_OPTION_KEYS = {
    "niceName": "nice_name",
    "settingsFile": "settings_file",
    "settingsVersion": "settings_version",
    "settingsAutosaveOnClose": "settings_autosave_on_close",
}


class ConfigError(ValueError):
    """Raised when configuration is invalid or missing."""


@dataclass(frozen=True)
class LoggingConfig:
    """Logging-related configuration."""

    level: str = DEFAULT_LOG_LEVEL
    debug_file: bool = False


@dataclass(frozen=True)
class HostConfig:
    """Fully parsed host configuration.

    ``root_dir`` and ``logging`` are read by the outer loader that embeds the
    host, which passes them to :func:`modhost.logging.configure_logging`.
    """

    root_dir: Path
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    modules: dict[str, Mapping[str, Any]] = field(default_factory=dict)

    def module_options(
        self,
        name: str,
        base: ModuleOptions | Mapping[str, Any] | None = None,
    ) -> ModuleOptions:
        """Return options for ``name`` with configured overrides applied on top of ``base``."""

        options = base if isinstance(base, ModuleOptions) else parse_module_options(base)
        overrides = self.modules.get(name)
        if not overrides:
            return options
        return merge_module_options(options, overrides, f"modules.{name}")


def load_config(path: Path | str | None = None) -> HostConfig:
    """Load and validate host configuration from YAML."""

    config_path = _resolve_config_path(path)
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    if not isinstance(raw, dict):
        raise ConfigError("Configuration root must be a mapping.")

    return _parse_config(raw)


def parse_module_options(
    value: Mapping[str, Any] | None,
    field_name: str = "options",
) -> ModuleOptions:
    """Build :class:`ModuleOptions` from a mapping, validating every field."""

    return merge_module_options(ModuleOptions(), value, field_name)


def merge_module_options(
    base: ModuleOptions,
    value: Mapping[str, Any] | None,
    field_name: str = "options",
) -> ModuleOptions:
    if value is None:
        return base
    if not isinstance(value, Mapping):
        raise ConfigError(f"{field_name} must be a mapping.")

    normalized = _normalize_option_keys(value, field_name)
    changes: dict[str, Any] = {}
    if "nice_name" in normalized:
        changes["nice_name"] = _parse_optional_str(normalized["nice_name"], f"{field_name}.nice_name")
    if "settings_file" in normalized:
        changes["settings_file"] = _parse_settings_file(
            normalized["settings_file"], f"{field_name}.settings_file"
        )
    if "settings_version" in normalized:
        changes["settings_version"] = _parse_settings_version(
            normalized["settings_version"], f"{field_name}.settings_version"
        )
    if "settings_autosave_on_close" in normalized:
        autosave = normalized["settings_autosave_on_close"]
        if not isinstance(autosave, bool):
            raise ConfigError(f"{field_name}.settings_autosave_on_close must be a boolean.")
        changes["settings_autosave_on_close"] = autosave
    return replace(base, **changes)


def _resolve_config_path(explicit: Path | str | None) -> Path:
    if explicit:
        return Path(explicit).expanduser()
    env_path = os.environ.get("MODHOST_CONFIG")
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH.expanduser()


def _parse_config(raw: dict[str, Any]) -> HostConfig:
    root_dir = Path(raw.get("rootdir") or raw.get("root_dir") or DEFAULT_ROOT_DIR).expanduser()
    logging_config = _parse_logging(raw.get("logging"))
    modules = _parse_modules(raw.get("modules"))
    return HostConfig(root_dir=root_dir, logging=logging_config, modules=modules)


def _parse_modules(value: Any) -> dict[str, Mapping[str, Any]]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError("modules must be a mapping of module name to options.")

    modules: dict[str, Mapping[str, Any]] = {}
    for name, raw_options in value.items():
        field_name = f"modules.{name}"
        if raw_options is None:
            modules[str(name)] = {}
            continue
        if not isinstance(raw_options, dict):
            raise ConfigError(f"{field_name} must be a mapping.")
        normalized = _normalize_option_keys(raw_options, field_name)
        # Validate eagerly so errors surface at load time, not at module construction.
        parse_module_options(normalized, field_name)
        modules[str(name)] = normalized
    return modules


def _normalize_option_keys(value: Mapping[str, Any], field_name: str) -> dict[str, Any]:
    normalized: dict[str, Any] = {}
    for key, item in value.items():
        target = _LEGACY_OPTION_KEYS.get(key)
        if target is None:
            normalized[key] = item
            continue
        if target in value:
            raise ConfigError(f"{field_name} cannot define both '{key}' and '{target}'.")
        LOGGER.warning("Option '%s' is deprecated in %s; rename it to '%s'.", key, field_name, target)
        normalized[target] = item
    return normalized


def _parse_optional_str(value: Any, field_name: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{field_name} must be a string.")
    text = value.strip()
    return text or None


def _parse_settings_file(value: Any, field_name: str) -> str:
    if value is None:
        return DEFAULT_SETTINGS_FILE
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{field_name} must be a non-empty string.")
    return value.strip()


def _parse_settings_version(value: Any, field_name: str) -> int | str | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ConfigError(f"{field_name} must be an integer or string.")
    if isinstance(value, str) and not value.strip():
        raise ConfigError(f"{field_name} cannot be empty.")
    return value


def _parse_logging(value: Any) -> LoggingConfig:
    if value is None:
        return LoggingConfig()
    if not isinstance(value, dict):
        raise ConfigError("logging must be a mapping.")
    level = str(value.get("level", DEFAULT_LOG_LEVEL)).lower()
    debug_file = bool(value.get("debug_file", False))
    return LoggingConfig(level=level, debug_file=debug_file)


__all__ = [
    "ConfigError",
    "HostConfig",
    "LoggingConfig",
    "load_config",
    "merge_module_options",
    "parse_module_options",
]
