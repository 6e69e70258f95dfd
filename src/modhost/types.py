"""Core data structures shared by the host components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

COMMAND_KEY = "command"
SESSION_STATE_KEY = "session-state"
LEAVE_SESSION_EVENT = "leave_session"

DEFAULT_SETTINGS_FILE = "module_settings.json"

SettingsVersion = int | str


class ModuleStatus(str, Enum):
    """Lifecycle states of a hosted module."""

    CONSTRUCTING = "constructing"
    ACTIVE = "active"
    DESTROYED = "destroyed"


@dataclass(frozen=True)
class ModuleOptions:
    """Per-module configuration options."""

    nice_name: str | None = None
    settings_file: str = DEFAULT_SETTINGS_FILE
    settings_version: SettingsVersion | None = None
    settings_autosave_on_close: bool = True

    @property
    def settings_enabled(self) -> bool:
        return self.settings_version is not None


@dataclass(frozen=True)
class ModuleInfo:
    """Identity and location of a module known to the host."""

    name: str
    path: Path
    options: ModuleOptions = field(default_factory=ModuleOptions)
    raw_name: str | None = None

    @property
    def nice_name(self) -> str:
        return self.options.nice_name or self.raw_name or self.name

    @property
    def settings_path(self) -> Path:
        return self.path / self.options.settings_file


__all__ = [
    "COMMAND_KEY",
    "DEFAULT_SETTINGS_FILE",
    "LEAVE_SESSION_EVENT",
    "ModuleInfo",
    "ModuleOptions",
    "ModuleStatus",
    "SESSION_STATE_KEY",
    "SettingsVersion",
]
