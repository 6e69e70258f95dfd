"""Exception hierarchy raised by the module host."""

from __future__ import annotations

from typing import Any


class ModuleHostError(RuntimeError):
    """Base class for every failure raised by the host."""


class SettingsError(ModuleHostError):
    """Base class for persisted settings failures."""

    def __init__(self, message: str, *, path: Any = None) -> None:
        super().__init__(message)
        self.path = path


class ConfigCorrupted(SettingsError):
    """Settings file cannot be parsed from its very first byte.

    The store heals this case itself and never raises it; the class exists
    so handlers can name the category alongside its siblings.
    """


class ConfigMalformed(SettingsError, ValueError):
    """Settings file parses partially or has an unexpected shape."""


class ConfigWriteFailed(SettingsError):
    """Settings could not be written to disk."""


class MigrationFailed(SettingsError):
    """Settings migrator is missing or raised while running."""

    def __init__(
        self,
        message: str,
        *,
        from_version: Any = None,
        to_version: Any = None,
        path: Any = None,
    ) -> None:
        super().__init__(message, path=path)
        self.from_version = from_version
        self.to_version = to_version


class DependencyNotFound(ModuleHostError, LookupError):
    """A required module could not be resolved."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Required module not found: {key}")
        self.key = key


class SendError(ModuleHostError):
    """Base class for rejected outbound writes."""


class UnknownSendDirection(SendError, ValueError):
    """Packet name does not start with a known direction prefix."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown packet direction: {name!r}")
        self.name = name


class RawSendRejected(SendError, TypeError):
    """Outbound writes must always be identified by name."""

    def __init__(self) -> None:
        super().__init__("Raw send() is not supported; packets must be named.")


class HookRegistrationFailed(ModuleHostError):
    """The dispatcher refused to register a hook."""

    def __init__(self, owner: str, name: Any) -> None:
        super().__init__(f"Module '{owner}' failed to hook {name!r}")
        self.owner = owner
        self.name = name


__all__ = [
    "ConfigCorrupted",
    "ConfigMalformed",
    "ConfigWriteFailed",
    "DependencyNotFound",
    "HookRegistrationFailed",
    "MigrationFailed",
    "ModuleHostError",
    "RawSendRejected",
    "SendError",
    "SettingsError",
    "UnknownSendDirection",
]
