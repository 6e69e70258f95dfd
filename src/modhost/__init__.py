"""modhost package initialisation."""

from importlib import metadata

from .errors import (
    ConfigCorrupted,
    ConfigMalformed,
    ConfigWriteFailed,
    DependencyNotFound,
    HookRegistrationFailed,
    MigrationFailed,
    ModuleHostError,
    RawSendRejected,
    UnknownSendDirection,
)
from .host import ModuleHost
from .manager import ModuleManager
from .types import ModuleInfo, ModuleOptions, ModuleStatus


def _discover_version() -> str:
    """Return the installed package version, falling back to dev marker."""
    try:
        return metadata.version("modhost")
    except metadata.PackageNotFoundError:  # pragma: no cover - occurs in editable installs
        return "0.0.0"


__all__ = [
    "ConfigCorrupted",
    "ConfigMalformed",
    "ConfigWriteFailed",
    "DependencyNotFound",
    "HookRegistrationFailed",
    "MigrationFailed",
    "ModuleHost",
    "ModuleHostError",
    "ModuleInfo",
    "ModuleManager",
    "ModuleOptions",
    "ModuleStatus",
    "RawSendRejected",
    "UnknownSendDirection",
    "__version__",
]
__version__ = _discover_version()
