"""Boundaries of the collaborators the host consumes but does not own."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, Protocol, runtime_checkable

HookCallback = Callable[..., Any]


class ConnectionMetadata(Protocol):
    server_id: Any
    server_list: Any


class Connection(Protocol):
    metadata: ConnectionMetadata
    client_interface_connection: ClientInterface | None


@runtime_checkable
class Dispatcher(Protocol):
    """Shared packet dispatcher that parses wire data and invokes hooks."""

    region: Any
    protocol_version: Any
    platform: Any
    connection: Connection

    def hook(
        self,
        owner: str,
        name: str,
        version: Any,
        options: Mapping[str, Any] | None,
        callback: HookCallback,
    ) -> Any:
        """Register ``callback`` for ``name``/``version`` and return a raw handle."""

    def unhook(self, handle: Any) -> bool:
        """Remove a registration; unknown handles are a no-op."""

    def write(self, server_bound: bool, name: str, version: Any, payload: Any) -> bool:
        """Serialize and send a named packet in the given direction."""

    def parse_system_message(self, message: str) -> Any:
        ...

    def build_system_message(self, *args: Any) -> str:
        ...


class ModuleRecord(Protocol):
    instance: Any


@runtime_checkable
class ModuleRegistry(Protocol):
    """Loads sibling modules by name."""

    def load(self, name: str, activate: bool = True) -> ModuleRecord | None:
        """Return the loaded module record, or None if it is unknown."""


class ClientModuleCatalogue(Protocol):
    def get(self, name: str) -> ModuleRecord | None:
        ...


class ClientInterface(Protocol):
    """Richer module catalogue offered by an embedding client."""

    module_manager: ClientModuleCatalogue

    def query_data(self, *args: Any) -> Any:
        ...


@runtime_checkable
class SessionState(Protocol):
    """Shared module that reports entering and leaving the session."""

    def on(self, event: str, callback: Callable[[], Any]) -> Any:
        ...


@runtime_checkable
class CommandRouter(Protocol):
    """Command module; every requesting module receives its own instance."""

    def create_instance(self, host: Any) -> Any:
        ...


@runtime_checkable
class Migrator(Protocol):
    """Forward-migrates persisted settings between schema versions."""

    def migrate(self, from_version: Any, to_version: Any, data: Any) -> Any:
        ...


@runtime_checkable
class Scheduler(Protocol):
    """Platform timer facility used by the timer registry."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> Any:
        """Run ``callback`` once after ``delay`` seconds."""

    def call_repeating(self, interval: float, callback: Callable[[], None]) -> Any:
        """Run ``callback`` every ``interval`` seconds until cancelled."""

    def cancel(self, handle: Any) -> None:
        """Cancel a handle returned by one of the scheduling calls."""


__all__ = [
    "ClientInterface",
    "CommandRouter",
    "Dispatcher",
    "HookCallback",
    "Migrator",
    "ModuleRecord",
    "ModuleRegistry",
    "Scheduler",
    "SessionState",
]
