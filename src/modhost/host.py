"""ModuleHost: lifecycle, settings, hooks, timers and dependencies for one module."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

from .dependencies import DependencyResolver
from .hooks import HookBinding, HookHandle
from .logging import KeyedLogger, module_logger
from .protocols import ClientInterface, Dispatcher, HookCallback, ModuleRegistry, Scheduler
from .settings import MigratorLike, SettingsStore
from .timers import TimerRegistry
from .types import (
    COMMAND_KEY,
    LEAVE_SESSION_EVENT,
    SESSION_STATE_KEY,
    ModuleInfo,
    ModuleStatus,
)

LOGGER = logging.getLogger(__name__)

InstanceFactory = Callable[["ModuleHost"], Any]


class ModuleHost:
    """Owns the host-side plumbing of one loaded module.

    Construction resolves nothing eagerly except the session-state watcher
    and the persisted settings; the module's own code is attached afterwards
    with :meth:`run`. :meth:`destroy` reverses everything the host
    registered, whatever the module's own teardown does.
    """

    def __init__(
        self,
        manager: ModuleRegistry,
        info: ModuleInfo,
        dispatcher: Dispatcher,
        *,
        scheduler: Scheduler | None = None,
        migrator: MigratorLike | None = None,
    ) -> None:
        self.status = ModuleStatus.CONSTRUCTING
        self.manager = manager
        self.info = info
        self.dispatch = dispatcher
        self.options = info.options
        self.name = info.name
        self.nice_name = info.nice_name
        self.root_folder = Path(info.path)
        self.logger: KeyedLogger = module_logger(self.name)

        self.require = DependencyResolver(self, manager, lambda: self.client_interface)
        self.timers = TimerRegistry(self.name, scheduler, logger=self.logger)
        self.hooks = HookBinding(self.name, dispatcher)
        self._settings_store = SettingsStore(
            info.settings_path,
            self.options.settings_version,
            migrator=migrator,
            logger=self.logger,
        )
        self._session_state: Any = None
        self.instance: Any = None

        if self.name != SESSION_STATE_KEY:
            self._watch_session()

        self.settings: Any = {}
        try:
            self.load_settings()
        except Exception:
            # Never autosave here: the file on disk may be the malformed one.
            try:
                self._release_builtins()
            finally:
                self.status = ModuleStatus.DESTROYED
            raise

    # Lifecycle

    def run(self, factory: InstanceFactory) -> Any:
        """Attach the module's business logic, created by ``factory(self)``."""

        if self.status is not ModuleStatus.CONSTRUCTING:
            raise RuntimeError(f"Module '{self.name}' cannot run while {self.status.value}")
        self.instance = factory(self)
        self.status = ModuleStatus.ACTIVE
        return self.instance

    def destroy(self) -> None:
        """Tear the module down; cleanup always runs even if teardown raises."""

        if self.status is ModuleStatus.DESTROYED:
            LOGGER.debug("Module '%s' already destroyed", self.name)
            return

        try:
            try:
                try:
                    self._teardown_instance()
                finally:
                    if self.options.settings_autosave_on_close:
                        self.save_settings()
            finally:
                self.instance = None
        finally:
            try:
                self.timers.clear_all()
                self.hooks.unhook_all()
            finally:
                try:
                    self._release_builtins()
                finally:
                    self.status = ModuleStatus.DESTROYED

    def load_state(self, state: Any) -> Any:
        hook = getattr(self.instance, "load_state", None)
        return hook(state) if callable(hook) else None

    def save_state(self) -> Any:
        hook = getattr(self.instance, "save_state", None)
        return hook() if callable(hook) else None

    @property
    def is_active(self) -> bool:
        return self.status is ModuleStatus.ACTIVE

    # Settings

    def load_settings(self) -> Any:
        if not self._settings_store.enabled:
            return self.settings
        self.settings = self._settings_store.load()
        return self.settings

    def save_settings(self, *, strict: bool = False) -> bool:
        return self._settings_store.save(self.settings, strict=strict)

    def migrate_settings(self, from_version: Any, to_version: Any, data: Any = None) -> Any:
        return self._settings_store.migrate(from_version, to_version, data)

    @property
    def settings_version(self) -> Any:
        return self.options.settings_version

    @property
    def settings_file(self) -> Path:
        return self._settings_store.path

    # Hooks and outbound packets

    def hook(
        self,
        name: str,
        version: Any,
        callback: HookCallback,
        options: Mapping[str, Any] | None = None,
    ) -> HookHandle:
        return self.hooks.hook(name, version, callback, options)

    def try_hook(
        self,
        name: str,
        version: Any,
        callback: HookCallback,
        options: Mapping[str, Any] | None = None,
    ) -> HookHandle | None:
        return self.hooks.try_hook(name, version, callback, options)

    def hook_once(
        self,
        name: str,
        version: Any,
        callback: HookCallback,
        options: Mapping[str, Any] | None = None,
    ) -> HookHandle:
        return self.hooks.hook_once(name, version, callback, options)

    def try_hook_once(
        self,
        name: str,
        version: Any,
        callback: HookCallback,
        options: Mapping[str, Any] | None = None,
    ) -> HookHandle | None:
        return self.hooks.try_hook_once(name, version, callback, options)

    def unhook(self, handle: Any) -> bool:
        return self.hooks.unhook(handle)

    def to_client(self, name: str, version: Any, payload: Any) -> Any:
        return self.hooks.to_client(name, version, payload)

    def to_server(self, name: str, version: Any, payload: Any) -> Any:
        return self.hooks.to_server(name, version, payload)

    def send(self, name: str, version: Any, payload: Any) -> Any:
        return self.hooks.send(name, version, payload)

    def try_send(self, name: str, version: Any, payload: Any) -> bool:
        return self.hooks.try_send(name, version, payload)

    def parse_system_message(self, message: str) -> Any:
        return self.dispatch.parse_system_message(message)

    def build_system_message(self, *args: Any) -> str:
        return self.dispatch.build_system_message(*args)

    # Timers

    def set_timeout(self, callback: Callable[..., Any], delay: float, *args: Any) -> int:
        return self.timers.set_timeout(callback, delay, *args)

    def clear_timeout(self, timer_id: int | None) -> bool:
        return self.timers.clear_timeout(timer_id)

    def clear_all_timeouts(self) -> None:
        self.timers.clear_all_timeouts()

    def set_interval(self, callback: Callable[..., Any], delay: float, *args: Any) -> int:
        return self.timers.set_interval(callback, delay, *args)

    def clear_interval(self, timer_id: int | None) -> bool:
        return self.timers.clear_interval(timer_id)

    def clear_all_intervals(self) -> None:
        self.timers.clear_all_intervals()

    @property
    def active_timeouts(self) -> frozenset[int]:
        return self.timers.active_timeouts

    @property
    def active_intervals(self) -> frozenset[int]:
        return self.timers.active_intervals

    # Built-in dependencies

    @property
    def command(self) -> Any:
        return self.require.resolve(COMMAND_KEY)

    @property
    def session_state(self) -> Any:
        return self.require.resolve(SESSION_STATE_KEY)

    # Connection metadata

    @property
    def proxy_author(self) -> Any:
        return getattr(self.dispatch, "proxy_author", None)

    @property
    def region(self) -> Any:
        return self.dispatch.region

    @property
    def environment(self) -> Any:
        return getattr(self.dispatch, "environment", None)

    @property
    def major_patch_version(self) -> Any:
        return getattr(self.dispatch, "major_patch_version", None)

    @property
    def minor_patch_version(self) -> Any:
        return getattr(self.dispatch, "minor_patch_version", None)

    @property
    def protocol_version(self) -> Any:
        return self.dispatch.protocol_version

    @property
    def is_console(self) -> bool:
        return bool(getattr(self.dispatch, "is_console", False))

    @property
    def is_classic(self) -> bool:
        return bool(getattr(self.dispatch, "is_classic", False))

    @property
    def platform(self) -> Any:
        return self.dispatch.platform

    @property
    def connection(self) -> Any:
        return self.dispatch.connection

    @property
    def server_id(self) -> Any:
        return self.dispatch.connection.metadata.server_id

    @property
    def server_list(self) -> Any:
        return self.dispatch.connection.metadata.server_list

    @property
    def client_interface(self) -> ClientInterface | None:
        connection = getattr(self.dispatch, "connection", None)
        return getattr(connection, "client_interface_connection", None)

    def query_data(self, *args: Any) -> Any:
        client = self.client_interface
        if client is None:
            raise RuntimeError(f"Module '{self.name}' has no client interface to query")
        return client.query_data(*args)

    # Logging

    def log(self, msg: str, *args: Any) -> None:
        self.logger.info(msg, *args)

    def warn(self, msg: str, *args: Any) -> None:
        self.logger.warning(msg, *args)

    def error(self, msg: str, *args: Any, exc_info: Any = None) -> None:
        self.logger.error(msg, *args, exc_info=exc_info)

    # Internals

    def _watch_session(self) -> None:
        try:
            session_state = self.require.resolve(SESSION_STATE_KEY)
            session_state.on(LEAVE_SESSION_EVENT, self._on_leave_session)
        except Exception:
            self.logger.event(logging.WARNING, "session_state.not_loaded")
            return
        self._session_state = session_state

    def _on_leave_session(self, *_args: Any) -> None:
        self.timers.clear_all()

    def _teardown_instance(self) -> None:
        teardown = getattr(self.instance, "cleanup", None)
        if not callable(teardown):
            return
        try:
            teardown()
        except Exception as exc:
            self.logger.event(logging.ERROR, "module.teardown_failed", {"error": exc})
            raise

    def _release_builtins(self) -> None:
        session_state = self._session_state
        self._session_state = None
        command = self.require.peek(COMMAND_KEY)
        try:
            if command is not None:
                teardown = getattr(command, "cleanup", None)
                if callable(teardown):
                    try:
                        teardown()
                    except Exception as exc:
                        self.logger.event(
                            logging.ERROR,
                            "module.builtin_teardown_failed",
                            {"key": COMMAND_KEY, "error": exc},
                        )
                        raise
        finally:
            try:
                off = getattr(session_state, "off", None)
                if callable(off):
                    off(LEAVE_SESSION_EVENT, self._on_leave_session)
            finally:
                self.require.release()

    def __repr__(self) -> str:
        return f"<ModuleHost {self.name!r} {self.status.value}>"


__all__ = ["InstanceFactory", "ModuleHost"]
