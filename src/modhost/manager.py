"""In-process registry that constructs, runs and unloads hosted modules."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import HostConfig, parse_module_options
from .host import InstanceFactory, ModuleHost
from .protocols import Dispatcher, Scheduler
from .settings import MigratorLike
from .types import ModuleInfo, ModuleOptions

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModuleRegistration:
    """Everything needed to construct a module on demand."""

    info: ModuleInfo
    factory: InstanceFactory
    migrator: MigratorLike | None = None


class ModuleManager:
    """Load modules by name and unload them in reverse load order.

    A module is recorded as loaded before its factory runs, so a circular
    lookup made while it is being constructed gets the partially built host
    (whose ``instance`` is still ``None``) instead of recursing.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        *,
        scheduler: Scheduler | None = None,
        config: HostConfig | None = None,
    ) -> None:
        self.dispatch = dispatcher
        self._scheduler = scheduler
        self._config = config
        self._registrations: dict[str, ModuleRegistration] = {}
        self._hosts: dict[str, ModuleHost] = {}
        self._load_order: list[str] = []
        self._lock = threading.RLock()

    def register(
        self,
        name: str,
        factory: InstanceFactory,
        *,
        path: Path | str,
        options: ModuleOptions | Mapping[str, Any] | None = None,
        migrator: MigratorLike | None = None,
        raw_name: str | None = None,
    ) -> ModuleInfo:
        """Make ``name`` loadable. Configured overrides are applied on top of ``options``."""

        if not callable(factory):
            raise TypeError(f"Module '{name}' factory must be callable")
        if self._config is not None:
            resolved = self._config.module_options(name, options)
        elif isinstance(options, ModuleOptions):
            resolved = options
        else:
            resolved = parse_module_options(options, f"{name}.options")
        info = ModuleInfo(
            name=name,
            path=Path(path).expanduser(),
            options=resolved,
            raw_name=raw_name,
        )
        with self._lock:
            if name in self._registrations:
                raise ValueError(f"Module '{name}' is already registered.")
            self._registrations[name] = ModuleRegistration(info, factory, migrator)
        return info

    def load(self, name: str, activate: bool = True) -> ModuleHost | None:
        """Return the host for ``name``, constructing and running it if needed.

        ``activate=False`` marks a dependency pull-in rather than an explicit
        request; unknown names return ``None`` in both cases.
        """

        with self._lock:
            host = self._hosts.get(name)
            if host is not None:
                return host
            registration = self._registrations.get(name)
            if registration is None:
                LOGGER.debug("Module '%s' is not registered", name)
                return None

            LOGGER.log(
                logging.INFO if activate else logging.DEBUG,
                "Loading module '%s'%s",
                name,
                "" if activate else " as a dependency",
            )
            host = ModuleHost(
                self,
                registration.info,
                self.dispatch,
                scheduler=self._scheduler,
                migrator=registration.migrator,
            )
            self._hosts[name] = host
            self._load_order.append(name)
            try:
                host.run(registration.factory)
            except Exception:
                LOGGER.exception("Module '%s' failed to start", name)
                self._forget(name)
                try:
                    host.destroy()
                except Exception:  # pragma: no cover - log but keep the original error
                    LOGGER.exception("Module '%s' cleanup after failed start also failed", name)
                raise
            return host

    def get(self, name: str) -> ModuleHost:
        """Return an already loaded module host."""

        try:
            return self._hosts[name]
        except KeyError as exc:
            raise KeyError(
                f"Module '{name}' not loaded. Loaded: {sorted(self._hosts)}"
            ) from exc

    def is_loaded(self, name: str) -> bool:
        return name in self._hosts

    def unload(self, name: str) -> bool:
        """Destroy a loaded module. Teardown failures are logged, not raised."""

        with self._lock:
            host = self._hosts.get(name)
            if host is None:
                return False
            self._forget(name)
        LOGGER.debug("Unloading module '%s'", name)
        try:
            host.destroy()
        except Exception:
            LOGGER.exception("Module '%s' teardown failed", name)
        return True

    def unload_all(self) -> None:
        """Destroy every loaded module in reverse load order."""

        for name in reversed(self.module_names):
            self.unload(name)

    @property
    def module_names(self) -> list[str]:
        """Return loaded module names in load order."""

        with self._lock:
            return list(self._load_order)

    @property
    def registered_names(self) -> list[str]:
        with self._lock:
            return sorted(self._registrations)

    def _forget(self, name: str) -> None:
        self._hosts.pop(name, None)
        if name in self._load_order:
            self._load_order.remove(name)


__all__ = ["ModuleManager", "ModuleRegistration"]
