"""Module-scoped hook registration and outbound packet routing."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .errors import HookRegistrationFailed, RawSendRejected, UnknownSendDirection
from .protocols import Dispatcher, HookCallback

LOGGER = logging.getLogger(__name__)

CLIENT_BOUND_PREFIXES = frozenset("SI")
SERVER_BOUND_PREFIXES = frozenset("C")


@dataclass(eq=False)
class HookHandle:
    """One registration made through :class:`HookBinding`."""

    owner: str
    name: str
    version: Any
    options: Mapping[str, Any] = field(default_factory=dict)
    once: bool = False
    raw: Any = None
    alive: bool = True

    @property
    def module_name(self) -> str:
        return self.owner


class HookBinding:
    """Wrap the dispatcher's hook primitives with per-module bookkeeping.

    Every callback handed to the dispatcher is gated on the handle's
    liveness flag, so once a handle is unhooked it never fires again even if
    the dispatcher still delivers an event that was already in flight.
    """

    def __init__(self, owner: str, dispatcher: Dispatcher) -> None:
        self._owner = owner
        self._dispatcher = dispatcher
        self._handles: list[HookHandle] = []
        self._lock = threading.RLock()

    @property
    def handles(self) -> list[HookHandle]:
        with self._lock:
            return list(self._handles)

    def hook(
        self,
        name: str,
        version: Any,
        callback: HookCallback,
        options: Mapping[str, Any] | None = None,
    ) -> HookHandle:
        """Register ``callback`` for packet ``name``/``version``."""

        handle = HookHandle(self._owner, name, version, dict(options or {}))

        def _invoke(*args: Any, **kwargs: Any) -> Any:
            if not handle.alive:
                return None
            return callback(*args, **kwargs)

        return self._register(handle, _invoke)

    def try_hook(
        self,
        name: str,
        version: Any,
        callback: HookCallback,
        options: Mapping[str, Any] | None = None,
    ) -> HookHandle | None:
        try:
            return self.hook(name, version, callback, options)
        except Exception:
            return None

    def hook_once(
        self,
        name: str,
        version: Any,
        callback: HookCallback,
        options: Mapping[str, Any] | None = None,
    ) -> HookHandle:
        """Register ``callback`` so that it fires at most once.

        The handle is unhooked before the callback runs; concurrent deliveries
        race on claiming the handle and only the winner invokes ``callback``.
        """

        if not callable(callback):
            raise TypeError("hook_once() callback must be callable")

        handle = HookHandle(self._owner, name, version, dict(options or {}), once=True)

        def _invoke_once(*args: Any, **kwargs: Any) -> Any:
            if not self._claim(handle):
                return None
            if handle.raw is not None:
                self._dispatcher.unhook(handle.raw)
            return callback(*args, **kwargs)

        self._register(handle, _invoke_once)
        if not handle.alive:
            # Fired during registration, before the raw handle was known.
            self._dispatcher.unhook(handle.raw)
        return handle

    def try_hook_once(
        self,
        name: str,
        version: Any,
        callback: HookCallback,
        options: Mapping[str, Any] | None = None,
    ) -> HookHandle | None:
        if not callable(callback):
            raise TypeError("try_hook_once() callback must be callable")
        try:
            return self.hook_once(name, version, callback, options)
        except Exception:
            return None

    def unhook(self, handle: HookHandle | Any) -> bool:
        """Remove a registration. Already removed or foreign handles are a no-op."""

        if handle is None:
            return False
        if isinstance(handle, HookHandle):
            self._claim(handle)
            raw = handle.raw
        else:
            raw = handle
        if raw is None:
            return False
        return bool(self._dispatcher.unhook(raw))

    def unhook_all(self) -> int:
        """Remove every live registration made by this module."""

        with self._lock:
            handles = list(self._handles)
            self._handles.clear()
            for handle in handles:
                handle.alive = False
        removed = 0
        for handle in handles:
            if handle.raw is None:
                continue
            try:
                if self._dispatcher.unhook(handle.raw):
                    removed += 1
            except Exception:
                LOGGER.exception("Failed to unhook %r for module '%s'", handle.name, self._owner)
        return removed

    def to_client(self, name: str, version: Any, payload: Any) -> Any:
        return self._dispatcher.write(False, name, version, payload)

    def to_server(self, name: str, version: Any, payload: Any) -> Any:
        return self._dispatcher.write(True, name, version, payload)

    def send(self, name: str, version: Any, payload: Any) -> Any:
        """Write a named packet, routing it by the first letter of ``name``.

        ``S``/``I`` packets go to the client, ``C`` packets to the server.
        """

        if not isinstance(name, str):
            raise RawSendRejected()
        prefix = name[:1]
        if prefix in CLIENT_BOUND_PREFIXES:
            return self._dispatcher.write(False, name, version, payload)
        if prefix in SERVER_BOUND_PREFIXES:
            return self._dispatcher.write(True, name, version, payload)
        raise UnknownSendDirection(name)

    def try_send(self, name: str, version: Any, payload: Any) -> bool:
        try:
            return bool(self.send(name, version, payload))
        except Exception:
            return False

    def _register(self, handle: HookHandle, callback: HookCallback) -> HookHandle:
        with self._lock:
            self._handles.append(handle)
        try:
            handle.raw = self._dispatcher.hook(
                self._owner, handle.name, handle.version, handle.options or None, callback
            )
        except Exception as exc:
            self._claim(handle)
            LOGGER.debug("Module '%s' failed to hook %r: %s", self._owner, handle.name, exc)
            raise HookRegistrationFailed(self._owner, handle.name) from exc
        return handle

    def _claim(self, handle: HookHandle) -> bool:
        """Atomically mark ``handle`` dead; True only for the first caller."""

        with self._lock:
            if not handle.alive:
                return False
            handle.alive = False
            try:
                self._handles.remove(handle)
            except ValueError:
                pass
            return True


__all__ = ["HookBinding", "HookHandle"]
