from __future__ import annotations

import itertools
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

from modhost.host import ModuleHost
from modhost.types import COMMAND_KEY, SESSION_STATE_KEY, ModuleInfo, ModuleOptions


@dataclass
class HookEntry:
    owner: str
    name: str
    version: Any
    options: Any
    callback: Callable[..., Any]


class FakeDispatcher:
    """In-memory dispatcher recording hooks and writes."""

    def __init__(self) -> None:
        self.hooks: dict[int, HookEntry] = {}
        self.writes: list[tuple[bool, str, Any, Any]] = []
        self.fail_hooks = False
        self.region = "eu"
        self.protocol_version = 376012
        self.platform = "pc"
        self.proxy_author = "tester"
        self.environment = "live"
        self.major_patch_version = 100
        self.minor_patch_version = 2
        self.is_console = False
        self.is_classic = False
        self.connection = SimpleNamespace(
            metadata=SimpleNamespace(server_id=27, server_list={27: "Velika"}),
            client_interface_connection=None,
        )
        self._ids = itertools.count(1)

    def hook(self, owner, name, version, options, callback):
        if self.fail_hooks:
            raise RuntimeError("dispatcher refused hook")
        raw = next(self._ids)
        self.hooks[raw] = HookEntry(owner, name, version, options, callback)
        return raw

    def unhook(self, raw) -> bool:
        return self.hooks.pop(raw, None) is not None

    def emit(self, name: str, *args: Any) -> list[Any]:
        """Deliver to a snapshot of matching hooks, like an in-flight dispatch."""

        snapshot = [entry for entry in self.hooks.values() if entry.name == name]
        return [entry.callback(*args) for entry in snapshot]

    def callbacks(self, name: str) -> list[Callable[..., Any]]:
        return [entry.callback for entry in self.hooks.values() if entry.name == name]

    def write(self, server_bound, name, version, payload) -> bool:
        self.writes.append((server_bound, name, version, payload))
        return True

    def parse_system_message(self, message: str) -> dict[str, Any]:
        return {"id": message.lstrip("@"), "tokens": {}}

    def build_system_message(self, *args: Any) -> str:
        return "@" + "\x0b".join(str(arg) for arg in args)


@dataclass
class ManualTimer:
    due: float
    callback: Callable[[], None]
    seq: int
    interval: float | None = None
    cancelled: bool = False


class ManualScheduler:
    """Deterministic scheduler driven by ``advance()``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.timers: list[ManualTimer] = []
        self._seq = itertools.count()

    def call_later(self, delay, callback):
        timer = ManualTimer(self.now + delay, callback, next(self._seq))
        self.timers.append(timer)
        return timer

    def call_repeating(self, interval, callback):
        timer = ManualTimer(self.now + interval, callback, next(self._seq), interval=interval)
        self.timers.append(timer)
        return timer

    def cancel(self, handle: ManualTimer) -> None:
        handle.cancelled = True
        if handle in self.timers:
            self.timers.remove(handle)

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [timer for timer in self.timers if timer.due <= target]
            if not due:
                break
            timer = min(due, key=lambda item: (item.due, item.seq))
            self.now = timer.due
            if timer.interval is None:
                self.timers.remove(timer)
            else:
                timer.due += timer.interval
            timer.callback()
        self.now = target

    @property
    def pending(self) -> int:
        return len(self.timers)


class FakeSessionState:
    def __init__(self) -> None:
        self.listeners: dict[str, list[Callable[..., Any]]] = {}

    def on(self, event: str, callback: Callable[..., Any]) -> None:
        self.listeners.setdefault(event, []).append(callback)

    def off(self, event: str, callback: Callable[..., Any]) -> None:
        callbacks = self.listeners.get(event, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def emit(self, event: str) -> None:
        for callback in list(self.listeners.get(event, [])):
            callback()


@dataclass
class FakeCommand:
    owner: Any
    cleaned: bool = False

    def cleanup(self) -> None:
        self.cleaned = True


@dataclass
class FakeCommandRouter:
    created: list[FakeCommand] = field(default_factory=list)

    def create_instance(self, host: Any) -> FakeCommand:
        command = FakeCommand(host)
        self.created.append(command)
        return command


class FakeRegistry:
    def __init__(self) -> None:
        self.records: dict[str, SimpleNamespace] = {}
        self.calls: list[tuple[str, bool]] = []

    def add(self, name: str, instance: Any) -> SimpleNamespace:
        record = SimpleNamespace(instance=instance)
        self.records[name] = record
        return record

    def load(self, name: str, activate: bool = True):
        self.calls.append((name, activate))
        return self.records.get(name)


@pytest.fixture()
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture()
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture()
def session_state() -> FakeSessionState:
    return FakeSessionState()


@pytest.fixture()
def command_router() -> FakeCommandRouter:
    return FakeCommandRouter()


@pytest.fixture()
def registry(session_state, command_router) -> FakeRegistry:
    registry = FakeRegistry()
    registry.add(SESSION_STATE_KEY, session_state)
    registry.add(COMMAND_KEY, command_router)
    return registry


@pytest.fixture()
def make_host(tmp_path: Path, registry, dispatcher, scheduler):
    """Build a ModuleHost rooted in its own directory under ``tmp_path``."""

    def _make(
        name: str = "alpha",
        *,
        options: ModuleOptions | None = None,
        migrator: Any = None,
        manager: Any = None,
    ) -> ModuleHost:
        root = tmp_path / name
        root.mkdir(parents=True, exist_ok=True)
        info = ModuleInfo(name=name, path=root, options=options or ModuleOptions())
        return ModuleHost(
            manager or registry,
            info,
            dispatcher,
            scheduler=scheduler,
            migrator=migrator,
        )

    return _make
