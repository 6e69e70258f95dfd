from __future__ import annotations

import itertools
import threading
import time
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest


class EventCollector:
    """Thread-safe helper for waiting on asynchronous events."""

    def __init__(self) -> None:
        self.events: list[Any] = []
        self._condition = threading.Condition()

    def add(self, event: Any) -> None:
        with self._condition:
            self.events.append(event)
            self._condition.notify_all()

    def wait_for(self, count: int, timeout: float = 5.0) -> bool:
        """Wait until a minimum number of events have been collected."""

        deadline = time.monotonic() + timeout
        with self._condition:
            while len(self.events) < count:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._condition.wait(timeout=remaining)
            return True


class RecordingDispatcher:
    """Minimal thread-safe dispatcher used by the lifecycle tests."""

    region = "na"
    protocol_version = 376012
    platform = "pc"

    def __init__(self) -> None:
        self.hooks: dict[int, tuple[str, str, Any]] = {}
        self.writes: list[tuple[bool, str, Any, Any]] = []
        self.connection = SimpleNamespace(
            metadata=SimpleNamespace(server_id=1, server_list={}),
            client_interface_connection=None,
        )
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def hook(self, owner, name, version, options, callback):
        with self._lock:
            raw = next(self._ids)
            self.hooks[raw] = (owner, name, callback)
            return raw

    def unhook(self, raw) -> bool:
        with self._lock:
            return self.hooks.pop(raw, None) is not None

    def emit(self, name: str, *args: Any) -> None:
        with self._lock:
            snapshot = [callback for _owner, hooked, callback in self.hooks.values() if hooked == name]
        for callback in snapshot:
            callback(*args)

    def write(self, server_bound, name, version, payload) -> bool:
        with self._lock:
            self.writes.append((server_bound, name, version, payload))
        return True

    def parse_system_message(self, message: str) -> Any:
        return message

    def build_system_message(self, *args: Any) -> str:
        return "@" + "\x0b".join(str(arg) for arg in args)


@pytest.fixture()
def collector() -> EventCollector:
    return EventCollector()


@pytest.fixture()
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Automatically mark tests in this package as integration."""

    package_root = Path(__file__).resolve().parent
    integration_mark = pytest.mark.integration
    for item in items:
        try:
            path = Path(item.fspath).resolve()
        except OSError:
            continue
        if package_root in path.parents:
            item.add_marker(integration_mark)
