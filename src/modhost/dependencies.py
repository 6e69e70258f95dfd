"""Lazy, memoized lookup of the modules a hosted module depends on."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

from .errors import DependencyNotFound
from .protocols import ClientInterface, ModuleRecord, ModuleRegistry
from .types import COMMAND_KEY, SESSION_STATE_KEY

LOGGER = logging.getLogger(__name__)


class DependencyResolver:
    """Read-only view of sibling modules, resolved on first access.

    ``resolver["name"]`` and ``resolver.resolve("name")`` are equivalent.
    Resolved instances are cached for the lifetime of the owning module; the
    resolver never owns them except for the command instance it creates.

    Two keys are special: ``command`` yields a fresh command-router instance
    created for the owning module, and ``session-state`` yields the shared
    session-state module. Any other key is looked up in the embedding
    client's catalogue first, then in the host registry.
    """

    def __init__(
        self,
        owner: Any,
        registry: ModuleRegistry,
        client_interface: Callable[[], ClientInterface | None] | None = None,
    ) -> None:
        self._owner = owner
        self._registry = registry
        self._client_interface = client_interface or (lambda: None)
        self._cache: dict[str, Any] = {}
        self._lock = threading.RLock()

    def resolve(self, key: str) -> Any:
        with self._lock:
            if key in self._cache:
                return self._cache[key]

            if key == COMMAND_KEY:
                router = self._load_required(key).instance
                instance = router.create_instance(self._owner) if router is not None else None
            elif key == SESSION_STATE_KEY:
                instance = self._load_required(key).instance
            else:
                record = self._client_record(key) or self._load_required(key)
                instance = record.instance

            if instance is None:
                # Circular lookup while the dependency is still being constructed.
                LOGGER.debug("Module '%s' is not ready yet; not caching it", key)
                return None
            self._cache[key] = instance
            return instance

    def peek(self, key: str) -> Any | None:
        """Return the cached instance for ``key`` without resolving it."""

        with self._lock:
            return self._cache.get(key)

    def release(self) -> dict[str, Any]:
        """Forget every cached dependency and return what was cached."""

        with self._lock:
            cached = dict(self._cache)
            self._cache.clear()
        return cached

    @property
    def resolved(self) -> list[str]:
        with self._lock:
            return list(self._cache)

    def __getitem__(self, key: str) -> Any:
        return self.resolve(key)

    def __setitem__(self, key: str, value: Any) -> None:
        raise TypeError("Cannot assign to module dependencies")

    def __delitem__(self, key: str) -> None:
        raise TypeError("Cannot delete module dependencies")

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._cache

    def _load_required(self, key: str) -> ModuleRecord:
        record = self._registry.load(key, False)
        if record is None:
            raise DependencyNotFound(key)
        return record

    def _client_record(self, key: str) -> ModuleRecord | None:
        client = self._client_interface()
        if client is None:
            return None
        catalogue = getattr(client, "module_manager", None)
        if catalogue is None:
            return None
        return catalogue.get(key)


__all__ = ["DependencyResolver"]
