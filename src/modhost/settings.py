"""Versioned persistence of a module's configuration blob."""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Any

from .errors import ConfigMalformed, ConfigWriteFailed, MigrationFailed
from .logging import KeyedLogger, module_logger
from .protocols import Migrator
from .types import SettingsVersion

MigratorLike = Migrator | Callable[[Any, Any, Any], Any]


class SettingsStore:
    """Load, migrate and save the ``{"version": ..., "data": ...}`` settings file.

    A store without a settings version is disabled: loading yields an empty
    mapping and saving does nothing.
    """

    def __init__(
        self,
        path: Path,
        version: SettingsVersion | None,
        *,
        migrator: MigratorLike | None = None,
        logger: KeyedLogger | None = None,
    ) -> None:
        self.path = Path(path)
        self.version = version
        self._migrator = migrator
        self._log = logger or module_logger("settings")

    @property
    def enabled(self) -> bool:
        return self.version is not None

    def load(self) -> Any:
        """Return the settings blob at the target version, migrating if needed."""

        if not self.enabled:
            return {}

        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return self.migrate(None, self.version)
        except UnicodeDecodeError as exc:
            if exc.start == 0:
                return self._recover_corrupted()
            raise self._malformed(exc) from exc
        except OSError as exc:
            self._log.event(
                logging.ERROR,
                "settings.read_failed",
                {"path": self.path, "error": exc},
            )
            raise

        try:
            stored = json.loads(raw)
        except json.JSONDecodeError as exc:
            if exc.pos == 0:
                return self._recover_corrupted()
            raise self._malformed(exc) from exc

        stored_version, payload = _unwrap(stored)
        if stored_version != self.version:
            return self.migrate(stored_version, self.version, payload)
        return payload

    def save(self, data: Any, *, strict: bool = False) -> bool:
        """Persist ``data`` at the current version. Returns True when written.

        Failures are logged and reported as False, or raised as
        :class:`ConfigWriteFailed` when ``strict`` is set. The file is left
        untouched when serialization fails.
        """

        if not self.enabled:
            return False

        try:
            encoded = json.dumps({"version": self.version, "data": data}, indent=4)
        except (TypeError, ValueError) as exc:
            self._log.event(
                logging.ERROR,
                "settings.serialize_failed",
                {"path": self.path, "error": exc},
                exc_info=exc,
            )
            if strict:
                raise ConfigWriteFailed(f"Settings could not be serialized: {exc}", path=self.path) from exc
            return False

        try:
            self._atomic_write(encoded)
        except OSError as exc:
            self._log.event(
                logging.ERROR,
                "settings.write_failed",
                {"path": self.path, "error": exc},
                exc_info=exc,
            )
            if strict:
                raise ConfigWriteFailed(f"Settings could not be written: {exc}", path=self.path) from exc
            return False
        return True

    def migrate(self, from_version: Any, to_version: Any, data: Any = None) -> Any:
        """Run the registered migrator; any failure is logged and raised as MigrationFailed."""

        params = {"from_version": from_version, "to_version": to_version}
        migrate = _migration_callable(self._migrator)
        if migrate is None:
            self._log.event(logging.ERROR, "settings.migrator_missing", params)
            raise MigrationFailed(
                f"No settings migrator available for {from_version!r} -> {to_version!r}",
                from_version=from_version,
                to_version=to_version,
                path=self.path,
            )
        try:
            return migrate(from_version, to_version, data)
        except Exception as exc:
            self._log.event(
                logging.ERROR,
                "settings.migration_failed",
                {**params, "error": exc},
                exc_info=exc,
            )
            raise MigrationFailed(
                f"Settings migration {from_version!r} -> {to_version!r} failed: {exc}",
                from_version=from_version,
                to_version=to_version,
                path=self.path,
            ) from exc

    def _malformed(self, exc: ValueError) -> ConfigMalformed:
        self._log.event(
            logging.ERROR,
            "settings.malformed",
            {"path": self.path, "error": exc},
        )
        return ConfigMalformed(
            f"Settings file {self.path} has an invalid format: {exc}",
            path=self.path,
        )

    def _recover_corrupted(self) -> Any:
        self._log.event(
            logging.ERROR,
            "settings.corrupted",
            {"path": self.path, "version": self.version},
        )
        recovered = self.migrate(None, self.version)
        self._quarantine_corrupt_file()
        self.save(recovered)
        return recovered

    def _atomic_write(self, encoded: str) -> None:
        target = self.path
        tmp_path = target.with_name(f".{target.name}.{uuid.uuid4().hex}.tmp")
        try:
            tmp_path.write_text(encoded, encoding="utf-8")
            tmp_path.replace(target)
        finally:
            if tmp_path.exists():
                tmp_path.unlink(missing_ok=True)

    def _quarantine_corrupt_file(self) -> None:
        path = self.path
        if not path.exists():
            return
        suffix = ".corrupt"
        candidate = path.with_name(f"{path.name}{suffix}")
        counter = 1
        while candidate.exists():
            counter += 1
            candidate = path.with_name(f"{path.name}{suffix}{counter}")
        try:
            path.replace(candidate)
        except OSError:
            self._log.warning("Could not move corrupted settings file %s aside", path, exc_info=True)


def _unwrap(stored: Any) -> tuple[Any, Any]:
    """Split a parsed settings file into ``(version, payload)``.

    Files without both envelope fields are treated as a legacy bare payload.
    """

    if not isinstance(stored, dict):
        return None, stored
    version = stored.get("version")
    if "version" in stored and "data" in stored:
        return version, stored["data"]
    return version, stored


def _migration_callable(migrator: MigratorLike | None) -> Callable[[Any, Any, Any], Any] | None:
    if migrator is None:
        return None
    if isinstance(migrator, Migrator):
        return migrator.migrate
    if callable(migrator):
        return migrator
    return None


__all__ = ["MigratorLike", "SettingsStore"]
