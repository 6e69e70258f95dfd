"""Structured logging helpers for the module host."""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping, MutableMapping
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from .config import ConfigError, LoggingConfig

FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
MAIN_LOG_NAME = "modhost.log"
DEBUG_LOG_NAME = "debug.log"

MESSAGES: dict[str, str] = {
    "settings.corrupted": (
        "Settings file {path} is corrupted (unreadable from the first byte). "
        "It was moved aside and the defaults for version {version} will be used."
    ),
    "settings.malformed": (
        "Settings file {path} has an invalid format and was not loaded: {error}. "
        "Fix the file by hand or delete it to reset the settings to their defaults."
    ),
    "settings.read_failed": "Settings file {path} could not be read: {error}",
    "settings.serialize_failed": "Settings could not be serialized; {path} was left untouched: {error}",
    "settings.write_failed": "Settings could not be written to {path}: {error}",
    "settings.migrator_missing": "No settings migrator registered (migrating {from_version} -> {to_version}).",
    "settings.migration_failed": "Settings migrator failed while migrating {from_version} -> {to_version}: {error}",
    "session_state.not_loaded": (
        "Session-state module is not loaded; timers will not be cleared on session leave."
    ),
    "module.teardown_failed": "Module teardown failed: {error}",
    "module.builtin_teardown_failed": "Teardown of built-in dependency '{key}' failed: {error}",
    "timer.callback_failed": "{kind} callback {timer_id} failed: {error}",
}


class KeyedLogger(logging.LoggerAdapter):
    """Logger adapter that prefixes records with the owning module name.

    ``event()`` emits a diagnostic identified by a stable key; the rendered
    text comes from :data:`MESSAGES` and the key and parameters travel on the
    record as ``event_key`` / ``event_params`` for structured handlers.
    """

    def __init__(self, logger: logging.Logger, module: str) -> None:
        super().__init__(logger, {"module_name": module})

    @property
    def module(self) -> str:
        return str(self.extra["module_name"])

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(self.extra)
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return f"[{self.module}] {msg}", kwargs

    def event(
        self,
        level: int,
        key: str,
        params: Mapping[str, Any] | None = None,
        *,
        exc_info: Any = None,
    ) -> None:
        values = dict(params or {})
        self.log(
            level,
            render_message(key, values),
            exc_info=exc_info,
            extra={"event_key": key, "event_params": values},
        )


def render_message(key: str, params: Mapping[str, Any] | None = None) -> str:
    """Return the catalogue text for ``key`` filled with ``params``."""

    template = MESSAGES.get(key)
    if template is None:
        return key
    try:
        return template.format_map(dict(params or {}))
    except (KeyError, IndexError, ValueError):
        return f"{key} {dict(params or {})}"


def module_logger(name: str, base: logging.Logger | None = None) -> KeyedLogger:
    """Return a keyed logger whose records are prefixed with ``[name]``."""

    return KeyedLogger(base or logging.getLogger("modhost.modules"), name)


class ConsoleFormatter(logging.Formatter):
    """Formatter that prepends colourised level symbols."""

    SYMBOLS: dict[int, tuple[str, str]] = {
        logging.DEBUG: ("D", "\x1b[36m"),
        logging.INFO: ("I", "\x1b[32m"),
        logging.WARNING: ("!", "\x1b[33m"),
        logging.ERROR: ("X", "\x1b[31m"),
        logging.CRITICAL: ("X", "\x1b[35m"),
    }

    RESET = "\x1b[0m"

    def __init__(self, use_color: bool) -> None:
        super().__init__("%(message)s")
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        symbol, color = self.SYMBOLS.get(record.levelno, ("?", "\x1b[37m"))
        base_message = super().format(record)
        if self.use_color:
            return f"{color}{symbol}{self.RESET} {base_message}"
        return f"{symbol} {base_message}"


def configure_logging(logging_config: LoggingConfig, root_dir: Path) -> None:
    """Initialise process-wide logging handlers.

    Called once by the outer loader at startup; the host itself only logs.
    """

    log_dir = (root_dir / "logs").expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)

    handlers: list[logging.Handler] = []
    handlers.append(_build_file_handler(log_dir / MAIN_LOG_NAME, level=logging.INFO))
    handlers.append(_build_console_handler())

    if logging_config.debug_file:
        debug_handler = _build_file_handler(log_dir / DEBUG_LOG_NAME, level=logging.DEBUG)
        handlers.append(debug_handler)

    logging.basicConfig(
        level=_level_from_string(logging_config.level),
        handlers=handlers,
        force=True,
    )


def _build_file_handler(path: Path, level: int) -> logging.Handler:
    handler = RotatingFileHandler(path, maxBytes=5_000_000, backupCount=5)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


def _build_console_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(ConsoleFormatter(_stream_supports_color(handler)))
    return handler


def _stream_supports_color(handler: logging.Handler) -> bool:
    stream = getattr(handler, "stream", None)
    return bool(getattr(stream, "isatty", lambda: False)())


def _level_from_string(level: str) -> int:
    normalized = level.strip().upper()
    mapping = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "WARN": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }
    try:
        return mapping[normalized]
    except KeyError as exc:
        raise ConfigError(f"Unknown log level: {level}") from exc


__all__ = [
    "ConsoleFormatter",
    "KeyedLogger",
    "MESSAGES",
    "configure_logging",
    "module_logger",
    "render_message",
]
