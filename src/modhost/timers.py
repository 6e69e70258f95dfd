"""Module-scoped timer bookkeeping and platform schedulers."""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from collections.abc import Callable
from typing import Any

from .logging import KeyedLogger, module_logger
from .protocols import Scheduler

LOGGER = logging.getLogger(__name__)

_TIMER_IDS = itertools.count(1)


class ThreadingScheduler:
    """Run timers on daemon threads."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(max(0.0, delay), callback)
        timer.daemon = True
        timer.start()
        return timer

    def call_repeating(self, interval: float, callback: Callable[[], None]) -> _RepeatingTimer:
        timer = _RepeatingTimer(max(0.0, interval), callback)
        timer.start()
        return timer

    def cancel(self, handle: Any) -> None:
        handle.cancel()


class _RepeatingTimer(threading.Thread):
    """Invoke a callback every ``interval`` seconds until cancelled."""

    def __init__(self, interval: float, callback: Callable[[], None]) -> None:
        super().__init__(daemon=True, name="modhost-interval")
        self._interval = interval
        self._callback = callback
        self._stopped = threading.Event()

    def run(self) -> None:
        while not self._stopped.wait(self._interval):
            self._callback()

    def cancel(self) -> None:
        self._stopped.set()


class AsyncioScheduler:
    """Run timers on an asyncio event loop.

    Defaults to the running loop. Scheduling calls may be made from any
    thread; they are forwarded to the loop thread-safely.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop or asyncio.get_running_loop()

    def call_later(self, delay: float, callback: Callable[[], None]) -> _LoopTimer:
        timer = _LoopTimer(self._loop, max(0.0, delay), callback, repeat=False)
        timer.start()
        return timer

    def call_repeating(self, interval: float, callback: Callable[[], None]) -> _LoopTimer:
        timer = _LoopTimer(self._loop, max(0.0, interval), callback, repeat=True)
        timer.start()
        return timer

    def cancel(self, handle: Any) -> None:
        handle.cancel()


class _LoopTimer:
    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        delay: float,
        callback: Callable[[], None],
        *,
        repeat: bool,
    ) -> None:
        self._loop = loop
        self._delay = delay
        self._callback = callback
        self._repeat = repeat
        self._handle: asyncio.TimerHandle | None = None
        self._cancelled = False

    def start(self) -> None:
        self._call_in_loop(self._arm)

    def cancel(self) -> None:
        self._cancelled = True
        self._call_in_loop(self._disarm)

    def _arm(self) -> None:
        if self._cancelled:
            return
        self._handle = self._loop.call_later(self._delay, self._fire)

    def _disarm(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        if self._cancelled:
            return
        if self._repeat:
            self._arm()
        self._callback()

    def _call_in_loop(self, func: Callable[[], None]) -> None:
        if _running_loop() is self._loop:
            func()
        else:
            self._loop.call_soon_threadsafe(func)


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class TimerRegistry:
    """Track a module's pending one-shot and periodic timers.

    Ids handed out by the registry stay tracked until they fire (one-shot),
    are cleared, or the whole registry is cleared. Every fire re-checks the
    id under the lock, so a platform timer that slips past a cancellation
    never reaches the module's callback.
    """

    def __init__(
        self,
        owner: str,
        scheduler: Scheduler | None = None,
        *,
        logger: KeyedLogger | None = None,
    ) -> None:
        self._owner = owner
        self._scheduler = scheduler or ThreadingScheduler()
        self._log = logger or module_logger(owner)
        self._timeouts: dict[int, Any] = {}
        self._intervals: dict[int, Any] = {}
        self._lock = threading.Lock()

    def set_timeout(self, callback: Callable[..., Any], delay: float, *args: Any) -> int:
        """Run ``callback(*args)`` once after ``delay`` seconds and return its id."""

        timer_id = next(_TIMER_IDS)

        def _fire() -> None:
            with self._lock:
                if self._timeouts.pop(timer_id, None) is None:
                    return
            self._invoke("Timeout", timer_id, callback, args)

        with self._lock:
            # Placeholder keeps the id tracked if the platform fires before we store the handle.
            self._timeouts[timer_id] = _PENDING
        handle = self._scheduler.call_later(delay, _fire)
        with self._lock:
            tracked = timer_id in self._timeouts
            if tracked:
                self._timeouts[timer_id] = handle
        if not tracked:
            self._cancel(handle)
        return timer_id

    def clear_timeout(self, timer_id: int | None) -> bool:
        """Cancel a tracked one-shot timer. Unknown or fired ids return False."""

        with self._lock:
            handle = self._timeouts.pop(timer_id, None)
        if handle is None:
            return False
        self._cancel(handle)
        return True

    def clear_all_timeouts(self) -> None:
        with self._lock:
            handles = list(self._timeouts.values())
            self._timeouts.clear()
        for handle in handles:
            self._cancel(handle)

    def set_interval(self, callback: Callable[..., Any], delay: float, *args: Any) -> int:
        """Run ``callback(*args)`` every ``delay`` seconds until cleared."""

        timer_id = next(_TIMER_IDS)

        def _fire() -> None:
            with self._lock:
                if timer_id not in self._intervals:
                    return
            self._invoke("Interval", timer_id, callback, args)

        with self._lock:
            self._intervals[timer_id] = _PENDING
        handle = self._scheduler.call_repeating(delay, _fire)
        with self._lock:
            tracked = timer_id in self._intervals
            if tracked:
                self._intervals[timer_id] = handle
        if not tracked:
            self._cancel(handle)
        return timer_id

    def clear_interval(self, timer_id: int | None) -> bool:
        with self._lock:
            handle = self._intervals.pop(timer_id, None)
        if handle is None:
            return False
        self._cancel(handle)
        return True

    def clear_all_intervals(self) -> None:
        with self._lock:
            handles = list(self._intervals.values())
            self._intervals.clear()
        for handle in handles:
            self._cancel(handle)

    def clear_all(self) -> None:
        """Cancel every tracked timeout and interval."""

        self.clear_all_timeouts()
        self.clear_all_intervals()

    @property
    def active_timeouts(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._timeouts)

    @property
    def active_intervals(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._intervals)

    def _cancel(self, handle: Any) -> None:
        if handle is _PENDING:
            return
        try:
            self._scheduler.cancel(handle)
        except Exception:
            LOGGER.exception("Failed to cancel timer for module '%s'", self._owner)

    def _invoke(
        self,
        kind: str,
        timer_id: int,
        callback: Callable[..., Any],
        args: tuple[Any, ...],
    ) -> None:
        try:
            callback(*args)
        except Exception as exc:
            self._log.event(
                logging.ERROR,
                "timer.callback_failed",
                {"kind": kind, "timer_id": timer_id, "error": exc},
                exc_info=exc,
            )


class _Pending:
    __slots__ = ()

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return "<pending timer>"


_PENDING = _Pending()


__all__ = ["AsyncioScheduler", "ThreadingScheduler", "TimerRegistry"]
