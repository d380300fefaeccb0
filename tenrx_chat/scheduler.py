"""
Single-threaded task scheduling for the chat relay.

Every relay broadcast, bot typing delay, packet retry and keep-alive goes
through a Scheduler instead of ad-hoc timers:

  - LoopScheduler   delegates to the running asyncio event loop.
  - ManualScheduler is a deterministic harness with a virtual clock; tests
                    drain it explicitly with run_pending() / advance().

Both run callbacks scheduled for the same instant in FIFO order.
"""
import asyncio
import heapq
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)


class Handle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(ABC):
    """Deferred-callback contract shared by the relay, the bot and the bridge."""

    @abstractmethod
    def time(self) -> float:
        ...

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> Handle:
        ...

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> Handle:
        return self.call_later(0, callback, *args)

    def call_every(self, interval: float, callback: Callable[..., Any], *args: Any) -> "RepeatingHandle":
        """Run `callback` every `interval` seconds until the handle is cancelled."""
        return RepeatingHandle(self, interval, callback, args)


class RepeatingHandle:
    """Re-arms a one-shot timer after each run; cancel() stops the chain."""

    def __init__(self, scheduler: Scheduler, interval: float, callback: Callable[..., Any], args: tuple) -> None:
        self._scheduler = scheduler
        self._interval = interval
        self._callback = callback
        self._args = args
        self._cancelled = False
        self._timer = scheduler.call_later(interval, self._fire)

    def _fire(self) -> None:
        if self._cancelled:
            return
        self._timer = self._scheduler.call_later(self._interval, self._fire)
        self._callback(*self._args)

    def cancel(self) -> None:
        self._cancelled = True
        self._timer.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancelled


# ─────────────────────────────────────────────
# asyncio-backed scheduler
# ─────────────────────────────────────────────

class LoopScheduler(Scheduler):
    """Schedules onto an asyncio loop, resolved lazily from the running loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def time(self) -> float:
        return self.loop.time()

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> Handle:
        return self.loop.call_soon(callback, *args)

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> Handle:
        if delay <= 0:
            return self.loop.call_soon(callback, *args)
        return self.loop.call_later(delay, callback, *args)


# ─────────────────────────────────────────────
# Deterministic scheduler (virtual clock)
# ─────────────────────────────────────────────

class ManualHandle:
    __slots__ = ("when", "callback", "args", "cancelled")

    def __init__(self, when: float, callback: Callable[..., Any], args: tuple) -> None:
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler(Scheduler):
    """
    Virtual-clock scheduler. Nothing runs until the owner drains it.

    run_pending() runs every callback due at the current time, including the
    ones those callbacks schedule with call_soon. advance(seconds) moves the
    clock forward, firing timers in (due time, insertion order).
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._queue: list[tuple[float, int, ManualHandle]] = []
        self._counter = itertools.count()

    def time(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> ManualHandle:
        handle = ManualHandle(self._now + max(delay, 0), callback, args)
        heapq.heappush(self._queue, (handle.when, next(self._counter), handle))
        return handle

    @property
    def pending(self) -> int:
        """Number of scheduled, not-cancelled callbacks."""
        return sum(1 for _, _, h in self._queue if not h.cancelled)

    def run_pending(self) -> int:
        """Run everything due now. Returns the number of callbacks executed."""
        return self._run_until(self._now)

    def advance(self, seconds: float) -> int:
        """Move the clock forward by `seconds`, running timers as they fall due."""
        return self._run_until(self._now + seconds)

    def _run_until(self, target: float) -> int:
        ran = 0
        while self._queue and self._queue[0][0] <= target:
            when, _, handle = heapq.heappop(self._queue)
            self._now = max(self._now, when)
            if handle.cancelled:
                continue
            ran += 1
            try:
                handle.callback(*handle.args)
            except Exception:
                logger.exception(f"Scheduled callback {handle.callback!r} failed")
        self._now = max(self._now, target)
        return ran
