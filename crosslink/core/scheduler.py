from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
from typing import Any, Callable, Generic, List, Optional, Protocol, Tuple, TypeVar

logger = logging.getLogger(__name__)

P = TypeVar("P")


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """The one timing primitive the sync layer needs from its host."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class _ManualTimer:
    def __init__(self, when: float, callback: Callable[[], None]) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """
    Deterministic scheduler driven by a virtual clock.

    Nothing fires until the host calls `advance()`; timers then run in due order
    (ties in scheduling order), on the caller's thread.
    """

    def __init__(self) -> None:
        self._now = 0.0
        self._counter = itertools.count()
        self._heap: List[Tuple[float, int, _ManualTimer]] = []

    @property
    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> _ManualTimer:
        timer = _ManualTimer(self._now + max(delay, 0.0), callback)
        heapq.heappush(self._heap, (timer.when, next(self._counter), timer))
        return timer

    def pending(self) -> int:
        return sum(1 for _, _, t in self._heap if not t.cancelled)

    def advance(self, seconds: float) -> int:
        """Move the clock forward and fire every timer that became due. Returns how many fired."""
        target = self._now + seconds
        fired = 0
        while self._heap and self._heap[0][0] <= target:
            when, _, timer = heapq.heappop(self._heap)
            self._now = max(self._now, when)
            if timer.cancelled:
                continue
            fired += 1
            try:
                timer.callback()
            except Exception:
                logger.exception("Scheduled callback failed")
        self._now = target
        return fired


class AsyncioScheduler:
    """Scheduler backed by an asyncio event loop (the running loop by default)."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(max(delay, 0.0), callback)


class Debouncer(Generic[P]):
    """
    Coalesces rapid triggers into at most one delivery per window.

    The first trigger opens a window of `delay` seconds; later triggers inside the
    window replace the pending payload. When the window closes only the most recent
    payload is delivered. Intermediate payloads are dropped, never queued.

    `delay <= 0` delivers synchronously.
    """

    def __init__(self, scheduler: Scheduler, delay: float, deliver: Callable[[P], Any]) -> None:
        self._scheduler = scheduler
        self.delay = delay
        self._deliver = deliver
        self._timer: Optional[TimerHandle] = None
        self._payload: Optional[P] = None
        self._has_payload = False

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def trigger(self, payload: P) -> None:
        if self.delay <= 0:
            self._deliver(payload)
            return

        self._payload = payload
        self._has_payload = True
        if self._timer is None:
            self._timer = self._scheduler.call_later(self.delay, self._flush)

    def _flush(self) -> None:
        self._timer = None
        if not self._has_payload:
            return
        payload = self._payload
        self._payload = None
        self._has_payload = False
        self._deliver(payload)

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = None
        self._payload = None
        self._has_payload = False
