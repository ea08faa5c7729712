from __future__ import annotations

import asyncio
import heapq
import itertools
from abc import ABC, abstractmethod
from typing import Callable


class TimerHandle:
    def __init__(self, cancel_cb: Callable[[], None] | None = None) -> None:
        self._cancel_cb = cancel_cb
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._cancel_cb is not None:
            self._cancel_cb()


class Scheduler(ABC):
    """Source of cancellable one-shot timers."""

    @abstractmethod
    def call_later(self, delay_s: float, callback: Callable[[], None]) -> TimerHandle: ...

    @abstractmethod
    def now(self) -> float: ...


class LoopScheduler(Scheduler):
    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> TimerHandle:
        handle: TimerHandle

        def fire() -> None:
            if not handle.cancelled:
                callback()

        inner = self._get_loop().call_later(max(0.0, float(delay_s)), fire)
        handle = TimerHandle(inner.cancel)
        return handle

    def now(self) -> float:
        return self._get_loop().time()


class VirtualScheduler(Scheduler):
    """Deterministic clock: timers only fire from advance()."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)
        self._seq = itertools.count()
        self._heap: list[tuple[float, int, TimerHandle, Callable[[], None]]] = []

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle()
        due = self._now + max(0.0, float(delay_s))
        heapq.heappush(self._heap, (due, next(self._seq), handle, callback))
        return handle

    def now(self) -> float:
        return self._now

    @property
    def pending(self) -> int:
        return sum(1 for (_, _, h, _) in self._heap if not h.cancelled)

    def advance(self, seconds: float) -> int:
        """Move the clock forward, running due timers in order. Returns how many fired."""
        target = self._now + max(0.0, float(seconds))
        fired = 0
        while self._heap and self._heap[0][0] <= target:
            due, _, handle, callback = heapq.heappop(self._heap)
            self._now = due
            if handle.cancelled:
                continue
            callback()
            fired += 1
        self._now = target
        return fired
