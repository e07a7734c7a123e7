from __future__ import annotations

import asyncio
import heapq
import itertools
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Protocol


@dataclass
class TimerHandle:
    due: float
    seq: int
    callback: Callable[[], None]
    cancelled: bool = False
    fired: bool = False
    native: Any = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return not (self.cancelled or self.fired)


class TimerService(Protocol):
    def schedule(self, delay_sec: float, callback: Callable[[], None]) -> TimerHandle:
        ...

    def cancel(self, handle: Optional[TimerHandle]) -> None:
        ...

    def now(self) -> float:
        ...


class ManualTimerService:
    """Timer service driven by simulated time.

    Nothing fires until :meth:`advance` or :meth:`run_until_idle` is called,
    which makes scheduling fully deterministic in tests and in the
    ``simulate`` command.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)
        self._queue: List[tuple[float, int, TimerHandle]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def schedule(self, delay_sec: float, callback: Callable[[], None]) -> TimerHandle:
        delay = max(0.0, float(delay_sec))
        seq = next(self._seq)
        handle = TimerHandle(due=self._now + delay, seq=seq, callback=callback)
        heapq.heappush(self._queue, (handle.due, seq, handle))
        return handle

    def cancel(self, handle: Optional[TimerHandle]) -> None:
        if handle is not None:
            handle.cancelled = True

    @property
    def pending(self) -> List[TimerHandle]:
        return sorted(
            (entry[2] for entry in self._queue if entry[2].active),
            key=lambda h: (h.due, h.seq),
        )

    def next_due(self) -> Optional[float]:
        for due, _seq, handle in sorted(self._queue):
            if handle.active:
                return due
        return None

    def advance(self, seconds: float) -> int:
        """Move the clock forward, firing every timer due within the window."""
        target = self._now + max(0.0, float(seconds))
        fired = 0
        while self._queue and self._queue[0][0] <= target + 1e-9:
            due, _seq, handle = heapq.heappop(self._queue)
            if not handle.active:
                continue
            self._now = max(self._now, due)
            handle.fired = True
            handle.callback()
            fired += 1
        self._now = target
        return fired

    def run_until_idle(self, limit: int = 100000) -> int:
        fired = 0
        while fired < limit:
            due = self.next_due()
            if due is None:
                break
            fired += self.advance(due - self._now)
        return fired


class AsyncioTimerService:
    """Timer service on an asyncio loop; callbacks run on the loop thread."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop
        self._seq = itertools.count()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            # Bound lazily so the service can be built before the loop starts.
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return self._get_loop().time()

    def schedule(self, delay_sec: float, callback: Callable[[], None]) -> TimerHandle:
        loop = self._get_loop()
        delay = max(0.0, float(delay_sec))
        handle = TimerHandle(due=loop.time() + delay, seq=next(self._seq), callback=callback)

        def _fire() -> None:
            if not handle.active:
                return
            handle.fired = True
            callback()

        handle.native = loop.call_later(delay, _fire)
        return handle

    def cancel(self, handle: Optional[TimerHandle]) -> None:
        if handle is None:
            return
        handle.cancelled = True
        if handle.native is not None:
            handle.native.cancel()
