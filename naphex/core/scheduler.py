"""
Timer and task ownership for live feed clients.

AsyncioScheduler drives real connections on the running event loop. ManualScheduler is
its deterministic twin: time only moves when the caller advances it, which lets tests
and simulations step through reconnect and polling schedules without sleeping.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
from typing import Any, Callable, Coroutine, Optional

from naphex.ports.scheduler import Millis

logger = logging.getLogger(__name__)


class SchedulerError(RuntimeError):
    """Raised when a scheduler operation would violate its invariants (e.g., going backward)."""


# -------- AsyncioScheduler ----------------------------------------------------


class _LoopTimer:
    """One-shot or repeating timer on an asyncio loop."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        delay_ms: Millis,
        callback: Callable[[], None],
        repeat: bool,
    ) -> None:
        self._loop = loop
        self._delay_ms = delay_ms
        self._callback = callback
        self._repeat = repeat
        self._active = True
        self._handle: Optional[asyncio.TimerHandle] = None
        self._arm()

    def _arm(self) -> None:
        self._handle = self._loop.call_later(self._delay_ms / 1000.0, self._fire)

    def _fire(self) -> None:
        if not self._active:
            return
        if self._repeat:
            self._arm()
        else:
            self._active = False
        try:
            self._callback()
        except Exception as e:
            logger.error(f"Timer callback error: {e}", exc_info=True)

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        self._active = False
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class AsyncioScheduler:
    """
    Scheduler backed by the asyncio event loop.

    The loop is resolved lazily, so the scheduler can be created before the loop runs
    as long as it is used from inside it.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop
        self._t0_mono = time.monotonic()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> Millis:
        return int((time.monotonic() - self._t0_mono) * 1000)

    def call_later(self, delay_ms: Millis, callback: Callable[[], None]) -> _LoopTimer:
        return _LoopTimer(self._get_loop(), max(0, delay_ms), callback, repeat=False)

    def call_every(self, interval_ms: Millis, callback: Callable[[], None]) -> _LoopTimer:
        if interval_ms <= 0:
            raise SchedulerError(f"interval_ms must be > 0: {interval_ms}")
        return _LoopTimer(self._get_loop(), interval_ms, callback, repeat=True)

    def spawn(self, coro: Coroutine[Any, Any, None]) -> "asyncio.Task[None]":
        task = self._get_loop().create_task(coro)
        task.add_done_callback(_log_task_exception)
        return task


def _log_task_exception(task: "asyncio.Task[None]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Background task failed: {exc!r}")


# -------- ManualScheduler -----------------------------------------------------


class ManualTimer:
    """Timer owned by a ManualScheduler."""

    def __init__(
        self,
        due_ms: Millis,
        interval_ms: Optional[Millis],
        callback: Callable[[], None],
    ) -> None:
        self.due_ms = due_ms
        self.interval_ms = interval_ms
        self.callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    @property
    def repeating(self) -> bool:
        return self.interval_ms is not None

    def cancel(self) -> None:
        self._active = False

    def _deactivate(self) -> None:
        self._active = False


class ManualTask:
    """Coroutine queued on a ManualScheduler until run_tasks() drives it."""

    def __init__(self, coro: Coroutine[Any, Any, None]) -> None:
        self.coro = coro
        self._cancelled = False
        self._done = False
        self._running = False

    def cancel(self) -> bool:
        if self._done:
            return False
        self._cancelled = True
        if not self._running:
            self._done = True
            self.coro.close()
        return True

    def cancelled(self) -> bool:
        return self._cancelled

    def done(self) -> bool:
        return self._done

    def _finish(self) -> None:
        self._running = False
        self._done = True


class ManualScheduler:
    """
    Deterministic, manually-advanced scheduler.

    Timers fire only inside advance_to()/advance_by(), in due-time order. Spawned
    coroutines are queued and executed by `await run_tasks()`.
    """

    def __init__(self, start_ms: Millis = 0) -> None:
        if start_ms < 0:
            raise SchedulerError("start_ms must be >= 0")
        self._now_ms: Millis = start_ms
        self._heap: list[tuple[Millis, int, ManualTimer]] = []
        self._seq = itertools.count()
        self._tasks: list[ManualTask] = []

    def now(self) -> Millis:
        return self._now_ms

    def call_later(self, delay_ms: Millis, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self._now_ms + max(0, delay_ms), None, callback)
        self._push(timer)
        return timer

    def call_every(self, interval_ms: Millis, callback: Callable[[], None]) -> ManualTimer:
        if interval_ms <= 0:
            raise SchedulerError(f"interval_ms must be > 0: {interval_ms}")
        timer = ManualTimer(self._now_ms + interval_ms, interval_ms, callback)
        self._push(timer)
        return timer

    def spawn(self, coro: Coroutine[Any, Any, None]) -> ManualTask:
        task = ManualTask(coro)
        self._tasks.append(task)
        return task

    def _push(self, timer: ManualTimer) -> None:
        heapq.heappush(self._heap, (timer.due_ms, next(self._seq), timer))

    @property
    def active_timers(self) -> list[ManualTimer]:
        """Active timers ordered by due time."""
        return [t for _, _, t in sorted(self._heap, key=lambda e: (e[0], e[1])) if t.active]

    @property
    def pending_tasks(self) -> int:
        return sum(1 for t in self._tasks if not t.done())

    def next_due(self) -> Optional[Millis]:
        timers = self.active_timers
        return timers[0].due_ms if timers else None

    def advance_to(self, ts_ms: Millis) -> Millis:
        """Move time forward to ts_ms, firing every timer due on the way."""
        if ts_ms < self._now_ms:
            raise SchedulerError(f"ManualScheduler: cannot go backwards: {ts_ms} < {self._now_ms}")

        while self._heap and self._heap[0][0] <= ts_ms:
            due_ms, _, timer = heapq.heappop(self._heap)
            if not timer.active:
                continue
            self._now_ms = due_ms
            if timer.repeating:
                timer.due_ms = due_ms + timer.interval_ms  # type: ignore[operator]
                self._push(timer)
            else:
                timer._deactivate()
            timer.callback()

        self._now_ms = ts_ms
        return self._now_ms

    def advance_by(self, delta_ms: Millis) -> Millis:
        if delta_ms < 0:
            raise SchedulerError(f"ManualScheduler: cannot go backwards, delta_ms < 0: {delta_ms}")
        return self.advance_to(self._now_ms + delta_ms)

    async def run_tasks(self) -> int:
        """Await queued coroutines (including ones spawned meanwhile). Returns count run."""
        ran = 0
        while True:
            runnable = [t for t in self._tasks if not t.done()]
            self._tasks = []
            if not runnable:
                return ran
            for task in runnable:
                if task.done():
                    continue
                task._running = True
                try:
                    await task.coro
                except Exception as e:
                    logger.error(f"Background task failed: {e!r}")
                finally:
                    task._finish()
                ran += 1
