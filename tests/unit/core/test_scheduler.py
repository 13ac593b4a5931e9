"""
Unit tests for AsyncioScheduler and ManualScheduler.
"""

import asyncio
import logging

import pytest

from naphex.core.scheduler import AsyncioScheduler, ManualScheduler, SchedulerError


class TestManualScheduler:
    """Tests for ManualScheduler."""

    def test_starts_at_given_time(self) -> None:
        """now() starts at start_ms and does not move on its own."""
        scheduler = ManualScheduler(start_ms=500)

        assert scheduler.now() == 500

    def test_negative_start_rejected(self) -> None:
        """start_ms must be non-negative."""
        with pytest.raises(SchedulerError):
            ManualScheduler(start_ms=-1)

    def test_call_later_fires_when_due(self) -> None:
        """One-shot timers fire once time reaches their due time."""
        scheduler = ManualScheduler()
        fired = []
        timer = scheduler.call_later(100, lambda: fired.append(scheduler.now()))

        scheduler.advance_by(99)
        assert fired == []

        scheduler.advance_by(1)
        assert fired == [100]
        assert not timer.active

        scheduler.advance_by(1000)
        assert fired == [100]

    def test_timers_fire_in_due_order(self) -> None:
        """Timers fire by due time, then by creation order."""
        scheduler = ManualScheduler()
        fired = []
        scheduler.call_later(300, lambda: fired.append("c"))
        scheduler.call_later(100, lambda: fired.append("a"))
        scheduler.call_later(100, lambda: fired.append("b"))

        scheduler.advance_to(1000)

        assert fired == ["a", "b", "c"]
        assert scheduler.now() == 1000

    def test_cancel(self) -> None:
        """Cancelled timers never fire and leave active_timers."""
        scheduler = ManualScheduler()
        fired = []
        timer = scheduler.call_later(100, lambda: fired.append(True))
        timer.cancel()

        scheduler.advance_by(1000)

        assert fired == []
        assert scheduler.active_timers == []

    def test_call_every_repeats(self) -> None:
        """Repeating timers fire once per interval until cancelled."""
        scheduler = ManualScheduler()
        fired = []
        timer = scheduler.call_every(30, lambda: fired.append(scheduler.now()))

        scheduler.advance_by(100)
        assert fired == [30, 60, 90]
        assert timer.repeating

        timer.cancel()
        scheduler.advance_by(100)
        assert fired == [30, 60, 90]

    def test_call_every_rejects_non_positive(self) -> None:
        """A zero interval would never let time advance."""
        with pytest.raises(SchedulerError):
            ManualScheduler().call_every(0, lambda: None)

    def test_timer_scheduled_from_callback(self) -> None:
        """A callback may arm a new timer that fires within the same advance."""
        scheduler = ManualScheduler()
        fired = []
        scheduler.call_later(10, lambda: scheduler.call_later(10, lambda: fired.append(scheduler.now())))

        scheduler.advance_by(50)

        assert fired == [20]

    def test_cannot_go_backwards(self) -> None:
        """Time is monotonic."""
        scheduler = ManualScheduler(start_ms=100)

        with pytest.raises(SchedulerError):
            scheduler.advance_to(50)
        with pytest.raises(SchedulerError):
            scheduler.advance_by(-1)

    def test_next_due(self) -> None:
        """next_due() reports the earliest active timer."""
        scheduler = ManualScheduler()
        assert scheduler.next_due() is None

        scheduler.call_later(200, lambda: None)
        first = scheduler.call_later(50, lambda: None)
        assert scheduler.next_due() == 50

        first.cancel()
        assert scheduler.next_due() == 200

    @pytest.mark.asyncio
    async def test_run_tasks(self) -> None:
        """Spawned coroutines run on run_tasks(), including ones spawned meanwhile."""
        scheduler = ManualScheduler()
        ran = []

        async def child() -> None:
            ran.append("child")

        async def parent() -> None:
            ran.append("parent")
            scheduler.spawn(child())

        task = scheduler.spawn(parent())
        assert scheduler.pending_tasks == 1

        count = await scheduler.run_tasks()

        assert ran == ["parent", "child"]
        assert count == 2
        assert task.done()
        assert scheduler.pending_tasks == 0

    @pytest.mark.asyncio
    async def test_cancelled_task_never_runs(self) -> None:
        """A task cancelled before run_tasks() is discarded."""
        scheduler = ManualScheduler()
        ran = []

        async def work() -> None:
            ran.append(True)

        task = scheduler.spawn(work())
        assert task.cancel()
        await scheduler.run_tasks()

        assert ran == []
        assert task.cancelled()
        assert not task.cancel()

    @pytest.mark.asyncio
    async def test_task_exception_logged(self, caplog) -> None:
        """A failing task is logged and does not stop the others."""
        scheduler = ManualScheduler()
        ran = []

        async def boom() -> None:
            raise RuntimeError("boom")

        async def ok() -> None:
            ran.append(True)

        scheduler.spawn(boom())
        scheduler.spawn(ok())
        with caplog.at_level(logging.ERROR):
            await scheduler.run_tasks()

        assert ran == [True]
        assert "Background task failed" in caplog.text


class TestAsyncioScheduler:
    """Tests for AsyncioScheduler."""

    @pytest.mark.asyncio
    async def test_call_later(self) -> None:
        """One-shot timers fire on the running loop."""
        scheduler = AsyncioScheduler()
        fired = asyncio.Event()
        timer = scheduler.call_later(10, fired.set)

        await asyncio.wait_for(fired.wait(), timeout=1.0)

        assert not timer.active

    @pytest.mark.asyncio
    async def test_cancelled_timer_does_not_fire(self) -> None:
        """cancel() prevents the callback."""
        scheduler = AsyncioScheduler()
        fired = []
        timer = scheduler.call_later(10, lambda: fired.append(True))
        timer.cancel()

        await asyncio.sleep(0.05)

        assert fired == []
        assert not timer.active

    @pytest.mark.asyncio
    async def test_call_every(self) -> None:
        """Repeating timers keep firing until cancelled."""
        scheduler = AsyncioScheduler()
        fired = []
        timer = scheduler.call_every(10, lambda: fired.append(True))

        await asyncio.sleep(0.1)
        timer.cancel()
        count = len(fired)
        await asyncio.sleep(0.05)

        assert count >= 2
        assert len(fired) == count

    @pytest.mark.asyncio
    async def test_callback_error_does_not_break_timer(self, caplog) -> None:
        """A raising callback is logged; a repeating timer keeps going."""
        scheduler = AsyncioScheduler()
        calls = []

        def flaky() -> None:
            calls.append(True)
            raise RuntimeError("callback failed")

        with caplog.at_level(logging.ERROR):
            timer = scheduler.call_every(10, flaky)
            await asyncio.sleep(0.06)
            timer.cancel()

        assert len(calls) >= 2
        assert "Timer callback error" in caplog.text

    @pytest.mark.asyncio
    async def test_spawn(self) -> None:
        """spawn() runs the coroutine as a task."""
        scheduler = AsyncioScheduler()
        ran = []

        async def work() -> None:
            ran.append(True)

        task = scheduler.spawn(work())
        await task

        assert ran == [True]
        assert task.done()

    @pytest.mark.asyncio
    async def test_now_is_monotonic(self) -> None:
        """now() counts milliseconds since creation."""
        scheduler = AsyncioScheduler()
        first = scheduler.now()
        await asyncio.sleep(0.02)

        assert scheduler.now() >= first + 10
