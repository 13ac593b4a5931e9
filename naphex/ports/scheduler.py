"""Scheduler Port Interface.

Contract: Owns every timer and background task of a live feed client. Callbacks run
on a single thread (the event loop); nothing here executes in parallel.
"""

from __future__ import annotations

from typing import Any, Callable, Coroutine, Protocol

Millis = int


class TimerHandle(Protocol):
    def cancel(self) -> None:
        """Cancel the timer. Idempotent; a cancelled timer never fires."""
        ...

    @property
    def active(self) -> bool:
        """True while the timer may still fire."""
        ...


class TaskHandle(Protocol):
    def cancel(self) -> Any: ...

    def done(self) -> bool: ...


class Scheduler(Protocol):
    def now(self) -> Millis:
        """Current time in milliseconds (monotonic within the scheduler)."""
        ...

    def call_later(self, delay_ms: Millis, callback: Callable[[], None]) -> TimerHandle:
        """Run callback once after delay_ms."""
        ...

    def call_every(self, interval_ms: Millis, callback: Callable[[], None]) -> TimerHandle:
        """Run callback every interval_ms until cancelled. First run after one interval."""
        ...

    def spawn(self, coro: Coroutine[Any, Any, None]) -> TaskHandle:
        """Run a coroutine in the background."""
        ...
