"""
Reconnect backoff for the live feed client.

delay(n) = min(base * 2**n, cap) for attempt counts n below the ceiling.
At or above the ceiling no reconnect is scheduled: the owner falls back to polling.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from naphex.feed.config import RetryPolicy
from naphex.feed.types import RetryState
from naphex.ports.scheduler import Millis, Scheduler, TimerHandle

logger = logging.getLogger(__name__)


def backoff_delay_ms(attempt: int, policy: RetryPolicy) -> Millis:
    """Exponential backoff capped at policy.max_delay_ms."""
    if attempt < 0:
        raise ValueError(f"attempt must be >= 0: {attempt}")
    # Cap the exponent so large attempt counts do not build huge ints
    exponent = min(attempt, 32)
    return min(policy.base_delay_ms * (2**exponent), policy.max_delay_ms)


class BackoffScheduler:
    """
    Owns the single pending reconnect timer of a client.

    schedule() either arms a timer (returning its delay) or reports that the
    retry budget is spent (returning None). Arming always cancels the previous
    timer first, so rapid repeated errors never double-fire.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        policy: RetryPolicy,
        retry_state: RetryState,
        name: str = "backoff",
    ) -> None:
        self._scheduler = scheduler
        self._policy = policy
        self._retry = retry_state
        self._name = name
        self._timer: Optional[TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._timer is not None and self._timer.active

    def next_delay_ms(self) -> Optional[Millis]:
        if self._retry.exhausted:
            return None
        return backoff_delay_ms(self._retry.attempt_count, self._policy)

    def schedule(self, on_fire: Callable[[], None]) -> Optional[Millis]:
        """
        Arm the reconnect timer for the current attempt count.

        On firing, attempt_count is incremented before on_fire runs.
        Returns the delay, or None when the budget is exhausted.
        """
        self.cancel()
        delay = self.next_delay_ms()
        if delay is None:
            logger.info(
                f"[{self._name}] Retry budget exhausted "
                f"({self._retry.attempt_count}/{self._retry.ceiling})"
            )
            return None

        def _fire() -> None:
            if self._timer is not timer:
                return  # superseded or cancelled
            self._timer = None
            self._retry.attempt_count += 1
            on_fire()

        timer = self._scheduler.call_later(delay, _fire)
        self._timer = timer
        logger.info(
            f"[{self._name}] Reconnect attempt {self._retry.attempt_count + 1}/"
            f"{self._retry.ceiling} in {delay}ms"
        )
        return delay

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
