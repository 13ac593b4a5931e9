"""
Shared types, enums, and data structures for the live feed client.

This module contains types that are used across multiple components
of the live feed system.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional


class ConnectionState(str, Enum):
    """State machine for a LiveFeedClient. Exactly one is active at a time."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    FALLBACK = "fallback"


class FeedMode(str, Enum):
    """Which data-acquisition mechanism currently owns the client."""

    IDLE = "idle"
    STREAMING = "streaming"  # stream session open
    BACKOFF = "backoff"  # reconnect timer pending
    POLLING = "polling"  # polling interval active


@dataclass
class RetryState:
    """Reconnect bookkeeping for one client."""

    ceiling: int
    attempt_count: int = 0

    @property
    def exhausted(self) -> bool:
        """True once the stream reconnect budget is spent."""
        return self.attempt_count >= self.ceiling

    def reset(self) -> None:
        self.attempt_count = 0


SnapshotSource = Literal["stream", "poll"]


@dataclass(frozen=True, slots=True)
class DataSnapshot:
    """One decoded unit of server data delivered to the owner."""

    payload: dict[str, Any]  # full decoded envelope
    data: Any  # value under `key`
    key: str  # "data", "results" or "userData"
    source: SnapshotSource
    sequence: int
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class FeedMetrics:
    """Counters for a single client."""

    messages_received: int = 0
    messages_delivered: int = 0
    parse_errors: int = 0
    transient_errors: int = 0
    failures: int = 0
    reconnects_scheduled: int = 0
    polls: int = 0
    polls_ok: int = 0
    poll_errors: int = 0
    last_message_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None

    def record_error(self, error: BaseException) -> None:
        self.last_error = str(error)
        self.last_error_at = datetime.now(timezone.utc)


@dataclass
class FeedHealth:
    """Health snapshot for a LiveFeedClient."""

    state: ConnectionState
    mode: FeedMode
    url: str
    attempt_count: int = 0
    messages_received: int = 0
    messages_delivered: int = 0
    parse_errors: int = 0
    reconnects_scheduled: int = 0
    polls: int = 0
    polls_ok: int = 0
    poll_errors: int = 0
    last_message_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None

    @property
    def is_live(self) -> bool:
        """Check if the stream is currently connected."""
        return self.state == ConnectionState.CONNECTED

    @property
    def seconds_since_message(self) -> Optional[float]:
        """Seconds since last delivered data, or None if nothing arrived yet."""
        if self.last_message_at is None:
            return None
        now = datetime.now(timezone.utc)
        return (now - self.last_message_at).total_seconds()
