"""
Live Feed Client - top-level connection manager for one screen.

Coordinates the live feed components:
- StreamSession for the push-stream connection
- ErrorClassifier for telling transport noise from failures
- BackoffScheduler for reconnect timing
- PollingFallback once streaming is abandoned

State Machine:
    [IDLE] --connect()--> [CONNECTING] --open--> [CONNECTED]
                              ^   |                  |
              transient noise |   | failure          | failure
                              |   v                  v
                          (reconnect timer) <--- [ERROR]
                                                     | budget exhausted
                                                     v
                                                [FALLBACK] (polling)

    retry() re-enters CONNECTING from any state; disconnect() is terminal.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from naphex.core.scheduler import AsyncioScheduler
from naphex.feed.backoff import BackoffScheduler
from naphex.feed.classifier import ErrorClass, ErrorClassifier
from naphex.feed.config import FeedConfig
from naphex.feed.decoder import DecodedPayload
from naphex.feed.polling import AiohttpFetcher, Fetcher, PollingFallback
from naphex.feed.session import StreamSession
from naphex.feed.transport import AiohttpEventStreamTransport, StreamTransport
from naphex.feed.types import (
    ConnectionState,
    DataSnapshot,
    FeedHealth,
    FeedMetrics,
    FeedMode,
    RetryState,
    SnapshotSource,
)
from naphex.ports.scheduler import Scheduler

logger = logging.getLogger(__name__)


class LiveFeedClient:
    """
    Keeps one screen supplied with live server data.

    The client never raises to its owner; everything it has to say goes through
    two callbacks:
    - on_data(snapshot): once per decoded stream message or poll result
    - on_status_change(state): once per ConnectionState transition

    At most one of {open stream, pending reconnect timer, polling interval} is
    active at any time. disconnect() cancels all of them synchronously and no
    callback fires afterwards.

    Usage:
        config = ApiEndpoints(base_url).users_feed()
        client = LiveFeedClient(config, on_data=render, on_status_change=show_status)
        client.connect()
        # ... screen active ...
        client.disconnect()
    """

    def __init__(
        self,
        config: FeedConfig,
        on_data: Optional[Callable[[DataSnapshot], None]] = None,
        on_status_change: Optional[Callable[[ConnectionState], None]] = None,
        *,
        scheduler: Optional[Scheduler] = None,
        transport: Optional[StreamTransport] = None,
        fetcher: Optional[Fetcher] = None,
        classifier: Optional[ErrorClassifier] = None,
    ) -> None:
        """
        Initialize the client. Nothing connects until connect() is called.

        Args:
            config: Feed configuration (endpoints, headers, retry policy)
            on_data: Callback receiving each DataSnapshot
            on_status_change: Callback receiving each new ConnectionState
            scheduler: Timer/task owner (defaults to the running asyncio loop)
            transport: Push-stream transport (defaults to aiohttp SSE)
            fetcher: Polling fetcher (defaults to aiohttp GET)
            classifier: Error classifier
        """
        self._config = config
        self._on_data = on_data
        self._on_status_change = on_status_change
        self._name = config.name

        self._scheduler = scheduler or AsyncioScheduler()
        self._classifier = classifier or ErrorClassifier()
        transport = transport or AiohttpEventStreamTransport(
            self._scheduler, config.stream, name=f"{self._name}_sse"
        )
        fetcher = fetcher or AiohttpFetcher(timeout_ms=config.stream.connect_timeout_ms)

        # State
        self._state = ConnectionState.IDLE
        self._retry = RetryState(ceiling=config.retry.max_attempts)
        self._metrics = FeedMetrics()
        self._started = False
        self._destroyed = False
        self._sequence = 0
        self._latest: Optional[DataSnapshot] = None

        # Components
        self._session = StreamSession(
            transport,
            on_open=self._on_stream_open,
            on_payload=self._on_stream_payload,
            on_error=self._on_stream_error,
            data_key=config.data_key,
            metrics=self._metrics,
            name=f"{self._name}_session",
        )
        self._backoff = BackoffScheduler(
            self._scheduler,
            config.retry,
            self._retry,
            name=f"{self._name}_backoff",
        )
        self._polling = PollingFallback(
            self._scheduler,
            fetcher,
            url=config.effective_poll_url,
            on_payload=self._on_poll_payload,
            interval_ms=config.retry.poll_interval_ms,
            headers={**config.headers, "Accept": "application/json, text/event-stream"},
            data_key=config.data_key,
            metrics=self._metrics,
            name=f"{self._name}_polling",
        )

    # --- properties ---

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def mode(self) -> FeedMode:
        """Which acquisition mechanism is active right now."""
        if self._session.is_open:
            return FeedMode.STREAMING
        if self._backoff.pending:
            return FeedMode.BACKOFF
        if self._polling.active:
            return FeedMode.POLLING
        return FeedMode.IDLE

    @property
    def retry_state(self) -> RetryState:
        return self._retry

    @property
    def latest_snapshot(self) -> Optional[DataSnapshot]:
        return self._latest

    @property
    def config(self) -> FeedConfig:
        return self._config

    @property
    def metrics(self) -> FeedMetrics:
        return self._metrics

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    # --- owner-facing API ---

    def connect(self) -> None:
        """Open the stream. Only valid once per client."""
        if self._destroyed:
            logger.warning(f"[{self._name}] connect() after disconnect(); ignoring")
            return
        if self._started:
            logger.warning(f"[{self._name}] Already connected or connecting")
            return

        self._started = True
        logger.info(f"[{self._name}] Connecting to {self._config.stream_url}")
        self._open_stream()

    def disconnect(self) -> None:
        """Tear down: cancel every timer, stop polling, close the stream. Terminal."""
        if self._destroyed:
            return
        self._destroyed = True

        self._backoff.cancel()
        self._polling.stop()
        self._session.close()
        # No notification: nothing may reach the owner after teardown
        self._state = ConnectionState.IDLE
        logger.info(f"[{self._name}] Disconnected")

    def retry(self) -> None:
        """Reset the retry budget and open the stream now, whatever the current state."""
        if self._destroyed:
            logger.warning(f"[{self._name}] retry() after disconnect(); ignoring")
            return

        logger.info(f"[{self._name}] Manual retry from state {self._state.value}")
        self._started = True
        self._retry.reset()
        self._open_stream()

    def get_health(self) -> FeedHealth:
        """Get current client health snapshot."""
        return FeedHealth(
            state=self._state,
            mode=self.mode,
            url=self._session.url or self._config.stream_url,
            attempt_count=self._retry.attempt_count,
            messages_received=self._metrics.messages_received,
            messages_delivered=self._metrics.messages_delivered,
            parse_errors=self._metrics.parse_errors,
            reconnects_scheduled=self._metrics.reconnects_scheduled,
            polls=self._metrics.polls,
            polls_ok=self._metrics.polls_ok,
            poll_errors=self._metrics.poll_errors,
            last_message_at=self._metrics.last_message_at,
            last_error=self._metrics.last_error,
            last_error_at=self._metrics.last_error_at,
        )

    # --- transitions ---

    def _set_state(self, new_state: ConnectionState) -> None:
        """Update state and notify the owner."""
        old_state = self._state
        if old_state == new_state or self._destroyed:
            return
        self._state = new_state

        logger.debug(f"[{self._name}] State: {old_state.value} -> {new_state.value}")
        if self._on_status_change:
            try:
                self._on_status_change(new_state)
            except Exception as e:
                logger.warning(f"[{self._name}] Status callback error: {e}", exc_info=True)

    def _open_stream(self) -> None:
        # Only one acquisition mode at a time
        self._backoff.cancel()
        self._polling.stop()
        self._session.close()

        self._set_state(ConnectionState.CONNECTING)
        if self._destroyed:
            return
        self._session.open(self._config.stream_url, self._config.headers)

    def _schedule_reconnect(self) -> None:
        delay = self._backoff.schedule(self._on_reconnect_timer)
        if delay is None:
            self._enter_fallback()
            return
        self._metrics.reconnects_scheduled += 1

    def _on_reconnect_timer(self) -> None:
        if self._destroyed:
            return
        logger.info(
            f"[{self._name}] Reconnecting (attempt {self._retry.attempt_count}/"
            f"{self._retry.ceiling})"
        )
        self._open_stream()

    def _enter_fallback(self) -> None:
        self._backoff.cancel()
        self._session.close()
        logger.warning(
            f"[{self._name}] Streaming abandoned after {self._retry.attempt_count} "
            f"attempts, polling {self._config.effective_poll_url}"
        )
        self._set_state(ConnectionState.FALLBACK)
        if self._destroyed:
            return
        self._polling.start()

    # --- session callbacks ---

    def _on_stream_open(self) -> None:
        if self._destroyed:
            return
        logger.info(f"[{self._name}] Stream connected")
        self._retry.reset()
        self._set_state(ConnectionState.CONNECTED)

    def _on_stream_payload(self, decoded: DecodedPayload) -> None:
        generation = self._session.generation
        self._deliver(decoded, "stream")
        # on_data may have called retry() or disconnect(); that stream is gone
        if self._session.generation == generation:
            self._set_state(ConnectionState.CONNECTED)

    def _on_stream_error(self, error: Exception) -> None:
        if self._destroyed:
            return
        self._metrics.record_error(error)

        if self._classifier.classify(error) is ErrorClass.TRANSIENT:
            self._metrics.transient_errors += 1
            logger.debug(f"[{self._name}] Transient stream notice: {error}")
            self._set_state(ConnectionState.CONNECTING)
            return

        self._metrics.failures += 1
        logger.warning(f"[{self._name}] Stream failure: {error}")
        self._session.close()
        self._set_state(ConnectionState.ERROR)
        if self._destroyed:
            return
        self._schedule_reconnect()

    # --- polling callbacks ---

    def _on_poll_payload(self, decoded: DecodedPayload) -> None:
        self._deliver(decoded, "poll")

    # --- delivery ---

    def _deliver(self, decoded: DecodedPayload, source: SnapshotSource) -> None:
        if self._destroyed:
            return
        self._sequence += 1
        snapshot = DataSnapshot(
            payload=decoded.payload,
            data=decoded.data,
            key=decoded.key,
            source=source,
            sequence=self._sequence,
        )
        self._latest = snapshot
        self._metrics.messages_delivered += 1
        self._metrics.last_message_at = snapshot.received_at

        if self._on_data:
            try:
                self._on_data(snapshot)
            except Exception as e:
                logger.warning(f"[{self._name}] Data callback error: {e}", exc_info=True)
