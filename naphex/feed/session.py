"""
Stream Session: owns at most one live push-stream connection.

The session decodes every message before handing it on. A payload that fails to
decode is counted and dropped; it never counts as a connection error. Each
open() starts a new generation so that callbacks from a closed connection
(late events still in flight in the transport) are ignored.
"""

from __future__ import annotations

import logging
from typing import Callable, Mapping, Optional

from naphex.feed.decoder import DecodedPayload, decode_envelope
from naphex.feed.errors import MessageParseError, StreamError, StreamErrorKind
from naphex.feed.transport import StreamHandle, StreamTransport
from naphex.feed.types import FeedMetrics

logger = logging.getLogger(__name__)


class StreamSession:
    """
    Holds one push-stream connection and turns transport events into
    on_open / on_payload / on_error calls for the owning client.
    """

    def __init__(
        self,
        transport: StreamTransport,
        on_open: Callable[[], None],
        on_payload: Callable[[DecodedPayload], None],
        on_error: Callable[[Exception], None],
        data_key: Optional[str] = None,
        metrics: Optional[FeedMetrics] = None,
        name: str = "session",
    ) -> None:
        self._transport = transport
        self._on_open = on_open
        self._on_payload = on_payload
        self._on_error = on_error
        self._data_key = data_key
        self._metrics = metrics or FeedMetrics()
        self._name = name

        self._handle: Optional[StreamHandle] = None
        self._generation = 0
        self._url: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    @property
    def url(self) -> Optional[str]:
        return self._url

    @property
    def generation(self) -> int:
        """Bumped by every open() and close()."""
        return self._generation

    def open(self, url: str, headers: Mapping[str, str]) -> None:
        """Open the stream. The caller must close() an open session first."""
        if self._handle is not None:
            logger.warning(f"[{self._name}] open() while already open; ignoring")
            return

        self._generation += 1
        generation = self._generation
        self._url = url

        try:
            handle = self._transport.open(
                url,
                headers,
                on_open=lambda: self._handle_open(generation),
                on_message=lambda raw: self._handle_message(generation, raw),
                on_error=lambda err: self._handle_error(generation, err),
            )
        except Exception as e:
            logger.warning(f"[{self._name}] Failed to create stream: {e!r}")
            self._handle_error(
                generation,
                StreamError(
                    f"Failed to create stream: {e}",
                    kind=StreamErrorKind.CONNECT_FAILED,
                    url=url,
                    component="StreamSession",
                ),
            )
            return

        # on_error may already have closed us (and even reopened) synchronously
        if generation == self._generation and self._handle is None:
            self._handle = handle
        else:
            handle.close()

    def close(self) -> None:
        """Release the transport. Idempotent."""
        self._generation += 1
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.close()
            logger.debug(f"[{self._name}] Closed")

    # --- transport callbacks ---

    def _handle_open(self, generation: int) -> None:
        if generation != self._generation:
            return
        logger.debug(f"[{self._name}] Transport open")
        self._on_open()

    def _handle_message(self, generation: int, raw: str) -> None:
        if generation != self._generation:
            return

        self._metrics.messages_received += 1

        try:
            decoded = decode_envelope(raw, self._data_key)
        except MessageParseError as e:
            # Keep-alives and partial frames land here; not a connection error
            self._metrics.parse_errors += 1
            logger.debug(f"[{self._name}] Dropping undecodable message: {e}")
            return

        if decoded is None:
            return
        self._on_payload(decoded)

    def _handle_error(self, generation: int, error: Exception) -> None:
        if generation != self._generation:
            return
        self._on_error(error)
