"""
Server-sent events transport over aiohttp.

Handles the wire side of one push-stream connection:
- Streaming GET with `Accept: text/event-stream`
- Incremental SSE frame parsing
- Heartbeat (keep-alive) timeout detection
- Self-reconnect after keep-alive silence or a clean end of stream

Self-reconnects are reported as transient StreamErrors (KEEPALIVE_TIMEOUT,
AUTO_RECONNECT). Connection refusals, HTTP errors and broken streams are
reported as failures and end the transport; retrying those is the client's job.

The transport does NOT decode payloads; it delivers each event's data text to
the registered callback.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from typing import Callable, Mapping, Optional, Protocol

import aiohttp

from naphex.feed.config import StreamSettings
from naphex.feed.decoder import EventStreamParser
from naphex.feed.errors import StreamError, StreamErrorKind
from naphex.ports.scheduler import Scheduler, TaskHandle

logger = logging.getLogger(__name__)


class StreamHandle(Protocol):
    def close(self) -> None:
        """Release the connection. After this no callback may fire."""
        ...


class StreamTransport(Protocol):
    def open(
        self,
        url: str,
        headers: Mapping[str, str],
        on_open: Callable[[], None],
        on_message: Callable[[str], None],
        on_error: Callable[[Exception], None],
    ) -> StreamHandle: ...


class EventStreamConnection:
    """
    One live SSE connection, including the transport's own reconnects.

    Usage:
        conn = EventStreamConnection(url, headers, settings, on_open, on_message, on_error)
        conn.start(scheduler)
        # ... later ...
        conn.close()
    """

    def __init__(
        self,
        url: str,
        headers: Mapping[str, str],
        settings: StreamSettings,
        on_open: Callable[[], None],
        on_message: Callable[[str], None],
        on_error: Callable[[Exception], None],
        session: Optional[aiohttp.ClientSession] = None,
        name: str = "sse",
    ) -> None:
        self._url = url
        self._headers = dict(headers)
        self._settings = settings
        self._on_open = on_open
        self._on_message = on_message
        self._on_error = on_error
        self._session = session
        self._name = name

        self._closed = False
        self._task: Optional[TaskHandle] = None
        self._retry_ms = settings.transport_retry_ms
        self._last_event_id: Optional[str] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self, scheduler: Scheduler) -> None:
        self._task = scheduler.spawn(self._run())

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        logger.debug(f"[{self._name}] Connection closed")

    # --- callbacks guarded by the closed flag ---

    def _emit_open(self) -> None:
        if not self._closed:
            self._on_open()

    def _emit_message(self, data: str) -> None:
        if not self._closed:
            self._on_message(data)

    def _emit_error(self, error: Exception) -> None:
        if not self._closed:
            self._on_error(error)

    # --- connection loop ---

    async def _run(self) -> None:
        session = self._session
        owns_session = session is None
        if session is None:
            timeout = aiohttp.ClientTimeout(
                total=None,
                sock_connect=self._settings.connect_timeout_ms / 1000.0,
            )
            session = aiohttp.ClientSession(timeout=timeout)

        try:
            while not self._closed:
                reconnect = await self._read_stream(session)
                if not reconnect or self._closed:
                    return
                await asyncio.sleep(self._retry_ms / 1000.0)
        finally:
            if owns_session:
                await session.close()

    async def _read_stream(self, session: aiohttp.ClientSession) -> bool:
        """Read one HTTP response. Returns True if the transport should reconnect itself."""
        headers = dict(self._headers)
        headers.setdefault("Accept", "text/event-stream")
        if self._last_event_id:
            headers["Last-Event-ID"] = self._last_event_id

        opened = False
        try:
            logger.info(f"[{self._name}] Connecting to {self._url}")
            async with session.get(self._url, headers=headers) as resp:
                if resp.status != 200:
                    self._emit_error(
                        StreamError(
                            f"Unexpected HTTP status {resp.status}",
                            kind=StreamErrorKind.HTTP_STATUS,
                            url=self._url,
                            status=resp.status,
                            component="EventStreamConnection",
                        )
                    )
                    return False

                content_type = resp.headers.get("Content-Type", "")
                if "text/event-stream" not in content_type:
                    self._emit_error(
                        StreamError(
                            f"Unexpected Content-Type {content_type!r}",
                            kind=StreamErrorKind.CONNECT_FAILED,
                            url=self._url,
                            status=resp.status,
                            component="EventStreamConnection",
                        )
                    )
                    return False

                opened = True
                logger.info(f"[{self._name}] Stream open")
                self._emit_open()
                return await self._consume(resp)

        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            kind = StreamErrorKind.STREAM_LOST if opened else StreamErrorKind.CONNECT_FAILED
            logger.warning(f"[{self._name}] Transport error ({kind.value}): {e!r}")
            self._emit_error(
                StreamError(
                    str(e) or type(e).__name__,
                    kind=kind,
                    url=self._url,
                    component="EventStreamConnection",
                )
            )
            return False

    async def _consume(self, resp: aiohttp.ClientResponse) -> bool:
        parser = EventStreamParser()
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        heartbeat_s = self._settings.heartbeat_timeout_ms / 1000.0

        while not self._closed:
            try:
                chunk = await asyncio.wait_for(resp.content.readany(), timeout=heartbeat_s)
            except asyncio.TimeoutError:
                self._emit_error(
                    StreamError(
                        f"No activity within {self._settings.heartbeat_timeout_ms} "
                        f"milliseconds. Reconnecting.",
                        kind=StreamErrorKind.KEEPALIVE_TIMEOUT,
                        url=self._url,
                        component="EventStreamConnection",
                    )
                )
                return True

            if not chunk:
                logger.info(f"[{self._name}] Server closed the stream")
                self._emit_error(
                    StreamError(
                        f"Stream ended. Reconnecting in {self._retry_ms}ms.",
                        kind=StreamErrorKind.AUTO_RECONNECT,
                        url=self._url,
                        component="EventStreamConnection",
                    )
                )
                return True

            for event in parser.feed(decoder.decode(chunk)):
                if event.retry_ms is not None:
                    self._retry_ms = event.retry_ms
                if event.id is not None:
                    self._last_event_id = event.id
                self._emit_message(event.data)

        return False


class AiohttpEventStreamTransport:
    """StreamTransport that opens EventStreamConnections on a scheduler."""

    def __init__(
        self,
        scheduler: Scheduler,
        settings: Optional[StreamSettings] = None,
        session: Optional[aiohttp.ClientSession] = None,
        name: str = "sse",
    ) -> None:
        self._scheduler = scheduler
        self._settings = settings or StreamSettings()
        self._session = session
        self._name = name

    def open(
        self,
        url: str,
        headers: Mapping[str, str],
        on_open: Callable[[], None],
        on_message: Callable[[str], None],
        on_error: Callable[[Exception], None],
    ) -> EventStreamConnection:
        conn = EventStreamConnection(
            url=url,
            headers=headers,
            settings=self._settings,
            on_open=on_open,
            on_message=on_message,
            on_error=on_error,
            session=self._session,
            name=self._name,
        )
        conn.start(self._scheduler)
        return conn
