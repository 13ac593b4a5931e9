"""
Polling fallback for the live feed client.

Once streaming is abandoned, the same logical data is pulled from a plain
request/response endpoint on a fixed interval. Polling has no retry ceiling:
a failed fetch is logged and the next tick simply tries again.
"""

from __future__ import annotations

import asyncio
import codecs
import itertools
import logging
from typing import Callable, Mapping, Optional, Protocol

import aiohttp

from naphex.feed.decoder import DecodedPayload, EventStreamParser, decode_body
from naphex.feed.errors import FetchError, LiveFeedError
from naphex.feed.types import FeedMetrics
from naphex.ports.scheduler import Millis, Scheduler, TaskHandle, TimerHandle

logger = logging.getLogger(__name__)

DEFAULT_POLL_HEADERS: dict[str, str] = {
    "Accept": "application/json, text/event-stream",
    "Cache-Control": "no-cache",
}


class Fetcher(Protocol):
    async def fetch(self, url: str, headers: Mapping[str, str]) -> str:
        """Return the response body text. Raises FetchError on failure."""
        ...


class AiohttpFetcher:
    """
    Plain GET over aiohttp.

    JSON bodies are read in full. Event-stream bodies are read only up to the first
    complete event, so endpoints that keep the response open do not hang the poll.
    """

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        timeout_ms: int = 15_000,
    ) -> None:
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout_ms / 1000.0)

    async def fetch(self, url: str, headers: Mapping[str, str]) -> str:
        try:
            if self._session is not None:
                return await self._fetch_with(self._session, url, headers)
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                return await self._fetch_with(session, url, headers)
        except FetchError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise FetchError(
                f"Request failed: {e!r}",
                url=url,
                component="AiohttpFetcher",
            ) from e

    async def _fetch_with(
        self,
        session: aiohttp.ClientSession,
        url: str,
        headers: Mapping[str, str],
    ) -> str:
        async with session.get(url, headers=dict(headers), timeout=self._timeout) as resp:
            if resp.status != 200:
                raise FetchError(
                    f"Unexpected HTTP status {resp.status}",
                    url=url,
                    status=resp.status,
                    component="AiohttpFetcher",
                )
            if "text/event-stream" in resp.headers.get("Content-Type", ""):
                return await self._read_first_event(resp)
            return await resp.text(errors="replace")

    @staticmethod
    async def _read_first_event(resp: aiohttp.ClientResponse) -> str:
        parser = EventStreamParser()
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        body: list[str] = []
        async for chunk in resp.content.iter_any():
            text = decoder.decode(chunk)
            body.append(text)
            if parser.feed(text):
                break
        return "".join(body)


class PollingFallback:
    """
    Fixed-interval pull loop.

    Every tick spawns one fetch. Results are delivered in issue order: a fetch that
    completes after a newer one has been delivered is dropped, and nothing is
    delivered after stop().
    """

    def __init__(
        self,
        scheduler: Scheduler,
        fetcher: Fetcher,
        url: str,
        on_payload: Callable[[DecodedPayload], None],
        interval_ms: Millis = 30_000,
        headers: Optional[Mapping[str, str]] = None,
        data_key: Optional[str] = None,
        metrics: Optional[FeedMetrics] = None,
        name: str = "polling",
    ) -> None:
        self._scheduler = scheduler
        self._fetcher = fetcher
        self._url = url
        self._on_payload = on_payload
        self._interval_ms = interval_ms
        self._headers = dict(headers or DEFAULT_POLL_HEADERS)
        self._data_key = data_key
        self._metrics = metrics or FeedMetrics()
        self._name = name

        self._timer: Optional[TimerHandle] = None
        self._tasks: set[TaskHandle] = set()
        self._generation = 0
        self._issued = itertools.count(1)
        self._last_delivered = 0

    @property
    def active(self) -> bool:
        return self._timer is not None and self._timer.active

    @property
    def in_flight(self) -> int:
        return sum(1 for t in self._tasks if not t.done())

    def start(self) -> None:
        if self.active:
            logger.debug(f"[{self._name}] Already polling")
            return
        self._generation += 1
        self._timer = self._scheduler.call_every(self._interval_ms, self._tick)
        logger.info(f"[{self._name}] Polling {self._url} every {self._interval_ms}ms")

    def stop(self) -> None:
        """Stop polling. Idempotent; in-flight results are discarded."""
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            logger.info(f"[{self._name}] Polling stopped")
        tasks, self._tasks = self._tasks, set()
        for task in tasks:
            if not task.done():
                task.cancel()

    def _tick(self) -> None:
        generation = self._generation
        sequence = next(self._issued)
        self._tasks = {t for t in self._tasks if not t.done()}
        self._tasks.add(self._scheduler.spawn(self._poll(generation, sequence)))

    async def _poll(self, generation: int, sequence: int) -> None:
        # Only polls that finish inside the current generation are counted
        try:
            body = await self._fetcher.fetch(self._url, self._headers)
            decoded = decode_body(body, self._data_key)
        except LiveFeedError as e:
            if generation == self._generation:
                self._metrics.polls += 1
                self._metrics.poll_errors += 1
                self._metrics.record_error(e)
                logger.warning(f"[{self._name}] Poll failed, retrying next tick: {e}")
            return

        if generation != self._generation:
            return
        if sequence <= self._last_delivered:
            logger.debug(f"[{self._name}] Dropping stale poll result #{sequence}")
            return
        self._last_delivered = sequence
        self._metrics.polls += 1
        self._metrics.polls_ok += 1

        if decoded is None:
            logger.debug(f"[{self._name}] Poll returned no data")
            return
        self._on_payload(decoded)
