"""
Shared fixtures for live feed tests.

FakeTransport / FakeFetcher are in-memory stand-ins for the aiohttp adapters.
FakeHandle emits events without checking whether it was closed, so tests can
simulate late events arriving from a connection that has already been torn down.
"""

from typing import Any, Callable, Mapping, Optional

import orjson
import pytest

from naphex.core.scheduler import ManualScheduler
from naphex.feed.client import LiveFeedClient
from naphex.feed.config import FeedConfig
from naphex.feed.errors import FetchError
from naphex.feed.types import ConnectionState, DataSnapshot


class FakeHandle:
    def __init__(
        self,
        url: str,
        headers: Mapping[str, str],
        on_open: Callable[[], None],
        on_message: Callable[[str], None],
        on_error: Callable[[Exception], None],
    ) -> None:
        self.url = url
        self.headers = dict(headers)
        self._on_open = on_open
        self._on_message = on_message
        self._on_error = on_error
        self.closed = False

    def close(self) -> None:
        self.closed = True

    def emit_open(self) -> None:
        self._on_open()

    def emit_message(self, raw: str) -> None:
        self._on_message(raw)

    def emit_error(self, error: Exception) -> None:
        self._on_error(error)


class FakeTransport:
    def __init__(self) -> None:
        self.handles: list[FakeHandle] = []
        self.fail_with: Optional[Exception] = None

    def open(self, url, headers, on_open, on_message, on_error) -> FakeHandle:
        if self.fail_with is not None:
            raise self.fail_with
        handle = FakeHandle(url, headers, on_open, on_message, on_error)
        self.handles.append(handle)
        return handle

    @property
    def latest(self) -> FakeHandle:
        return self.handles[-1]

    @property
    def open_handles(self) -> list[FakeHandle]:
        return [h for h in self.handles if not h.closed]


class FakeFetcher:
    """Returns queued bodies (or raises queued exceptions) in order."""

    def __init__(self) -> None:
        self.responses: list[Any] = []
        self.calls: list[tuple[str, dict[str, str]]] = []

    async def fetch(self, url: str, headers: Mapping[str, str]) -> str:
        self.calls.append((url, dict(headers)))
        if not self.responses:
            raise FetchError("No response queued", url=url)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class Recorder:
    def __init__(self) -> None:
        self.snapshots: list[DataSnapshot] = []
        self.statuses: list[ConnectionState] = []

    def on_data(self, snapshot: DataSnapshot) -> None:
        self.snapshots.append(snapshot)

    def on_status(self, state: ConnectionState) -> None:
        self.statuses.append(state)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def config() -> FeedConfig:
    return FeedConfig(
        stream_url="https://api.test/api/users",
        poll_url="https://api.test/api/users-data",
        data_key="data",
        name="test_feed",
    )


@pytest.fixture
def make_payload() -> Callable[..., str]:
    """Build a server envelope as JSON text."""

    def _make(data: Any, key: str = "data", success: bool = True) -> str:
        return orjson.dumps({"success": success, key: data}).decode()

    return _make


@pytest.fixture
def make_client(
    config: FeedConfig,
    scheduler: ManualScheduler,
    transport: FakeTransport,
    fetcher: FakeFetcher,
    recorder: Recorder,
) -> Callable[..., LiveFeedClient]:
    """Factory for clients wired to the fakes and the recorder."""

    def _make(**kwargs: Any) -> LiveFeedClient:
        return LiveFeedClient(
            kwargs.pop("config", config),
            on_data=kwargs.pop("on_data", recorder.on_data),
            on_status_change=kwargs.pop("on_status_change", recorder.on_status),
            scheduler=scheduler,
            transport=transport,
            fetcher=fetcher,
            **kwargs,
        )

    return _make
