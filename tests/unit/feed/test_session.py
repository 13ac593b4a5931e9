"""
Unit tests for StreamSession.
"""

import pytest

from naphex.feed.decoder import DecodedPayload
from naphex.feed.errors import StreamError, StreamErrorKind
from naphex.feed.session import StreamSession
from naphex.feed.types import FeedMetrics

URL = "https://api.test/api/users"
HEADERS = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}


class Events:
    def __init__(self) -> None:
        self.opened = 0
        self.payloads: list[DecodedPayload] = []
        self.errors: list[Exception] = []


@pytest.fixture
def events() -> Events:
    return Events()


@pytest.fixture
def session(transport, events) -> StreamSession:
    return StreamSession(
        transport,
        on_open=lambda: setattr(events, "opened", events.opened + 1),
        on_payload=events.payloads.append,
        on_error=events.errors.append,
        data_key="data",
        metrics=FeedMetrics(),
        name="test_session",
    )


class TestStreamSession:
    """Tests for StreamSession."""

    def test_open_uses_transport(self, session, transport) -> None:
        """open() hands url and headers to the transport."""
        session.open(URL, HEADERS)

        assert session.is_open
        assert session.url == URL
        assert transport.latest.url == URL
        assert transport.latest.headers == HEADERS

    def test_open_twice_ignored(self, session, transport) -> None:
        """An already-open session does not open a second connection."""
        session.open(URL, HEADERS)
        session.open(URL, HEADERS)

        assert len(transport.handles) == 1

    def test_forwards_open_and_payload(self, session, transport, events, make_payload) -> None:
        """Transport events are forwarded; messages arrive decoded."""
        session.open(URL, HEADERS)
        transport.latest.emit_open()
        transport.latest.emit_message(make_payload([1, 2]))

        assert events.opened == 1
        assert events.payloads[0].data == [1, 2]
        assert events.payloads[0].key == "data"

    def test_parse_error_is_not_an_error(self, session, transport, events) -> None:
        """Undecodable messages are counted and dropped, not reported as errors."""
        session.open(URL, HEADERS)
        transport.latest.emit_message("[1, 2")

        assert events.payloads == []
        assert events.errors == []
        assert session._metrics.parse_errors == 1
        assert session._metrics.messages_received == 1

    def test_error_forwarded(self, session, transport, events) -> None:
        """Transport errors reach on_error unchanged."""
        session.open(URL, HEADERS)
        error = StreamError("boom", kind=StreamErrorKind.STREAM_LOST)
        transport.latest.emit_error(error)

        assert events.errors == [error]

    def test_close_releases_handle(self, session, transport) -> None:
        """close() closes the transport handle; repeating it is harmless."""
        session.open(URL, HEADERS)
        handle = transport.latest

        session.close()
        session.close()

        assert handle.closed
        assert not session.is_open

    def test_events_after_close_ignored(self, session, transport, events, make_payload) -> None:
        """Late events from a closed connection are dropped."""
        session.open(URL, HEADERS)
        handle = transport.latest
        session.close()

        handle.emit_open()
        handle.emit_message(make_payload([1]))
        handle.emit_error(StreamError("late"))

        assert events.opened == 0
        assert events.payloads == []
        assert events.errors == []

    def test_old_connection_ignored_after_reopen(
        self, session, transport, events, make_payload
    ) -> None:
        """Only the newest connection's events count."""
        session.open(URL, HEADERS)
        old = transport.latest
        session.close()
        session.open(URL, HEADERS)

        old.emit_message(make_payload(["old"]))
        transport.latest.emit_message(make_payload(["new"]))

        assert [p.data for p in events.payloads] == [["new"]]

    def test_transport_raising_reports_connect_failed(self, session, transport, events) -> None:
        """A transport that raises on open is reported as a CONNECT_FAILED stream error."""
        transport.fail_with = ValueError("bad url")

        session.open(URL, HEADERS)

        assert not session.is_open
        assert len(events.errors) == 1
        assert isinstance(events.errors[0], StreamError)
        assert events.errors[0].kind is StreamErrorKind.CONNECT_FAILED

    def test_synchronous_error_during_open(self, transport, make_payload) -> None:
        """If on_error closes the session while the transport is still opening, the handle is released."""
        handles = []

        class FailingTransport:
            def open(self, url, headers, on_open, on_message, on_error):
                handle = transport.open(url, headers, on_open, on_message, on_error)
                handles.append(handle)
                on_error(StreamError("refused", kind=StreamErrorKind.CONNECT_FAILED))
                return handle

        session = StreamSession(
            FailingTransport(),
            on_open=lambda: None,
            on_payload=lambda _p: None,
            on_error=lambda _e: session.close(),
        )
        session.open(URL, HEADERS)

        assert not session.is_open
        assert handles[0].closed
