"""
Payload decoding for the live feed client.

Two layers:
- EventStreamParser turns `text/event-stream` lines into ServerEvent frames.
- decode_envelope() turns one frame's data (or a plain JSON body) into the
  `{success, data|results|userData}` envelope the NAPHEX API sends.

Server format:
    event: message
    data: {"success": true, "data": [...]}
    <blank line>
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

import orjson
from pydantic import BaseModel, ConfigDict, ValidationError

from naphex.feed.config import DATA_KEYS
from naphex.feed.errors import MessageParseError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ServerEvent:
    """One dispatched server-sent event."""

    data: str
    event: str = "message"
    id: Optional[str] = None
    retry_ms: Optional[int] = None


class EventStreamParser:
    """
    Incremental parser for the server-sent events wire format.

    Feed it decoded lines (feed_line) or arbitrary text chunks (feed). A blank line
    dispatches the buffered event; comment lines (":" prefix) are keep-alives.
    """

    def __init__(self) -> None:
        self._data: list[str] = []
        self._event_type = ""
        self._last_event_id: Optional[str] = None
        self._retry_ms: Optional[int] = None
        self._partial = ""
        self.comments = 0

    @property
    def last_event_id(self) -> Optional[str]:
        return self._last_event_id

    def feed(self, chunk: str) -> list[ServerEvent]:
        """Feed a text chunk; returns every event completed by it."""
        events: list[ServerEvent] = []
        text = self._partial + chunk
        lines = text.splitlines(keepends=True)
        self._partial = ""
        if lines and not lines[-1].endswith(("\n", "\r")):
            self._partial = lines.pop()
        for line in lines:
            event = self.feed_line(line)
            if event is not None:
                events.append(event)
        return events

    def feed_line(self, line: str) -> Optional[ServerEvent]:
        """Process one line (with or without its terminator)."""
        line = line.rstrip("\r\n")

        if line == "":
            return self._dispatch()

        if line.startswith(":"):
            self.comments += 1
            return None

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "data":
            self._data.append(value)
        elif name == "event":
            self._event_type = value
        elif name == "id":
            if "\x00" not in value:
                self._last_event_id = value
        elif name == "retry":
            if value.isdigit():
                self._retry_ms = int(value)
        # unknown fields are ignored
        return None

    def flush(self) -> Optional[ServerEvent]:
        """Dispatch whatever is buffered (used for complete response bodies)."""
        if self._partial:
            self.feed_line(self._partial)
            self._partial = ""
        return self._dispatch()

    def _dispatch(self) -> Optional[ServerEvent]:
        if not self._data:
            self._event_type = ""
            return None
        event = ServerEvent(
            data="\n".join(self._data),
            event=self._event_type or "message",
            id=self._last_event_id,
            retry_ms=self._retry_ms,
        )
        self._data = []
        self._event_type = ""
        return event


def parse_event_stream(text: str) -> list[ServerEvent]:
    """Parse a complete event-stream body into its events."""
    parser = EventStreamParser()
    events = parser.feed(text)
    tail = parser.flush()
    if tail is not None:
        events.append(tail)
    return events


class FeedEnvelope(BaseModel):
    """Response envelope shared by every NAPHEX feed endpoint."""

    model_config = ConfigDict(extra="allow")

    success: bool
    message: Optional[str] = None


@dataclass(frozen=True, slots=True)
class DecodedPayload:
    payload: dict[str, Any]
    key: str
    data: Any


def decode_envelope(
    raw: Union[str, bytes],
    data_key: Optional[str] = None,
) -> Optional[DecodedPayload]:
    """
    Decode one JSON payload.

    Returns None for well-formed envelopes that carry nothing to deliver
    (success is false, or no data key). Raises MessageParseError if the payload
    is not a JSON object with a valid envelope.
    """
    try:
        obj = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise MessageParseError(
            f"Invalid JSON payload: {e}",
            raw_data=raw if isinstance(raw, str) else raw.decode("utf-8", "replace"),
            component="decoder",
        ) from e

    if not isinstance(obj, dict):
        raise MessageParseError(
            f"Expected JSON object, got {type(obj).__name__}",
            component="decoder",
        )

    try:
        envelope = FeedEnvelope.model_validate(obj)
    except ValidationError as e:
        raise MessageParseError(
            f"Invalid envelope: {e.error_count()} validation error(s)",
            component="decoder",
        ) from e

    if not envelope.success:
        logger.debug(f"Ignoring unsuccessful payload: {envelope.message}")
        return None

    keys = (data_key,) if data_key else DATA_KEYS
    for key in keys:
        if obj.get(key) is not None:
            return DecodedPayload(payload=obj, key=key, data=obj[key])

    logger.debug(f"Ignoring payload without data key (keys={list(obj)[:5]})")
    return None


def decode_body(text: str, data_key: Optional[str] = None) -> Optional[DecodedPayload]:
    """
    Decode a polling response body.

    Plain JSON bodies are decoded directly. Event-stream bodies (the profile
    endpoint answers plain GETs that way) yield their first decodable event.
    """
    try:
        return decode_envelope(text, data_key)
    except MessageParseError as first_error:
        events = parse_event_stream(text)
        if not events:
            raise first_error
        saw_envelope = False
        for event in events:
            try:
                decoded = decode_envelope(event.data, data_key)
            except MessageParseError as e:
                logger.debug(f"Skipping undecodable event in body: {e}")
                continue
            if decoded is not None:
                return decoded
            saw_envelope = True
        if saw_envelope:
            return None
        raise MessageParseError(
            f"No decodable event in body ({len(events)} event(s))",
            raw_data=text[:200],
            component="decoder",
        )
