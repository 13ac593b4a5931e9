"""
Custom exceptions for the live feed client.

Exception hierarchy:
- LiveFeedError (base)
  - StreamError: push-stream transport failures, tagged with a StreamErrorKind
  - MessageParseError: invalid/malformed payloads
  - FetchError: polling request failures
  - ConfigurationError: invalid configuration
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class StreamErrorKind(str, Enum):
    """Explicit error signal reported by a stream transport."""

    KEEPALIVE_TIMEOUT = "keepalive_timeout"  # no activity within heartbeat window
    AUTO_RECONNECT = "auto_reconnect"  # transport is reconnecting on its own
    CONNECT_FAILED = "connect_failed"
    HTTP_STATUS = "http_status"
    STREAM_LOST = "stream_lost"
    UNKNOWN = "unknown"


class LiveFeedError(Exception):
    """Base exception for all live feed errors."""

    def __init__(
        self,
        message: str,
        *,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.component = component
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.component:
            parts.append(f"[component={self.component}]")
        if self.details:
            parts.append(f"[details={self.details}]")
        return " ".join(parts)


class StreamError(LiveFeedError):
    """Raised (or reported) when the push stream fails or emits transport noise."""

    def __init__(
        self,
        message: str,
        *,
        kind: StreamErrorKind = StreamErrorKind.UNKNOWN,
        url: Optional[str] = None,
        status: Optional[int] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.kind = kind
        self.url = url
        self.status = status
        details = details or {}
        details["kind"] = kind.value
        if url:
            details["url"] = url
        if status is not None:
            details["status"] = status
        super().__init__(message, component=component, details=details)


class MessageParseError(LiveFeedError):
    """Raised when a payload cannot be decoded into a snapshot."""

    def __init__(
        self,
        message: str,
        *,
        raw_data: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        # Kept off details to avoid log spam
        self.raw_data = raw_data
        super().__init__(message, component=component, details=details)


class FetchError(LiveFeedError):
    """Raised when a polling request fails."""

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        status: Optional[int] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.url = url
        self.status = status
        details = details or {}
        if url:
            details["url"] = url
        if status is not None:
            details["status"] = status
        super().__init__(message, component=component, details=details)


class ConfigurationError(LiveFeedError):
    """Raised when configuration is invalid."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.field = field
        self.value = value
        details = details or {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, component=component, details=details)
