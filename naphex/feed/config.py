"""
Configuration types for the live feed client.

Provides immutable, validated configuration dataclasses for all live feed components.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional
from urllib.parse import quote

from naphex.feed.errors import ConfigurationError

# Keys the server uses to carry the payload, in lookup order
DATA_KEYS: tuple[str, ...] = ("data", "results", "userData")

DEFAULT_STREAM_HEADERS: dict[str, str] = {
    "Accept": "text/event-stream",
    "Cache-Control": "no-cache",
}


@dataclass(frozen=True)
class RetryPolicy:
    """Reconnect and fallback timing. All durations in milliseconds."""

    max_attempts: int = 5
    base_delay_ms: int = 1000
    max_delay_ms: int = 30_000
    poll_interval_ms: int = 30_000

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ConfigurationError(
                "max_attempts must be non-negative",
                field="max_attempts",
                value=self.max_attempts,
            )
        if self.base_delay_ms <= 0:
            raise ConfigurationError(
                "base_delay_ms must be positive",
                field="base_delay_ms",
                value=self.base_delay_ms,
            )
        if self.max_delay_ms < self.base_delay_ms:
            raise ConfigurationError(
                "max_delay_ms must be >= base_delay_ms",
                field="max_delay_ms",
                value=self.max_delay_ms,
            )
        if self.poll_interval_ms <= 0:
            raise ConfigurationError(
                "poll_interval_ms must be positive",
                field="poll_interval_ms",
                value=self.poll_interval_ms,
            )


@dataclass(frozen=True)
class StreamSettings:
    """Transport-level behaviour for the push stream."""

    # Keep-alive: no bytes for this long is reported as transient noise
    heartbeat_timeout_ms: int = 60_000
    # Delay before the transport reconnects on its own after keep-alive silence
    transport_retry_ms: int = 3000
    connect_timeout_ms: int = 15_000

    def __post_init__(self) -> None:
        for name in ("heartbeat_timeout_ms", "transport_retry_ms", "connect_timeout_ms"):
            value = getattr(self, name)
            if value <= 0:
                raise ConfigurationError(f"{name} must be positive", field=name, value=value)


@dataclass(frozen=True)
class FeedConfig:
    """
    Immutable configuration for one LiveFeedClient.

    Example:
        endpoints = ApiEndpoints("https://api.naphex.example")
        config = endpoints.users_feed()
    """

    stream_url: str
    # Plain request/response equivalent; defaults to stream_url
    poll_url: Optional[str] = None
    headers: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_STREAM_HEADERS))
    # Preferred payload key; None means first of DATA_KEYS present
    data_key: Optional[str] = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    stream: StreamSettings = field(default_factory=StreamSettings)
    name: str = "live_feed"

    def __post_init__(self) -> None:
        if not self.stream_url:
            raise ConfigurationError("stream_url is required", field="stream_url")
        if not self.stream_url.startswith(("http://", "https://")):
            raise ConfigurationError(
                "stream_url must be an http(s) URL",
                field="stream_url",
                value=self.stream_url,
            )
        if self.data_key is not None and self.data_key not in DATA_KEYS:
            raise ConfigurationError(
                f"data_key must be one of {DATA_KEYS}",
                field="data_key",
                value=self.data_key,
            )

    @property
    def effective_poll_url(self) -> str:
        return self.poll_url or self.stream_url


class ApiEndpoints:
    """Catalog of NAPHEX API endpoints consumed by the live screens."""

    RESULTS_STREAM = "/fetch-results"
    USERS_STREAM = "/api/users"
    USERS_SNAPSHOT = "/api/users-data"
    USER_PROFILE = "/user-profile/{phone}"

    def __init__(self, base_url: str) -> None:
        if not base_url:
            raise ConfigurationError("base_url is required", field="base_url")
        self._base_url = base_url.rstrip("/")

    @property
    def base_url(self) -> str:
        return self._base_url

    def url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    def results_feed(self, **overrides: Any) -> FeedConfig:
        """Chart results: stream and poll the same endpoint."""
        params: dict[str, Any] = {"data_key": "results", "name": "results_feed", **overrides}
        return FeedConfig(stream_url=self.url(self.RESULTS_STREAM), **params)

    def users_feed(self, **overrides: Any) -> FeedConfig:
        """User list with KYC/approval status; polls the JSON snapshot endpoint."""
        params: dict[str, Any] = {
            "poll_url": self.url(self.USERS_SNAPSHOT),
            "data_key": "data",
            "name": "users_feed",
            **overrides,
        }
        return FeedConfig(stream_url=self.url(self.USERS_STREAM), **params)

    def profile_feed(self, phone: str, **overrides: Any) -> FeedConfig:
        """Single user profile (tokens, entry fee, game history)."""
        if not phone or not str(phone).strip():
            raise ConfigurationError("phone is required", field="phone")
        path = self.USER_PROFILE.format(phone=quote(str(phone).strip(), safe=""))
        params: dict[str, Any] = {"data_key": "userData", "name": "profile_feed", **overrides}
        return FeedConfig(stream_url=self.url(path), **params)
