"""
Live Feed Module.

Keeps NAPHEX screens (results chart, user status lists, profile and history)
supplied with server data pushed over server-sent events, tolerating flaky
mobile networks.

Components:
- LiveFeedClient: Top-level orchestration and lifecycle management
- StreamSession: One push-stream connection, payload decoding
- ErrorClassifier: Transport noise vs. genuine failures
- BackoffScheduler: Exponential reconnect delays bounded by an attempt ceiling
- PollingFallback: Fixed-interval pull loop once streaming is abandoned
- AiohttpEventStreamTransport / AiohttpFetcher: aiohttp wire adapters

Usage:
    from naphex.feed import ApiEndpoints, LiveFeedClient

    config = ApiEndpoints("https://api.naphex.example").users_feed()
    client = LiveFeedClient(config, on_data=render, on_status_change=show_status)
    client.connect()
    ...
    client.disconnect()
"""

from naphex.feed.client import LiveFeedClient
from naphex.feed.config import ApiEndpoints, FeedConfig, RetryPolicy, StreamSettings
from naphex.feed.errors import (
    ConfigurationError,
    FetchError,
    LiveFeedError,
    MessageParseError,
    StreamError,
    StreamErrorKind,
)
from naphex.feed.types import (
    ConnectionState,
    DataSnapshot,
    FeedHealth,
    FeedMode,
    RetryState,
)

__all__ = [
    # Main entry point
    "LiveFeedClient",
    "FeedConfig",
    "RetryPolicy",
    "StreamSettings",
    "ApiEndpoints",
    # Types
    "ConnectionState",
    "FeedMode",
    "RetryState",
    "DataSnapshot",
    "FeedHealth",
    # Errors
    "LiveFeedError",
    "StreamError",
    "StreamErrorKind",
    "MessageParseError",
    "FetchError",
    "ConfigurationError",
]
