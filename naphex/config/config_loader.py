"""
Purpose:
    - Loads a feed config file (TOML)
    - Builds a validated FeedConfig from it

File layout:
    [feed]
    base_url = "https://api.naphex.example"
    kind = "users"            # results | users | profile | custom
    phone = "9876543210"      # profile only
    stream_url = "..."        # custom only
    poll_url = "..."          # optional
    data_key = "data"         # optional

    [feed.headers]
    Cache-Control = "no-cache"

    [retry]
    max_attempts = 5
    base_delay_ms = 1000
    max_delay_ms = 30000
    poll_interval_ms = 30000

    [stream]
    heartbeat_timeout_ms = 60000
    transport_retry_ms = 3000
    connect_timeout_ms = 15000
"""

import tomllib
from dataclasses import fields
from pathlib import Path
from typing import Any, Mapping, Optional

from naphex.feed.config import (
    DEFAULT_STREAM_HEADERS,
    ApiEndpoints,
    FeedConfig,
    RetryPolicy,
    StreamSettings,
)
from naphex.feed.errors import ConfigurationError

FEED_KINDS = ("results", "users", "profile", "custom")
FEED_KEYS = frozenset(
    {"kind", "base_url", "phone", "stream_url", "poll_url", "data_key", "headers", "name"}
)


class FeedConfigLoader:
    """
    Config-loader; loading toml file.
    """

    def __init__(self, base_dir: str = ".") -> None:
        self._base_dir = base_dir

    def load(self, file_name: str) -> dict[str, Any]:
        path = Path(file_name)
        if not path.is_absolute():
            path = Path(self._base_dir) / file_name

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with path.open("rb") as f:
            return tomllib.load(f)

    def load_feed_config(
        self,
        file_name: str,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> FeedConfig:
        data = self.load(file_name)
        feed = dict(data.get("feed", {}))
        # CLI overrides win over the file
        feed.update({k: v for k, v in (overrides or {}).items() if v is not None})
        return build_feed_config(feed, data.get("retry", {}), data.get("stream", {}))


def _build_section(cls: type, section: Mapping[str, Any], name: str) -> Any:
    allowed = {f.name for f in fields(cls)}
    unknown = set(section) - allowed
    if unknown:
        raise ConfigurationError(
            f"Unknown keys in [{name}]: {sorted(unknown)}",
            field=name,
            value=sorted(unknown),
        )
    return cls(**section)


def build_feed_config(
    feed: Mapping[str, Any],
    retry: Optional[Mapping[str, Any]] = None,
    stream: Optional[Mapping[str, Any]] = None,
) -> FeedConfig:
    """Build a FeedConfig from plain mappings (parsed TOML or CLI arguments)."""
    unknown = set(feed) - FEED_KEYS
    if unknown:
        raise ConfigurationError(
            f"Unknown keys in [feed]: {sorted(unknown)}",
            field="feed",
            value=sorted(unknown),
        )
    kind = feed.get("kind", "custom")
    if kind not in FEED_KINDS:
        raise ConfigurationError(f"kind must be one of {FEED_KINDS}", field="kind", value=kind)

    retry_policy = _build_section(RetryPolicy, retry or {}, "retry")
    stream_settings = _build_section(StreamSettings, stream or {}, "stream")
    headers = {**DEFAULT_STREAM_HEADERS, **dict(feed.get("headers", {}))}

    common: dict[str, Any] = {
        "retry": retry_policy,
        "stream": stream_settings,
        "headers": headers,
    }
    for key in ("name", "poll_url", "data_key"):
        if feed.get(key) is not None:
            common[key] = feed[key]

    if kind == "custom":
        if not feed.get("stream_url"):
            raise ConfigurationError("stream_url is required for kind 'custom'", field="stream_url")
        return FeedConfig(stream_url=feed["stream_url"], **common)

    base_url = feed.get("base_url")
    if not base_url:
        raise ConfigurationError(f"base_url is required for kind '{kind}'", field="base_url")
    endpoints = ApiEndpoints(base_url)

    if kind == "results":
        return endpoints.results_feed(**common)
    if kind == "users":
        return endpoints.users_feed(**common)
    return endpoints.profile_feed(str(feed.get("phone", "")), **common)
