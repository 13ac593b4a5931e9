"""naphex-feed CLI entrypoint.

Subcommands: watch.

Watches one live feed and writes one JSON line per status change and per delivered
snapshot to stdout. Logs go to stderr. A final health record is written when the
watch ends (after --duration seconds, or on Ctrl-C).

Usage:
    naphex-feed watch --base-url https://api.naphex.example --feed users
    naphex-feed watch --base-url https://api.naphex.example --feed profile --phone 9876543210
    naphex-feed watch --config configs/feed.toml --duration 120
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import tomllib
from dataclasses import asdict
from pathlib import Path
from typing import Any, Optional, TextIO

import orjson

from naphex.config.config_loader import FeedConfigLoader, build_feed_config
from naphex.core.scheduler import AsyncioScheduler
from naphex.feed.client import LiveFeedClient
from naphex.feed.config import FeedConfig
from naphex.feed.errors import ConfigurationError
from naphex.feed.polling import Fetcher
from naphex.feed.transport import StreamTransport
from naphex.feed.types import ConnectionState, DataSnapshot, FeedHealth

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
FEEDS = ("results", "users", "profile")


def build_parser() -> argparse.ArgumentParser:
    """
    Return the top-level CLI argument parser.
    """
    p = argparse.ArgumentParser(prog="naphex-feed")
    sub = p.add_subparsers(dest="command", required=True)

    watch = sub.add_parser("watch", help="Watch one live feed and print JSON lines")
    watch.add_argument("--base-url", help="API base URL, e.g. https://api.naphex.example")
    watch.add_argument("--feed", choices=FEEDS, help="Which feed to watch (default: users)")
    watch.add_argument("--phone", help="User phone number (profile feed only)")
    watch.add_argument("--config", type=Path, help="Path to a feed TOML file")
    watch.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds (default: run until interrupted)",
    )
    watch.add_argument(
        "--log-level",
        default="INFO",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="Log level for stderr output",
    )
    return p


def resolve_config(args: argparse.Namespace) -> FeedConfig:
    """Build the FeedConfig from --config (if given) with CLI flags layered on top."""
    overrides = {"base_url": args.base_url, "kind": args.feed, "phone": args.phone}
    if args.config:
        return FeedConfigLoader().load_feed_config(str(args.config), overrides=overrides)

    feed = {k: v for k, v in overrides.items() if v is not None}
    feed.setdefault("kind", "users")
    return build_feed_config(feed)


def snapshot_record(snapshot: DataSnapshot) -> dict[str, Any]:
    data = snapshot.data
    return {
        "type": "snapshot",
        "source": snapshot.source,
        "sequence": snapshot.sequence,
        "key": snapshot.key,
        "received_at": snapshot.received_at,
        "count": len(data) if isinstance(data, (list, dict)) else None,
        "data": data,
    }


def _write(out: TextIO, record: dict[str, Any]) -> None:
    out.write(orjson.dumps(record, option=orjson.OPT_NON_STR_KEYS).decode())
    out.write("\n")
    out.flush()


async def watch(
    config: FeedConfig,
    duration_s: Optional[float] = None,
    out: TextIO = sys.stdout,
    *,
    transport: Optional[StreamTransport] = None,
    fetcher: Optional[Fetcher] = None,
) -> FeedHealth:
    """Run one client until duration_s elapses (or forever). Returns final health."""

    def on_status(state: ConnectionState) -> None:
        _write(out, {"type": "status", "state": state.value})

    client = LiveFeedClient(
        config,
        on_data=lambda snapshot: _write(out, snapshot_record(snapshot)),
        on_status_change=on_status,
        scheduler=AsyncioScheduler(),
        transport=transport,
        fetcher=fetcher,
    )
    client.connect()
    try:
        if duration_s is None:
            await asyncio.Event().wait()
        else:
            await asyncio.sleep(duration_s)
    finally:
        health = client.get_health()
        client.disconnect()
        _write(out, {"type": "health", **asdict(health)})
    return health


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format=LOG_FORMAT)

    try:
        config = resolve_config(args)
    except (ConfigurationError, FileNotFoundError, tomllib.TOMLDecodeError) as exc:
        print(f"[!] {exc}", file=sys.stderr)
        return 1

    try:
        asyncio.run(watch(config, args.duration))
    except KeyboardInterrupt:
        print("Interrupted by user.", file=sys.stderr)
        return 130
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
