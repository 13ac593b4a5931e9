import io
from pathlib import Path

import orjson
import pytest

from naphex.cli.feed import build_parser, main, resolve_config, watch
from naphex.feed.config import FeedConfig
from naphex.feed.errors import ConfigurationError


class _Handle:
    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True


class _ImmediateTransport:
    """Opens instantly and replays canned messages."""

    def __init__(self, messages: list[str]) -> None:
        self._messages = messages
        self.handles: list[_Handle] = []

    def open(self, url, headers, on_open, on_message, on_error) -> _Handle:
        on_open()
        for message in self._messages:
            on_message(message)
        handle = _Handle()
        self.handles.append(handle)
        return handle


def test_build_parser():
    p = build_parser()
    assert p.prog == "naphex-feed"
    args = p.parse_args(
        [
            "watch",
            "--base-url",
            "https://api.naphex.example",
            "--feed",
            "profile",
            "--phone",
            "9876543210",
            "--duration",
            "2.5",
            "--config",
            "feed.toml",
        ]
    )
    assert args.command == "watch"
    assert args.feed == "profile"
    assert args.phone == "9876543210"
    assert args.duration == 2.5
    assert args.config == Path("feed.toml")
    assert args.log_level == "INFO"


def test_parser_rejects_unknown_feed():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["watch", "--feed", "rejected"])


def test_resolve_config_defaults_to_users():
    args = build_parser().parse_args(["watch", "--base-url", "https://api.test"])
    config = resolve_config(args)
    assert config.stream_url == "https://api.test/api/users"


def test_resolve_config_from_file(tmp_path: Path):
    path = tmp_path / "feed.toml"
    path.write_text('[feed]\nbase_url = "https://file.test"\nkind = "results"\n')
    args = build_parser().parse_args(["watch", "--config", str(path), "--base-url", "https://cli.test"])
    config = resolve_config(args)
    assert config.stream_url == "https://cli.test/fetch-results"


def test_resolve_config_requires_base_url():
    args = build_parser().parse_args(["watch"])
    with pytest.raises(ConfigurationError):
        resolve_config(args)


def test_main_returns_1_on_bad_config(capsys):
    code = main(["watch", "--base-url", "https://api.test", "--feed", "profile"])
    assert code == 1
    assert "phone is required" in capsys.readouterr().err


def test_main_returns_1_on_missing_config_file(tmp_path: Path):
    assert main(["watch", "--config", str(tmp_path / "missing.toml")]) == 1


def test_main_returns_1_on_malformed_toml(tmp_path: Path, capsys):
    path = tmp_path / "broken.toml"
    path.write_text("[feed\nbase_url = \n")
    assert main(["watch", "--config", str(path)]) == 1
    assert "[!]" in capsys.readouterr().err


# --- watch -----------------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_watch_writes_json_lines():
    config = FeedConfig(stream_url="https://api.test/api/users", data_key="data", name="cli_test")
    transport = _ImmediateTransport(['{"success": true, "data": [{"phone": "1"}, {"phone": "2"}]}'])
    out = io.StringIO()

    health = await watch(config, duration_s=0, out=out, transport=transport)

    records = [orjson.loads(line) for line in out.getvalue().splitlines()]
    assert [r["type"] for r in records] == ["status", "status", "snapshot", "health"]
    assert [r["state"] for r in records[:2]] == ["connecting", "connected"]
    assert records[2]["count"] == 2
    assert records[2]["source"] == "stream"
    assert records[3]["messages_delivered"] == 1
    assert health.messages_delivered == 1
    assert transport.handles[0].closed
