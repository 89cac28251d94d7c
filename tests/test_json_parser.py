from __future__ import annotations

from uptime_alarms.json_parser import parse_json_response
from uptime_alarms.models import JsonParsingConfig


def test_auto_mode_flattens_scalars() -> None:
    body = {"status": "ok", "db": {"latency_ms": 12, "healthy": True}, "queues": [1, 2, 3]}
    extracted = parse_json_response(body, "application/json", JsonParsingConfig(mode="auto"))
    assert extracted == {"status": "ok", "db.latency_ms": 12, "db.healthy": True, "queues.length": 3}


def test_manual_mode_picks_paths_and_skips_missing() -> None:
    body = '{"data": {"items": [{"name": "a"}, {"name": "b"}]}, "version": "1.2"}'
    config = JsonParsingConfig(mode="manual", fields=["version", "data.items.1.name", "data.missing"])
    extracted = parse_json_response(body, "application/json", config)
    assert extracted == {"version": "1.2", "data.items.1.name": "b"}


def test_disabled_or_non_json_returns_none() -> None:
    assert parse_json_response({"a": 1}, "application/json", JsonParsingConfig(enabled=False)) is None
    assert parse_json_response("<html></html>", "text/html", JsonParsingConfig()) is None
    assert parse_json_response("{broken", "application/json", JsonParsingConfig()) is None
