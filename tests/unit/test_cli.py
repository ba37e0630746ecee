"""
Unit tests for the operational CLI.
"""

import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from stream_engine.cli import app
from stream_engine.errors import TransportError

runner = CliRunner()


@pytest.fixture
def fake_redis(broker):
    with patch("stream_engine.cli.RedisBroker", return_value=broker) as mock_cls:
        mock_cls.fake = broker
        yield mock_cls


def test_ping(fake_redis):
    result = runner.invoke(app, ["ping", "--broker", "localhost:6379"])
    assert result.exit_code == 0
    assert json.loads(result.stdout) == {"ok": True}
    assert fake_redis.fake.closed


def test_ping_failure_exits_nonzero(fake_redis):
    fake_redis.fake.fail["ping"] = TransportError("Connection refused")
    result = runner.invoke(app, ["ping"])
    assert result.exit_code == 1


def test_create_and_drop_group(fake_redis):
    result = runner.invoke(app, ["create-group", "a,b", "--group", "g", "--start-id", "0"])
    assert result.exit_code == 0
    assert json.loads(result.stdout) == {"created": ["a", "b"]}

    result = runner.invoke(app, ["drop-group", "a", "--group", "g"])
    assert json.loads(result.stdout) == {"dropped": ["a"]}


def test_produce_then_tail(fake_redis):
    fake = fake_redis.fake
    fake.create_group("events", "g", "0")

    result = runner.invoke(
        app, ["produce", "events", "--delimiter", ","], input="k1,v1\nk2,v2,k3,v3\n"
    )
    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["entries"] == 2
    assert fake.streams["events"][1].fields == ((b"k2", b"v2"), (b"k3", b"v3"))

    result = runner.invoke(
        app, ["tail", "events", "--group", "g", "--consumer", "c1", "--poll-timeout-ms", "10"]
    )
    assert result.exit_code == 0, result.output
    rows = [json.loads(line) for line in result.stdout.splitlines()]
    assert [json.loads(r["payload"]) for r in rows] == [{"k1": "v1"}, {"k2": "v2", "k3": "v3"}]
    assert rows[0]["_stream"] == "events"
    assert len(fake.pel("events", "g")) == 0


def test_pending_lists_unacked_entries(fake_redis):
    fake = fake_redis.fake
    fake.create_group("events", "g", "0")
    fake.add("events", k="v")
    fake.read_group("g", "dead", ["events"], None, 0)

    result = runner.invoke(app, ["pending", "events", "--group", "g"])
    assert result.exit_code == 0
    row = json.loads(result.stdout)
    assert row["consumer"] == "dead"
    assert row["entry_id"] == str(fake.streams["events"][0].entry_id)
