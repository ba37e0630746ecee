"""
Unit tests for StreamCursorRegistry.
"""

import pytest

from stream_engine.cursor import StreamCursorRegistry
from stream_engine.errors import ConfigurationError
from stream_engine.models import ConsumerIdentity, EntryId

IDENT = ConsumerIdentity(group="g", consumer="c1")


def test_new_streams_start_at_new_entries_marker():
    reg = StreamCursorRegistry(IDENT, ["a", "b"])
    assert reg.snapshot() == {"a": ">", "b": ">"}
    assert reg.streams == ["a", "b"]
    assert reg.identity == IDENT


def test_advance_keeps_highest_id():
    reg = StreamCursorRegistry(IDENT, ["a"])
    reg.advance("a", EntryId(5, 1))
    reg.advance("a", EntryId(3, 9))  # older reclaimed entry
    assert reg.position("a") == EntryId(5, 1)
    reg.advance("a", EntryId(5, 2))
    assert reg.position("a") == EntryId(5, 2)


def test_unknown_stream_raises_key_error():
    reg = StreamCursorRegistry(IDENT, ["a"])
    with pytest.raises(KeyError):
        reg.advance("zzz", EntryId(1, 0))


@pytest.mark.parametrize("streams", [[], ["a", "a"], ["a", ""]])
def test_invalid_subscriptions_rejected(streams):
    with pytest.raises(ConfigurationError):
        StreamCursorRegistry(IDENT, streams)
