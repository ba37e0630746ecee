"""
Unit tests for stream engine models.
"""

import json

import pytest

from stream_engine.errors import ProtocolError
from stream_engine.models import ConsumerIdentity, EntryId, Message, StreamEntry, encode_payload


class TestEntryId:
    def test_parse_text_and_bytes(self):
        assert EntryId.parse("1700000000000-5") == EntryId(1700000000000, 5)
        assert EntryId.parse(b"12-0") == EntryId(12, 0)
        assert EntryId.parse("42") == EntryId(42, 0)

    def test_orders_by_timestamp_then_sequence(self):
        ids = [EntryId.parse(s) for s in ("2-0", "1-10", "1-2", "10-0")]
        assert [str(i) for i in sorted(ids)] == ["1-2", "1-10", "2-0", "10-0"]

    def test_malformed_id_is_protocol_error(self):
        with pytest.raises(ProtocolError, match="Malformed"):
            EntryId.parse("abc-1")


def test_payload_keeps_field_order_and_duplicates():
    payload = encode_payload([(b"b", b"2"), (b"a", b"1"), (b"b", b"3")])
    assert payload == '{"b":"2","a":"1","b":"3"}'
    # last duplicate wins when parsed back by a dict-based reader
    assert json.loads(payload) == {"b": "3", "a": "1"}


def test_payload_replaces_undecodable_bytes():
    payload = encode_payload([(b"k", b"\xff")])
    assert json.loads(payload) == {"k": "�"}


def test_message_from_entry_exposes_virtual_columns():
    entry = StreamEntry(EntryId(1700000000123, 7), ((b"k1", b"v1"),))
    msg = Message.from_entry("events", entry)

    assert msg.key == "1700000000123-7"
    assert msg.field(b"k1") == b"v1"
    assert msg.field(b"missing") is None
    assert msg.virtual_columns() == {
        "_stream": "events",
        "_key": "1700000000123-7",
        "_timestamp": 1700000000123,
        "_sequence_number": 7,
    }
    assert json.loads(msg.payload) == {"k1": "v1"}


def test_consumer_identity_rejects_blank_names():
    with pytest.raises(ValueError):
        ConsumerIdentity(group="g", consumer=" ")
