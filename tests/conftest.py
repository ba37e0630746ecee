"""
Pytest configuration and fixtures for the stream engine.

Provides an in-memory broker that models streams, consumer groups, pending
entry lists and idle times, so the poll/claim/ack state machine can be
tested without a live Redis.
"""

from collections import OrderedDict

import pytest

from stream_engine.errors import GroupNotFoundError, TransportError
from stream_engine.models import EntryId, PendingRecord, StreamEntry


class FakeBroker:
    """Implements BrokerClient against in-process state.

    ``now_ms`` is the broker clock; tests move it forward to age pending
    entries. ``fail`` maps an operation name to the exception it raises next.
    """

    def __init__(self):
        self.now_ms = 1_700_000_000_000
        self.streams: dict[str, list[StreamEntry]] = {}
        self.groups: dict[tuple[str, str], dict] = {}
        self.calls: list[tuple] = []
        self.fail: dict[str, Exception] = {}
        self.reverse_replies = False
        self.closed = False
        self._seq: dict[str, int] = {}

    # --- test helpers

    def clock(self) -> float:
        return self.now_ms / 1000.0

    def add(self, stream: str, **fields: str) -> EntryId:
        return self.append(
            stream, tuple((k.encode(), v.encode()) for k, v in fields.items()), _record=False
        )

    def delete(self, stream: str, entry_id: EntryId) -> None:
        self.streams[stream] = [e for e in self.streams[stream] if e.entry_id != entry_id]

    def pel(self, stream: str, group: str) -> "OrderedDict[EntryId, list]":
        return self.groups[(stream, group)]["pel"]

    def owner(self, stream: str, group: str, entry_id: EntryId):
        row = self.pel(stream, group).get(entry_id)
        return row[0] if row else None

    def ops(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]

    def _maybe_fail(self, op: str) -> None:
        if op in self.fail:
            raise self.fail.pop(op)

    def _group(self, stream: str, group: str) -> dict:
        try:
            return self.groups[(stream, group)]
        except KeyError:
            raise GroupNotFoundError(f"NOGROUP No such key '{stream}' or consumer group '{group}'")

    # --- BrokerClient

    def ping(self) -> bool:
        self._maybe_fail("ping")
        return True

    def create_group(self, stream, group, start_id="$"):
        self.calls.append(("create_group", stream, group, start_id))
        self._maybe_fail("create_group")
        if (stream, group) in self.groups:
            return False
        entries = self.streams.setdefault(stream, [])
        if start_id == "$":
            last = entries[-1].entry_id if entries else EntryId(0, 0)
        else:
            last = EntryId.parse(start_id)
        self.groups[(stream, group)] = {"last": last, "pel": OrderedDict()}
        return True

    def destroy_group(self, stream, group):
        self.calls.append(("destroy_group", stream, group))
        return self.groups.pop((stream, group), None) is not None

    def read_group(self, group, consumer, streams, count, block_ms):
        self.calls.append(("read_group", group, consumer, tuple(streams), count, block_ms))
        self._maybe_fail("read_group")
        out = []
        for stream in streams:
            g = self._group(stream, group)
            fresh = [e for e in self.streams.get(stream, []) if e.entry_id > g["last"]]
            if count:
                fresh = fresh[:count]
            for e in fresh:
                g["pel"][e.entry_id] = [consumer, self.now_ms, 1]
                g["last"] = e.entry_id
            if fresh:
                out.append((stream, fresh))
        return list(reversed(out)) if self.reverse_replies else out

    def list_pending(self, stream, group, min_idle_ms, count):
        self.calls.append(("list_pending", stream, group, min_idle_ms, count))
        self._maybe_fail("list_pending")
        out = []
        for entry_id, (consumer, delivered, deliveries) in self._group(stream, group)["pel"].items():
            idle = self.now_ms - delivered
            if idle >= min_idle_ms:
                out.append(
                    PendingRecord(
                        stream=stream,
                        entry_id=entry_id,
                        consumer=consumer,
                        idle_ms=idle,
                        deliveries=deliveries,
                    )
                )
            if len(out) >= count:
                break
        return out

    def claim(self, stream, group, consumer, min_idle_ms, entry_ids):
        self.calls.append(("claim", stream, group, consumer, min_idle_ms, tuple(entry_ids)))
        self._maybe_fail("claim")
        pel = self._group(stream, group)["pel"]
        by_id = {e.entry_id: e for e in self.streams.get(stream, [])}
        out = []
        for entry_id in entry_ids:
            row = pel.get(entry_id)
            if row is None or self.now_ms - row[1] < min_idle_ms:
                continue
            if entry_id not in by_id:
                del pel[entry_id]
                continue
            pel[entry_id] = [consumer, self.now_ms, row[2] + 1]
            out.append(by_id[entry_id])
        return out

    def ack(self, stream, group, entry_ids):
        self.calls.append(("ack", stream, group, tuple(entry_ids)))
        self._maybe_fail("ack")
        pel = self._group(stream, group)["pel"]
        n = 0
        for entry_id in entry_ids:
            if pel.pop(entry_id, None) is not None:
                n += 1
        return n

    def append(self, stream, fields, _record=True):
        if _record:
            self.calls.append(("append", stream, tuple(fields)))
        self._maybe_fail("append")
        seq = self._seq.get(stream, 0)
        self._seq[stream] = seq + 1
        entry_id = EntryId(self.now_ms, seq)
        self.streams.setdefault(stream, []).append(StreamEntry(entry_id, tuple(fields)))
        return entry_id

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def broker():
    """Fresh in-memory broker."""
    return FakeBroker()


@pytest.fixture
def broker_factory():
    """Factory handing out one fake broker per connection, sharing state."""
    shared = FakeBroker()
    opened = []

    def _factory(_settings):
        opened.append(shared)
        return shared

    _factory.shared = shared
    _factory.opened = opened
    return _factory


@pytest.fixture
def transport_down():
    return TransportError("Connection refused")
