from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Protocol, Sequence

import redis
from loguru import logger
from redis.connection import ConnectionPool

from .errors import ProtocolError, map_redis_error
from .models import EntryId, Fields, PendingRecord, StreamEntry

NEW_ENTRIES = ">"  # consumer-group read marker: only never-delivered entries


class BrokerClient(Protocol):
    """Blocking request/response view of the broker the engines depend on."""

    def ping(self) -> bool: ...

    def create_group(self, stream: str, group: str, start_id: str = "$") -> bool: ...

    def destroy_group(self, stream: str, group: str) -> bool: ...

    def read_group(
        self,
        group: str,
        consumer: str,
        streams: Sequence[str],
        count: Optional[int],
        block_ms: Optional[int],
    ) -> list[tuple[str, list[StreamEntry]]]: ...

    def list_pending(
        self, stream: str, group: str, min_idle_ms: int, count: int
    ) -> list[PendingRecord]: ...

    def claim(
        self,
        stream: str,
        group: str,
        consumer: str,
        min_idle_ms: int,
        entry_ids: Sequence[EntryId],
    ) -> list[StreamEntry]: ...

    def ack(self, stream: str, group: str, entry_ids: Sequence[EntryId]) -> int: ...

    def append(self, stream: str, fields: Fields) -> EntryId: ...

    def close(self) -> None: ...


@dataclass
class _Cfg:
    broker: str = "localhost:6379"
    password: Optional[str] = None
    db: int = 0
    socket_timeout: Optional[float] = None
    connect_timeout: float = 10.0
    pool_max: int = 2


def _pool_from_cfg(c: _Cfg) -> ConnectionPool:
    kwargs = {
        "password": c.password or None,
        "socket_connect_timeout": c.connect_timeout,
        # reads may block server-side for the whole poll timeout
        "socket_timeout": c.socket_timeout,
        "max_connections": c.pool_max,
        "decode_responses": False,
    }
    if "://" in c.broker:
        return ConnectionPool.from_url(c.broker, **kwargs)
    host, _, port = c.broker.rpartition(":")
    if not host:
        host, port = c.broker, "6379"
    return ConnectionPool(host=host, port=int(port), db=c.db, **kwargs)


class RedisBroker:
    """redis-py adapter implementing :class:`BrokerClient`.

    Every instance owns its own connection pool; engines never share one.
    """

    def __init__(self, config: Optional[dict] = None, *, client: Optional[redis.Redis] = None):
        if client is not None:
            self._client = client
            self._pool = None
        else:
            c = _Cfg(**(config or {}))
            self._pool = _pool_from_cfg(c)
            self._client = redis.Redis(connection_pool=self._pool)

    def close(self) -> None:
        self._client.close()
        if self._pool is not None:
            self._pool.disconnect()

    # ---------- internal helpers ----------

    @contextmanager
    def _call(self, op: str):
        try:
            yield
        except redis.RedisError as e:
            err = map_redis_error(e)
            logger.debug(f"Broker {op} failed: {type(err).__name__}: {e}")
            raise err from e

    @staticmethod
    def _text(v) -> str:
        return v.decode("utf-8") if isinstance(v, (bytes, bytearray)) else str(v)

    @staticmethod
    def _bytes(v) -> bytes:
        if isinstance(v, (bytes, bytearray)):
            return bytes(v)
        return str(v).encode("utf-8")

    @classmethod
    def _fields(cls, raw) -> Optional[Fields]:
        if raw is None:
            return None
        if isinstance(raw, Mapping):
            return tuple((cls._bytes(k), cls._bytes(v)) for k, v in raw.items())
        flat = list(raw)
        if len(flat) % 2:
            raise ProtocolError(f"Odd field/value list in stream entry: {flat!r}")
        return tuple((cls._bytes(flat[i]), cls._bytes(flat[i + 1])) for i in range(0, len(flat), 2))

    @classmethod
    def _entries(cls, raw: Iterable) -> list[StreamEntry]:
        out: list[StreamEntry] = []
        for item in raw or ():
            if item is None:
                continue
            try:
                entry_id, fields = item
            except (TypeError, ValueError):
                raise ProtocolError(f"Malformed stream entry: {item!r}") from None
            parsed = cls._fields(fields)
            if parsed is None:
                # entry deleted from the stream while still pending
                continue
            out.append(StreamEntry(EntryId.parse(entry_id), parsed))
        return out

    # ---------- admin ----------

    def ping(self) -> bool:
        with self._call("ping"):
            return bool(self._client.ping())

    def create_group(self, stream: str, group: str, start_id: str = "$") -> bool:
        try:
            self._client.xgroup_create(stream, group, id=start_id, mkstream=True)
        except redis.ResponseError as e:
            if str(e).startswith("BUSYGROUP"):
                return False
            raise map_redis_error(e) from e
        except redis.RedisError as e:
            raise map_redis_error(e) from e
        return True

    def destroy_group(self, stream: str, group: str) -> bool:
        with self._call("destroy-group"):
            return bool(self._client.xgroup_destroy(stream, group))

    # ---------- consumer side ----------

    def read_group(
        self,
        group: str,
        consumer: str,
        streams: Sequence[str],
        count: Optional[int],
        block_ms: Optional[int],
    ) -> list[tuple[str, list[StreamEntry]]]:
        with self._call("read-group"):
            reply = self._client.xreadgroup(
                group,
                consumer,
                {s: NEW_ENTRIES for s in streams},
                count=count,
                block=block_ms,
            )
        if not reply:
            return []
        pairs = reply.items() if isinstance(reply, Mapping) else reply
        out: list[tuple[str, list[StreamEntry]]] = []
        for pair in pairs:
            try:
                name, items = pair
            except (TypeError, ValueError):
                raise ProtocolError(f"Malformed read-group reply: {pair!r}") from None
            # RESP3 wraps the entry list once more
            if isinstance(items, list) and len(items) == 1 and isinstance(items[0], list):
                items = items[0]
            out.append((self._text(name), self._entries(items)))
        return out

    def list_pending(
        self, stream: str, group: str, min_idle_ms: int, count: int
    ) -> list[PendingRecord]:
        with self._call("list-pending"):
            rows = self._client.xpending_range(
                stream, group, min="-", max="+", count=count, idle=min_idle_ms or None
            )
        out: list[PendingRecord] = []
        for r in rows or ():
            try:
                out.append(
                    PendingRecord(
                        stream=stream,
                        entry_id=EntryId.parse(r["message_id"]),
                        consumer=self._text(r["consumer"]),
                        idle_ms=int(r["time_since_delivered"]),
                        deliveries=int(r["times_delivered"]),
                    )
                )
            except (KeyError, TypeError, ValueError):
                raise ProtocolError(f"Malformed pending-list row: {r!r}") from None
        return out

    def claim(
        self,
        stream: str,
        group: str,
        consumer: str,
        min_idle_ms: int,
        entry_ids: Sequence[EntryId],
    ) -> list[StreamEntry]:
        if not entry_ids:
            return []
        with self._call("claim"):
            reply = self._client.xclaim(
                stream, group, consumer, min_idle_ms, [str(i) for i in entry_ids]
            )
        return self._entries(reply)

    def ack(self, stream: str, group: str, entry_ids: Sequence[EntryId]) -> int:
        if not entry_ids:
            return 0
        with self._call("ack"):
            return int(self._client.xack(stream, group, *[str(i) for i in entry_ids]))

    # ---------- producer side ----------

    def append(self, stream: str, fields: Fields) -> EntryId:
        # xadd() takes a mapping, which would collapse repeated field names
        flat = [part for pair in fields for part in pair]
        with self._call("append"):
            raw = self._client.execute_command("XADD", stream, "*", *flat)
        return EntryId.parse(raw)
