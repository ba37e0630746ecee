from __future__ import annotations

from time import monotonic
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence

from loguru import logger

from .claim import ClaimResolver
from .cursor import StreamCursorRegistry
from .errors import ProtocolError
from .metrics import (
    STREAM_MESSAGES_ACKED_TOTAL,
    STREAM_MESSAGES_POLLED_TOTAL,
    STREAM_POLL_LATENCY_MS,
    STREAM_POLLS_TOTAL,
)
from .models import ConsumerIdentity, EntryId, Message, StalledStatus, StreamEntry
from .transport import BrokerClient


class ReadEngine:
    """
    Consumer side of a stream table: poll, iterate, acknowledge.

    Usage:
        reader = ReadEngine(broker, ConsumerIdentity(group="g", consumer="c1"), ["a", "b"])
        while reader.poll():
            for msg in reader:
                handle(msg)
            reader.ack()

    A poll builds one batch: for each stream in subscription order, the
    entries reclaimed from dead consumers followed by freshly read ones.
    Streams are concatenated, not merged by entry id.

    Not thread-safe; one engine per host execution context and broker
    connection.
    """

    def __init__(
        self,
        broker: BrokerClient,
        identity: ConsumerIdentity,
        streams: Sequence[str],
        *,
        poll_batch_size: int = 0,
        claim_batch_size: int = 0,
        poll_timeout_ms: int = 0,
        min_time_for_claim_ms: int = 10_000,
        clock: Optional[Callable[[], float]] = None,
    ):
        if poll_batch_size < 0:
            raise ValueError("poll_batch_size must be >= 0")
        if poll_timeout_ms < 0:
            raise ValueError("poll_timeout_ms must be >= 0")
        self._broker = broker
        self._identity = identity
        self._cursors = StreamCursorRegistry(identity, streams)
        self._claims = ClaimResolver(
            broker,
            identity,
            claim_batch_size=claim_batch_size,
            min_idle_ms=min_time_for_claim_ms,
            clock=clock,
        )
        self._poll_batch_size = poll_batch_size
        self._poll_timeout_ms = poll_timeout_ms

        self._status = StalledStatus.NO_MESSAGES
        self._batch: List[Message] = []
        self._pos = 0
        # stream -> ids handed out through advance() since the last ack
        self._delivered: Dict[str, List[EntryId]] = {}

    # --------------------------- state

    @property
    def identity(self) -> ConsumerIdentity:
        return self._identity

    @property
    def group_name(self) -> str:
        return self._identity.group

    @property
    def consumer_name(self) -> str:
        return self._identity.consumer

    @property
    def streams(self) -> List[str]:
        return self._cursors.streams

    @property
    def cursors(self) -> StreamCursorRegistry:
        return self._cursors

    @property
    def claims(self) -> ClaimResolver:
        return self._claims

    @property
    def poll_timeout_ms(self) -> int:
        return self._poll_timeout_ms

    @property
    def status(self) -> StalledStatus:
        return self._status

    def is_stalled(self) -> bool:
        return self._status is not StalledStatus.NOT_STALLED

    @property
    def batch(self) -> List[Message]:
        return list(self._batch)

    @property
    def current(self) -> Optional[Message]:
        """Message most recently returned by advance()."""
        return self._batch[self._pos - 1] if self._pos else None

    @property
    def delivered_unacked(self) -> Dict[str, List[EntryId]]:
        return {s: list(ids) for s, ids in self._delivered.items()}

    def has_more_polled_messages(self) -> bool:
        return self._status is StalledStatus.NOT_STALLED and self._pos < len(self._batch)

    # --------------------------- polling

    def poll(self) -> bool:
        """Replace the current batch with a new one.

        Returns True when at least one message is available. A transport
        failure propagates; an empty result only sets NO_MESSAGES.
        """
        t0 = monotonic()
        try:
            per_stream = self._collect()
        except Exception:
            self._batch = []
            self._pos = 0
            self._status = StalledStatus.NO_MESSAGES
            STREAM_POLLS_TOTAL.labels(group=self._identity.group, outcome="error").inc()
            raise
        finally:
            STREAM_POLL_LATENCY_MS.labels(group=self._identity.group).observe(
                (monotonic() - t0) * 1000.0
            )

        batch: List[Message] = []
        for stream in self._cursors.streams:
            for entry in per_stream.get(stream, ()):
                batch.append(Message.from_entry(stream, entry))
                self._cursors.advance(stream, entry.entry_id)

        self._batch = batch
        self._pos = 0
        if not batch:
            self._status = StalledStatus.NO_MESSAGES
            STREAM_POLLS_TOTAL.labels(group=self._identity.group, outcome="empty").inc()
            logger.debug(f"Poll returned no messages (consumer={self._identity.consumer})")
            return False

        self._status = StalledStatus.NOT_STALLED
        STREAM_POLLS_TOTAL.labels(group=self._identity.group, outcome="messages").inc()
        logger.debug(
            f"Polled {len(batch)} messages from {len(per_stream)} streams "
            f"(consumer={self._identity.consumer})"
        )
        return True

    def _collect(self) -> Dict[str, List[StreamEntry]]:
        per_stream: Dict[str, List[StreamEntry]] = {}
        seen: Dict[str, set] = {}

        for stream in self._cursors.streams:
            reclaimed = self._claims.maybe_reclaim(stream)
            if reclaimed:
                per_stream[stream] = list(reclaimed)
                seen[stream] = {e.entry_id for e in reclaimed}
                STREAM_MESSAGES_POLLED_TOTAL.labels(stream=stream, origin="claimed").inc(
                    len(reclaimed)
                )

        reply = self._broker.read_group(
            self._identity.group,
            self._identity.consumer,
            self._cursors.streams,
            count=self._poll_batch_size or None,
            block_ms=self._poll_timeout_ms,
        )
        subscribed = set(self._cursors.streams)
        for stream, entries in reply:
            if stream not in subscribed:
                raise ProtocolError(f"Read-group reply names unsubscribed stream {stream!r}")
            known = seen.get(stream, set())
            fresh = [e for e in entries if e.entry_id not in known]
            if fresh:
                per_stream.setdefault(stream, []).extend(fresh)
                STREAM_MESSAGES_POLLED_TOTAL.labels(stream=stream, origin="fresh").inc(len(fresh))
        return per_stream

    # --------------------------- reading

    def advance(self) -> Optional[Message]:
        """Next message of the batch, or None at the end (re-poll needed)."""
        if not self.has_more_polled_messages():
            return None
        msg = self._batch[self._pos]
        self._pos += 1
        self._delivered.setdefault(msg.stream, []).append(msg.entry_id)
        return msg

    def __iter__(self) -> Iterator[Message]:
        while True:
            msg = self.advance()
            if msg is None:
                return
            yield msg

    def forget(self, messages: Iterable[Message]) -> int:
        """Drop delivered messages from the ack set without acknowledging them.

        They stay in the broker's pending list and can be reclaimed later.
        """
        dropped = 0
        for msg in messages:
            ids = self._delivered.get(msg.stream)
            if ids and msg.entry_id in ids:
                ids.remove(msg.entry_id)
                dropped += 1
                if not ids:
                    del self._delivered[msg.stream]
        return dropped

    # --------------------------- acknowledgment

    def ack(self) -> int:
        """Acknowledge everything delivered since the last ack.

        One broker round trip per stream, in subscription order. Streams
        acknowledged before a failure are cleared; the rest stay for a retry.
        Returns the number of ids sent.
        """
        if not self._delivered:
            return 0
        sent = 0
        for stream in self._cursors.streams:
            ids = self._delivered.get(stream)
            if not ids:
                self._delivered.pop(stream, None)
                continue
            self._broker.ack(stream, self._identity.group, ids)
            del self._delivered[stream]
            sent += len(ids)
            STREAM_MESSAGES_ACKED_TOTAL.labels(stream=stream).inc(len(ids))
        logger.debug(f"Acknowledged {sent} messages (consumer={self._identity.consumer})")
        return sent
