from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence

from loguru import logger

from .errors import ConfigurationError
from .groups import ConsumerGroupManager
from .models import ConsumerIdentity, Message
from .reader import ReadEngine
from .settings import RedisStreamsSettings
from .source import StreamSource
from .transport import BrokerClient, RedisBroker
from .writer import WriteEngine

BrokerFactory = Callable[[RedisStreamsSettings], BrokerClient]
BlockHandler = Callable[[str, List[Message]], None]


def redis_broker_factory(settings: RedisStreamsSettings) -> BrokerClient:
    return RedisBroker(settings.broker_config())


class StreamTable:
    """
    Composes the consumer contexts and writers of one stream table.

    Each consumer gets its own broker connection and its own name within the
    group; nothing is shared between contexts.

    Usage:
        table = StreamTable(load_settings({"redis_stream_list": "a,b", ...}))
        table.startup()
        table.consume(lambda consumer, block: insert(block))
        table.shutdown()
    """

    def __init__(
        self,
        settings: RedisStreamsSettings,
        broker_factory: Optional[BrokerFactory] = None,
    ):
        self._settings = settings
        self._factory = broker_factory or redis_broker_factory
        self._brokers: List[BrokerClient] = []
        self._sources: List[StreamSource] = []
        self._started = False

    @property
    def settings(self) -> RedisStreamsSettings:
        return self._settings

    @property
    def sources(self) -> List[StreamSource]:
        return list(self._sources)

    def _connect(self) -> BrokerClient:
        broker = self._factory(self._settings)
        self._brokers.append(broker)
        return broker

    def _require_consumer_settings(self) -> None:
        if not self._settings.streams:
            raise ConfigurationError("stream_list must name at least one stream")
        if not self._settings.group_name:
            raise ConfigurationError("group_name is required to consume")

    # --------------------------- lifecycle

    def startup(self) -> None:
        if self._started:
            return
        self._require_consumer_settings()
        s = self._settings
        if s.manage_consumer_groups:
            ConsumerGroupManager(self._connect()).ensure(
                s.streams, s.group_name, s.consumer_groups_start_id
            )
        for name in s.consumer_names():
            reader = ReadEngine(
                self._connect(),
                ConsumerIdentity(group=s.group_name, consumer=name),
                s.streams,
                poll_batch_size=s.poll_max_batch_size,
                claim_batch_size=s.claim_max_batch_size,
                poll_timeout_ms=s.poll_timeout_ms,
                min_time_for_claim_ms=s.min_time_for_claim_ms,
            )
            self._sources.append(StreamSource.from_settings(reader, s))
        self._started = True
        logger.info(
            f"Stream table started: group={s.group_name} streams={s.streams} "
            f"consumers={len(self._sources)}"
        )

    def shutdown(self) -> None:
        s = self._settings
        try:
            if self._started and s.manage_consumer_groups:
                ConsumerGroupManager(self._brokers[0]).drop(s.streams, s.group_name)
        finally:
            for broker in self._brokers:
                broker.close()
            self._brokers.clear()
            self._sources.clear()
            self._started = False

    def __enter__(self) -> "StreamTable":
        try:
            self.startup()
        except Exception:
            self.shutdown()
            raise
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    # --------------------------- reading

    def _consume_one(self, source: StreamSource, handler: BlockHandler) -> int:
        block = source.read_block()
        if block:
            handler(source.reader.consumer_name, block)
        source.commit()
        return len(block)

    def consume(self, handler: BlockHandler) -> int:
        """Read one block per consumer, hand it to ``handler``, then commit.

        A handler failure propagates before the commit, leaving the block
        unacknowledged (and reclaimable). Returns the total message count.
        """
        if not self._started:
            raise RuntimeError("StreamTable must be started before consuming")
        if self._settings.thread_per_consumer and len(self._sources) > 1:
            with ThreadPoolExecutor(
                max_workers=len(self._sources), thread_name_prefix="stream-consumer"
            ) as pool:
                futures = [pool.submit(self._consume_one, src, handler) for src in self._sources]
                return sum(f.result() for f in futures)
        return sum(self._consume_one(src, handler) for src in self._sources)

    # --------------------------- writing

    def create_writer(self, stream: Optional[str] = None) -> WriteEngine:
        streams: Sequence[str] = self._settings.streams
        target = stream or (streams[0] if streams else None)
        if not target:
            raise ConfigurationError("No stream to write to")
        s = self._settings
        return WriteEngine(
            self._connect(),
            target,
            delimiter=s.field_delimiter,
            rows_per_message=s.rows_per_message,
            max_message_bytes=s.max_message_bytes,
        )
