from __future__ import annotations

from time import monotonic
from typing import Callable, List, Optional

from loguru import logger

from .models import Message
from .reader import ReadEngine
from .settings import DEFAULT_FLUSH_INTERVAL_MS, DEFAULT_MAX_BLOCK_SIZE, RedisStreamsSettings


class StreamSource:
    """
    Drives a ReadEngine to assemble insert blocks.

    A block closes at ``max_block_size`` messages, when a poll comes back
    empty, or once ``flush_interval_ms`` has passed since the block started.

    Ack policy:
        ack_every_batch   ack each polled batch as soon as it is drained
        ack_on_select     ack at the end of read_block (ack after read)
        neither           ack on commit() after the host wrote the block
    """

    def __init__(
        self,
        reader: ReadEngine,
        *,
        max_block_size: int = DEFAULT_MAX_BLOCK_SIZE,
        flush_interval_ms: int = DEFAULT_FLUSH_INTERVAL_MS,
        ack_every_batch: bool = False,
        ack_on_select: bool = True,
        clock: Optional[Callable[[], float]] = None,
    ):
        if max_block_size < 1:
            raise ValueError("max_block_size must be >= 1")
        self._reader = reader
        self._max_rows = max_block_size
        self._max_ms = flush_interval_ms
        self._ack_every_batch = ack_every_batch
        self._ack_on_select = ack_on_select
        self._clock = clock or monotonic

    @classmethod
    def from_settings(cls, reader: ReadEngine, settings: RedisStreamsSettings) -> "StreamSource":
        return cls(
            reader,
            max_block_size=settings.block_size,
            flush_interval_ms=settings.flush_interval,
            ack_every_batch=settings.ack_every_batch,
            ack_on_select=settings.ack_on_select,
        )

    @property
    def reader(self) -> ReadEngine:
        return self._reader

    def read_block(self) -> List[Message]:
        t0 = self._clock()
        block: List[Message] = []
        try:
            self._fill(block, t0)
        except Exception:
            # the host never sees this block; keep it pending for a reclaim
            forgotten = self._reader.forget(block)
            logger.warning(
                f"Block read failed after {len(block)} messages; {forgotten} left unacked "
                f"(consumer={self._reader.consumer_name})"
            )
            raise
        logger.debug(
            f"Read block of {len(block)} messages (consumer={self._reader.consumer_name})"
        )
        return block

    def _fill(self, block: List[Message], t0: float) -> None:
        while len(block) < self._max_rows:
            if self._reader.has_more_polled_messages():
                block.append(self._reader.advance())
                continue
            if self._ack_every_batch:
                self._reader.ack()
            elapsed_ms = (self._clock() - t0) * 1000.0
            if block and elapsed_ms >= self._max_ms:
                break
            if not self._reader.poll():
                break

        if self._ack_every_batch and not self._reader.has_more_polled_messages():
            self._reader.ack()
        if self._ack_on_select:
            self._reader.ack()

    def commit(self) -> int:
        """Acknowledge whatever the last blocks delivered; safe to repeat."""
        return self._reader.ack()
