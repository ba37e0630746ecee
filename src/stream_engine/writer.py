from __future__ import annotations

from collections import deque
from typing import Deque, List, Optional, Union

from loguru import logger

from .errors import AppendError, PayloadFormatError, StreamEngineError
from .metrics import STREAM_ENTRIES_APPENDED_TOTAL
from .models import EntryId, Fields
from .transport import BrokerClient

DEFAULT_FIELD_NAME = b"data"


class WriteEngine:
    """
    Byte sink that frames rows into stream entries.

    Usage:
        with WriteEngine(broker, "events", rows_per_message=100) as w:
            for row in rows:
                w.write_row(row)
        # exiting the block flushes the tail

    The host's row formatter writes bytes with ``write`` and closes each row
    with ``count_row``. A chunk is sealed once it holds ``rows_per_message``
    rows or ``max_message_bytes`` bytes (0 disables the byte limit), and on
    ``flush``. Sealed chunks leave the queue only after a successful append.
    """

    def __init__(
        self,
        broker: BrokerClient,
        stream: str,
        *,
        delimiter: Optional[Union[str, bytes]] = None,
        rows_per_message: int = 1,
        max_message_bytes: int = 0,
    ):
        if not stream:
            raise ValueError("stream must be non-empty")
        if rows_per_message < 1:
            raise ValueError("rows_per_message must be >= 1")
        if max_message_bytes < 0:
            raise ValueError("max_message_bytes must be >= 0")
        if isinstance(delimiter, str):
            delimiter = delimiter.encode("utf-8")
        if delimiter is not None and len(delimiter) != 1:
            raise ValueError("delimiter must be a single character")

        self._broker = broker
        self._stream = stream
        self._delim = delimiter
        self._max_rows = rows_per_message
        self._max_bytes = max_message_bytes

        # active chunk
        self._buf: Optional[bytearray] = None
        self._rows = 0
        # sealed, not yet appended
        self._sealed: Deque[bytes] = deque()
        self._appended: List[EntryId] = []

    # --------------------------- public API

    @property
    def stream(self) -> str:
        return self._stream

    @property
    def pending_rows(self) -> int:
        return self._rows

    @property
    def pending_bytes(self) -> int:
        return len(self._buf) if self._buf is not None else 0

    @property
    def sealed_chunks(self) -> int:
        return len(self._sealed)

    @property
    def appended_ids(self) -> List[EntryId]:
        return list(self._appended)

    def write(self, data: Union[bytes, bytearray, memoryview]) -> int:
        if self._buf is None:
            self._buf = bytearray()
        self._buf += data
        return len(data)

    def count_row(self) -> None:
        """Close one row; seal and emit the chunk when a threshold is hit."""
        if self._buf is None:
            self._buf = bytearray()
        self._rows += 1
        if self._rows >= self._max_rows:
            self._seal()
            self._emit()
            return
        if self._max_bytes and len(self._buf) >= self._max_bytes:
            self._seal()
            self._emit()

    def write_row(self, data: Union[bytes, bytearray, memoryview]) -> None:
        self.write(data)
        self.count_row()

    def flush(self) -> int:
        """Seal the active chunk (if it has rows) and append all sealed chunks.

        Returns the number of entries appended by this call.
        """
        if self._rows:
            self._seal()
        return self._emit()

    def discard(self) -> int:
        """Drop sealed chunks the host decided not to resubmit."""
        dropped = len(self._sealed)
        self._sealed.clear()
        if dropped:
            logger.warning(f"Discarded {dropped} unsent chunks for stream {self._stream}")
        return dropped

    def close(self) -> int:
        return self.flush()

    def __enter__(self) -> "WriteEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.flush()

    # --------------------------- internals

    def _seal(self) -> None:
        self._sealed.append(bytes(self._buf or b""))
        self._buf = None
        self._rows = 0

    def _emit(self) -> int:
        sent = 0
        while self._sealed:
            try:
                fields = self.to_fields(self._sealed[0])
            except PayloadFormatError:
                # can never be appended; drop it so later chunks are not blocked
                self._sealed.popleft()
                STREAM_ENTRIES_APPENDED_TOTAL.labels(stream=self._stream, outcome="malformed").inc()
                raise
            try:
                entry_id = self._broker.append(self._stream, fields)
            except StreamEngineError as e:
                STREAM_ENTRIES_APPENDED_TOTAL.labels(stream=self._stream, outcome="failure").inc()
                logger.error(
                    f"Append to {self._stream} failed; {len(self._sealed)} chunks kept: {e}"
                )
                raise AppendError(
                    f"Failed to append to stream {self._stream}: {e}",
                    stream=self._stream,
                    pending_chunks=len(self._sealed),
                ) from e
            self._sealed.popleft()
            self._appended.append(entry_id)
            STREAM_ENTRIES_APPENDED_TOTAL.labels(stream=self._stream, outcome="success").inc()
            sent += 1
        return sent

    def to_fields(self, payload: bytes) -> Fields:
        """Frame a raw chunk as stream-entry fields.

        Without a delimiter the whole payload goes under one fixed field.
        With one, the payload is split into alternating names and values; a
        single trailing delimiter is ignored.
        """
        if self._delim is None:
            return ((DEFAULT_FIELD_NAME, payload),)
        body = payload[:-1] if payload.endswith(self._delim) else payload
        parts = body.split(self._delim)
        if len(parts) % 2:
            raise PayloadFormatError(
                f"Payload for stream {self._stream} splits into {len(parts)} parts; "
                f"expected field/value pairs"
            )
        return tuple((parts[i], parts[i + 1]) for i in range(0, len(parts), 2))
