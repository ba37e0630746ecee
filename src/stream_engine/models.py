"""
Data models for the Redis Streams engine.

Broker entries keep their field/value pairs as an ordered sequence so a
payload survives a read/write round trip with its field order intact.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, field_validator

from .errors import ProtocolError

Field = Tuple[bytes, bytes]
Fields = Tuple[Field, ...]


class EntryId(NamedTuple):
    """Broker-assigned entry id; orders by (timestamp_ms, sequence)."""

    timestamp_ms: int
    sequence: int

    @classmethod
    def parse(cls, raw) -> "EntryId":
        if isinstance(raw, EntryId):
            return raw
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("ascii", errors="replace")
        ms, sep, seq = str(raw).partition("-")
        try:
            return cls(int(ms), int(seq) if sep else 0)
        except ValueError:
            raise ProtocolError(f"Malformed stream entry id: {raw!r}") from None

    def __str__(self) -> str:
        return f"{self.timestamp_ms}-{self.sequence}"


@dataclass(frozen=True)
class StreamEntry:
    """Raw broker entry as returned by a read or claim."""

    entry_id: EntryId
    fields: Fields


class StalledStatus(str, Enum):
    """Outcome of the most recent poll."""

    NOT_STALLED = "not_stalled"
    NO_MESSAGES = "no_messages"


class ClaimOutcome(str, Enum):
    CLAIMED = "claimed"
    NOT_FOUND = "not_found"  # acked or reclaimed elsewhere before our claim


@dataclass(frozen=True)
class ClaimResult:
    stream: str
    entry_id: EntryId
    outcome: ClaimOutcome


class ConsumerIdentity(BaseModel):
    """Consumer-group membership of one reader."""

    model_config = ConfigDict(frozen=True)

    group: str
    consumer: str

    @field_validator("group", "consumer")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("consumer group and consumer name must be non-empty")
        return v


class PendingRecord(BaseModel):
    """Broker metadata for a delivered-but-unacknowledged entry."""

    model_config = ConfigDict(frozen=True)

    stream: str
    entry_id: EntryId
    consumer: str
    idle_ms: int
    deliveries: int = 1


class Message(BaseModel):
    """Client-side projection of a stream entry handed to the row layer."""

    model_config = ConfigDict(frozen=True)

    stream: str
    entry_id: EntryId
    fields: Fields = ()
    payload: str = ""

    @classmethod
    def from_entry(cls, stream: str, entry: StreamEntry) -> "Message":
        return cls(
            stream=stream,
            entry_id=entry.entry_id,
            fields=entry.fields,
            payload=encode_payload(entry.fields),
        )

    @property
    def key(self) -> str:
        return str(self.entry_id)

    @property
    def timestamp(self) -> int:
        return self.entry_id.timestamp_ms

    @property
    def sequence_number(self) -> int:
        return self.entry_id.sequence

    def field(self, name: bytes) -> Optional[bytes]:
        """First value stored under ``name``, if any."""
        for k, v in self.fields:
            if k == name:
                return v
        return None

    def virtual_columns(self) -> dict:
        return {
            "_stream": self.stream,
            "_key": self.key,
            "_timestamp": self.timestamp,
            "_sequence_number": self.sequence_number,
        }


def encode_payload(fields: Sequence[Field]) -> str:
    """Render ordered field/value pairs as a JSON object.

    Built by hand instead of via a dict so repeated field names survive.
    """
    parts = []
    for k, v in fields:
        key = k.decode("utf-8", errors="replace")
        val = v.decode("utf-8", errors="replace")
        parts.append(f"{json.dumps(key, ensure_ascii=False)}:{json.dumps(val, ensure_ascii=False)}")
    return "{" + ",".join(parts) + "}"
