"""
Redis Streams Engine

Lets a table engine read Redis Streams through consumer groups (with
reclaiming of entries abandoned by crashed consumers) and write rows back
as framed stream entries.

Usage:
    from stream_engine import RedisBroker, ReadEngine, WriteEngine, ConsumerIdentity

    broker = RedisBroker({"broker": "localhost:6379"})
    reader = ReadEngine(broker, ConsumerIdentity(group="g", consumer="c1"), ["events"])
    while reader.poll():
        for msg in reader:
            print(msg.payload)
        reader.ack()

    with WriteEngine(RedisBroker({"broker": "localhost:6379"}), "events", delimiter=",") as w:
        w.write_row(b"k1,v1,k2,v2")
"""

from .claim import ClaimResolver
from .cursor import StreamCursorRegistry
from .errors import (
    AppendError,
    ConfigurationError,
    GroupNotFoundError,
    PayloadFormatError,
    ProtocolError,
    StreamEngineError,
    TransportError,
)
from .groups import ConsumerGroupManager
from .models import (
    ClaimOutcome,
    ClaimResult,
    ConsumerIdentity,
    EntryId,
    Message,
    PendingRecord,
    StalledStatus,
    StreamEntry,
)
from .reader import ReadEngine
from .settings import RedisStreamsSettings, get_settings, load_settings
from .source import StreamSource
from .table import StreamTable
from .transport import BrokerClient, RedisBroker
from .writer import WriteEngine

__version__ = "0.1.0"
__all__ = [
    # engines
    "ReadEngine",
    "WriteEngine",
    "ClaimResolver",
    "StreamCursorRegistry",
    "StreamSource",
    "StreamTable",
    "ConsumerGroupManager",
    # transport
    "BrokerClient",
    "RedisBroker",
    # models
    "EntryId",
    "StreamEntry",
    "Message",
    "PendingRecord",
    "ConsumerIdentity",
    "ClaimOutcome",
    "ClaimResult",
    "StalledStatus",
    # settings
    "RedisStreamsSettings",
    "get_settings",
    "load_settings",
    # errors
    "StreamEngineError",
    "TransportError",
    "ProtocolError",
    "GroupNotFoundError",
    "ConfigurationError",
    "PayloadFormatError",
    "AppendError",
]
