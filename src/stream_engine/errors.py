"""
Custom exceptions for the Redis Streams engine.

Transport failures, broker protocol problems, configuration mistakes and
write-path failures each get their own type so the host can decide whether
to abort a query, resubmit a write or fix its table settings.
"""


class StreamEngineError(Exception):
    """Base error for the stream engine."""

    pass


class TransportError(StreamEngineError):
    """Connection failures and command timeouts."""

    pass


class ProtocolError(StreamEngineError):
    """Malformed broker replies or unexpected broker-side errors."""

    pass


class GroupNotFoundError(ProtocolError):
    """The consumer group (or its stream) does not exist on the broker."""

    pass


class ConfigurationError(StreamEngineError):
    """Invalid or unknown engine settings."""

    pass


class PayloadFormatError(StreamEngineError):
    """An outgoing payload cannot be split into field/value pairs."""

    pass


class AppendError(StreamEngineError):
    """Appending a sealed chunk to a stream failed.

    The chunk is kept queued by the writer; ``pending_chunks`` tells the host
    how much data is waiting for a resubmit or an explicit discard.
    """

    def __init__(self, message: str, *, stream: str, pending_chunks: int):
        super().__init__(message)
        self.stream = stream
        self.pending_chunks = pending_chunks


def map_redis_error(e: Exception) -> StreamEngineError:
    import redis.exceptions as E

    if isinstance(e, StreamEngineError):
        return e
    if isinstance(e, E.AuthenticationError):
        return ConfigurationError(str(e))
    if isinstance(e, (E.ConnectionError, E.TimeoutError)):
        return TransportError(str(e))
    if isinstance(e, E.ResponseError) and str(e).startswith("NOGROUP"):
        return GroupNotFoundError(str(e))
    return ProtocolError(str(e))
