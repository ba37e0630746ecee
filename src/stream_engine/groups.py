from __future__ import annotations

from typing import Iterable, List

from loguru import logger

from .errors import GroupNotFoundError
from .transport import BrokerClient


class ConsumerGroupManager:
    """Creates and removes a table's consumer group on each of its streams."""

    def __init__(self, broker: BrokerClient):
        self._broker = broker

    def ensure(self, streams: Iterable[str], group: str, start_id: str = "$") -> List[str]:
        """Create ``group`` where missing. Returns the streams it was created on.

        Missing streams are created empty; an existing group is left as is.
        """
        created = []
        for stream in streams:
            if self._broker.create_group(stream, group, start_id):
                created.append(stream)
                logger.info(f"Created consumer group {group} on {stream} at {start_id}")
            else:
                logger.debug(f"Consumer group {group} already exists on {stream}")
        return created

    def drop(self, streams: Iterable[str], group: str) -> List[str]:
        dropped = []
        for stream in streams:
            try:
                removed = self._broker.destroy_group(stream, group)
            except GroupNotFoundError:
                removed = False
            if removed:
                dropped.append(stream)
                logger.info(f"Dropped consumer group {group} on {stream}")
        return dropped
