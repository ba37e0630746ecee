from __future__ import annotations

from typing import Dict, Iterable, Optional, Union

from .errors import ConfigurationError
from .models import ConsumerIdentity, EntryId
from .transport import NEW_ENTRIES


class StreamCursorRegistry:
    """Per-stream position of the last entry this reader has seen.

    Streams keep their declaration order; that order is the batch order.
    """

    def __init__(self, identity: ConsumerIdentity, streams: Iterable[str]):
        names = list(streams)
        if not names:
            raise ConfigurationError("At least one stream must be subscribed")
        seen = set()
        for name in names:
            if not name or not name.strip():
                raise ConfigurationError("Stream names must be non-empty")
            if name in seen:
                raise ConfigurationError(f"Stream {name!r} is subscribed more than once")
            seen.add(name)

        self._identity = identity
        self._cursors: Dict[str, Optional[EntryId]] = {name: None for name in names}

    @property
    def identity(self) -> ConsumerIdentity:
        return self._identity

    @property
    def streams(self) -> list[str]:
        return list(self._cursors)

    def position(self, stream: str) -> Union[EntryId, str]:
        """Last seen id, or the new-entries marker if nothing was seen yet."""
        last = self._cursors[stream]
        return NEW_ENTRIES if last is None else last

    def advance(self, stream: str, entry_id: EntryId) -> None:
        if stream not in self._cursors:
            raise KeyError(stream)
        last = self._cursors[stream]
        if last is None or entry_id > last:
            self._cursors[stream] = entry_id

    def snapshot(self) -> Dict[str, Union[EntryId, str]]:
        return {name: self.position(name) for name in self._cursors}
