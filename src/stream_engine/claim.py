from __future__ import annotations

from time import monotonic
from typing import Callable, Dict, Iterable, List, Optional

from loguru import logger

from .metrics import STREAM_CLAIMS_TOTAL
from .models import ClaimOutcome, ClaimResult, ConsumerIdentity, PendingRecord, StreamEntry
from .transport import BrokerClient


class ClaimResolver:
    """
    Reclaims pending entries abandoned by dead or stuck consumers.

    An entry is eligible only once its idle time reaches ``min_idle_ms``, so a
    slow but alive consumer keeps its in-flight work. At most
    ``claim_batch_size`` entries are reclaimed per stream per poll; a batch size
    of 0 disables reclaiming.

    The claim itself repeats the idle threshold, which makes ownership transfer
    and content fetch one atomic broker step: an entry acked or reclaimed by
    someone else after listing comes back missing and is reported NOT_FOUND.
    """

    def __init__(
        self,
        broker: BrokerClient,
        identity: ConsumerIdentity,
        *,
        claim_batch_size: int = 0,
        min_idle_ms: int = 10_000,
        clock: Optional[Callable[[], float]] = None,
    ):
        if claim_batch_size < 0:
            raise ValueError("claim_batch_size must be >= 0")
        if min_idle_ms < 0:
            raise ValueError("min_idle_ms must be >= 0")
        self._broker = broker
        self._identity = identity
        self._batch = claim_batch_size
        self._min_idle_ms = min_idle_ms
        self._clock = clock or monotonic
        self._last_attempt_ms: Dict[str, float] = {}
        self._last_results: Dict[str, List[ClaimResult]] = {}

    @property
    def enabled(self) -> bool:
        return self._batch > 0

    @property
    def last_results(self) -> List[ClaimResult]:
        """Per-entry outcomes of the most recent reclaim attempt on each stream."""
        return [r for results in self._last_results.values() for r in results]

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def is_due(self, stream: str) -> bool:
        """Nothing can turn eligible faster than the idle threshold itself."""
        if not self.enabled:
            return False
        last = self._last_attempt_ms.get(stream)
        return last is None or self._now_ms() - last >= self._min_idle_ms

    def eligible(self, records: Iterable[PendingRecord]) -> List[PendingRecord]:
        out = [r for r in records if r.idle_ms >= self._min_idle_ms]
        return out[: self._batch]

    def reclaim(self, stream: str) -> List[StreamEntry]:
        """List, filter and claim stale entries of ``stream`` for this consumer."""
        self._last_attempt_ms[stream] = self._now_ms()
        results = self._last_results[stream] = []
        if not self.enabled:
            return []

        pending = self._broker.list_pending(
            stream, self._identity.group, self._min_idle_ms, self._batch
        )
        candidates = self.eligible(pending)
        if not candidates:
            return []

        wanted = [r.entry_id for r in candidates]
        claimed = self._broker.claim(
            stream,
            self._identity.group,
            self._identity.consumer,
            self._min_idle_ms,
            wanted,
        )
        got = {e.entry_id for e in claimed}
        for entry_id in wanted:
            outcome = ClaimOutcome.CLAIMED if entry_id in got else ClaimOutcome.NOT_FOUND
            results.append(ClaimResult(stream, entry_id, outcome))
            STREAM_CLAIMS_TOTAL.labels(stream=stream, outcome=outcome.value).inc()
            if outcome is ClaimOutcome.NOT_FOUND:
                logger.debug(
                    f"Pending entry {entry_id} on {stream} vanished before claim "
                    f"(consumer={self._identity.consumer})"
                )

        if claimed:
            owners = sorted({r.consumer for r in candidates})
            logger.info(
                f"Reclaimed {len(claimed)}/{len(wanted)} pending entries on {stream} "
                f"from {owners} for consumer={self._identity.consumer}"
            )
        # keep broker order, only entries we asked for
        asked = set(wanted)
        return [e for e in claimed if e.entry_id in asked]

    def maybe_reclaim(self, stream: str) -> List[StreamEntry]:
        if not self.is_due(stream):
            return []
        return self.reclaim(stream)
