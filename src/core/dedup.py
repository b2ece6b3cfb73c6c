"""Deduplication of inbound message ids (core domain)."""

from __future__ import annotations

import logging
import time
from typing import Callable

LOGGER = logging.getLogger(__name__)

DEFAULT_CAPACITY = 2000
DEFAULT_EVICT_BATCH = 500


class Deduplicator:
    """Bounded record of recently seen message ids.

    When the record grows past ``capacity`` the oldest ``evict_batch``
    insertions are dropped in one go. This is insertion order, not LRU: a
    very old id can come back as "not seen" after eviction.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        evict_batch: int = DEFAULT_EVICT_BATCH,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if capacity <= 0 or evict_batch <= 0:
            raise ValueError("capacity and evict_batch must be positive")
        self._capacity = capacity
        self._evict_batch = evict_batch
        self._clock = clock
        # dicts keep insertion order, which is what eviction relies on.
        self._seen: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._seen)

    def seen(self, message_id: str) -> bool:
        return message_id in self._seen

    def record(self, message_id: str) -> None:
        if message_id in self._seen:
            return
        self._seen[message_id] = self._clock()
        if len(self._seen) > self._capacity:
            self._evict()

    def _evict(self) -> None:
        stale = list(self._seen)[: self._evict_batch]
        for message_id in stale:
            del self._seen[message_id]
        LOGGER.debug("Dedup evicted %s ids, %s remain", len(stale), len(self._seen))
