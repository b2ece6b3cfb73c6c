"""Per-minute rate limiting (core domain).

Counters are keyed by (category, minute bucket), where the bucket is wall
clock seconds divided by 60. There is no sliding interpolation: a burst that
straddles a bucket boundary can pass up to twice the configured rate across
the two buckets. Old buckets are not evicted individually; the lifecycle
clears everything once an hour via ``reset``.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from core.config import RateLimitPolicy

LOGGER = logging.getLogger(__name__)

MESSAGE = "message"
MEDIA = "media"

WINDOW_SECONDS = 60


class RateLimiter:
    """Fixed-window counters for the ``message`` and ``media`` categories."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._counts: dict[tuple[str, int], int] = {}

    def current_bucket(self) -> int:
        return int(self._clock() // WINDOW_SECONDS)

    def allow(self, category: str, policy: RateLimitPolicy) -> bool:
        """Count one event if the bucket has headroom; refuse otherwise."""

        if not policy.enabled:
            return True

        if category == MEDIA:
            limit = policy.max_media_per_window
        elif category == MESSAGE:
            limit = policy.max_messages_per_window
        else:
            raise ValueError(f"Unsupported rate limit category: {category}")

        key = (category, self.current_bucket())
        current = self._counts.get(key, 0)
        if current >= limit:
            return False
        self._counts[key] = current + 1
        return True

    def count(self, category: str) -> int:
        return self._counts.get((category, self.current_bucket()), 0)

    def reset(self) -> None:
        if self._counts:
            LOGGER.debug("Clearing %s rate limit buckets", len(self._counts))
        self._counts.clear()
