"""Relay context: the explicitly owned state shared by core components.

The policy lives behind a single reference in ``PolicyStore``. A reload
builds a complete new ``Policy`` and swaps that reference in one assignment,
so a handler that grabbed ``store.current`` keeps a consistent snapshot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from core.config import Policy
from core.dedup import Deduplicator
from core.models import Statistics
from core.rate_limit import RateLimiter

LOGGER = logging.getLogger(__name__)


class PolicyStore:
    """Holds the active policy; reloadable without touching the connection."""

    def __init__(self, loader: Callable[[], Policy], initial: Policy | None = None) -> None:
        self._loader = loader
        self._current = initial if initial is not None else loader()

    @property
    def current(self) -> Policy:
        return self._current

    def reload(self) -> Policy:
        """Load a fresh policy and swap it in; the old one stays on failure."""

        policy = self._loader()
        self._current = policy
        LOGGER.info(
            "Policy reloaded - source: %s, destination: %s",
            policy.channels.source,
            policy.channels.destination,
        )
        return policy


@dataclass
class RelayContext:
    policy_store: PolicyStore
    stats: Statistics = field(default_factory=Statistics)
    rate_limiter: RateLimiter = field(default_factory=RateLimiter)
    dedup: Deduplicator = field(default_factory=Deduplicator)

    @property
    def policy(self) -> Policy:
        return self.policy_store.current
