"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely. Every
class is frozen: a reload builds a fresh ``Policy`` instead of mutating one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet


class ConfigError(ValueError):
    """Raised when the policy document is malformed."""


@dataclass(frozen=True)
class ChannelsConfig:
    """Source and destination group-channel identifiers."""

    source: str
    destination: str


@dataclass(frozen=True)
class ForwardToggles:
    """Per-content-kind forwarding switches."""

    text: bool = True
    image: bool = True
    video: bool = True
    audio: bool = True
    document: bool = True

    def allows(self, kind: str) -> bool:
        return bool(getattr(self, kind, False))


@dataclass(frozen=True)
class FilterPolicy:
    """Keyword and sender filtering settings.

    Keywords are stored lower-cased so matching stays a plain substring test.
    """

    enabled: bool = False
    include_keywords: FrozenSet[str] = field(default_factory=frozenset)
    exclude_keywords: FrozenSet[str] = field(default_factory=frozenset)
    allowed_senders: FrozenSet[str] = field(default_factory=frozenset)
    blocked_senders: FrozenSet[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class RateLimitPolicy:
    """Per-minute limits for the two rate-limit categories."""

    enabled: bool = True
    max_messages_per_window: int = 10
    max_media_per_window: int = 5


@dataclass(frozen=True)
class ConnectionPolicy:
    """Delays used by the connection lifecycle (seconds)."""

    retry_delay: float = 5.0
    session_reset_delay: float = 30.0
    validation_delay: float = 5.0
    keepalive_interval: float = 60.0
    pairing_timeout: float = 120.0


@dataclass(frozen=True)
class LoggingPolicy:
    """Logging settings consumed by the app layer."""

    level: str = "INFO"
    console: bool = True
    file_enabled: bool = False
    file_path: str = "logs/grouprelay.log"
    max_bytes: int = 5 * 1024 * 1024
    backup_count: int = 5
    redact_env: tuple[str, ...] = ()


@dataclass(frozen=True)
class Policy:
    """Complete relay policy snapshot, replaced wholesale on reload."""

    channels: ChannelsConfig
    forward: ForwardToggles = field(default_factory=ForwardToggles)
    filters: FilterPolicy = field(default_factory=FilterPolicy)
    rate_limit: RateLimitPolicy = field(default_factory=RateLimitPolicy)
    connection: ConnectionPolicy = field(default_factory=ConnectionPolicy)
    logging: LoggingPolicy = field(default_factory=LoggingPolicy)
