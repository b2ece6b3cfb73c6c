"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class MessageKind(str, Enum):
    TEXT = "text"
    MEDIA = "media"
    NONE = "none"


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"


@dataclass(frozen=True)
class InboundMessage:
    """One inbound message event as delivered by the transport.

    ``envelope`` is the raw nested content structure; ``raw`` is an opaque
    handle the transport needs later to download media.
    """

    envelope: dict[str, Any]
    sender_id: str
    channel_id: str
    message_id: str
    is_history_sync: bool = False
    raw: Any = None


@dataclass(frozen=True)
class TextContent:
    body: str
    quoted_body: Optional[str] = None


@dataclass(frozen=True)
class MediaContent:
    """Media attachment metadata extracted from an envelope (no bytes)."""

    media_kind: MediaKind
    mimetype: str
    caption: Optional[str] = None
    file_name: Optional[str] = None
    is_voice_note: bool = False


@dataclass(frozen=True)
class CanonicalMessage:
    """Normalized, forward-ready representation of one inbound message.

    A message may carry both text and media; ``kind`` reports media first
    because that is the heavier path, but the forwarder handles both.
    """

    sender: str
    source_channel: str
    message_id: str
    is_forwarded: bool = False
    text: Optional[TextContent] = None
    media: Optional[MediaContent] = None
    unhandled: bool = False

    @property
    def kind(self) -> MessageKind:
        if self.media is not None:
            return MessageKind.MEDIA
        if self.text is not None:
            return MessageKind.TEXT
        return MessageKind.NONE

    @property
    def body(self) -> Optional[str]:
        return self.text.body if self.text else None


@dataclass(frozen=True)
class OutboundMedia:
    media_kind: MediaKind
    data: bytes
    mimetype: str
    caption: Optional[str] = None
    file_name: Optional[str] = None
    is_voice_note: bool = False


@dataclass(frozen=True)
class OutboundContent:
    """Content descriptor handed to the transport's send operation.

    Exactly one of ``text`` or ``media`` is set. Nothing from the original
    message's forwarding or reply context is carried over.
    """

    text: Optional[str] = None
    media: Optional[OutboundMedia] = None


class ForwardOutcome(str, Enum):
    FORWARDED = "forwarded"
    FILTERED = "filtered"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ChannelMetadata:
    name: str
    participant_count: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Statistics:
    """Monotonic relay counters, reset only by a process restart."""

    forwarded: int = 0
    media_forwarded: int = 0
    filtered: int = 0
    errors: int = 0
    start_time: datetime = field(default_factory=_utcnow)

    def snapshot(self) -> dict[str, Any]:
        return {
            "forwarded": self.forwarded,
            "media_forwarded": self.media_forwarded,
            "filtered": self.filtered,
            "errors": self.errors,
            "start_time": self.start_time.isoformat(),
        }
