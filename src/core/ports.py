"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for the chat transport and the session
credential store so that the core can be reused with different backends.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from core.models import ChannelMetadata, InboundMessage, MediaContent, OutboundContent


class TransportState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSE = "close"


class DisconnectReason(str, Enum):
    LOGGED_OUT = "logged_out"
    SESSION_CONFLICT = "session_conflict"
    RESTART_REQUIRED = "restart_required"
    TIMED_OUT = "timed_out"
    CONNECTION_LOST = "connection_lost"
    CONNECTION_CLOSED = "connection_closed"
    BANNED = "banned"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ConnectionUpdate:
    """Connection-state change reported by the transport."""

    state: TransportState
    reason: Optional[DisconnectReason] = None
    can_reconnect: bool = True
    pairing_challenge: Optional[str] = None
    detail: Optional[str] = None


class TransportListener(Protocol):
    """Callbacks a transport session drives; implemented by the lifecycle."""

    async def handle_update(self, update: ConnectionUpdate) -> None:
        ...

    async def handle_message(self, inbound: InboundMessage) -> None:
        ...


class TransportSession(Protocol):
    """One session with the chat network, from connect to disconnect."""

    async def open(self, listener: TransportListener) -> None:
        ...

    async def close(self) -> None:
        ...

    async def send_message(self, channel_id: str, content: OutboundContent) -> None:
        ...

    async def download_media(self, inbound: InboundMessage, media: MediaContent) -> bytes:
        ...

    async def fetch_channel_metadata(self, channel_id: str) -> ChannelMetadata:
        ...

    async def send_keepalive(self) -> None:
        ...


class CredentialStorePort(Protocol):
    """Local persistence of the transport session credentials."""

    def clear(self) -> None:
        ...
