"""Telethon-backed transport session.

Implements the core ``TransportSession`` port. Telethon has no stream of
connection-state events, so this adapter synthesises them: ``connecting``
before the socket opens (repeated with a pairing challenge while QR login is
pending), ``open`` once the account is authorised and handlers are attached,
and ``close`` when the client's ``disconnected`` future resolves. Telethon
exceptions are translated into ``DisconnectReason`` values here so the
lifecycle never has to know about them.
"""

from __future__ import annotations

import asyncio
import io
import logging
import mimetypes
import os
from typing import Callable, Optional

from telethon import TelegramClient, errors, events, functions

from adapters.telegram_mapper import build_inbound
from core.channels import parse_channel_id
from core.models import (
    ChannelMetadata,
    InboundMessage,
    MediaContent,
    MediaKind,
    OutboundContent,
    OutboundMedia,
)
from core.ports import ConnectionUpdate, DisconnectReason, TransportListener, TransportState

LOGGER = logging.getLogger(__name__)

_SESSION_CONFLICT = (errors.AuthKeyDuplicatedError,)
_LOGGED_OUT = (
    errors.AuthKeyUnregisteredError,
    errors.SessionRevokedError,
    errors.SessionExpiredError,
    errors.UnauthorizedError,
)
_BANNED = (
    errors.UserDeactivatedBanError,
    errors.UserDeactivatedError,
    errors.PhoneNumberBannedError,
)


def classify_disconnect(exc: Optional[BaseException]) -> ConnectionUpdate:
    """Translate the exception that ended a session into a close update."""

    if exc is None:
        return ConnectionUpdate(TransportState.CLOSE, reason=DisconnectReason.CONNECTION_CLOSED)

    detail = f"{type(exc).__name__}: {exc}"
    # Ban errors are 401s too, so they must be checked before the generic ones.
    if isinstance(exc, _BANNED):
        reason, can_reconnect = DisconnectReason.BANNED, False
    elif isinstance(exc, _SESSION_CONFLICT):
        reason, can_reconnect = DisconnectReason.SESSION_CONFLICT, True
    elif isinstance(exc, _LOGGED_OUT):
        reason, can_reconnect = DisconnectReason.LOGGED_OUT, True
    elif isinstance(exc, asyncio.TimeoutError):
        reason, can_reconnect = DisconnectReason.TIMED_OUT, True
    elif isinstance(exc, (ConnectionError, OSError)):
        reason, can_reconnect = DisconnectReason.CONNECTION_LOST, True
    else:
        reason, can_reconnect = DisconnectReason.UNKNOWN, True
    return ConnectionUpdate(
        TransportState.CLOSE, reason=reason, can_reconnect=can_reconnect, detail=detail
    )


def _peer(channel_id: str) -> int:
    peer = parse_channel_id(channel_id)
    if peer is None:
        raise ValueError(f"Invalid channel id: {channel_id}")
    return peer


def _upload_name(media: OutboundMedia) -> str:
    if media.file_name:
        return media.file_name
    extension = mimetypes.guess_extension(media.mimetype) or ""
    return f"{media.media_kind.value}{extension}"


class TelegramTransportSession:
    """One Telethon client, from connect to disconnect."""

    def __init__(
        self,
        client_factory: Callable[[], TelegramClient],
        pairing_timeout: float = 120.0,
        password: Optional[str] = None,
    ) -> None:
        self._client_factory = client_factory
        self._pairing_timeout = pairing_timeout
        self._password = password if password is not None else os.getenv("2FA")
        self._client: Optional[TelegramClient] = None
        self._listener: Optional[TransportListener] = None
        self._watcher: Optional[asyncio.Task] = None
        self._closing = False

    @property
    def client(self) -> TelegramClient:
        if self._client is None:
            raise RuntimeError("Transport session is not open")
        return self._client

    async def open(self, listener: TransportListener) -> None:
        self._listener = listener
        self._client = self._client_factory()
        await listener.handle_update(ConnectionUpdate(TransportState.CONNECTING))
        try:
            await self._client.connect()
            if not await self._client.is_user_authorized():
                await self._pair(listener)
        except (errors.RPCError, ConnectionError, asyncio.TimeoutError) as exc:
            LOGGER.error("Transport failed while connecting: %s", exc)
            await listener.handle_update(classify_disconnect(exc))
            return

        self._client.add_event_handler(self._on_new_message, events.NewMessage(incoming=True))
        me = await self._client.get_me()
        LOGGER.info("Logged in as %s", getattr(me, "username", None) or getattr(me, "id", "?"))
        await listener.handle_update(ConnectionUpdate(TransportState.OPEN))
        self._watcher = asyncio.create_task(self._watch_disconnect())

    async def _pair(self, listener: TransportListener) -> None:
        qr = await self.client.qr_login()
        while True:
            await listener.handle_update(
                ConnectionUpdate(TransportState.CONNECTING, pairing_challenge=qr.url)
            )
            try:
                await qr.wait(timeout=self._pairing_timeout)
                return
            except asyncio.TimeoutError:
                LOGGER.info("Pairing challenge expired, issuing a new one")
                await qr.recreate()
            except errors.SessionPasswordNeededError:
                if not self._password:
                    raise
                await self.client.sign_in(password=self._password)
                return

    async def _watch_disconnect(self) -> None:
        error: Optional[BaseException] = None
        try:
            await self.client.disconnected
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = exc
        if self._closing or self._listener is None:
            return
        await self._listener.handle_update(classify_disconnect(error))

    async def _on_new_message(self, event) -> None:
        if self._listener is None:
            return
        try:
            inbound = await build_inbound(event.message)
        except Exception:
            LOGGER.exception("Failed to map incoming message")
            return
        await self._listener.handle_message(inbound)

    async def close(self) -> None:
        self._closing = True
        client = self._client
        if client is None:
            return
        client.remove_event_handler(self._on_new_message)
        if client.is_connected():
            await client.disconnect()

    async def send_message(self, channel_id: str, content: OutboundContent) -> None:
        peer = _peer(channel_id)
        if content.media is None:
            await self.client.send_message(peer, content.text or "", parse_mode=None)
            return

        media = content.media
        buffer = io.BytesIO(media.data)
        buffer.name = _upload_name(media)
        await self.client.send_file(
            peer,
            buffer,
            caption=media.caption or "",
            parse_mode=None,
            force_document=media.media_kind is MediaKind.DOCUMENT,
            voice_note=media.is_voice_note,
            supports_streaming=media.media_kind is MediaKind.VIDEO,
        )

    async def download_media(self, inbound: InboundMessage, media: MediaContent) -> bytes:
        if inbound.raw is None:
            return b""
        data = await self.client.download_media(inbound.raw, file=bytes)
        return data or b""

    async def fetch_channel_metadata(self, channel_id: str) -> ChannelMetadata:
        entity = await self.client.get_entity(_peer(channel_id))
        participants = await self.client.get_participants(entity, limit=0)
        return ChannelMetadata(
            name=getattr(entity, "title", None) or str(channel_id),
            participant_count=getattr(participants, "total", None) or len(participants),
        )

    async def send_keepalive(self) -> None:
        await self.client(functions.account.UpdateStatusRequest(offline=False))
