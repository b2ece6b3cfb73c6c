"""Telegram-to-core message mapping adapter.

This keeps Telethon-specific details out of the core pipeline. Each Telethon
message is normalised into the nested envelope the classifier understands:
text goes under ``conversation`` (or ``extendedTextMessage`` when it carries
reply/forward context), media under ``<kind>Message`` with its caption, and
messages with a TTL are wrapped in ``ephemeralMessage``.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from telethon.tl.custom import Message
from telethon.tl.types import MessageMediaWebPage

from core.channels import build_channel_id
from core.models import InboundMessage

LOGGER = logging.getLogger(__name__)


def channel_id_from_message(message: Message) -> str:
    # Always the numeric peer id; usernames can change, chat ids do not.
    return build_channel_id(message.chat_id)


def _context_info(message: Message, quoted_text: Optional[str]) -> dict[str, Any]:
    context: dict[str, Any] = {}
    if getattr(message, "fwd_from", None) is not None:
        context["forwardingScore"] = 1
    if quoted_text:
        context["quotedMessage"] = {"conversation": quoted_text}
    return context


def _media_entry(message: Message) -> Optional[tuple[str, dict[str, Any]]]:
    """Return (envelope key, payload) for the message's media, if any."""

    media = getattr(message, "media", None)
    # Telethon also exposes a link preview's photo or document through
    # .photo/.document; the preview belongs to the text.
    if media is None or isinstance(media, MessageMediaWebPage):
        return None

    if getattr(message, "photo", None) is not None:
        return "imageMessage", {"mimetype": "image/jpeg"}

    if getattr(message, "document", None) is None:
        # Polls, geo points, contacts...
        return "unsupportedMessage", {"type": type(media).__name__}

    if getattr(message, "sticker", None) is not None:
        return "stickerMessage", {}

    file = getattr(message, "file", None)
    mime_type = (getattr(file, "mime_type", None) or "").lower()
    file_name = getattr(file, "name", None)

    if getattr(message, "voice", None) is not None:
        return "audioMessage", {"mimetype": mime_type or None, "ptt": True}
    if getattr(message, "audio", None) is not None or mime_type.startswith("audio/"):
        return "audioMessage", {"mimetype": mime_type or None, "ptt": False}
    if getattr(message, "video", None) is not None or mime_type.startswith("video/"):
        return "videoMessage", {"mimetype": mime_type or None}
    if mime_type.startswith("image/") and not file_name:
        return "imageMessage", {"mimetype": mime_type}
    return "documentMessage", {"mimetype": mime_type or None, "fileName": file_name}


async def _quoted_text(message: Message) -> Optional[str]:
    if not getattr(message, "is_reply", False):
        return None
    try:
        replied = await message.get_reply_message()
    except Exception as exc:
        LOGGER.debug("Could not fetch replied-to message: %s", exc)
        return None
    if replied is None:
        return None
    return replied.raw_text or None


def _build_envelope(message: Message, quoted_text: Optional[str]) -> dict[str, Any]:
    if getattr(message, "action", None) is not None:
        return {"protocolMessage": {"type": type(message.action).__name__}}

    text = message.raw_text or ""
    context = _context_info(message, quoted_text)
    envelope: dict[str, Any] = {}

    entry = _media_entry(message)
    if entry is not None:
        key, payload = entry
        if text:
            payload["caption"] = text
        if context:
            payload["contextInfo"] = context
        envelope[key] = payload
    elif text:
        if context or getattr(message, "entities", None):
            envelope["extendedTextMessage"] = {"text": text, "contextInfo": context}
        else:
            envelope["conversation"] = text

    if getattr(message, "ttl_period", None):
        return {"ephemeralMessage": {"message": envelope}}
    return envelope


async def build_inbound(message: Message, is_history_sync: bool = False) -> InboundMessage:
    """Build a core InboundMessage from a Telethon Message."""

    quoted_text = await _quoted_text(message)
    channel_id = channel_id_from_message(message)
    sender_id = getattr(message, "sender_id", None)

    return InboundMessage(
        envelope=_build_envelope(message, quoted_text),
        sender_id=str(sender_id) if sender_id is not None else channel_id,
        channel_id=channel_id,
        # Telegram ids are only unique per chat.
        message_id=f"{message.chat_id}:{message.id}",
        is_history_sync=is_history_sync,
        raw=message,
    )
