"""Envelope classification (core domain).

Inbound envelopes arrive in many shapes: plain content, content wrapped in a
disappearing-message container, content embedded in a quote-context wrapper,
or transport system messages with no user content at all. Classification
happens in two steps:

1) ``decode`` looks at one layer of the envelope and returns one of a small
   closed set of variants (content, system, wrapper(inner), unrecognized).
2) ``classify`` reduces wrappers in a fixed-depth loop until it reaches a
   terminal variant, then extracts text and media from the content.

Nothing here performs I/O; media bytes are fetched later by the forwarder.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from core.models import CanonicalMessage, InboundMessage, MediaContent, MediaKind, TextContent

DISAPPEARING_KEY = "ephemeralMessage"
QUOTE_CONTEXT_KEY = "messageContextInfo"

TEXT_KEYS = ("conversation", "extendedTextMessage")

MEDIA_KEYS: dict[str, MediaKind] = {
    "imageMessage": MediaKind.IMAGE,
    "videoMessage": MediaKind.VIDEO,
    "audioMessage": MediaKind.AUDIO,
    "documentMessage": MediaKind.DOCUMENT,
}

USER_CONTENT_KEYS = frozenset(TEXT_KEYS) | frozenset(MEDIA_KEYS)

SYSTEM_KEYS = frozenset(
    {
        "senderKeyDistributionMessage",
        "protocolMessage",
        "reactionMessage",
    }
)

DEFAULT_MIMETYPES: dict[MediaKind, str] = {
    MediaKind.IMAGE: "image/jpeg",
    MediaKind.VIDEO: "video/mp4",
    MediaKind.AUDIO: "audio/mpeg",
    MediaKind.DOCUMENT: "application/octet-stream",
}

DEFAULT_FILE_NAME = "file"
REPLY_MARKER = "\U0001f4ac Reply to: "


@dataclass(frozen=True)
class Content:
    message: Mapping[str, Any]


@dataclass(frozen=True)
class SystemNoContent:
    key: str


@dataclass(frozen=True)
class WrapperDisappearing:
    inner: Optional[Mapping[str, Any]]


@dataclass(frozen=True)
class WrapperQuoteContext:
    inner: Optional[Mapping[str, Any]]


@dataclass(frozen=True)
class Unrecognized:
    keys: tuple[str, ...]


Variant = Union[Content, SystemNoContent, WrapperDisappearing, WrapperQuoteContext, Unrecognized]


def content_keys(message: Mapping[str, Any]) -> list[str]:
    """Top-level keys that actually carry a value, in envelope order."""

    return [key for key, value in message.items() if value is not None]


def decode(message: Mapping[str, Any]) -> Variant:
    """Decode one layer of an envelope into a variant."""

    keys = content_keys(message)
    present = set(keys)

    if DISAPPEARING_KEY in present:
        return WrapperDisappearing(_mapping(message[DISAPPEARING_KEY]).get("message"))

    has_user_content = bool(present & USER_CONTENT_KEYS)
    if present & SYSTEM_KEYS and not has_user_content:
        return SystemNoContent(next(key for key in keys if key in SYSTEM_KEYS))

    # messageContextInfo next to real content is only metadata.
    if QUOTE_CONTEXT_KEY in present and not has_user_content:
        return WrapperQuoteContext(_mapping(message[QUOTE_CONTEXT_KEY]).get("quotedMessage"))

    if has_user_content:
        return Content(message)

    return Unrecognized(tuple(keys))


def classify(inbound: InboundMessage) -> CanonicalMessage:
    """Reduce an inbound envelope to exactly one canonical message."""

    base = dict(
        sender=inbound.sender_id,
        source_channel=inbound.channel_id,
        message_id=inbound.message_id,
    )

    variant = decode(inbound.envelope)
    unwrapped: set[type] = set()
    # One unwrap per wrapper kind bounds the loop.
    for _ in range(2):
        if not isinstance(variant, (WrapperDisappearing, WrapperQuoteContext)):
            break
        if type(variant) in unwrapped:
            return CanonicalMessage(unhandled=True, **base)
        unwrapped.add(type(variant))
        if not variant.inner:
            # Wrapper without a payload: nothing to forward, but not unknown.
            return CanonicalMessage(**base)
        variant = decode(variant.inner)

    if isinstance(variant, SystemNoContent):
        return CanonicalMessage(**base)

    if isinstance(variant, Content):
        message = variant.message
        text = extract_text(message)
        media = extract_media(message)
        return CanonicalMessage(
            is_forwarded=is_forwarded(message),
            text=text,
            media=media,
            unhandled=text is None and media is None,
            **base,
        )

    return CanonicalMessage(unhandled=True, **base)


def is_forwarded(message: Mapping[str, Any]) -> bool:
    """True when any content entry reports a positive forwarding score."""

    for key in content_keys(message):
        context = _mapping(_mapping(message[key]).get("contextInfo"))
        score = context.get("forwardingScore") or 0
        if isinstance(score, (int, float)) and score > 0:
            return True
    return False


def _plain_text(message: Mapping[str, Any]) -> Optional[str]:
    return _string(message.get("conversation")) or _string(
        _mapping(message.get("extendedTextMessage")).get("text")
    )


def extract_text(message: Mapping[str, Any]) -> Optional[TextContent]:
    """Pull the text body (plus any quoted reply) out of a content layer."""

    extended = _mapping(message.get("extendedTextMessage"))
    if is_forwarded(message):
        # Forwarded messages keep their canonical text in the styled field.
        body = _string(extended.get("text")) or _string(message.get("conversation"))
    else:
        body = _plain_text(message)

    if not body:
        return None

    quoted = _mapping(_mapping(extended.get("contextInfo")).get("quotedMessage"))
    quoted_body = _plain_text(quoted) if quoted else None
    if quoted_body:
        return TextContent(body=f"{body}\n\n{REPLY_MARKER}{quoted_body}", quoted_body=quoted_body)
    return TextContent(body=body)


def extract_media(message: Mapping[str, Any]) -> Optional[MediaContent]:
    """Detect at most one media attachment, first match wins."""

    for key, media_kind in MEDIA_KEYS.items():
        if message.get(key) is None:
            continue
        payload = _mapping(message[key])
        caption = _string(payload.get("caption")) or None
        file_name = None
        if media_kind is MediaKind.DOCUMENT:
            file_name = _string(payload.get("fileName")) or DEFAULT_FILE_NAME
        return MediaContent(
            media_kind=media_kind,
            mimetype=_string(payload.get("mimetype")) or DEFAULT_MIMETYPES[media_kind],
            caption=caption,
            file_name=file_name,
            is_voice_note=media_kind is MediaKind.AUDIO and bool(payload.get("ptt")),
        )
    return None


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _string(value: Any) -> str:
    return value if isinstance(value, str) else ""
