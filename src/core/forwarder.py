"""Forwarding of canonical messages to the destination channel.

Text and media are two independent sub-paths of one message: each checks its
own toggle and rate-limit category, and each can succeed or fail on its own.
Outbound content is rebuilt from scratch so no attribution, forwarding or
reply metadata of the original message reaches the destination.
"""

from __future__ import annotations

import logging

from core.config import Policy
from core.content_filter import should_forward
from core.context import RelayContext
from core.models import (
    CanonicalMessage,
    ForwardOutcome,
    InboundMessage,
    MediaContent,
    OutboundContent,
    OutboundMedia,
)
from core.ports import TransportSession
from core.rate_limit import MEDIA, MESSAGE

LOGGER = logging.getLogger(__name__)

SUMMARY_CHARS = 50


def _summary(text: str) -> str:
    return text[:SUMMARY_CHARS] + ("..." if len(text) > SUMMARY_CHARS else "")


class Forwarder:
    """Applies toggles, filters and rate limits, then sends via the transport."""

    def __init__(self, context: RelayContext) -> None:
        self._context = context

    async def forward(
        self,
        message: CanonicalMessage,
        inbound: InboundMessage,
        transport: TransportSession,
    ) -> list[ForwardOutcome]:
        # One snapshot per message: a reload mid-send must not mix policies.
        policy = self._context.policy
        outcomes: list[ForwardOutcome] = []
        if message.text is not None:
            outcomes.append(await self._forward_text(message, policy, transport))
        if message.media is not None:
            outcomes.append(
                await self._forward_media(message.media, inbound, policy, transport)
            )
        return outcomes

    async def _forward_text(
        self,
        message: CanonicalMessage,
        policy: Policy,
        transport: TransportSession,
    ) -> ForwardOutcome:
        stats = self._context.stats
        body = message.text.body

        if not policy.forward.text:
            LOGGER.debug("Text forwarding is disabled")
            return ForwardOutcome.SKIPPED

        if not should_forward(body, message.sender, policy.filters):
            stats.filtered += 1
            LOGGER.info("Message filtered out: %s", _summary(body))
            return ForwardOutcome.FILTERED

        # Refusals are not counted anywhere; the warning is the only trace.
        if not self._context.rate_limiter.allow(MESSAGE, policy.rate_limit):
            LOGGER.warning("Rate limit exceeded for messages")
            return ForwardOutcome.RATE_LIMITED

        destination = policy.channels.destination
        try:
            await transport.send_message(destination, OutboundContent(text=body))
        except Exception as exc:
            stats.errors += 1
            LOGGER.error(
                "Error forwarding text to %s (%s): %s", destination, _summary(body), exc
            )
            return ForwardOutcome.FAILED

        stats.forwarded += 1
        LOGGER.info("Text message forwarded to %s: %s", destination, _summary(body))
        return ForwardOutcome.FORWARDED

    async def _forward_media(
        self,
        media: MediaContent,
        inbound: InboundMessage,
        policy: Policy,
        transport: TransportSession,
    ) -> ForwardOutcome:
        stats = self._context.stats
        kind = media.media_kind.value

        if not policy.forward.allows(kind):
            LOGGER.debug("%s forwarding is disabled", kind)
            return ForwardOutcome.SKIPPED

        if not self._context.rate_limiter.allow(MEDIA, policy.rate_limit):
            LOGGER.warning("Rate limit exceeded for media")
            return ForwardOutcome.RATE_LIMITED

        destination = policy.channels.destination
        try:
            data = await transport.download_media(inbound, media)
            if not data:
                stats.errors += 1
                LOGGER.error("Invalid or empty media buffer for %s %s", kind, inbound.message_id)
                return ForwardOutcome.FAILED

            LOGGER.info(
                "Forwarding %s (%s bytes, caption: %s)",
                kind,
                len(data),
                "yes" if media.caption else "no",
            )
            outbound = OutboundMedia(
                media_kind=media.media_kind,
                data=data,
                mimetype=media.mimetype,
                caption=media.caption,
                file_name=media.file_name,
                is_voice_note=media.is_voice_note,
            )
            await transport.send_message(destination, OutboundContent(media=outbound))
        except Exception as exc:
            stats.errors += 1
            LOGGER.error(
                "Error forwarding %s to %s (%s): %s",
                kind,
                destination,
                _summary(media.caption or inbound.message_id),
                exc,
            )
            return ForwardOutcome.FAILED

        stats.media_forwarded += 1
        LOGGER.info("Media forwarded to %s", destination)
        return ForwardOutcome.FORWARDED
