"""Core message processing pipeline.

This module is integration-agnostic. It only relies on the transport port,
enabling other chat networks or test doubles without changes here.

The pipeline enforces a strict order:
1) Fast-exit for history sync and untracked channels
2) Message-level dedup on the transport message id
3) Classify the envelope into a canonical message
4) Forward text and media independently
"""

from __future__ import annotations

import logging

from core.channels import normalize_channel_id
from core.classifier import classify, content_keys
from core.context import RelayContext
from core.forwarder import Forwarder
from core.models import ForwardOutcome, InboundMessage
from core.ports import TransportSession

LOGGER = logging.getLogger(__name__)


class MessageProcessor:
    """Orchestrates the source gate, dedup, classification, and forwarding."""

    def __init__(self, context: RelayContext, forwarder: Forwarder | None = None) -> None:
        self._context = context
        self._forwarder = forwarder or Forwarder(context)
        self._source_key = ""
        self._source_id = ""

    def _is_source(self, channel_id: str) -> bool:
        source = self._context.policy.channels.source
        # Cached; it only changes when a reload swaps the policy.
        if source != self._source_key:
            self._source_key = source
            self._source_id = normalize_channel_id(source)
        return normalize_channel_id(channel_id) == self._source_id

    async def handle(
        self, inbound: InboundMessage, transport: TransportSession
    ) -> list[ForwardOutcome]:
        """Process one inbound event through the pipeline."""

        if inbound.is_history_sync:
            return []

        if not self._is_source(inbound.channel_id):
            LOGGER.debug("Ignoring message from untracked channel %s", inbound.channel_id)
            return []

        dedup = self._context.dedup
        if dedup.seen(inbound.message_id):
            LOGGER.debug("Dedup skip for %s", inbound.message_id)
            return []
        dedup.record(inbound.message_id)

        message = classify(inbound)
        if message.unhandled:
            LOGGER.warning(
                "Unhandled message type %s in %s",
                content_keys(inbound.envelope),
                inbound.message_id,
            )
            return []
        if message.text is None and message.media is None:
            LOGGER.debug("Skipping non-content message %s", content_keys(inbound.envelope))
            return []

        if message.is_forwarded:
            LOGGER.debug("Message %s is forwarded; stripping forwarding metadata", message.message_id)

        return await self._forwarder.forward(message, inbound, transport)
