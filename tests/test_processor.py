from __future__ import annotations

import asyncio

from core.config import ChannelsConfig
from core.context import PolicyStore, RelayContext
from core.models import ForwardOutcome, OutboundContent
from core.processor import MessageProcessor

from fakes import DESTINATION, SOURCE, FakeTransport, PolicyHolder, make_context, make_inbound, make_policy


def _handle(processor: MessageProcessor, transport: FakeTransport, inbound):
    return asyncio.run(processor.handle(inbound, transport))


def test_history_sync_is_ignored() -> None:
    context = make_context()
    transport = FakeTransport()
    processor = MessageProcessor(context)
    inbound = make_inbound({"conversation": "old"}, is_history_sync=True)
    assert _handle(processor, transport, inbound) == []
    assert transport.sent == []
    # Not recorded, so the live copy still goes through.
    assert not context.dedup.seen(inbound.message_id)


def test_untracked_channel_is_ignored() -> None:
    context = make_context()
    transport = FakeTransport()
    processor = MessageProcessor(context)
    inbound = make_inbound({"conversation": "hi"}, channel_id="chat_id:-100999")
    assert _handle(processor, transport, inbound) == []
    assert transport.sent == []
    assert len(context.dedup) == 0


def test_chats_sharing_source_digits_are_ignored() -> None:
    context = make_context()
    transport = FakeTransport()
    processor = MessageProcessor(context)
    digits = SOURCE.split(":-100", 1)[1]
    # A private chat and a basic group whose ids reuse the supergroup digits.
    for index, channel_id in enumerate(("chat_id:" + digits, "chat_id:-" + digits)):
        inbound = make_inbound({"conversation": "hi"}, channel_id=channel_id, message_id=f"m{index}")
        assert _handle(processor, transport, inbound) == []
    assert transport.sent == []


def test_duplicate_delivery_is_forwarded_once() -> None:
    context = make_context()
    transport = FakeTransport()
    processor = MessageProcessor(context)
    inbound = make_inbound({"conversation": "once"}, message_id="dup")
    _handle(processor, transport, inbound)
    assert _handle(processor, transport, inbound) == []
    assert len(transport.sent) == 1
    assert context.stats.forwarded == 1


def test_unhandled_and_system_messages_are_not_sent() -> None:
    context = make_context()
    transport = FakeTransport()
    processor = MessageProcessor(context)
    assert _handle(processor, transport, make_inbound({"pollCreationMessage": {}})) == []
    assert _handle(
        processor, transport, make_inbound({"protocolMessage": {}}, message_id="m2")
    ) == []
    assert transport.sent == []
    assert context.stats.errors == 0


def test_forwarded_message_goes_out_without_metadata() -> None:
    context = make_context()
    transport = FakeTransport()
    processor = MessageProcessor(context)
    envelope = {
        "extendedTextMessage": {
            "text": "breaking",
            "contextInfo": {"forwardingScore": 5},
        }
    }
    _handle(processor, transport, make_inbound(envelope))
    assert transport.sent == [(DESTINATION, OutboundContent(text="breaking"))]


def test_reload_switches_source_channel() -> None:
    holder = PolicyHolder(make_policy())
    context = RelayContext(policy_store=PolicyStore(holder))
    transport = FakeTransport()
    processor = MessageProcessor(context)
    new_source = "chat_id:-1003333333333"

    assert _handle(processor, transport, make_inbound({"conversation": "a"}, channel_id=new_source)) == []

    holder.policy = make_policy(channels=ChannelsConfig(source=new_source, destination=DESTINATION))
    context.policy_store.reload()

    inbound = make_inbound({"conversation": "b"}, channel_id=new_source, message_id="m2")
    assert _handle(processor, transport, inbound) == [ForwardOutcome.FORWARDED]
    old = make_inbound({"conversation": "c"}, message_id="m3")
    assert _handle(processor, transport, old) == []
