from __future__ import annotations

import asyncio

from core.config import ChannelsConfig, ConfigError
from core.context import PolicyStore, RelayContext
from core.control import ControlSurface
from core.lifecycle import ConnectionLifecycle
from core.ports import ConnectionUpdate, TransportState

from fakes import (
    DESTINATION,
    SOURCE,
    FakeCredentialStore,
    FakeSleep,
    FakeTransport,
    PolicyHolder,
    make_policy,
    settle,
)


def _build(holder: PolicyHolder):
    context = RelayContext(policy_store=PolicyStore(holder))
    sessions: list[FakeTransport] = []

    def factory() -> FakeTransport:
        sessions.append(FakeTransport())
        return sessions[-1]

    lifecycle = ConnectionLifecycle(
        context,
        session_factory=factory,
        credential_store=FakeCredentialStore(),
        pairing_renderer=str.upper,
        sleep=FakeSleep(),
    )
    return context, lifecycle, ControlSurface(context, lifecycle), sessions


def test_reload_policy_swaps_channels() -> None:
    holder = PolicyHolder(make_policy())
    context, _, control, _ = _build(holder)
    holder.policy = make_policy(
        channels=ChannelsConfig(source="chat_id:-1005", destination="chat_id:-1006")
    )
    result = control.reload_policy()
    assert result == {
        "success": True,
        "message": "Configuration reloaded successfully",
        "source": "chat_id:-1005",
        "destination": "chat_id:-1006",
    }
    assert context.policy.channels.source == "chat_id:-1005"


def test_reload_failure_keeps_previous_policy() -> None:
    holder = PolicyHolder(make_policy())
    context, _, control, _ = _build(holder)
    holder.error = ConfigError("'rate_limit.enabled' must be true or false")
    assert control.reload_policy() == {"error": "'rate_limit.enabled' must be true or false"}
    assert context.policy.channels.source == SOURCE

    holder.error = FileNotFoundError("Config file not found: config.json")
    assert "error" in control.reload_policy()
    assert context.policy.channels.destination == DESTINATION


def test_reload_while_connected_revalidates_channels() -> None:
    holder = PolicyHolder(make_policy())
    _, lifecycle, control, sessions = _build(holder)

    async def scenario() -> None:
        await lifecycle.start()
        await sessions[0].emit(ConnectionUpdate(TransportState.OPEN))
        await settle()
        sessions[0].metadata_requests.clear()
        assert control.reload_policy()["success"] is True
        await settle()
        assert sessions[0].metadata_requests == [SOURCE, DESTINATION]
        await lifecycle.stop()

    asyncio.run(scenario())


def test_statistics_and_status() -> None:
    context, _, control, _ = _build(PolicyHolder(make_policy()))
    context.stats.forwarded = 3
    stats = control.get_statistics()
    assert stats["forwarded"] == 3
    assert set(stats) == {"forwarded", "media_forwarded", "filtered", "errors", "start_time"}
    assert control.get_connection_status()["connected"] is False


def test_pairing_challenge_accessors() -> None:
    _, lifecycle, control, sessions = _build(PolicyHolder(make_policy()))
    assert control.get_pending_pairing_challenge() is None

    async def scenario() -> None:
        await lifecycle.start()
        await sessions[0].emit(
            ConnectionUpdate(TransportState.CONNECTING, pairing_challenge="tg://login?token=x")
        )
        await lifecycle.stop()

    asyncio.run(scenario())
    assert control.get_pending_pairing_challenge() == "tg://login?token=x"
    assert control.get_rendered_pairing_challenge() == "TG://LOGIN?TOKEN=X"


def test_request_restart_reconnects() -> None:
    _, lifecycle, control, sessions = _build(PolicyHolder(make_policy()))

    async def scenario() -> None:
        await lifecycle.start()
        await sessions[0].emit(ConnectionUpdate(TransportState.OPEN))
        assert await control.request_restart() == {"success": True}
        await lifecycle.pending_restart
        await lifecycle.stop()

    asyncio.run(scenario())
    assert len(sessions) == 2


def test_channel_pair_check() -> None:
    _, _, control, _ = _build(PolicyHolder(make_policy()))
    ok = control.test_channel_pair(SOURCE, DESTINATION)
    assert ok["success"] is True
    assert ok["source"]["id"] == SOURCE
    assert ok["target"]["id"] == DESTINATION
    assert "error" in control.test_channel_pair("", DESTINATION)
    assert "error" in control.test_channel_pair(SOURCE, SOURCE)


def test_reload_hook_sees_new_policy_only_on_success() -> None:
    holder = PolicyHolder(make_policy())
    context, lifecycle, _, _ = _build(holder)
    seen = []
    control = ControlSurface(context, lifecycle, on_reload=seen.append)

    holder.error = ConfigError("'logging.level' must be a string")
    assert "error" in control.reload_policy()
    assert seen == []

    holder.error = None
    holder.policy = make_policy(
        channels=ChannelsConfig(source="chat_id:-1005", destination=DESTINATION)
    )
    control.reload_policy()
    assert seen == [holder.policy]
