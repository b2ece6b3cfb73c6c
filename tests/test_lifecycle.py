from __future__ import annotations

import asyncio

from core.config import ConnectionPolicy
from core.lifecycle import RATE_RESET_INTERVAL, ConnectionLifecycle, ConnectionState
from core.models import InboundMessage
from core.ports import ConnectionUpdate, DisconnectReason, TransportState
from core.rate_limit import MESSAGE

from fakes import (
    DESTINATION,
    SOURCE,
    FakeCredentialStore,
    FakeSleep,
    FakeTransport,
    make_context,
    make_inbound,
    make_policy,
    settle,
)

OPEN = ConnectionUpdate(TransportState.OPEN)


class Harness:
    def __init__(
        self, policy=None, sleep=None, factory_errors: int = 0, processor=None, store=None
    ) -> None:
        self.context = make_context(policy)
        self.sessions: list[FakeTransport] = []
        self.sleep = sleep or FakeSleep()
        self._factory_errors = factory_errors
        self.store = store or FakeCredentialStore()
        self.lifecycle = ConnectionLifecycle(
            self.context,
            session_factory=self._factory,
            credential_store=self.store,
            processor=processor,
            pairing_renderer=lambda payload: f"QR<{payload}>",
            sleep=self.sleep,
        )
        self.store.lifecycle = self.lifecycle

    def _factory(self) -> FakeTransport:
        if self._factory_errors:
            self._factory_errors -= 1
            raise OSError("network unreachable")
        session = FakeTransport()
        self.sessions.append(session)
        return session

    @property
    def current(self) -> FakeTransport:
        return self.sessions[-1]

    async def connect(self) -> None:
        await self.lifecycle.start()
        await self.current.emit(OPEN)

    async def close(self, reason: DisconnectReason, can_reconnect: bool = True) -> None:
        await self.current.emit(
            ConnectionUpdate(TransportState.CLOSE, reason=reason, can_reconnect=can_reconnect)
        )


def test_start_open_and_validate() -> None:
    harness = Harness()

    async def scenario() -> None:
        await harness.lifecycle.start()
        assert harness.lifecycle.state is ConnectionState.CONNECTING
        await harness.current.emit(OPEN)
        assert harness.lifecycle.state is ConnectionState.CONNECTED
        assert harness.lifecycle.connected
        await settle()
        assert harness.current.metadata_requests == [SOURCE, DESTINATION]
        assert harness.sleep.delays[0] == 5.0
        await harness.lifecycle.stop()

    asyncio.run(scenario())
    assert harness.lifecycle.state is ConnectionState.DISCONNECTED
    assert harness.sessions[0].closed


def test_validation_reports_missing_membership() -> None:
    harness = Harness()

    async def scenario() -> bool:
        await harness.connect()
        harness.current.missing_channels.add(DESTINATION)
        result = await harness.lifecycle.validate_channels()
        await harness.lifecycle.stop()
        return result

    assert asyncio.run(scenario()) is False


def test_pairing_challenge_is_stored_then_cleared() -> None:
    harness = Harness()

    async def scenario() -> None:
        await harness.lifecycle.start()
        await harness.current.emit(
            ConnectionUpdate(TransportState.CONNECTING, pairing_challenge="tg://login?token=abc")
        )
        challenge = harness.lifecycle.pairing_challenge
        assert challenge.payload == "tg://login?token=abc"
        assert challenge.rendered == "QR<tg://login?token=abc>"
        await harness.current.emit(OPEN)
        assert harness.lifecycle.pairing_challenge is None
        await harness.lifecycle.stop()

    asyncio.run(scenario())


def _assert_session_reset(reason: DisconnectReason) -> None:
    harness = Harness()

    async def scenario() -> None:
        await harness.connect()
        await harness.close(reason)
        assert harness.lifecycle.state is ConnectionState.DISCONNECTED
        await harness.lifecycle.pending_restart
        await harness.lifecycle.stop()

    asyncio.run(scenario())
    assert harness.store.cleared == 1
    assert harness.store.state_at_clear is ConnectionState.DISCONNECTED
    assert 30.0 in harness.sleep.delays
    assert len(harness.sessions) == 2
    assert harness.sessions[0].closed


def test_logged_out_discards_credentials_and_reconnects() -> None:
    _assert_session_reset(DisconnectReason.LOGGED_OUT)


def test_session_conflict_discards_credentials_and_reconnects() -> None:
    _assert_session_reset(DisconnectReason.SESSION_CONFLICT)


class ReadOnlyCredentialStore(FakeCredentialStore):
    def clear(self) -> None:
        super().clear()
        raise PermissionError("session file is read-only")


def test_reconnects_when_credentials_cannot_be_discarded() -> None:
    harness = Harness(store=ReadOnlyCredentialStore())

    async def scenario() -> None:
        await harness.connect()
        await harness.close(DisconnectReason.LOGGED_OUT)
        restart = harness.lifecycle.pending_restart
        await restart
        assert restart.exception() is None
        assert harness.lifecycle.state is ConnectionState.CONNECTING
        assert harness.lifecycle.pairing_challenge is None
        await harness.lifecycle.stop()

    asyncio.run(scenario())
    assert harness.store.cleared == 1
    assert len(harness.sessions) == 2


def _assert_generic_reconnect(reason: DisconnectReason) -> None:
    harness = Harness()

    async def scenario() -> None:
        await harness.connect()
        await harness.close(reason)
        assert harness.lifecycle.state is ConnectionState.DISCONNECTED
        await harness.lifecycle.pending_restart
        assert harness.lifecycle.state is ConnectionState.CONNECTING
        await harness.lifecycle.stop()

    asyncio.run(scenario())
    assert harness.store.cleared == 0
    assert 5.0 in harness.sleep.delays
    assert 30.0 not in harness.sleep.delays
    assert len(harness.sessions) == 2


def test_timeout_reconnects_without_clearing() -> None:
    _assert_generic_reconnect(DisconnectReason.TIMED_OUT)


def test_restart_required_reconnects_without_clearing() -> None:
    _assert_generic_reconnect(DisconnectReason.RESTART_REQUIRED)


def test_connection_lost_reconnects_without_clearing() -> None:
    _assert_generic_reconnect(DisconnectReason.CONNECTION_LOST)


def test_unrecoverable_close_stays_down() -> None:
    harness = Harness()

    async def scenario() -> None:
        await harness.connect()
        await harness.close(DisconnectReason.BANNED, can_reconnect=False)
        await settle()
        assert harness.lifecycle.pending_restart is None
        await harness.lifecycle.stop()

    asyncio.run(scenario())
    assert harness.lifecycle.state is ConnectionState.DISCONNECTED
    assert len(harness.sessions) == 1
    assert harness.store.cleared == 0


def test_startup_failure_retries_after_delay() -> None:
    harness = Harness(factory_errors=1)

    async def scenario() -> None:
        await harness.lifecycle.start()
        assert harness.lifecycle.state is ConnectionState.DISCONNECTED
        assert harness.lifecycle.pending_restart is not None
        await harness.lifecycle.pending_restart
        assert harness.lifecycle.state is ConnectionState.CONNECTING
        await harness.lifecycle.stop()

    asyncio.run(scenario())
    assert len(harness.sessions) == 1
    assert harness.sleep.delays == [5.0]


def test_duplicate_close_schedules_one_restart() -> None:
    harness = Harness()

    async def scenario() -> None:
        await harness.connect()
        session = harness.current
        await harness.close(DisconnectReason.CONNECTION_LOST)
        await session.emit(ConnectionUpdate(TransportState.CLOSE, reason=DisconnectReason.TIMED_OUT))
        await harness.lifecycle.pending_restart
        await harness.lifecycle.stop()

    asyncio.run(scenario())
    assert len(harness.sessions) == 2


def test_events_from_replaced_session_are_dropped() -> None:
    harness = Harness()

    async def scenario() -> None:
        await harness.connect()
        old = harness.current
        await harness.lifecycle.request_restart()
        await harness.lifecycle.pending_restart
        assert harness.current is not old
        await old.emit(OPEN)
        assert harness.lifecycle.state is ConnectionState.CONNECTING
        await harness.lifecycle.stop()

    asyncio.run(scenario())


def test_message_errors_do_not_escape() -> None:
    class ExplodingProcessor:
        def __init__(self) -> None:
            self.calls = 0

        async def handle(self, inbound: InboundMessage, transport) -> list:
            self.calls += 1
            raise RuntimeError("boom")

    processor = ExplodingProcessor()
    harness = Harness(processor=processor)

    async def scenario() -> None:
        await harness.connect()
        await harness.current.listener.handle_message(make_inbound({"conversation": "x"}))
        await harness.lifecycle.stop()

    asyncio.run(scenario())
    assert processor.calls == 1


def test_messages_flow_to_destination() -> None:
    harness = Harness()

    async def scenario() -> None:
        await harness.connect()
        await harness.current.listener.handle_message(make_inbound({"conversation": "hi"}))
        await harness.lifecycle.stop()

    asyncio.run(scenario())
    assert harness.context.stats.forwarded == 1
    assert harness.sessions[0].sent[0][0] == DESTINATION


def test_keepalive_uses_current_session() -> None:
    policy = make_policy(connection=ConnectionPolicy(keepalive_interval=1.0))
    harness = Harness(policy=policy)

    async def scenario() -> None:
        await harness.connect()
        await settle()
        assert harness.current.keepalives > 0
        await harness.lifecycle.stop()

    asyncio.run(scenario())


def test_rate_counters_reset_hourly() -> None:
    harness = Harness(sleep=FakeSleep(block_at=RATE_RESET_INTERVAL + 1))
    limiter = harness.context.rate_limiter

    async def scenario() -> None:
        limiter.allow(MESSAGE, harness.context.policy.rate_limit)
        assert limiter.count(MESSAGE) == 1
        await harness.connect()
        await settle()
        assert limiter.count(MESSAGE) == 0
        await harness.lifecycle.stop()

    asyncio.run(scenario())
    assert RATE_RESET_INTERVAL in harness.sleep.delays


def test_status_reports_state() -> None:
    harness = Harness()
    status = harness.lifecycle.status()
    assert status["connected"] is False
    assert status["state"] == "disconnected"
    assert "last_transition_time" in status
