"""Connection lifecycle state machine.

States cycle ``DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED``
for as long as the process runs. Transport callbacks enter through two
dispatch points, ``handle_update`` and ``handle_message``, so the machine can
be driven by synthetic events in tests.

Disconnects are handled by cause:
- session invalidated (logged out, conflicting session): close, discard the
  stored credentials, wait the longer reset delay, start over with pairing
- restart requested or timeout: generic reconnect
- anything else the transport marks reconnectable: generic reconnect
- not reconnectable: log and stay down until an external restart

Reconnects use a fixed delay and are never capped.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Coroutine, Optional

from core.context import RelayContext
from core.models import InboundMessage
from core.ports import (
    ConnectionUpdate,
    CredentialStorePort,
    DisconnectReason,
    TransportSession,
    TransportState,
)
from core.processor import MessageProcessor

LOGGER = logging.getLogger(__name__)

RATE_RESET_INTERVAL = 60 * 60
REVALIDATION_DELAY = 2.0

SESSION_INVALIDATING = frozenset({DisconnectReason.LOGGED_OUT, DisconnectReason.SESSION_CONFLICT})
ROUTINE_RECONNECT = frozenset({DisconnectReason.RESTART_REQUIRED, DisconnectReason.TIMED_OUT})


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class PairingChallenge:
    payload: str
    rendered: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _SessionListener:
    """Routes callbacks from one session, dropping them once it is replaced."""

    def __init__(self, lifecycle: "ConnectionLifecycle", session: TransportSession) -> None:
        self._lifecycle = lifecycle
        self._session = session

    def _is_current(self) -> bool:
        return self._lifecycle.session is self._session

    async def handle_update(self, update: ConnectionUpdate) -> None:
        if not self._is_current():
            LOGGER.debug("Dropping %s update from a replaced session", update.state.value)
            return
        await self._lifecycle.handle_update(update)

    async def handle_message(self, inbound: InboundMessage) -> None:
        if not self._is_current():
            return
        await self._lifecycle.handle_message(inbound)


class ConnectionLifecycle:
    """Owns the transport session and keeps it alive."""

    def __init__(
        self,
        context: RelayContext,
        session_factory: Callable[[], TransportSession],
        credential_store: CredentialStorePort,
        processor: Optional[MessageProcessor] = None,
        pairing_renderer: Optional[Callable[[str], str]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._context = context
        self._session_factory = session_factory
        self._credential_store = credential_store
        self._processor = processor or MessageProcessor(context)
        self._pairing_renderer = pairing_renderer
        self._sleep = sleep
        self._clock = clock

        self.state = ConnectionState.DISCONNECTED
        self.last_transition_time = clock()
        self.pairing_challenge: Optional[PairingChallenge] = None
        self.pending_restart: Optional[asyncio.Task] = None

        self._session: Optional[TransportSession] = None
        self._tasks: set[asyncio.Task] = set()
        self._timers_started = False
        self._stopped = asyncio.Event()

    @property
    def session(self) -> Optional[TransportSession]:
        return self._session

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def _set_state(self, state: ConnectionState) -> None:
        if state is self.state:
            return
        LOGGER.info("Connection state: %s -> %s", self.state.value, state.value)
        self.state = state
        self.last_transition_time = self._clock()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def run(self) -> None:
        """Start the lifecycle and block until ``stop`` is called."""

        await self.start()
        await self._stopped.wait()

    async def start(self) -> None:
        """Enter CONNECTING and open a fresh transport session."""

        self._set_state(ConnectionState.CONNECTING)
        try:
            session = self._session_factory()
            self._session = session
            await session.open(_SessionListener(self, session))
        except Exception:
            LOGGER.exception("Failed to start transport session")
            self._set_state(ConnectionState.DISCONNECTED)
            self._schedule_restart(self._context.policy.connection.retry_delay)

    async def stop(self) -> None:
        self._stopped.set()
        if self.pending_restart is not None:
            self.pending_restart.cancel()
        for task in list(self._tasks):
            task.cancel()
        session, self._session = self._session, None
        if session is not None:
            await session.close()
        self._set_state(ConnectionState.DISCONNECTED)

    async def handle_update(self, update: ConnectionUpdate) -> None:
        """Single dispatch point for connection-state events."""

        if update.state is TransportState.CONNECTING:
            self._set_state(ConnectionState.CONNECTING)
            if update.pairing_challenge:
                self._store_pairing_challenge(update.pairing_challenge)
        elif update.state is TransportState.OPEN:
            self._on_open()
        elif update.state is TransportState.CLOSE:
            self._on_close(update)

    async def handle_message(self, inbound: InboundMessage) -> None:
        """Single dispatch point for inbound messages."""

        session = self._session
        if session is None:
            return
        try:
            await self._processor.handle(inbound, session)
        except Exception:
            LOGGER.exception("Error while processing message")

    async def request_restart(self) -> None:
        await self.handle_update(
            ConnectionUpdate(
                TransportState.CLOSE,
                reason=DisconnectReason.RESTART_REQUIRED,
                detail="operator request",
            )
        )

    def status(self) -> dict[str, Any]:
        return {
            "connected": self.connected,
            "state": self.state.value,
            "last_transition_time": self.last_transition_time.isoformat(),
        }

    def _store_pairing_challenge(self, payload: str) -> None:
        rendered = None
        if self._pairing_renderer is not None:
            try:
                rendered = self._pairing_renderer(payload)
            except Exception as exc:
                LOGGER.error("Failed to render pairing QR code: %s", exc)
        self.pairing_challenge = PairingChallenge(payload=payload, rendered=rendered)
        LOGGER.info("Pairing challenge received - scan the QR code to link this session")

    def _on_open(self) -> None:
        self._set_state(ConnectionState.CONNECTED)
        self.pairing_challenge = None
        channels = self._context.policy.channels
        LOGGER.info(
            "Connected - relaying %s -> %s", channels.source, channels.destination
        )
        self.schedule_validation(self._context.policy.connection.validation_delay)
        if not self._timers_started:
            self._timers_started = True
            self._spawn(self._keepalive_loop())
            self._spawn(self._rate_reset_loop())

    def _on_close(self, update: ConnectionUpdate) -> None:
        self._set_state(ConnectionState.DISCONNECTED)
        reason = update.reason or DisconnectReason.UNKNOWN
        detail = f" ({update.detail})" if update.detail else ""
        connection = self._context.policy.connection

        if reason in SESSION_INVALIDATING:
            LOGGER.error(
                "Session invalidated: %s%s. Discarding credentials; new pairing in %ss",
                reason.value,
                detail,
                connection.session_reset_delay,
            )
            self._schedule_restart(connection.session_reset_delay, discard_credentials=True)
        elif reason in ROUTINE_RECONNECT:
            LOGGER.info("Connection closed: %s%s, reconnecting", reason.value, detail)
            self._schedule_restart(connection.retry_delay)
        elif update.can_reconnect:
            LOGGER.warning(
                "Connection closed: %s%s, retrying in %ss",
                reason.value,
                detail,
                connection.retry_delay,
            )
            self._schedule_restart(connection.retry_delay)
        else:
            LOGGER.critical(
                "Connection closed: %s%s. Reconnecting is not possible; restart the relay manually",
                reason.value,
                detail,
            )

    def _schedule_restart(self, delay: float, discard_credentials: bool = False) -> None:
        if self.pending_restart is not None and not self.pending_restart.done():
            LOGGER.debug("Restart already pending")
            return
        self.pending_restart = asyncio.create_task(self._restart(delay, discard_credentials))

    async def _restart(self, delay: float, discard_credentials: bool) -> None:
        session, self._session = self._session, None
        if session is not None:
            try:
                await session.close()
            except Exception as exc:
                LOGGER.warning("Error while closing the previous session: %s", exc)
        if discard_credentials:
            self.pairing_challenge = None
            try:
                self._credential_store.clear()
            except OSError as exc:
                LOGGER.error("Failed to discard local session credentials: %s", exc)
            else:
                LOGGER.info("Local session credentials discarded")
        await self._sleep(delay)
        self.pending_restart = None
        if self._stopped.is_set():
            return
        await self.start()

    def schedule_validation(self, delay: float) -> asyncio.Task:
        """Check channel membership after ``delay`` without blocking messages."""

        return self._spawn(self._validate_after(delay))

    async def _validate_after(self, delay: float) -> None:
        await self._sleep(delay)
        await self.validate_channels()

    async def validate_channels(self) -> bool:
        session = self._session
        if session is None or not self.connected:
            LOGGER.warning("Skipping channel validation: not connected")
            return False

        channels = self._context.policy.channels
        LOGGER.info("Validating channel memberships...")
        source_ok = await self._validate_channel(session, channels.source)
        target_ok = await self._validate_channel(session, channels.destination)
        if source_ok and target_ok:
            LOGGER.info("Both channels validated - relay is ready to forward messages")
        else:
            LOGGER.warning("Channel validation failed - check membership in both channels")
        return source_ok and target_ok

    @staticmethod
    async def _validate_channel(session: TransportSession, channel_id: str) -> bool:
        try:
            metadata = await session.fetch_channel_metadata(channel_id)
        except Exception as exc:
            LOGGER.error("Not a member of channel %s: %s", channel_id, exc)
            return False
        LOGGER.info(
            "Member of channel %s: %s (%s participants)",
            channel_id,
            metadata.name,
            metadata.participant_count,
        )
        return True

    async def _keepalive_loop(self) -> None:
        while not self._stopped.is_set():
            await self._sleep(self._context.policy.connection.keepalive_interval)
            session = self._session
            if session is None or not self.connected:
                continue
            try:
                await session.send_keepalive()
            except Exception as exc:
                LOGGER.warning("Keepalive failed: %s", exc)

    async def _rate_reset_loop(self) -> None:
        while not self._stopped.is_set():
            await self._sleep(RATE_RESET_INTERVAL)
            self._context.rate_limiter.reset()
