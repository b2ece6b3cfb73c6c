"""Operations exposed to external control surfaces (dashboard, CLI)."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from core.channels import check_channel_pair
from core.config import Policy
from core.context import RelayContext
from core.lifecycle import REVALIDATION_DELAY, ConnectionLifecycle

LOGGER = logging.getLogger(__name__)


class ControlSurface:
    def __init__(
        self,
        context: RelayContext,
        lifecycle: ConnectionLifecycle,
        on_reload: Optional[Callable[[Policy], None]] = None,
    ) -> None:
        self._context = context
        self._lifecycle = lifecycle
        self._on_reload = on_reload

    def reload_policy(self) -> dict[str, Any]:
        """Re-read the policy; keep the active one if loading fails."""

        try:
            policy = self._context.policy_store.reload()
        except (OSError, ValueError) as exc:
            LOGGER.error("Policy reload failed: %s", exc)
            return {"error": str(exc)}

        if self._on_reload is not None:
            self._on_reload(policy)
        if self._lifecycle.connected:
            self._lifecycle.schedule_validation(REVALIDATION_DELAY)
        return {
            "success": True,
            "message": "Configuration reloaded successfully",
            "source": policy.channels.source,
            "destination": policy.channels.destination,
        }

    async def request_restart(self) -> dict[str, Any]:
        LOGGER.info("Restart requested by operator")
        await self._lifecycle.request_restart()
        return {"success": True}

    def get_statistics(self) -> dict[str, Any]:
        return self._context.stats.snapshot()

    def get_connection_status(self) -> dict[str, Any]:
        return self._lifecycle.status()

    def get_pending_pairing_challenge(self) -> Optional[str]:
        challenge = self._lifecycle.pairing_challenge
        return challenge.payload if challenge else None

    def get_rendered_pairing_challenge(self) -> Optional[str]:
        challenge = self._lifecycle.pairing_challenge
        return challenge.rendered if challenge else None

    def test_channel_pair(self, source_id: str, target_id: str) -> dict[str, Any]:
        return check_channel_pair(source_id, target_id).as_dict()
