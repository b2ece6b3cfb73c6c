"""Helpers for working with group-channel identifiers.

Channels are addressed as ``chat_id:<int>``. Group chats always carry a
negative peer id: ``-<id>`` for basic groups and ``-100<id>`` for
supergroups and channels.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

CHANNEL_PREFIX = "chat_id:"

_GROUP_CHANNEL_RE = re.compile(r"^chat_id:-\d+$")


def build_channel_id(chat_id: int) -> str:
    return f"{CHANNEL_PREFIX}{chat_id}"


def parse_channel_id(channel_id: str) -> Optional[int]:
    """Return the integer peer id, or None if the identifier is malformed."""

    if not channel_id.startswith(CHANNEL_PREFIX):
        return None
    try:
        return int(channel_id[len(CHANNEL_PREFIX) :])
    except ValueError:
        return None


def is_group_channel(channel_id: str) -> bool:
    return bool(_GROUP_CHANNEL_RE.match(channel_id.strip()))


def normalize_channel_id(channel_id: str) -> str:
    """Canonical form used for comparisons; malformed ids are only stripped.

    Telethon reports every group by its marked peer id, so two identifiers name
    the same chat exactly when their integers are equal. A bare positive id is
    a user chat, never a group.
    """

    peer = parse_channel_id(channel_id.strip())
    if peer is None:
        return channel_id.strip()
    return build_channel_id(peer)


@dataclass(frozen=True)
class ChannelPairCheck:
    source: str
    target: str
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def as_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {
            "success": True,
            "source": {"id": self.source, "name": "Source Channel"},
            "target": {"id": self.target, "name": "Target Channel"},
        }


def check_channel_pair(source: str, target: str) -> ChannelPairCheck:
    """Format check for a source/target pair; performs no network I/O."""

    source = (source or "").strip()
    target = (target or "").strip()
    if not source or not target:
        return ChannelPairCheck(source, target, "Both source and target channels are required")
    if not is_group_channel(source) or not is_group_channel(target):
        return ChannelPairCheck(
            source, target, "Channel ids must look like chat_id:-<number> (group chats)"
        )
    if normalize_channel_id(source) == normalize_channel_id(target):
        return ChannelPairCheck(source, target, "Source and target must be different channels")
    return ChannelPairCheck(source, target)
