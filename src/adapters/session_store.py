"""Telethon session file handling."""

from __future__ import annotations

import logging
import os

LOGGER = logging.getLogger(__name__)

SESSION_SUFFIX = ".session"
JOURNAL_SUFFIX = ".session-journal"


class SessionFileStore:
    """Stored credentials for one Telethon session name.

    Telethon keeps the auth key in ``<name>.session`` (SQLite) next to an
    optional journal. Removing both forces a fresh pairing on next connect.
    """

    def __init__(self, session_name: str, directory: str = ".") -> None:
        base = session_name
        if base.endswith(SESSION_SUFFIX):
            base = base[: -len(SESSION_SUFFIX)]
        self._base = base if os.path.isabs(base) else os.path.join(directory, base)

    @property
    def paths(self) -> list[str]:
        return [self._base + SESSION_SUFFIX, self._base + JOURNAL_SUFFIX]

    def exists(self) -> bool:
        return os.path.exists(self.paths[0])

    def clear(self) -> None:
        removed = 0
        for path in self.paths:
            try:
                os.remove(path)
                removed += 1
            except FileNotFoundError:
                continue
        LOGGER.warning("Cleared stored credentials (%s files removed)", removed)
