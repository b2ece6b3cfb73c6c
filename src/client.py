"""Telegram client factory for grouprelay.

Each transport session gets a brand new client. Telethon's own reconnect
loop is turned off: the connection lifecycle decides when and how to
reconnect, depending on why the previous session ended.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv
from telethon import TelegramClient

import settings


def build_client() -> TelegramClient:
    """Create a Telethon client from environment variables.

    We read API_ID/API_HASH via python-dotenv to keep secrets out of the repo.
    The session name defaults to "grouprelay" to create a local .session file.
    """

    load_dotenv()

    api_id = os.getenv("API_ID")
    api_hash = os.getenv("API_HASH")

    # Fail fast on missing credentials to avoid an ambiguous login prompt.
    if not api_id or not api_hash:
        raise RuntimeError("Missing API_ID or API_HASH in environment")

    logging.getLogger(__name__).info("Initializing Telegram client")

    return TelegramClient(
        settings.session_name(),
        int(api_id),
        api_hash,
        auto_reconnect=False,
        connection_retries=1,
    )
