"""Application entry point for the group relay."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import os
import re
import sys
from logging.handlers import RotatingFileHandler
from typing import Iterable, Optional

from art import tprint
from dotenv import load_dotenv

import settings
from adapters.pairing import render_qr
from adapters.session_store import SessionFileStore
from adapters.telegram_transport import TelegramTransportSession
from client import build_client
from core.channels import check_channel_pair
from core.config import ChannelsConfig, LoggingPolicy, Policy
from core.context import PolicyStore, RelayContext
from core.control import ControlSurface
from core.lifecycle import ConnectionLifecycle

NAME = "GROUPRELAY"
FONT = "tarty-1"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _print_banner(channels: ChannelsConfig) -> None:
    tprint(NAME, FONT, space=1)
    print(f"  {channels.source}  ->  {channels.destination}\n", flush=True)


class _SecretMaskingFormatter(logging.Formatter):
    """Masks the values of selected environment variables in every record."""

    MASK = "***"

    def __init__(
        self,
        values: Iterable[str],
        fmt: str = LOG_FORMAT,
        datefmt: Optional[str] = LOG_DATEFMT,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        # Longest first so a secret containing another one is fully masked.
        ordered = sorted({value for value in values if value}, key=len, reverse=True)
        self._pattern = re.compile("|".join(map(re.escape, ordered))) if ordered else None

    @classmethod
    def from_env(cls, names: Iterable[str], **kwargs) -> "_SecretMaskingFormatter":
        return cls((os.getenv(name) or "" for name in names), **kwargs)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        if self._pattern is None:
            return message
        return self._pattern.sub(self.MASK, message)


def _configure_logging(config: LoggingPolicy, console: bool = True) -> None:
    """Install root handlers for ``config``; safe to call again after a reload."""

    if not console:
        config = dataclasses.replace(config, console=False)

    level = getattr(logging, config.level.upper(), None)
    if not isinstance(level, int):
        level = logging.INFO

    formatter = _SecretMaskingFormatter.from_env(config.redact_env)
    handlers: list[logging.Handler] = []

    if config.console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    if config.file_enabled:
        path = settings.resolve_project_path(config.file_path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        file_handler = RotatingFileHandler(
            path,
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(level=level, handlers=handlers, force=True)
    # Telethon is chatty at INFO (every reconnect and update gap).
    if level > logging.DEBUG:
        logging.getLogger("telethon").setLevel(logging.WARNING)


def _print_pairing(payload: str) -> str:
    rendered = render_qr(payload)
    print("Scan this QR code in Telegram (Settings > Devices > Link Desktop Device):")
    print(rendered, flush=True)
    return rendered


def build_runtime(
    policy_store: PolicyStore, headless: bool = True
) -> tuple[RelayContext, ConnectionLifecycle, ControlSurface]:
    """Wire the relay: shared context, Telegram transport, lifecycle, control."""

    context = RelayContext(policy_store=policy_store)

    def session_factory() -> TelegramTransportSession:
        return TelegramTransportSession(
            build_client,
            pairing_timeout=context.policy.connection.pairing_timeout,
        )

    lifecycle = ConnectionLifecycle(
        context,
        session_factory=session_factory,
        credential_store=SessionFileStore(settings.session_name()),
        pairing_renderer=_print_pairing if headless else render_qr,
    )
    def reapply_logging(policy: Policy) -> None:
        _configure_logging(policy.logging, console=headless)

    control = ControlSurface(context, lifecycle, on_reload=reapply_logging)
    return context, lifecycle, control


def _load_store() -> PolicyStore:
    try:
        return PolicyStore(settings.load_policy)
    except (OSError, ValueError) as exc:
        print(f"Cannot load configuration: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc


def _run() -> None:
    load_dotenv()
    store = _load_store()
    _print_banner(store.current.channels)
    _configure_logging(store.current.logging)
    logger = logging.getLogger(__name__)

    channels = store.current.channels
    logger.info("Starting grouprelay: %s -> %s", channels.source, channels.destination)
    _, lifecycle, _ = build_runtime(store)

    async def _main() -> None:
        try:
            await lifecycle.run()
        finally:
            await lifecycle.stop()

    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


def _dashboard() -> None:
    load_dotenv()
    store = _load_store()
    _print_banner(store.current.channels)
    # A console handler would draw over the TUI.
    _configure_logging(store.current.logging, console=False)
    _, lifecycle, control = build_runtime(store, headless=False)

    from frontend.app import DashboardApp

    DashboardApp(control, runner=lifecycle.run, shutdown=lifecycle.stop).run()


def _check(source: str, target: str) -> int:
    result = check_channel_pair(source, target).as_dict()
    print(json.dumps(result, indent=2))
    return 0 if "success" in result else 1


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="grouprelay")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the relay (headless)")
    subparsers.add_parser("dashboard", help="Start the relay with the terminal dashboard")
    check = subparsers.add_parser("check", help="Check a source/target channel pair")
    check.add_argument("source", help="Source channel, e.g. chat_id:-1001234567890")
    check.add_argument("target", help="Target channel, e.g. chat_id:-1009876543210")

    args = parser.parse_args(argv)
    if args.command == "dashboard":
        _dashboard()
        return
    if args.command == "check":
        raise SystemExit(_check(args.source, args.target))
    _run()


if __name__ == "__main__":
    main()
