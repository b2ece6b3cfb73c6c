"""Configuration loading for grouprelay.

All user-editable settings (channels, forwarding toggles, filters, rate
limits, connection timings, logging) live in a single JSON file for quick
edits without touching Python. Secrets stay in the environment.
"""

from __future__ import annotations

import json
import os
from typing import Optional

from core.config import (
    ChannelsConfig,
    ConfigError,
    ConnectionPolicy,
    FilterPolicy,
    ForwardToggles,
    LoggingPolicy,
    Policy,
    RateLimitPolicy,
)
from core.content_filter import normalize_keywords

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

DEFAULT_CONFIG_PATH = os.path.join(PROJECT_ROOT, "config.json")


def config_path() -> str:
    # RELAY_CONFIG points at an alternative file (useful for several relays).
    return os.getenv("RELAY_CONFIG") or DEFAULT_CONFIG_PATH


def load_json_config(path: str) -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(path):
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r", encoding="utf-8") as handle:
        try:
            data = json.load(handle)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"config.json error: {exc.msg} (line {exc.lineno})") from exc
    if not isinstance(data, dict):
        raise ConfigError("config root must be an object")
    return data


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name, {})
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be an object")
    return value


def _bool(section: dict, key: str, default: bool, where: str) -> bool:
    value = section.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"'{where}.{key}' must be true or false")
    return value


def _number(section: dict, key: str, default: float, where: str) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ConfigError(f"'{where}.{key}' must be a non-negative number")
    return value


def _strings(section: dict, key: str, where: str) -> list[str]:
    value = section.get(key, []) or []
    if not isinstance(value, list) or not all(isinstance(item, (str, int)) for item in value):
        raise ConfigError(f"'{where}.{key}' must be a list of strings")
    return [str(item).strip() for item in value if str(item).strip()]


def build_policy(raw: dict) -> Policy:
    """Turn the raw JSON document into a frozen Policy."""

    channels = _section(raw, "channels")
    source = channels.get("source")
    destination = channels.get("destination")
    if not isinstance(source, str) or not isinstance(destination, str):
        raise ConfigError("'channels.source' and 'channels.destination' are required")

    forward = _section(raw, "forward")
    filters = _section(raw, "filters")
    rate_limit = _section(raw, "rate_limit")
    connection = _section(raw, "connection")
    logging_cfg = _section(raw, "logging")
    file_cfg = _section(logging_cfg, "file")
    redact_cfg = _section(logging_cfg, "redact")

    redact_env: tuple[str, ...] = ()
    if _bool(redact_cfg, "enabled", False, "logging.redact"):
        redact_env = tuple(_strings(redact_cfg, "patterns", "logging.redact"))

    return Policy(
        channels=ChannelsConfig(source=source.strip(), destination=destination.strip()),
        forward=ForwardToggles(
            **{
                kind: _bool(forward, kind, True, "forward")
                for kind in ("text", "image", "video", "audio", "document")
            }
        ),
        filters=FilterPolicy(
            enabled=_bool(filters, "enabled", False, "filters"),
            include_keywords=normalize_keywords(_strings(filters, "include_keywords", "filters")),
            exclude_keywords=normalize_keywords(_strings(filters, "exclude_keywords", "filters")),
            allowed_senders=frozenset(_strings(filters, "allowed_senders", "filters")),
            blocked_senders=frozenset(_strings(filters, "blocked_senders", "filters")),
        ),
        rate_limit=RateLimitPolicy(
            enabled=_bool(rate_limit, "enabled", True, "rate_limit"),
            max_messages_per_window=int(
                _number(rate_limit, "max_messages_per_minute", 10, "rate_limit")
            ),
            max_media_per_window=int(_number(rate_limit, "max_media_per_minute", 5, "rate_limit")),
        ),
        connection=ConnectionPolicy(
            retry_delay=_number(connection, "retry_delay_seconds", 5, "connection"),
            session_reset_delay=_number(
                connection, "session_reset_delay_seconds", 30, "connection"
            ),
            validation_delay=_number(connection, "validation_delay_seconds", 5, "connection"),
            keepalive_interval=_number(connection, "keepalive_seconds", 60, "connection"),
            pairing_timeout=_number(connection, "pairing_timeout_seconds", 120, "connection"),
        ),
        logging=LoggingPolicy(
            level=str(logging_cfg.get("level", "INFO")).upper(),
            console=_bool(logging_cfg, "console", True, "logging"),
            file_enabled=_bool(file_cfg, "enabled", False, "logging.file"),
            file_path=str(file_cfg.get("path", "logs/grouprelay.log")),
            max_bytes=int(_number(file_cfg, "max_bytes", 5 * 1024 * 1024, "logging.file")),
            backup_count=int(_number(file_cfg, "backup_count", 5, "logging.file")),
            redact_env=redact_env,
        ),
    )


def load_policy(path: Optional[str] = None) -> Policy:
    return build_policy(load_json_config(path or config_path()))


def resolve_project_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


def session_name() -> str:
    return os.getenv("SESSION_NAME", "grouprelay")
