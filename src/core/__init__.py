"""Core domain package for grouprelay.

Core contains classification, filtering, rate limiting, deduplication,
forwarding and the connection lifecycle without any Telegram-specific code,
keeping the business logic portable.
"""
