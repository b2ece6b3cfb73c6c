"""Telethon adapters for the core ports."""
