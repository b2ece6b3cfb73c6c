"""Keyword and sender filtering (core domain)."""

from __future__ import annotations

from typing import Iterable

from core.config import FilterPolicy


def normalize_keywords(keywords: Iterable[str]) -> frozenset[str]:
    """Lower-case keywords and drop blanks so matching is a substring test."""

    return frozenset(k.strip().lower() for k in keywords if k and k.strip())


def should_forward(text: str, sender: str, policy: FilterPolicy) -> bool:
    """Decide whether a text message passes the filter policy.

    Rules are evaluated in order and the first one that applies decides:
    - filtering disabled -> allow
    - sender in blocked_senders -> deny
    - allowed_senders set and sender not in it -> deny
    - any exclude keyword found -> deny
    - include keywords set -> allow only if one of them is found
    - otherwise allow
    """

    if not policy.enabled:
        return True

    if policy.blocked_senders and sender in policy.blocked_senders:
        return False

    if policy.allowed_senders and sender not in policy.allowed_senders:
        return False

    lowered = text.lower()
    if policy.exclude_keywords and any(ex in lowered for ex in policy.exclude_keywords):
        return False

    if policy.include_keywords:
        return any(k in lowered for k in policy.include_keywords)

    return True
