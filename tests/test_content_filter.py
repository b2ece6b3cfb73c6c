from __future__ import annotations

from core.config import FilterPolicy
from core.content_filter import normalize_keywords, should_forward


def _policy(**kwargs) -> FilterPolicy:
    for key in ("include_keywords", "exclude_keywords"):
        if key in kwargs:
            kwargs[key] = normalize_keywords(kwargs[key])
    for key in ("allowed_senders", "blocked_senders"):
        if key in kwargs:
            kwargs[key] = frozenset(kwargs[key])
    return FilterPolicy(enabled=True, **kwargs)


def test_disabled_filter_allows_everything() -> None:
    policy = FilterPolicy(enabled=False, blocked_senders=frozenset({"1"}))
    assert should_forward("anything", "1", policy) is True


def test_enabled_without_rules_allows() -> None:
    assert should_forward("hello", "1", _policy()) is True


def test_blocked_sender_wins_over_include() -> None:
    policy = _policy(include_keywords=["urgent"], blocked_senders=["7"])
    assert should_forward("urgent news", "7", policy) is False
    assert should_forward("urgent news", "8", policy) is True


def test_allowed_senders_restrict() -> None:
    policy = _policy(allowed_senders=["1", "2"])
    assert should_forward("hi", "1", policy) is True
    assert should_forward("hi", "3", policy) is False


def test_exclude_wins_over_include() -> None:
    policy = _policy(include_keywords=["sale"], exclude_keywords=["spam"])
    assert should_forward("Big SALE, not SPAM", "1", policy) is False
    assert should_forward("Big sale today", "1", policy) is True


def test_include_keywords_are_case_insensitive_substrings() -> None:
    policy = _policy(include_keywords=["Urgent"])
    assert should_forward("URGENT: meeting at 5", "1", policy) is True
    assert should_forward("lunch?", "1", policy) is False


def test_normalize_keywords_drops_blanks() -> None:
    assert normalize_keywords([" Foo ", "", "  ", "BAR"]) == frozenset({"foo", "bar"})
