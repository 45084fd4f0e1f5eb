from __future__ import annotations

from narrative_engine.core.timeline import (
    has_duplicates,
    next_page_number,
    sanitize_messages,
    trailing_window,
)
from narrative_engine.core.tokens import estimate_tokens
from narrative_engine.core.types import DIALOGUE, NARRATION, Message


def _msg(mid, text, ts, page=None, sender="GM", type_=NARRATION):
    return Message(id=mid, sender_id=sender, text=text, type=type_, timestamp=ts, page_number=page)


def test_sanitize_drops_repeated_ids_and_renumbers():
    messages = [
        _msg("a", "First", 1_000, 1),
        _msg("b", "Second", 2_000, 2),
        _msg("a", "First again", 3_000, 3),
        _msg("c", "Third", 4_000, 7),
    ]
    out = sanitize_messages(messages)
    assert [m.id for m in out] == ["a", "b", "c"]
    assert [m.page_number for m in out] == [1, 2, 3]
    assert out[0] is messages[0]


def test_sanitize_drops_same_content_within_window():
    messages = [
        _msg("a", "The door  creaks open.", 1_000, 1),
        _msg("b", "The door creaks open.", 2_500, 2),
        _msg("c", "The door creaks open.", 9_000, 3),
    ]
    out = sanitize_messages(messages)
    assert [m.id for m in out] == ["a", "c"]


def test_sanitize_keeps_pair_exactly_at_window_edge():
    messages = [_msg("a", "Hi", 1_000, 1), _msg("b", "Hi", 3_000, 2)]
    assert [m.id for m in sanitize_messages(messages)] == ["a", "b"]


def test_sanitize_window_just_inside_and_outside():
    inside = [_msg("a", "Hi", 1_000, 1), _msg("b", "Hi", 2_999, 2)]
    assert [m.id for m in sanitize_messages(inside)] == ["a"]
    outside = [_msg("a", "Hi", 1_000, 1), _msg("b", "Hi", 3_001, 2)]
    assert [m.id for m in sanitize_messages(outside)] == ["a", "b"]


def test_sanitize_honours_custom_window():
    messages = [_msg("a", "Hi", 1_000, 1), _msg("b", "Hi", 1_400, 2)]
    assert [m.id for m in sanitize_messages(messages, duplicate_window_ms=300)] == ["a", "b"]


def test_sanitize_keeps_same_text_from_different_senders():
    messages = [
        _msg("a", "Hello", 1_000, 1, sender="npc-1", type_=DIALOGUE),
        _msg("b", "Hello", 1_100, 2, sender="npc-2", type_=DIALOGUE),
    ]
    assert len(sanitize_messages(messages)) == 2


def test_sanitize_orders_by_page_then_timestamp_and_skips_none():
    messages = [
        _msg("late", "Later", 5_000, 2),
        None,
        _msg("early", "Earlier", 9_000, 1),
        _msg("unpaged", "No page", 10_000),
    ]
    out = sanitize_messages(messages)
    assert [m.id for m in out] == ["early", "late", "unpaged"]
    assert [m.page_number for m in out] == [1, 2, 3]


def test_sanitize_is_idempotent():
    messages = [
        _msg("a", "One", 1_000, 3),
        _msg("b", "One", 1_500, 4),
        _msg("c", "Two", 2_000, 9),
    ]
    once = sanitize_messages(messages)
    twice = sanitize_messages(once)
    assert once == twice
    assert not has_duplicates(once)
    assert has_duplicates(messages)


def test_next_page_number():
    assert next_page_number([]) == 1
    assert next_page_number([_msg("a", "x", 1, 4), _msg("b", "y", 2)]) == 5


def test_trailing_window_respects_count_and_budget():
    messages = [_msg(str(i), "x" * 40, i * 1_000, i + 1) for i in range(30)]
    window = trailing_window(messages, max_messages=20, token_budget=10_000, token_count=estimate_tokens)
    assert len(window) == 20
    assert window[-1].id == "29"

    tight = trailing_window(messages, max_messages=20, token_budget=25, token_count=estimate_tokens)
    assert [m.id for m in tight] == ["28", "29"]


def test_trailing_window_always_keeps_newest_message():
    messages = [_msg("a", "short", 1, 1), _msg("b", "y" * 4_000, 2, 2)]
    window = trailing_window(messages, max_messages=20, token_budget=10, token_count=estimate_tokens)
    assert [m.id for m in window] == ["b"]
    assert trailing_window([], 20, 10, estimate_tokens) == []
