from __future__ import annotations

import dataclasses
import re
from functools import cmp_to_key
from typing import Callable, Iterable, Optional

from .types import Message

DUPLICATE_WINDOW_MS = 2_000

_WS_RE = re.compile(r"\s+")


def content_key(message: Message) -> str:
    normalized = _WS_RE.sub(" ", message.text or "").strip()
    return f"{message.sender_id}|{message.type}|{normalized}"


def _compare(a: Message, b: Message) -> int:
    if a.page_number is not None and b.page_number is not None and a.page_number != b.page_number:
        return a.page_number - b.page_number
    if a.timestamp != b.timestamp:
        return a.timestamp - b.timestamp
    if a.id == b.id:
        return 0
    return -1 if a.id < b.id else 1


def sanitize_messages(
    messages: Iterable[Optional[Message]],
    duplicate_window_ms: int = DUPLICATE_WINDOW_MS,
) -> list[Message]:
    """Return a deduplicated, ordered, contiguously paginated timeline.

    A message is dropped when its id was already kept, or when a kept message
    with the same sender, type and whitespace-normalized text lies within
    ``duplicate_window_ms`` of it. Survivors are stably sorted and renumbered
    1..N; messages whose page number is already right are returned as the same
    object. Applying the function twice yields the same result.
    """
    seen_ids: set[str] = set()
    kept_times: dict[str, list[int]] = {}
    kept: list[Message] = []

    for message in messages:
        if message is None:
            continue
        if message.id and message.id in seen_ids:
            continue

        key = content_key(message)
        previous = kept_times.get(key, [])
        if any(abs(message.timestamp - ts) < duplicate_window_ms for ts in previous):
            if message.id:
                seen_ids.add(message.id)
            continue

        if message.id:
            seen_ids.add(message.id)
        kept_times.setdefault(key, []).append(message.timestamp)
        kept.append(message)

    kept.sort(key=cmp_to_key(_compare))

    out: list[Message] = []
    for idx, message in enumerate(kept, start=1):
        if message.page_number == idx:
            out.append(message)
        else:
            out.append(dataclasses.replace(message, page_number=idx))
    return out


def has_duplicates(messages: list[Message]) -> bool:
    return len(sanitize_messages(messages)) != len(messages)


def next_page_number(messages: list[Message]) -> int:
    pages = [m.page_number for m in messages if m.page_number is not None]
    return (max(pages) if pages else 0) + 1


def trailing_window(
    messages: list[Message],
    max_messages: int,
    token_budget: int,
    token_count: Callable[[str], int],
) -> list[Message]:
    """Newest-last slice of the timeline bounded by count and token budget.

    The newest message is always included even when it alone exceeds the
    budget.
    """
    if max_messages <= 0 or not messages:
        return []
    window = messages[-max_messages:]
    selected: list[Message] = []
    used = 0
    for message in reversed(window):
        cost = token_count(message.text or "")
        if selected and used + cost > token_budget:
            break
        selected.append(message)
        used += cost
    selected.reverse()
    return selected
