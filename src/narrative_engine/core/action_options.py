from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import random
from typing import Awaitable, Callable, Optional

from ..persistence.interfaces import ActionOptionsStore
from .errors import GenericServiceError
from .types import ActionOption, CachedActionOptions, FateResult, Session

logger = logging.getLogger(__name__)

DEFAULT_GOOD_CHANCE = 10
DEFAULT_BAD_CHANCE = 5

DEFAULT_OPTION_TEXTS: dict[str, tuple[str, ...]] = {
    "en": ("Look around", "Talk to someone", "Move forward", "Check inventory", "Wait and observe"),
    "pt": ("Olhar ao redor", "Falar com alguém", "Seguir em frente", "Verificar inventário", "Esperar e observar"),
    "es": ("Mirar alrededor", "Hablar con alguien", "Avanzar", "Revisar inventario", "Esperar y observar"),
    "fr": ("Regarder autour", "Parler à quelqu'un", "Avancer", "Vérifier l'inventaire", "Attendre et observer"),
    "ru": ("Осмотреться", "Поговорить с кем-нибудь", "Идти вперёд", "Проверить инвентарь", "Ждать и наблюдать"),
    "zh": ("环顾四周", "与人交谈", "继续前进", "查看物品", "等待观察"),
}


def default_options(language: str) -> list[ActionOption]:
    texts = DEFAULT_OPTION_TEXTS.get(language, DEFAULT_OPTION_TEXTS["en"])
    return [
        ActionOption(text=text, good_chance=DEFAULT_GOOD_CHANCE, bad_chance=DEFAULT_BAD_CHANCE)
        for text in texts
    ]


def build_fingerprint(session: Session) -> str:
    """Identify the context options were generated for.

    Changes whenever a message is appended, the player moves or a turn
    resolves.
    """
    last_id = session.messages[-1].id if session.messages else ""
    raw = "|".join(
        (
            session.id,
            last_id,
            str(len(session.messages)),
            session.current_location_id,
            str(session.turn_count),
        )
    )
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def roll_fate(option: ActionOption, rng: Optional[random.Random] = None) -> FateResult:
    """Roll 0..100 against the option; the bad range is checked first."""
    roll = (rng or random).random() * 100
    if roll < option.bad_chance:
        return FateResult(type="bad", hint=option.bad_hint or None)
    if roll < option.bad_chance + option.good_chance:
        return FateResult(type="good", hint=option.good_hint or None)
    return FateResult(type="neutral")


def _serialize(entry: CachedActionOptions) -> str:
    return json.dumps(
        {
            "cache_key": entry.cache_key,
            "last_message_id": entry.last_message_id,
            "options": [o.to_dict() for o in entry.options],
        },
        ensure_ascii=False,
        sort_keys=True,
    )


def _deserialize(raw: str) -> CachedActionOptions | None:
    payload = json.loads(raw)
    if not isinstance(payload, dict) or not isinstance(payload.get("options"), list):
        return None
    last_message_id = payload.get("last_message_id")
    last_message_id = last_message_id if isinstance(last_message_id, str) else ""
    cache_key = payload.get("cache_key")
    cache_key = cache_key if isinstance(cache_key, str) else last_message_id
    return CachedActionOptions(
        cache_key=cache_key,
        last_message_id=last_message_id,
        options=[ActionOption.from_dict(o) for o in payload["options"] if isinstance(o, dict)],
    )


Fetcher = Callable[[], Awaitable[list[ActionOption]]]


class ActionOptionsCache:
    """Per-session cache of suggested actions with request coalescing.

    The durable store holds one serialized entry per session. An in-memory
    copy is reused while the durable text is unchanged.
    """

    def __init__(self, store: ActionOptionsStore | None = None, logger_: logging.Logger | None = None):
        self._store = store
        self._logger = logger_ or logger
        self._memory: dict[str, CachedActionOptions] = {}
        self._mirror: dict[str, Optional[str]] = {}
        self._pending: dict[str, asyncio.Future] = {}

    def _read_durable(self, session_id: str) -> Optional[str]:
        if self._store is None:
            return self._mirror.get(session_id)
        return self._store.get(session_id)

    def get(self, session_id: str) -> CachedActionOptions | None:
        try:
            raw = self._read_durable(session_id)
            if not raw:
                self._memory.pop(session_id, None)
                self._mirror[session_id] = None
                return None
            cached = self._memory.get(session_id)
            if cached is not None and self._mirror.get(session_id) == raw:
                return cached
            parsed = _deserialize(raw)
            self._mirror[session_id] = raw
            if parsed is None:
                self._memory.pop(session_id, None)
                return None
            self._memory[session_id] = parsed
            return parsed
        except Exception:
            self._memory.pop(session_id, None)
            self._mirror[session_id] = None
            self._logger.exception("Failed to read action options cache for session %s", session_id)
            return None

    def save(self, session_id: str, cache_key: str, last_message_id: str, options: list[ActionOption]) -> None:
        entry = CachedActionOptions(cache_key=cache_key, last_message_id=last_message_id, options=list(options))
        serialized = _serialize(entry)
        self._memory[session_id] = entry
        self._mirror[session_id] = serialized
        if self._store is None:
            return
        try:
            self._store.put(session_id, serialized)
        except Exception:
            self._logger.exception("Failed to save action options cache for session %s", session_id)

    def invalidate(self, session_id: str) -> None:
        self._memory.pop(session_id, None)
        self._mirror.pop(session_id, None)
        if self._store is None:
            return
        try:
            self._store.delete(session_id)
        except Exception:
            self._logger.exception("Failed to delete action options cache for session %s", session_id)

    async def fetch_with_cache(
        self,
        session_id: str,
        fingerprint: str,
        fetcher: Fetcher,
        last_message_id: str = "",
    ) -> list[ActionOption]:
        cached = self.get(session_id)
        if cached is not None and cached.cache_key == fingerprint and cached.options:
            return list(cached.options)

        pending_key = f"{session_id}:{fingerprint}"
        pending = self._pending.get(pending_key)
        if pending is not None:
            return list(await asyncio.shield(pending))

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[pending_key] = future
        try:
            options = await fetcher()
            if options:
                self.save(session_id, fingerprint, last_message_id, options)
            future.set_result(list(options))
            return list(options)
        except asyncio.CancelledError:
            # Waiters get a service failure, not the owner's cancellation.
            future.set_exception(GenericServiceError("Action options request was cancelled"))
            future.exception()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Mark retrieved so an unawaited shared failure is not reported twice.
            future.exception()
            raise
        finally:
            self._pending.pop(pending_key, None)
