from __future__ import annotations

import logging
import re
import unicodedata
from typing import Iterable, Mapping, Optional

from .types import Character, DialogueMessage, ResolvedMessage

logger = logging.getLogger(__name__)

# Speaker labels that always refer to the player, across supported languages.
BASE_FORBIDDEN_SPEAKERS = frozenset(
    {
        "player",
        "the player",
        "you",
        "yourself",
        "jogador",
        "jogadora",
        "o jogador",
        "a jogadora",
        "tu",
        "voce",
        "usted",
        "ustedes",
        "jugador",
        "jugadora",
        "el jugador",
        "la jugadora",
        "joueur",
        "joueuse",
        "le joueur",
        "la joueuse",
        "vous",
        "toi",
        "игрок",
        "ты",
        "вы",
        "玩家",
        "你",
    }
)

_NON_WORD_RE = re.compile(r"[^\w\s]|_", re.UNICODE)
_WS_RE = re.compile(r"\s+")


def strip_diacritics(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_speaker_name(value: Optional[str]) -> str:
    """Lowercase, diacritic-free, punctuation-free form of a speaker name."""
    if not value:
        return ""
    text = _NON_WORD_RE.sub(" ", strip_diacritics(value)).lower()
    return _WS_RE.sub(" ", text).strip()


def find_character_by_name(characters: Mapping[str, Character], name: str) -> Character | None:
    """Fuzzy lookup: exact, normalized, substring, then shared significant word."""
    if not name:
        return None
    candidates = list(characters.values())

    lowered = name.lower()
    for character in candidates:
        if character.name.lower() == lowered:
            return character

    wanted = normalize_speaker_name(name)
    if not wanted:
        return None
    for character in candidates:
        if normalize_speaker_name(character.name) == wanted:
            return character

    for character in candidates:
        normalized = normalize_speaker_name(character.name)
        if normalized and (wanted in normalized or normalized in wanted):
            return character

    wanted_words = [w for w in wanted.split() if len(w) > 2]
    if not wanted_words:
        return None
    for character in candidates:
        words = [w for w in normalize_speaker_name(character.name).split() if len(w) > 2]
        if any(ww == cw or cw in ww or ww in cw for ww in wanted_words for cw in words):
            return character
    return None


class PlayerAgencyFilter:
    """Rejects generated dialogue attributed to the player character."""

    def __init__(self, player_name: Optional[str], extra_forbidden: Iterable[str] = ()):
        self.player_name = normalize_speaker_name(player_name)
        tokens = self.player_name.split() if self.player_name else []
        forbidden = {normalize_speaker_name(v) for v in BASE_FORBIDDEN_SPEAKERS}
        forbidden.update(normalize_speaker_name(v) for v in extra_forbidden)
        if self.player_name:
            forbidden.add(self.player_name)
        forbidden.update(tokens)
        forbidden.discard("")
        self.forbidden = frozenset(forbidden)
        self.significant_tokens = tuple(t for t in tokens if len(t) > 2)

    def is_forbidden(self, speaker: Optional[str]) -> bool:
        normalized = normalize_speaker_name(speaker)
        if not normalized:
            return False
        if normalized in self.forbidden:
            return True
        if self.player_name and (normalized in self.player_name or self.player_name in normalized):
            return True
        return any(token in normalized or normalized in token for token in self.significant_tokens)

    def apply(self, messages: list[ResolvedMessage]) -> tuple[list[ResolvedMessage], list[str]]:
        kept: list[ResolvedMessage] = []
        blocked: list[str] = []
        for message in messages:
            if isinstance(message, DialogueMessage) and self.is_forbidden(message.character_name):
                logger.warning("Blocked generated dialogue attributed to the player: %r", message.character_name)
                blocked.append(message.character_name)
                continue
            kept.append(message)
        return kept, blocked
