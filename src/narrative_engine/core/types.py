from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, ClassVar, Optional, Union

NARRATION = "narration"
DIALOGUE = "dialogue"
SYSTEM = "system"
MESSAGE_TYPES = (NARRATION, DIALOGUE, SYSTEM)

GM_SENDER_ID = "GM"
SYSTEM_SENDER_ID = "SYSTEM"

CHARACTER_STATES = ("idle", "talking", "fighting", "unconscious", "dead")
SUPPORTED_LANGUAGES = ("en", "pt", "es", "fr", "ru", "zh")


def epoch_ms() -> int:
    return int(time.time() * 1000)


def _int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass
class Item:
    id: str
    name: str
    category: str = "misc"
    description: str = ""
    base_value: int = 0
    quantity: int = 1
    stackable: bool = False
    consumable: bool = False
    equipped: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "description": self.description,
            "base_value": self.base_value,
            "quantity": self.quantity,
            "stackable": self.stackable,
            "consumable": self.consumable,
            "equipped": self.equipped,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Item":
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            category=str(data.get("category") or "misc"),
            description=str(data.get("description") or ""),
            base_value=_int(data.get("base_value", data.get("baseValue")), 0),
            quantity=max(1, _int(data.get("quantity"), 1)),
            stackable=bool(data.get("stackable", data.get("isStackable", False))),
            consumable=bool(data.get("consumable", False)),
            equipped=bool(data.get("equipped", data.get("isEquipped", False))),
        )


# Persisted inventories may still hold bare item names until migrated.
InventoryEntry = Union[Item, str]


@dataclass
class Character:
    id: str
    name: str
    description: str = ""
    is_player: bool = False
    location_id: str = ""
    state: str = "idle"
    stats: dict[str, int] = field(default_factory=dict)
    inventory: list[InventoryEntry] = field(default_factory=list)
    relationships: dict[str, int] = field(default_factory=dict)
    avatar_color: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_player": self.is_player,
            "location_id": self.location_id,
            "state": self.state,
            "stats": dict(self.stats),
            "inventory": [e.to_dict() if isinstance(e, Item) else e for e in self.inventory],
            "relationships": dict(self.relationships),
            "avatar_color": self.avatar_color,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Character":
        inventory: list[InventoryEntry] = []
        for entry in data.get("inventory") or []:
            if isinstance(entry, str):
                inventory.append(entry)
            elif isinstance(entry, dict):
                inventory.append(Item.from_dict(entry))
        stats = data.get("stats") or {}
        if isinstance(stats, dict) and "maxHp" in stats:
            stats = {("max_hp" if k == "maxHp" else k): v for k, v in stats.items()}
        relationships = data.get("relationships") or {}
        state = str(data.get("state") or "idle")
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            is_player=bool(data.get("is_player", data.get("isPlayer", False))),
            location_id=str(data.get("location_id", data.get("locationId")) or ""),
            state=state if state in CHARACTER_STATES else "idle",
            stats={str(k): _int(v) for k, v in stats.items()} if isinstance(stats, dict) else {},
            inventory=inventory,
            relationships=(
                {str(k): _int(v) for k, v in relationships.items()}
                if isinstance(relationships, dict)
                else {}
            ),
            avatar_color=data.get("avatar_color", data.get("avatarColor")),
        )


@dataclass
class Location:
    id: str
    name: str
    description: str = ""
    connected_location_ids: list[str] = field(default_factory=list)
    background_image: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "connected_location_ids": list(self.connected_location_ids),
            "background_image": self.background_image,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Location":
        connected = data.get("connected_location_ids", data.get("connectedLocationIds")) or []
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            connected_location_ids=[str(c) for c in connected],
            background_image=data.get("background_image", data.get("backgroundImage")),
        )


@dataclass
class GameEvent:
    id: str
    turn: int
    description: str
    importance: str = "medium"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "turn": self.turn,
            "description": self.description,
            "importance": self.importance,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GameEvent":
        return cls(
            id=str(data.get("id") or ""),
            turn=_int(data.get("turn"), 0),
            description=str(data.get("description") or ""),
            importance=str(data.get("importance") or "medium"),
        )


@dataclass(frozen=True)
class Message:
    id: str
    sender_id: str
    text: str
    type: str
    timestamp: int
    page_number: Optional[int] = None
    voice_tone: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sender_id": self.sender_id,
            "text": self.text,
            "type": self.type,
            "timestamp": self.timestamp,
            "page_number": self.page_number,
            "voice_tone": self.voice_tone,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        page = data.get("page_number", data.get("pageNumber"))
        msg_type = str(data.get("type") or NARRATION).lower()
        return cls(
            id=str(data.get("id") or ""),
            sender_id=str(data.get("sender_id", data.get("senderId")) or GM_SENDER_ID),
            text=str(data.get("text") or ""),
            type=msg_type if msg_type in MESSAGE_TYPES else NARRATION,
            timestamp=_int(data.get("timestamp"), 0),
            page_number=_int(page) if page is not None else None,
            voice_tone=data.get("voice_tone", data.get("voiceTone")),
        )


@dataclass
class HeavyContext:
    main_mission: Optional[str] = None
    current_mission: Optional[str] = None
    active_problems: list[str] = field(default_factory=list)
    current_concerns: list[str] = field(default_factory=list)
    important_notes: list[str] = field(default_factory=list)
    last_updated: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "main_mission": self.main_mission,
            "current_mission": self.current_mission,
            "active_problems": list(self.active_problems),
            "current_concerns": list(self.current_concerns),
            "important_notes": list(self.important_notes),
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HeavyContext":
        def _list(*keys: str) -> list[str]:
            for key in keys:
                raw = data.get(key)
                if isinstance(raw, list):
                    return [str(v) for v in raw if v]
            return []

        last_updated = data.get("last_updated", data.get("lastUpdated"))
        return cls(
            main_mission=data.get("main_mission", data.get("mainMission")),
            current_mission=data.get("current_mission", data.get("currentMission")),
            active_problems=_list("active_problems", "activeProblems"),
            current_concerns=_list("current_concerns", "currentConcerns"),
            important_notes=_list("important_notes", "importantNotes"),
            last_updated=_int(last_updated) if last_updated is not None else None,
        )


@dataclass(frozen=True)
class CharacterPosition:
    character_id: str
    name: str
    is_player: bool
    x: int
    y: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "character_id": self.character_id,
            "name": self.name,
            "is_player": self.is_player,
            "x": self.x,
            "y": self.y,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CharacterPosition":
        position = data.get("position") if isinstance(data.get("position"), dict) else data
        return cls(
            character_id=str(data.get("character_id", data.get("characterId")) or ""),
            name=str(data.get("name", data.get("characterName")) or ""),
            is_player=bool(data.get("is_player", data.get("isPlayer", False))),
            x=_int(position.get("x"), 0),
            y=_int(position.get("y"), 0),
        )


@dataclass(frozen=True)
class GridSnapshot:
    id: str
    message_number: int
    timestamp: int
    location_id: str
    location_name: str
    positions: tuple[CharacterPosition, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "message_number": self.message_number,
            "timestamp": self.timestamp,
            "location_id": self.location_id,
            "location_name": self.location_name,
            "positions": [p.to_dict() for p in self.positions],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GridSnapshot":
        raw_positions = data.get("positions", data.get("characterPositions")) or []
        return cls(
            id=str(data.get("id") or ""),
            message_number=_int(data.get("message_number", data.get("atMessageNumber")), 0),
            timestamp=_int(data.get("timestamp"), 0),
            location_id=str(data.get("location_id", data.get("locationId")) or ""),
            location_name=str(data.get("location_name", data.get("locationName")) or ""),
            positions=tuple(CharacterPosition.from_dict(p) for p in raw_positions if isinstance(p, dict)),
        )


@dataclass
class SessionConfig:
    universe_name: str
    universe_type: str = "original"
    language: str = "en"
    narrative_style_mode: str = "auto"
    custom_narrative_style: Optional[str] = None
    genre: Optional[str] = None
    visual_style: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "universe_name": self.universe_name,
            "universe_type": self.universe_type,
            "language": self.language,
            "narrative_style_mode": self.narrative_style_mode,
            "custom_narrative_style": self.custom_narrative_style,
            "genre": self.genre,
            "visual_style": self.visual_style,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionConfig":
        language = str(data.get("language") or "en")
        return cls(
            universe_name=str(data.get("universe_name", data.get("universeName")) or ""),
            universe_type=str(data.get("universe_type", data.get("universeType")) or "original"),
            language=language if language in SUPPORTED_LANGUAGES else "en",
            narrative_style_mode=str(
                data.get("narrative_style_mode", data.get("narrativeStyleMode")) or "auto"
            ),
            custom_narrative_style=data.get("custom_narrative_style", data.get("customNarrativeStyle")),
            genre=data.get("genre"),
            visual_style=data.get("visual_style", data.get("visualStyle")),
        )


@dataclass
class Session:
    id: str
    title: str
    config: SessionConfig
    player_character_id: str
    current_location_id: str
    turn_count: int = 0
    last_played: int = 0
    characters: dict[str, Character] = field(default_factory=dict)
    locations: dict[str, Location] = field(default_factory=dict)
    messages: list[Message] = field(default_factory=list)
    events: list[GameEvent] = field(default_factory=list)
    heavy_context: Optional[HeavyContext] = None
    grid_snapshots: list[GridSnapshot] = field(default_factory=list)
    theme_colors: Optional[dict[str, str]] = None
    viewed_cards: list[str] = field(default_factory=list)
    universe_context: Optional[str] = None

    @property
    def player(self) -> Optional[Character]:
        return self.characters.get(self.player_character_id)

    @property
    def current_location(self) -> Optional[Location]:
        return self.locations.get(self.current_location_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "turn_count": self.turn_count,
            "last_played": self.last_played,
            "config": self.config.to_dict(),
            "player_character_id": self.player_character_id,
            "current_location_id": self.current_location_id,
            "characters": {cid: c.to_dict() for cid, c in self.characters.items()},
            "locations": {lid: loc.to_dict() for lid, loc in self.locations.items()},
            "messages": [m.to_dict() for m in self.messages],
            "events": [e.to_dict() for e in self.events],
            "heavy_context": self.heavy_context.to_dict() if self.heavy_context else None,
            "grid_snapshots": [g.to_dict() for g in self.grid_snapshots],
            "theme_colors": dict(self.theme_colors) if self.theme_colors else None,
            "viewed_cards": list(self.viewed_cards),
            "universe_context": self.universe_context,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        characters = data.get("characters") or {}
        locations = data.get("locations") or {}
        heavy = data.get("heavy_context", data.get("heavyContext"))
        theme = data.get("theme_colors", data.get("themeColors"))
        return cls(
            id=str(data.get("id") or ""),
            title=str(data.get("title") or ""),
            turn_count=_int(data.get("turn_count", data.get("turnCount")), 0),
            last_played=_int(data.get("last_played", data.get("lastPlayed")), 0),
            config=SessionConfig.from_dict(data.get("config") or {}),
            player_character_id=str(
                data.get("player_character_id", data.get("playerCharacterId")) or ""
            ),
            current_location_id=str(
                data.get("current_location_id", data.get("currentLocationId")) or ""
            ),
            characters={
                str(cid): Character.from_dict({"id": cid, **c})
                for cid, c in characters.items()
                if isinstance(c, dict)
            },
            locations={
                str(lid): Location.from_dict({"id": lid, **loc})
                for lid, loc in locations.items()
                if isinstance(loc, dict)
            },
            messages=[Message.from_dict(m) for m in data.get("messages") or [] if isinstance(m, dict)],
            events=[GameEvent.from_dict(e) for e in data.get("events") or [] if isinstance(e, dict)],
            heavy_context=HeavyContext.from_dict(heavy) if isinstance(heavy, dict) else None,
            grid_snapshots=[
                GridSnapshot.from_dict(g)
                for g in data.get("grid_snapshots", data.get("gridSnapshots")) or []
                if isinstance(g, dict)
            ],
            theme_colors={str(k): str(v) for k, v in theme.items()} if isinstance(theme, dict) else None,
            viewed_cards=[str(v) for v in data.get("viewed_cards", data.get("viewedCards")) or []],
            universe_context=data.get("universe_context", data.get("universeContext")),
        )


@dataclass
class SessionSummary:
    id: str
    title: str
    turn_count: int
    last_played: int
    universe_name: str


# ---------------------------------------------------------------------------
# Collaborator results, parsed at the boundary by ``normalize``
# ---------------------------------------------------------------------------


@dataclass
class ClassifiedInput:
    type: str
    processed_text: str
    was_processed: bool = False


@dataclass
class NarrationMessage:
    kind: ClassVar[str] = NARRATION
    text: str
    voice_tone: Optional[str] = None


@dataclass
class SystemMessage:
    kind: ClassVar[str] = SYSTEM
    text: str
    voice_tone: Optional[str] = None


@dataclass
class DialogueMessage:
    kind: ClassVar[str] = DIALOGUE
    character_name: str
    dialogue: str
    voice_tone: Optional[str] = None
    new_character: Optional[Character] = None


ResolvedMessage = Union[NarrationMessage, SystemMessage, DialogueMessage]


@dataclass
class StateUpdates:
    new_characters: list[Character] = field(default_factory=list)
    new_locations: list[Location] = field(default_factory=list)
    updated_characters: list[dict[str, Any]] = field(default_factory=list)
    location_change: Optional[str] = None
    event_log: Optional[str] = None


@dataclass
class TurnResolution:
    messages: list[ResolvedMessage] = field(default_factory=list)
    state_updates: StateUpdates = field(default_factory=StateUpdates)


@dataclass
class DigestUpdate:
    should_update: bool
    digest: Optional[HeavyContext] = None


@dataclass
class SpatialUpdate:
    updated: bool
    snapshot: Optional[GridSnapshot] = None


@dataclass
class ActionOption:
    text: str
    good_chance: int = 0
    bad_chance: int = 0
    good_hint: str = ""
    bad_hint: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "good_chance": self.good_chance,
            "bad_chance": self.bad_chance,
            "good_hint": self.good_hint,
            "bad_hint": self.bad_hint,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ActionOption":
        return cls(
            text=str(data.get("text") or ""),
            good_chance=_int(data.get("good_chance", data.get("goodChance")), 0),
            bad_chance=_int(data.get("bad_chance", data.get("badChance")), 0),
            good_hint=str(data.get("good_hint", data.get("goodHint")) or ""),
            bad_hint=str(data.get("bad_hint", data.get("badHint")) or ""),
        )


@dataclass
class CachedActionOptions:
    cache_key: str
    last_message_id: str
    options: list[ActionOption] = field(default_factory=list)


@dataclass
class FateResult:
    type: str
    hint: Optional[str] = None


# ---------------------------------------------------------------------------
# Engine results
# ---------------------------------------------------------------------------


@dataclass
class MigrationResult:
    migrated: bool
    changes: list[str]
    session: Session


@dataclass
class ImportValidation:
    valid: bool
    error: Optional[str] = None


@dataclass
class ImportResult:
    success: bool
    session_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class TurnOutcome:
    status: str
    reason: Optional[str] = None
    preserved_input: Optional[str] = None
    appended_message_ids: list[str] = field(default_factory=list)
    blocked_speakers: list[str] = field(default_factory=list)
