from __future__ import annotations

import ast
import json
import re
from typing import Any, Mapping, Optional

from .errors import MalformedResponseError
from .inventory import normalize_inventory
from .types import (
    Character,
    CharacterPosition,
    ClassifiedInput,
    DialogueMessage,
    DigestUpdate,
    GridSnapshot,
    HeavyContext,
    Location,
    NarrationMessage,
    ActionOption,
    ResolvedMessage,
    SpatialUpdate,
    StateUpdates,
    SystemMessage,
    TurnResolution,
)

INPUT_TYPES = ("action", "speech")
SPEECH_ALIASES = {"dialogue": "speech", "dialog": "speech", "talk": "speech"}
NARRATOR_NAMES = ("narrator", "gm", "game master")


def parse_json_dict(text: str | None) -> dict[str, Any]:
    if not text:
        return {}
    try:
        data = json.loads(text)
    except Exception:
        return {}
    return data if isinstance(data, dict) else {}


def dump_json(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"))


def extract_json(text: str) -> str | None:
    text = text.strip()
    if "```" in text:
        text = re.sub(r"```\w*", "", text).strip()
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return text[start : end + 1]


def _coerce_python_dict(text: str) -> dict[str, Any] | None:
    try:
        fixed = re.sub(r"\bnull\b", "None", text)
        fixed = re.sub(r"\btrue\b", "True", fixed)
        fixed = re.sub(r"\bfalse\b", "False", fixed)
        result = ast.literal_eval(fixed)
        if isinstance(result, dict):
            return result
    except Exception:
        return None
    return None


def parse_json_lenient(text: str) -> dict[str, Any]:
    try:
        result = json.loads(text)
        return result if isinstance(result, dict) else {}
    except json.JSONDecodeError as exc:
        coerced = _coerce_python_dict(text)
        if coerced is not None:
            return coerced
        if "Extra data" not in str(exc):
            raise
        merged: dict[str, Any] = {}
        decoder = json.JSONDecoder()
        idx = 0
        length = len(text)
        while idx < length:
            while idx < length and text[idx] in " \t\r\n":
                idx += 1
            if idx >= length:
                break
            try:
                obj, end_idx = decoder.raw_decode(text, idx)
                if isinstance(obj, dict):
                    merged.update(obj)
                idx = end_idx
            except (json.JSONDecodeError, ValueError):
                break
        if merged:
            return merged
        raise


def coerce_payload(raw: Any) -> dict[str, Any]:
    """Turn a collaborator payload (mapping, JSON text, fenced JSON) into a dict.

    Raises ``MalformedResponseError`` when nothing usable can be recovered.
    """
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if not isinstance(raw, str) or not raw.strip():
        raise MalformedResponseError("empty collaborator payload")
    json_text = extract_json(raw)
    if json_text is None:
        raise MalformedResponseError("no JSON object in collaborator payload")
    try:
        return parse_json_lenient(json_text)
    except (json.JSONDecodeError, ValueError) as exc:
        raise MalformedResponseError(f"invalid JSON: {exc}", cause=exc) from exc


def _pick(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _as_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return int(value)
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def transform_stats(raw: Any) -> dict[str, int]:
    """Accept ``{key: value}`` maps or ``[{key, value}]`` lists."""
    stats: dict[str, int] = {}
    if isinstance(raw, list):
        for entry in raw:
            if isinstance(entry, Mapping) and entry.get("key") and entry.get("value") is not None:
                stats[str(entry["key"])] = _as_int(entry["value"])
    elif isinstance(raw, Mapping):
        for key, value in raw.items():
            if value is not None:
                stats[str(key)] = _as_int(value)
    if "maxHp" in stats and "max_hp" not in stats:
        stats["max_hp"] = stats.pop("maxHp")
    stats.pop("maxHp", None)
    return stats


def transform_relationships(raw: Any) -> dict[str, int]:
    """Accept ``{target: score}`` maps or ``[{targetId, score}]`` lists."""
    relationships: dict[str, int] = {}
    if isinstance(raw, list):
        for entry in raw:
            if not isinstance(entry, Mapping):
                continue
            target = _pick(entry, "target_id", "targetId")
            if target and entry.get("score") is not None:
                relationships[str(target)] = _as_int(entry["score"])
    elif isinstance(raw, Mapping):
        for key, value in raw.items():
            if value is not None:
                relationships[str(key)] = _as_int(value)
    return relationships


def parse_character(raw: Mapping[str, Any]) -> Character | None:
    name = str(_pick(raw, "name", default="") or "").strip()
    if not name:
        return None
    char_id = str(_pick(raw, "id", default="") or "").strip()
    return Character(
        id=char_id,
        name=name,
        description=str(_pick(raw, "description", default="") or ""),
        is_player=bool(_pick(raw, "is_player", "isPlayer", default=False)),
        location_id=str(_pick(raw, "location_id", "locationId", default="") or ""),
        state=str(_pick(raw, "state", default="idle") or "idle"),
        stats=transform_stats(raw.get("stats")),
        inventory=list(normalize_inventory(raw.get("inventory"))),
        relationships=transform_relationships(raw.get("relationships")),
        avatar_color=_pick(raw, "avatar_color", "avatarColor"),
    )


def parse_character_update(raw: Mapping[str, Any]) -> dict[str, Any] | None:
    """Reduce an update payload to the fields the engine is allowed to merge."""
    char_id = str(_pick(raw, "id", default="") or "").strip()
    if not char_id:
        return None
    update: dict[str, Any] = {"id": char_id}
    for key, aliases in (
        ("name", ("name",)),
        ("description", ("description",)),
        ("location_id", ("location_id", "locationId")),
        ("state", ("state",)),
        ("avatar_color", ("avatar_color", "avatarColor")),
    ):
        value = _pick(raw, *aliases)
        if value is not None:
            update[key] = str(value)
    if raw.get("stats") is not None:
        update["stats"] = transform_stats(raw.get("stats"))
    if raw.get("relationships") is not None:
        update["relationships"] = transform_relationships(raw.get("relationships"))
    if raw.get("inventory") is not None:
        update["inventory"] = normalize_inventory(raw.get("inventory"))
    return update


def parse_location(raw: Mapping[str, Any]) -> Location | None:
    loc_id = str(_pick(raw, "id", default="") or "").strip()
    name = str(_pick(raw, "name", default="") or "").strip()
    if not loc_id or not name:
        return None
    connected = _pick(raw, "connected_location_ids", "connectedLocationIds", default=[])
    return Location(
        id=loc_id,
        name=name,
        description=str(_pick(raw, "description", default="") or ""),
        connected_location_ids=[str(c) for c in connected] if isinstance(connected, list) else [],
        background_image=_pick(raw, "background_image", "backgroundImage"),
    )


def parse_resolved_message(raw: Any) -> ResolvedMessage | None:
    if not isinstance(raw, Mapping):
        return None
    msg_type = str(raw.get("type") or "narration").strip().lower()
    tone = _pick(raw, "voice_tone", "voiceTone")

    # Older payloads used senderName/text for every message kind.
    sender = _pick(raw, "sender_name", "senderName")
    if sender is not None and _pick(raw, "character_name", "characterName") is None:
        text = str(raw.get("text") or "")
        if msg_type == "dialogue" and str(sender).strip().lower() not in NARRATOR_NAMES + ("system",):
            return DialogueMessage(character_name=str(sender), dialogue=text, voice_tone=tone)
        if msg_type == "system" or str(sender).strip().upper() == "SYSTEM":
            return SystemMessage(text=text, voice_tone=tone)
        return NarrationMessage(text=text, voice_tone=tone)

    if msg_type == "dialogue":
        name = str(_pick(raw, "character_name", "characterName", default="") or "").strip()
        dialogue = str(_pick(raw, "dialogue", "text", default="") or "")
        if not name:
            return NarrationMessage(text=dialogue, voice_tone=tone) if dialogue else None
        new_character = None
        new_raw = _pick(raw, "new_character", "newCharacterData", "newCharacter")
        if isinstance(new_raw, Mapping):
            new_character = parse_character(new_raw)
        return DialogueMessage(
            character_name=name,
            dialogue=dialogue,
            voice_tone=tone,
            new_character=new_character,
        )
    if msg_type == "system":
        return SystemMessage(text=str(raw.get("text") or ""), voice_tone=tone)
    return NarrationMessage(text=str(raw.get("text") or ""), voice_tone=tone)


def parse_turn_resolution(raw: Any) -> TurnResolution:
    """Parse a resolver payload into tagged messages and state updates.

    Dialogue messages carrying a new-character payload have that character
    lifted into ``state_updates.new_characters`` unless a character with the
    same id is already listed.
    """
    data = coerce_payload(raw)
    raw_messages = data.get("messages")
    if raw_messages is not None and not isinstance(raw_messages, list):
        raise MalformedResponseError("messages must be a list")

    messages: list[ResolvedMessage] = []
    for entry in raw_messages or []:
        parsed = parse_resolved_message(entry)
        if parsed is not None:
            messages.append(parsed)

    raw_updates = _pick(data, "state_updates", "stateUpdates", default={})
    if not isinstance(raw_updates, Mapping):
        raw_updates = {}

    new_characters: list[Character] = []
    for entry in _pick(raw_updates, "new_characters", "newCharacters", default=[]) or []:
        if isinstance(entry, Mapping):
            character = parse_character(entry)
            if character is not None:
                new_characters.append(character)

    known_ids = {c.id for c in new_characters if c.id}
    for message in messages:
        if isinstance(message, DialogueMessage) and message.new_character is not None:
            lifted = message.new_character
            if lifted.id and lifted.id not in known_ids:
                new_characters.append(lifted)
                known_ids.add(lifted.id)

    new_locations: list[Location] = []
    for entry in _pick(raw_updates, "new_locations", "newLocations", default=[]) or []:
        if isinstance(entry, Mapping):
            location = parse_location(entry)
            if location is not None:
                new_locations.append(location)

    updated_characters: list[dict[str, Any]] = []
    for entry in _pick(raw_updates, "updated_characters", "updatedCharacters", default=[]) or []:
        if isinstance(entry, Mapping):
            update = parse_character_update(entry)
            if update is not None:
                updated_characters.append(update)

    location_change = _pick(raw_updates, "location_change", "locationChange")
    event_log = _pick(raw_updates, "event_log", "eventLog")

    return TurnResolution(
        messages=messages,
        state_updates=StateUpdates(
            new_characters=new_characters,
            new_locations=new_locations,
            updated_characters=updated_characters,
            location_change=str(location_change) if location_change else None,
            event_log=str(event_log).strip() if event_log and str(event_log).strip() else None,
        ),
    )


def parse_classification(raw: Any, raw_input: str) -> ClassifiedInput:
    """Parse a classifier payload; anything unusable means a plain action.

    Only speech may be rewritten. Action text always passes through as typed.
    """
    try:
        data = coerce_payload(raw)
    except MalformedResponseError:
        return ClassifiedInput(type="action", processed_text=raw_input, was_processed=False)
    input_type = str(data.get("type") or "").strip().lower()
    input_type = SPEECH_ALIASES.get(input_type, input_type)
    if input_type not in INPUT_TYPES:
        input_type = "action"
    should_process = bool(_pick(data, "should_process", "shouldProcess", default=False))
    processed = str(_pick(data, "processed_text", "processedText", default="") or "").strip()
    if input_type == "action" or not should_process or not processed:
        return ClassifiedInput(type=input_type, processed_text=raw_input, was_processed=False)
    return ClassifiedInput(type=input_type, processed_text=processed, was_processed=True)


def sanitize_list(values: Any, limit: int) -> list[str]:
    """Trim, drop blanks, dedupe case-insensitively and cap at ``limit``."""
    if not isinstance(values, list):
        return []
    seen: set[str] = set()
    out: list[str] = []
    for value in values:
        if value is None:
            continue
        text = str(value).strip()
        if not text or text.lower() in seen:
            continue
        seen.add(text.lower())
        out.append(text)
        if len(out) >= limit:
            break
    return out


def parse_digest_update(
    raw: Any,
    previous: Optional[HeavyContext],
    now_ms: int,
    list_limit: int = 5,
) -> DigestUpdate:
    """Parse a memory digest payload merged over the previous digest.

    Missions absent from the payload keep their previous value; lists absent
    from the payload keep the previous list.
    """
    data = coerce_payload(raw)
    should_update = bool(_pick(data, "should_update", "shouldUpdate", default=False))
    if not should_update:
        return DigestUpdate(should_update=False)

    body = _pick(data, "digest", "newContext", "heavy_context", "heavyContext", default={})
    if not isinstance(body, Mapping):
        body = {}
    base = previous or HeavyContext()

    def _mission(*keys: str) -> Optional[str]:
        value = _pick(body, *keys)
        if value is None:
            return getattr(base, keys[0])
        text = str(value).strip()
        return text or None

    def _list(attr: str, *keys: str) -> list[str]:
        value = _pick(body, attr, *keys)
        if value is None:
            return list(getattr(base, attr))[:list_limit]
        return sanitize_list(value, list_limit)

    digest = HeavyContext(
        main_mission=_mission("main_mission", "mainMission"),
        current_mission=_mission("current_mission", "currentMission"),
        active_problems=_list("active_problems", "activeProblems"),
        current_concerns=_list("current_concerns", "currentConcerns"),
        important_notes=_list("important_notes", "importantNotes"),
        last_updated=now_ms,
    )
    return DigestUpdate(should_update=True, digest=digest)


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def parse_positions(raw: Any, grid_size: int) -> list[CharacterPosition]:
    positions: list[CharacterPosition] = []
    if not isinstance(raw, list):
        return positions
    for entry in raw:
        if not isinstance(entry, Mapping):
            continue
        coords = entry.get("position") if isinstance(entry.get("position"), Mapping) else entry
        char_id = _pick(entry, "character_id", "characterId")
        if not char_id:
            continue
        positions.append(
            CharacterPosition(
                character_id=str(char_id),
                name=str(_pick(entry, "name", "character_name", "characterName", default="") or ""),
                is_player=bool(_pick(entry, "is_player", "isPlayer", default=False)),
                x=_clamp(_as_int(coords.get("x")), 0, grid_size - 1),
                y=_clamp(_as_int(coords.get("y")), 0, grid_size - 1),
            )
        )
    return positions


def parse_spatial_update(
    raw: Any,
    *,
    snapshot_id: str,
    message_number: int,
    now_ms: int,
    location_id: str,
    location_name: str,
    grid_size: int = 10,
) -> SpatialUpdate:
    data = coerce_payload(raw)
    updated = bool(_pick(data, "updated", "shouldUpdate", "should_update", default=False))
    if not updated:
        return SpatialUpdate(updated=False)
    positions = parse_positions(_pick(data, "positions", "characterPositions", default=[]), grid_size)
    if not positions:
        return SpatialUpdate(updated=False)
    snapshot = GridSnapshot(
        id=snapshot_id,
        message_number=message_number,
        timestamp=now_ms,
        location_id=location_id,
        location_name=location_name,
        positions=tuple(positions),
    )
    return SpatialUpdate(updated=True, snapshot=snapshot)


def parse_action_options(raw: Any, max_options: int = 5, max_chance: int = 50) -> list[ActionOption]:
    if isinstance(raw, list):
        entries = raw
    else:
        data = coerce_payload(raw)
        entries = _pick(data, "options", "actionOptions", default=[])
    if not isinstance(entries, list):
        raise MalformedResponseError("options must be a list")
    options: list[ActionOption] = []
    for entry in entries:
        if isinstance(entry, str):
            entry = {"text": entry}
        if not isinstance(entry, Mapping):
            continue
        option = ActionOption.from_dict(dict(entry))
        if not option.text.strip():
            continue
        option.text = option.text.strip()
        option.good_chance = _clamp(option.good_chance, 0, max_chance)
        option.bad_chance = _clamp(option.bad_chance, 0, max_chance)
        options.append(option)
        if len(options) >= max_options:
            break
    return options


_HEX_RE = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$")


def parse_theme_colors(raw: Any) -> dict[str, str]:
    data = coerce_payload(raw)
    body = _pick(data, "colors", "themeColors", "theme_colors", default=data)
    if not isinstance(body, Mapping):
        raise MalformedResponseError("colors must be a mapping")
    colors = {str(k): str(v).strip() for k, v in body.items() if isinstance(v, str) and _HEX_RE.match(v.strip())}
    if not colors:
        raise MalformedResponseError("no valid colours in payload")
    return colors
