from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from ...core.errors import ValidationError
from ...core.normalize import dump_json, parse_json_dict
from ...core.timeline import DUPLICATE_WINDOW_MS, sanitize_messages
from ...core.types import (
    ImportValidation,
    Message,
    Session,
    SessionConfig,
    SessionSummary,
    epoch_ms,
)
from ..interfaces import UnitOfWork
from .models import CharacterRecord, EventRecord, LocationRecord, MessageRecord, SessionRecord

logger = logging.getLogger(__name__)

EXPORT_VERSION = 1

_REQUIRED_FIELDS: tuple[tuple[str, ...], ...] = (
    ("id",),
    ("title",),
    ("config",),
    ("player_character_id", "playerCharacterId"),
    ("current_location_id", "currentLocationId"),
)


def _load_json(text: Optional[str], default):
    if not text:
        return default
    try:
        return json.loads(text)
    except Exception:
        return default


def _field(record: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in record:
            return record[key]
    return None


class SQLAlchemySessionGateway:
    """Session store over the ``nse_*`` tables.

    Timelines are sanitized on both save and load. Every save rewrites the
    session's child rows in a single transaction.
    """

    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        clock: Callable[[], int] | None = None,
        id_factory: Callable[[], str] | None = None,
        duplicate_window_ms: int = DUPLICATE_WINDOW_MS,
    ):
        self._uow_factory = uow_factory
        self._duplicate_window_ms = duplicate_window_ms
        self._clock = clock or epoch_ms
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

    def load_all(self) -> list[SessionSummary]:
        with self._uow_factory() as uow:
            summaries = []
            for row in uow.sessions.list_recent():
                config = SessionConfig.from_dict(parse_json_dict(row.config_json))
                summaries.append(
                    SessionSummary(
                        id=row.id,
                        title=row.title,
                        turn_count=row.turn_count,
                        last_played=row.last_played,
                        universe_name=config.universe_name,
                    )
                )
            return summaries

    def load(self, session_id: str) -> Optional[dict[str, Any]]:
        with self._uow_factory() as uow:
            row = uow.sessions.get(session_id)
            if row is None:
                return None
            characters = uow.characters.list_by_session(session_id)
            locations = uow.locations.list_by_session(session_id)
            messages = uow.messages.list_by_session(session_id)
            events = uow.events.list_by_session(session_id)
            record = self._to_record(row, characters, locations, messages, events)
            if len(record["messages"]) != len(messages):
                logger.info(
                    "Session %s: dropped %d duplicate message(s) on load",
                    session_id,
                    len(messages) - len(record["messages"]),
                )
                uow.messages.replace_all(session_id, (self._message_values(m) for m in record["messages"]))
                uow.commit()
            return record

    def save(self, session: Session) -> None:
        messages = sanitize_messages(session.messages, self._duplicate_window_ms)
        with self._uow_factory() as uow:
            uow.sessions.upsert(session.id, self._session_values(session))
            uow.characters.replace_all(
                session.id,
                (
                    {
                        "character_id": cid,
                        "name": c.name,
                        "description": c.description,
                        "is_player": c.is_player,
                        "location_id": c.location_id,
                        "state": c.state,
                        "stats_json": dump_json(c.stats),
                        "inventory_json": dump_json(c.to_dict()["inventory"]),
                        "relationships_json": dump_json(c.relationships),
                        "avatar_color": c.avatar_color,
                    }
                    for cid, c in session.characters.items()
                ),
            )
            uow.locations.replace_all(
                session.id,
                (
                    {
                        "location_id": lid,
                        "name": loc.name,
                        "description": loc.description,
                        "connected_json": dump_json(loc.connected_location_ids),
                        "background_image": loc.background_image,
                    }
                    for lid, loc in session.locations.items()
                ),
            )
            uow.messages.replace_all(session.id, (self._message_values(m.to_dict()) for m in messages))
            uow.events.replace_all(
                session.id,
                (
                    {
                        "event_id": e.id,
                        "position": idx,
                        "turn": e.turn,
                        "description": e.description,
                        "importance": e.importance,
                    }
                    for idx, e in enumerate(session.events)
                ),
            )
            uow.commit()

    def delete(self, session_id: str) -> None:
        with self._uow_factory() as uow:
            uow.characters.delete_by_session(session_id)
            uow.locations.delete_by_session(session_id)
            uow.messages.delete_by_session(session_id)
            uow.events.delete_by_session(session_id)
            uow.action_options.delete(session_id)
            uow.sessions.delete(session_id)
            uow.commit()

    def export(self, session_id: str) -> Optional[dict[str, Any]]:
        record = self.load(session_id)
        if record is None:
            return None
        exported_at = datetime.fromtimestamp(self._clock() / 1000, tz=timezone.utc)
        return {
            "version": EXPORT_VERSION,
            "exported_at": exported_at.isoformat(),
            "session": record,
        }

    def validate_import(self, record: Any) -> ImportValidation:
        if not isinstance(record, dict):
            return ImportValidation(valid=False, error="Invalid data format")

        version = record.get("version")
        if not isinstance(version, int) or isinstance(version, bool) or version < 1 or version > EXPORT_VERSION:
            return ImportValidation(valid=False, error="version")

        body = _field(record, "session", "game")
        if not isinstance(body, dict):
            return ImportValidation(valid=False, error="Missing session data")

        for aliases in _REQUIRED_FIELDS:
            if not any(key in body for key in aliases):
                return ImportValidation(valid=False, error=f"Missing required field: {aliases[0]}")

        if not isinstance(body.get("characters"), dict):
            return ImportValidation(valid=False, error="Invalid characters data")
        if not isinstance(body.get("locations"), dict):
            return ImportValidation(valid=False, error="Invalid locations data")
        if not isinstance(body.get("messages"), list):
            return ImportValidation(valid=False, error="Invalid messages data")
        return ImportValidation(valid=True)

    def import_record(self, record: dict[str, Any]) -> str:
        """Store an exported record under fresh ids and return the new session id."""
        validation = self.validate_import(record)
        if not validation.valid:
            raise ValidationError("invalid import record", [validation.error or "format"])

        body = _field(record, "session", "game")
        new_id = self._id_factory()
        old_player_id = str(_field(body, "player_character_id", "playerCharacterId") or "")
        new_player_id = f"player_{new_id}"

        def _remap(char_id: str) -> str:
            return new_player_id if char_id == old_player_id else char_id

        characters: dict[str, Any] = {}
        for key, raw in body["characters"].items():
            if not isinstance(raw, dict):
                continue
            new_key = _remap(str(key))
            relationships = raw.get("relationships")
            if isinstance(relationships, dict):
                relationships = {_remap(str(t)): score for t, score in relationships.items()}
            characters[new_key] = {**raw, "id": new_key, "relationships": relationships or {}}
        if new_player_id in characters:
            characters[new_player_id]["is_player"] = True

        messages = []
        for idx, raw in enumerate(body["messages"]):
            if not isinstance(raw, dict):
                continue
            sender = str(_field(raw, "sender_id", "senderId") or "")
            messages.append({**raw, "id": f"msg_{new_id}_{idx}", "sender_id": _remap(sender)})

        events = []
        for idx, raw in enumerate(body.get("events") or []):
            if isinstance(raw, dict):
                events.append({**raw, "id": f"evt_{new_id}_{idx}"})

        session = Session.from_dict(
            {
                **body,
                "id": new_id,
                "player_character_id": new_player_id,
                "characters": characters,
                "messages": messages,
                "events": events,
                "last_played": self._clock(),
            }
        )
        self.save(session)
        logger.info("Imported session %s as %s", body.get("id"), new_id)
        return new_id

    @staticmethod
    def _message_values(message: dict[str, Any]) -> dict[str, Any]:
        return {
            "message_id": message["id"],
            "sender_id": message["sender_id"],
            "text": message["text"],
            "type": message["type"],
            "timestamp": message["timestamp"],
            "page_number": message["page_number"],
            "voice_tone": message["voice_tone"],
        }

    def _session_values(self, session: Session) -> dict[str, Any]:
        return {
            "title": session.title,
            "turn_count": session.turn_count,
            "last_played": session.last_played,
            "config_json": dump_json(session.config.to_dict()),
            "player_character_id": session.player_character_id,
            "current_location_id": session.current_location_id,
            "heavy_context_json": dump_json(session.heavy_context.to_dict()) if session.heavy_context else None,
            "grid_snapshots_json": dump_json([g.to_dict() for g in session.grid_snapshots]),
            "theme_colors_json": dump_json(session.theme_colors) if session.theme_colors else None,
            "viewed_cards_json": dump_json(session.viewed_cards),
            "universe_context": session.universe_context,
        }

    def _to_record(
        self,
        row: SessionRecord,
        characters: list[CharacterRecord],
        locations: list[LocationRecord],
        messages: list[MessageRecord],
        events: list[EventRecord],
    ) -> dict[str, Any]:
        stored = [
            Message(
                id=m.message_id,
                sender_id=m.sender_id,
                text=m.text,
                type=m.type,
                timestamp=m.timestamp,
                page_number=m.page_number,
                voice_tone=m.voice_tone,
            )
            for m in messages
        ]
        timeline = sanitize_messages(stored, self._duplicate_window_ms)
        return {
            "id": row.id,
            "title": row.title,
            "turn_count": row.turn_count,
            "last_played": row.last_played,
            "config": parse_json_dict(row.config_json),
            "player_character_id": row.player_character_id,
            "current_location_id": row.current_location_id,
            "characters": {
                c.character_id: {
                    "id": c.character_id,
                    "name": c.name,
                    "description": c.description,
                    "is_player": c.is_player,
                    "location_id": c.location_id,
                    "state": c.state,
                    "stats": parse_json_dict(c.stats_json),
                    "inventory": _load_json(c.inventory_json, []),
                    "relationships": parse_json_dict(c.relationships_json),
                    "avatar_color": c.avatar_color,
                }
                for c in characters
            },
            "locations": {
                loc.location_id: {
                    "id": loc.location_id,
                    "name": loc.name,
                    "description": loc.description,
                    "connected_location_ids": _load_json(loc.connected_json, []),
                    "background_image": loc.background_image,
                }
                for loc in locations
            },
            "messages": [m.to_dict() for m in timeline],
            "events": [
                {"id": e.event_id, "turn": e.turn, "description": e.description, "importance": e.importance}
                for e in events
            ],
            "heavy_context": _load_json(row.heavy_context_json, None),
            "grid_snapshots": _load_json(row.grid_snapshots_json, []),
            "theme_colors": _load_json(row.theme_colors_json, None),
            "viewed_cards": _load_json(row.viewed_cards_json, []),
            "universe_context": row.universe_context,
        }


class SQLAlchemyActionOptionsStore:
    def __init__(self, uow_factory: Callable[[], UnitOfWork]):
        self._uow_factory = uow_factory

    def get(self, session_id: str) -> Optional[str]:
        with self._uow_factory() as uow:
            row = uow.action_options.get(session_id)
            return row.payload_json if row is not None else None

    def put(self, session_id: str, payload: str) -> None:
        with self._uow_factory() as uow:
            uow.action_options.put(session_id, payload)
            uow.commit()

    def delete(self, session_id: str) -> None:
        with self._uow_factory() as uow:
            uow.action_options.delete(session_id)
            uow.commit()
