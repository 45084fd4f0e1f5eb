from __future__ import annotations

import copy
import logging
from typing import Any

from .economy import DEFAULT_HP, DEFAULT_MAX_HP, DEFAULT_NPC_GOLD, get_starting_gold
from .errors import ValidationError
from .inventory import is_legacy_inventory, normalize_inventory
from .types import Character, MigrationResult, Session

logger = logging.getLogger(__name__)


def character_needs_migration(character: Character) -> bool:
    return is_legacy_inventory(character.inventory) or "gold" not in character.stats


def needs_migration(session: Session) -> bool:
    return any(character_needs_migration(c) for c in session.characters.values())


def migrate_stats(stats: dict[str, int], is_player: bool, universe_name: str = "") -> dict[str, int]:
    migrated = {
        "hp": DEFAULT_HP,
        "max_hp": DEFAULT_MAX_HP,
        "gold": get_starting_gold(universe_name) if is_player else DEFAULT_NPC_GOLD,
    }
    migrated.update(stats)
    return migrated


def migrate_character(character: Character, is_player: bool, universe_name: str = "") -> tuple[Character, list[str]]:
    changes: list[str] = []
    migrated = copy.deepcopy(character)

    if is_legacy_inventory(character.inventory):
        legacy_count = sum(1 for entry in character.inventory if isinstance(entry, str))
        migrated.inventory = list(normalize_inventory(list(character.inventory)))
        changes.append(f"{character.name}: migrated {legacy_count} inventory items to item records")

    if "gold" not in character.stats:
        migrated.stats = migrate_stats(character.stats, is_player, universe_name)
        changes.append(f"{character.name}: added gold ({migrated.stats['gold']}) to stats")

    return migrated, changes


def migrate_session(session: Session) -> MigrationResult:
    """Upgrade legacy inventories and stats without touching the input.

    Returns the input session unchanged (same object) when nothing needs
    migrating, so applying it twice is a no-op the second time.
    """
    if not needs_migration(session):
        return MigrationResult(migrated=False, changes=[], session=session)

    changes: list[str] = []
    migrated = copy.deepcopy(session)
    universe_name = session.config.universe_name

    for char_id, character in session.characters.items():
        if not character_needs_migration(character):
            continue
        is_player = char_id == session.player_character_id
        updated, char_changes = migrate_character(character, is_player, universe_name)
        migrated.characters[char_id] = updated
        changes.extend(char_changes)

    for change in changes:
        logger.info("Session %s migration: %s", session.id, change)
    return MigrationResult(migrated=True, changes=changes, session=migrated)


def _get(record: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if record.get(key):
            return record[key]
    return None


def validate_session_record(record: Any) -> list[str]:
    """Structural checks on a persisted session record; empty means valid."""
    if not isinstance(record, dict):
        return ["Session record is not an object"]

    errors: list[str] = []
    player_id = _get(record, "player_character_id", "playerCharacterId")
    location_id = _get(record, "current_location_id", "currentLocationId")
    characters = record.get("characters")
    locations = record.get("locations")

    if not record.get("id"):
        errors.append("Missing session id")
    if not player_id:
        errors.append("Missing player character id")
    if not location_id:
        errors.append("Missing current location id")
    if not isinstance(characters, dict):
        errors.append("Missing or invalid characters")
    if not isinstance(locations, dict):
        errors.append("Missing or invalid locations")
    if not isinstance(record.get("config"), dict):
        errors.append("Missing or invalid config")

    if isinstance(characters, dict) and player_id and player_id not in characters:
        errors.append("Player character not found in characters")
    if isinstance(locations, dict) and location_id and location_id not in locations:
        errors.append("Current location not found in locations")
    return errors


def load_and_migrate(record: Any) -> MigrationResult:
    """Validate a raw record, build the session and migrate it.

    Raises ``ValidationError`` listing every structural problem found.
    """
    errors = validate_session_record(record)
    if errors:
        raise ValidationError("invalid session record", errors)
    session = Session.from_dict(record)
    player = session.player
    if player is not None and not player.is_player:
        player.is_player = True
    return migrate_session(session)
