from __future__ import annotations

import math

from .types import CharacterPosition, GridSnapshot, Session

GRID_SIZE = 10
NPC_RADIUS = 2


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def snapshot_id(session_id: str, now_ms: int) -> str:
    return f"grid_{session_id}_{now_ms}"


def create_initial_snapshot(
    session: Session,
    message_number: int,
    now_ms: int,
    grid_size: int = GRID_SIZE,
) -> GridSnapshot:
    """Place the player at the centre and present NPCs on a ring around it."""
    location = session.current_location
    present = [c for c in session.characters.values() if c.location_id == session.current_location_id]
    centre = grid_size // 2
    spread = max(len(present) - 1, 1)

    positions: list[CharacterPosition] = []
    for index, character in enumerate(present):
        if character.is_player:
            x, y = centre, centre
        else:
            angle = (index * 2 * math.pi) / spread
            x = _round_half_up(centre + NPC_RADIUS * math.cos(angle))
            y = _round_half_up(centre + NPC_RADIUS * math.sin(angle))
            x = max(0, min(grid_size - 1, x))
            y = max(0, min(grid_size - 1, y))
        positions.append(
            CharacterPosition(
                character_id=character.id,
                name=character.name,
                is_player=character.is_player,
                x=x,
                y=y,
            )
        )

    return GridSnapshot(
        id=snapshot_id(session.id, now_ms),
        message_number=message_number,
        timestamp=now_ms,
        location_id=session.current_location_id,
        location_name=location.name if location else "Unknown",
        positions=tuple(positions),
    )


def latest_snapshot(session: Session) -> GridSnapshot | None:
    return session.grid_snapshots[-1] if session.grid_snapshots else None


def snapshot_at(session: Session, message_number: int) -> GridSnapshot | None:
    """Most recent snapshot taken at or before ``message_number``."""
    found = None
    for snapshot in session.grid_snapshots:
        if snapshot.message_number <= message_number:
            found = snapshot
    return found
