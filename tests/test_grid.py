from __future__ import annotations

from narrative_engine.core.grid import create_initial_snapshot, latest_snapshot, snapshot_at
from narrative_engine.core.types import Character


def test_initial_snapshot_places_player_at_centre(make_session):
    session = make_session()
    session.characters["guard"] = Character(id="guard", name="Gate Guard", location_id="tavern")
    session.characters["drifter"] = Character(id="drifter", name="Drifter", location_id="road")

    snapshot = create_initial_snapshot(session, message_number=2, now_ms=9_000)

    assert snapshot.id == "grid_session-1_9000"
    assert snapshot.location_name == "The Rusty Mug"
    by_id = {p.character_id: p for p in snapshot.positions}
    assert set(by_id) == {"player_session-1", "innkeeper", "guard"}
    assert (by_id["player_session-1"].x, by_id["player_session-1"].y) == (5, 5)
    assert by_id["player_session-1"].is_player
    assert (by_id["innkeeper"].x, by_id["innkeeper"].y) == (3, 5)
    assert (by_id["guard"].x, by_id["guard"].y) == (7, 5)


def test_snapshot_lookup_by_message_number(make_session):
    session = make_session()
    assert latest_snapshot(session) is None
    assert snapshot_at(session, 10) is None

    first = create_initial_snapshot(session, message_number=2, now_ms=1)
    second = create_initial_snapshot(session, message_number=6, now_ms=2)
    session.grid_snapshots.extend([first, second])

    assert latest_snapshot(session) is second
    assert snapshot_at(session, 1) is None
    assert snapshot_at(session, 2) is first
    assert snapshot_at(session, 5) is first
    assert snapshot_at(session, 9) is second
