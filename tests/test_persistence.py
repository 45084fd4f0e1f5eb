from __future__ import annotations

from sqlalchemy import select

from narrative_engine.core.types import GM_SENDER_ID, NARRATION, GameEvent, HeavyContext, Item, Message
from narrative_engine.persistence.sqlalchemy.gateway import SQLAlchemySessionGateway
from narrative_engine.persistence.sqlalchemy.models import CharacterRecord, MessageRecord, SessionRecord


def test_save_and_load_round_trip(gateway, make_session):
    session = make_session()
    session.characters[session.player_character_id].inventory = [
        Item(id="i1", name="Iron Sword", category="weapon", base_value=260)
    ]
    session.events.append(GameEvent(id="e1", turn=1, description="Arrived at the tavern"))
    session.heavy_context = HeavyContext(main_mission="Find the crown", active_problems=["Wolves"])
    session.theme_colors = {"primary": "#112233"}
    session.viewed_cards.append("m1")
    gateway.save(session)

    record = gateway.load(session.id)
    assert record["title"] == "The Rusty Mug"
    assert record["config"]["universe_name"] == "Forgotten Realms"
    assert set(record["characters"]) == {"player_session-1", "innkeeper"}
    assert record["characters"]["player_session-1"]["inventory"][0]["name"] == "Iron Sword"
    assert [m["id"] for m in record["messages"]] == ["m1", "m2"]
    assert record["events"][0]["description"] == "Arrived at the tavern"
    assert record["heavy_context"]["main_mission"] == "Find the crown"
    assert record["theme_colors"] == {"primary": "#112233"}
    assert record["viewed_cards"] == ["m1"]

    assert gateway.load("missing") is None


def test_save_replaces_child_rows(gateway, make_session, session_factory):
    session = make_session()
    gateway.save(session)
    del session.characters["innkeeper"]
    session.messages = session.messages[:1]
    gateway.save(session)

    with session_factory() as db:
        assert [r.character_id for r in db.execute(select(CharacterRecord)).scalars()] == ["player_session-1"]
        assert [r.message_id for r in db.execute(select(MessageRecord)).scalars()] == ["m1"]


def test_load_repairs_duplicate_rows(gateway, make_session, session_factory):
    gateway.save(make_session())
    with session_factory() as db:
        db.add(
            MessageRecord(
                session_id="session-1",
                message_id="m1-copy",
                sender_id=GM_SENDER_ID,
                text="Rain drums on the tavern roof.",
                type=NARRATION,
                timestamp=1_500,
                page_number=3,
            )
        )
        db.commit()

    record = gateway.load("session-1")
    assert [m["id"] for m in record["messages"]] == ["m1", "m2"]
    with session_factory() as db:
        assert len(db.execute(select(MessageRecord)).scalars().all()) == 2


def test_load_all_orders_by_last_played(gateway, make_session):
    older = make_session("a")
    older.last_played = 10
    newer = make_session("b")
    newer.last_played = 20
    gateway.save(older)
    gateway.save(newer)
    summaries = gateway.load_all()
    assert [s.id for s in summaries] == ["b", "a"]
    assert summaries[0].universe_name == "Forgotten Realms"


def test_delete_removes_session_and_children(gateway, make_session, session_factory):
    gateway.save(make_session())
    gateway.delete("session-1")
    assert gateway.load("session-1") is None
    with session_factory() as db:
        assert db.execute(select(SessionRecord)).scalars().all() == []
        assert db.execute(select(MessageRecord)).scalars().all() == []


def test_validate_import():
    gw = SQLAlchemySessionGateway(lambda: None)
    assert gw.validate_import("nope").error == "Invalid data format"
    assert gw.validate_import({"version": 2, "session": {}}).error == "version"
    assert gw.validate_import({"version": 1}).error == "Missing session data"
    assert gw.validate_import({"version": 1, "session": {"id": "x"}}).error == "Missing required field: title"
    body = {
        "id": "x",
        "title": "t",
        "config": {},
        "playerCharacterId": "p",
        "currentLocationId": "l",
        "characters": {},
        "locations": {},
        "messages": {},
    }
    assert gw.validate_import({"version": 1, "game": body}).error == "Invalid messages data"
    body["messages"] = []
    assert gw.validate_import({"version": 1, "game": body}).valid


def test_export_then_import_assigns_fresh_ids(uow_factory, make_session):
    ids = iter(["imported-1"])
    gw = SQLAlchemySessionGateway(uow_factory, clock=lambda: 1_700_000_000_000, id_factory=lambda: next(ids))
    session = make_session()
    session.characters["innkeeper"].relationships = {"player_session-1": 40}
    session.messages.append(
        Message(
            id="m3",
            sender_id="player_session-1",
            text="An ale, please.",
            type="dialogue",
            timestamp=1_200,
            page_number=3,
        )
    )
    gw.save(session)

    exported = gw.export(session.id)
    assert exported["version"] == 1
    assert exported["exported_at"].startswith("2023-11-14T22:13:20")

    new_id = gw.import_record(exported)
    assert new_id == "imported-1"
    record = gw.load(new_id)
    assert record["player_character_id"] == "player_imported-1"
    assert record["characters"]["player_imported-1"]["is_player"] is True
    assert record["characters"]["innkeeper"]["relationships"] == {"player_imported-1": 40}
    assert [m["id"] for m in record["messages"]] == ["msg_imported-1_0", "msg_imported-1_1", "msg_imported-1_2"]
    assert record["messages"][2]["sender_id"] == "player_imported-1"
    assert record["last_played"] == 1_700_000_000_000
    assert gw.load(session.id) is not None


def test_gateway_sanitizes_with_configured_window(uow_factory, make_session):
    session = make_session()
    session.messages.append(
        Message(
            id="m3",
            sender_id=GM_SENDER_ID,
            text="Rain drums on the tavern roof.",
            type=NARRATION,
            timestamp=1_500,
            page_number=3,
        )
    )

    narrow = SQLAlchemySessionGateway(uow_factory, duplicate_window_ms=300)
    narrow.save(session)
    assert [m["id"] for m in narrow.load(session.id)["messages"]] == ["m1", "m2", "m3"]

    default = SQLAlchemySessionGateway(uow_factory)
    assert [m["id"] for m in default.load(session.id)["messages"]] == ["m1", "m2"]
