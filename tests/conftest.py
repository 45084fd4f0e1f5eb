from __future__ import annotations

import pytest
from sqlalchemy import text

from narrative_engine.core.types import (
    DIALOGUE,
    GM_SENDER_ID,
    NARRATION,
    Character,
    Location,
    Message,
    Session,
    SessionConfig,
)
from narrative_engine.persistence.sqlalchemy.db import build_engine, build_session_factory, create_schema
from narrative_engine.persistence.sqlalchemy.gateway import SQLAlchemySessionGateway
from narrative_engine.persistence.sqlalchemy.uow import SQLAlchemyUnitOfWork


@pytest.fixture()
def session_factory():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    create_schema(engine)
    sf = build_session_factory(engine)
    with sf() as session:
        session.execute(text("PRAGMA foreign_keys=ON"))
        session.commit()
    return sf


@pytest.fixture()
def uow_factory(session_factory):
    def _factory():
        return SQLAlchemyUnitOfWork(session_factory)

    return _factory


@pytest.fixture()
def gateway(uow_factory):
    return SQLAlchemySessionGateway(uow_factory, clock=lambda: 1_700_000_000_000)


@pytest.fixture()
def make_session():
    def _make(session_id: str = "session-1", universe: str = "Forgotten Realms", language: str = "en") -> Session:
        player = Character(
            id=f"player_{session_id}",
            name="Kael",
            description="A wandering sellsword",
            is_player=True,
            location_id="tavern",
            stats={"hp": 100, "max_hp": 100, "gold": 50},
        )
        innkeeper = Character(
            id="innkeeper",
            name="Old Bertha",
            description="Keeps the Rusty Mug",
            location_id="tavern",
            stats={"hp": 100, "max_hp": 100, "gold": 0},
        )
        return Session(
            id=session_id,
            title="The Rusty Mug",
            config=SessionConfig(universe_name=universe, universe_type="original", language=language),
            player_character_id=player.id,
            current_location_id="tavern",
            turn_count=0,
            last_played=1_000,
            characters={player.id: player, innkeeper.id: innkeeper},
            locations={
                "tavern": Location(id="tavern", name="The Rusty Mug", description="A smoky tavern"),
                "road": Location(id="road", name="North Road", description="Muddy and cold"),
            },
            messages=[
                Message(
                    id="m1",
                    sender_id=GM_SENDER_ID,
                    text="Rain drums on the tavern roof.",
                    type=NARRATION,
                    timestamp=1_000,
                    page_number=1,
                ),
                Message(
                    id="m2",
                    sender_id="innkeeper",
                    text="What'll it be, stranger?",
                    type=DIALOGUE,
                    timestamp=1_100,
                    page_number=2,
                ),
            ],
        )

    return _make
