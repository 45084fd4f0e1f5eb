from __future__ import annotations

import asyncio
import logging

from narrative_engine.core.action_options import ActionOptionsCache, roll_fate
from narrative_engine.core.engine import SessionEngine
from narrative_engine.core.types import SessionConfig
from narrative_engine.persistence.sqlalchemy import (
    SQLAlchemyActionOptionsStore,
    SQLAlchemySessionGateway,
    SQLAlchemyUnitOfWork,
    open_store,
)


class DemoStory:
    async def initialize_story(self, config, player_name, player_description):
        return {
            "title": "The Old Road",
            "messages": [
                {"type": "narration", "text": "Cart ruts lead north through the fog."},
                {"type": "dialogue", "characterName": "Tamsin", "dialogue": "Stay on the road after dark."},
            ],
            "stateUpdates": {
                "newLocations": [{"id": "road", "name": "Old North Road"}],
                "newCharacters": [{"id": "tamsin", "name": "Tamsin", "description": "A tired courier"}],
            },
        }


class DemoClassifier:
    async def classify(self, session, raw_input):
        return {"type": "action"}


class DemoResolver:
    async def resolve(self, session, player_input, fate, history):
        outcome = "stumble into a ditch" if fate and fate.type == "bad" else "spot a ruined watchtower"
        return {
            "messages": [{"type": "narration", "text": f"You {player_input.lower()} and {outcome}."}],
            "stateUpdates": {
                "newLocations": [{"id": "tower", "name": "Ruined Watchtower"}],
                "locationChange": "tower",
                "eventLog": "Found the watchtower",
            },
        }


class DemoDigest:
    async def update_digest(self, session, resolution):
        return {"shouldUpdate": True, "newContext": {"mainMission": "Reach the northern pass"}}


class DemoOptions:
    async def generate_options(self, session):
        return {"options": [{"text": "Climb the tower", "goodChance": 25, "badChance": 15}]}


class DemoCredentials:
    def has_credentials(self):
        return True

    async def validate(self):
        return True


class PrintNotifier:
    def notify_blocking(self, error):
        print("blocking error:", error.kind)


async def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    session_factory = open_store("sqlite+pysqlite:///:memory:")

    def uow_factory():
        return SQLAlchemyUnitOfWork(session_factory)

    engine = SessionEngine(
        SQLAlchemySessionGateway(uow_factory),
        classifier=DemoClassifier(),
        resolver=DemoResolver(),
        credentials=DemoCredentials(),
        notifier=PrintNotifier(),
        digest=DemoDigest(),
        action_options=DemoOptions(),
        story_initializer=DemoStory(),
        options_cache=ActionOptionsCache(SQLAlchemyActionOptionsStore(uow_factory)),
    )

    session = await engine.create_session(SessionConfig(universe_name="Homebrew fantasy"), "Rook")
    print("created:", session.title, "gold:", session.player.stats["gold"])

    options = await engine.suggest_actions()
    fate = roll_fate(options[0])
    outcome = await engine.submit_turn(options[0].text, fate)
    print("turn:", outcome.status, "fate:", fate.type)

    await engine.coordinator.wait_idle()
    for message in session.messages:
        print(f"[{message.page_number}] {message.sender_id}: {message.text}")
    print("location:", session.current_location.name)
    print("mission:", session.heavy_context.main_mission if session.heavy_context else None)
    await engine.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
