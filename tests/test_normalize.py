from __future__ import annotations

import pytest

from narrative_engine.core.errors import (
    AuthError,
    GenericServiceError,
    MalformedResponseError,
    NetworkError,
    QuotaError,
    RateLimitError,
    classify_service_error,
)
from narrative_engine.core.normalize import (
    coerce_payload,
    parse_action_options,
    parse_classification,
    parse_digest_update,
    parse_spatial_update,
    parse_theme_colors,
    parse_turn_resolution,
)
from narrative_engine.core.types import DialogueMessage, HeavyContext, NarrationMessage, SystemMessage


def test_coerce_payload_handles_fenced_and_python_style_json():
    assert coerce_payload('Here you go:\n```json\n{"a": 1}\n```') == {"a": 1}
    assert coerce_payload("{'a': True, 'b': None}") == {"a": True, "b": None}
    with pytest.raises(MalformedResponseError):
        coerce_payload("no json here")
    with pytest.raises(MalformedResponseError):
        coerce_payload("")


def test_parse_turn_resolution_lifts_new_characters_from_dialogue():
    resolution = parse_turn_resolution(
        {
            "messages": [
                {"type": "narration", "text": "A goblin leaps from the bushes."},
                {
                    "type": "dialogue",
                    "characterName": "Grok",
                    "dialogue": "Shinies! Give!",
                    "voiceTone": "angry",
                    "newCharacterData": {"id": "grok", "name": "Grok", "description": "A scrawny goblin"},
                },
                {"type": "system", "text": "Combat begins."},
            ],
            "stateUpdates": {
                "newCharacters": [{"id": "grok", "name": "Grok"}],
                "updatedCharacters": [{"id": "player_1", "stats": [{"key": "hp", "value": 90}]}],
                "eventLog": "  Ambushed by a goblin  ",
                "locationChange": "forest",
            },
        }
    )
    kinds = [type(m) for m in resolution.messages]
    assert kinds == [NarrationMessage, DialogueMessage, SystemMessage]
    assert resolution.messages[1].voice_tone == "angry"
    updates = resolution.state_updates
    assert [c.id for c in updates.new_characters] == ["grok"]
    assert updates.updated_characters == [{"id": "player_1", "stats": {"hp": 90}}]
    assert updates.event_log == "Ambushed by a goblin"
    assert updates.location_change == "forest"


def test_parse_turn_resolution_accepts_legacy_sender_format():
    resolution = parse_turn_resolution(
        {
            "messages": [
                {"senderName": "Narrator", "text": "Night falls.", "type": "narration"},
                {"senderName": "Mira", "text": "Stay close.", "type": "dialogue"},
            ]
        }
    )
    assert isinstance(resolution.messages[0], NarrationMessage)
    assert resolution.messages[1] == DialogueMessage(character_name="Mira", dialogue="Stay close.")


def test_parse_turn_resolution_rejects_non_list_messages():
    with pytest.raises(MalformedResponseError):
        parse_turn_resolution({"messages": "oops"})


def test_parse_classification_only_rewrites_speech():
    spoken = parse_classification(
        {"type": "dialogue", "shouldProcess": True, "processedText": '"Hello there," I say.'}, "hello there"
    )
    assert spoken.type == "speech"
    assert spoken.processed_text == '"Hello there," I say.'
    assert spoken.was_processed

    action = parse_classification(
        {"type": "action", "shouldProcess": True, "processedText": "I attack bravely"}, "attack"
    )
    assert action.type == "action"
    assert action.processed_text == "attack"
    assert not action.was_processed

    broken = parse_classification("garbage", "open door")
    assert broken.type == "action"
    assert broken.processed_text == "open door"


def test_parse_digest_update_merges_over_previous():
    previous = HeavyContext(
        main_mission="Find the crown",
        current_mission="Reach the keep",
        active_problems=["Wolves"],
        important_notes=["The smith owes us"],
    )
    update = parse_digest_update(
        {
            "shouldUpdate": True,
            "newContext": {
                "currentMission": "Cross the river",
                "activeProblems": ["Bridge out", "bridge OUT", "", "Bandits", "Rain", "Cold", "Hunger"],
            },
        },
        previous,
        now_ms=42,
    )
    assert update.should_update
    digest = update.digest
    assert digest.main_mission == "Find the crown"
    assert digest.current_mission == "Cross the river"
    assert digest.active_problems == ["Bridge out", "Bandits", "Rain", "Cold", "Hunger"]
    assert digest.important_notes == ["The smith owes us"]
    assert digest.last_updated == 42

    assert not parse_digest_update({"shouldUpdate": False}, previous, now_ms=1).should_update


def test_parse_spatial_update_clamps_to_grid():
    update = parse_spatial_update(
        {"updated": True, "positions": [{"characterId": "p", "name": "Kael", "isPlayer": True, "x": 14, "y": -3}]},
        snapshot_id="grid_s_1",
        message_number=7,
        now_ms=1,
        location_id="tavern",
        location_name="The Rusty Mug",
    )
    assert update.updated
    position = update.snapshot.positions[0]
    assert (position.x, position.y) == (9, 0)
    assert update.snapshot.message_number == 7

    empty = parse_spatial_update(
        {"updated": True, "positions": []},
        snapshot_id="g",
        message_number=1,
        now_ms=1,
        location_id="t",
        location_name="T",
    )
    assert not empty.updated


def test_parse_action_options_clamps_and_limits():
    options = parse_action_options(
        {"options": [{"text": f"Option {i}", "goodChance": 80, "badChance": -4} for i in range(8)] + [{"text": " "}]}
    )
    assert len(options) == 5
    assert options[0].good_chance == 50
    assert options[0].bad_chance == 0


def test_parse_theme_colors_keeps_only_hex_values():
    colors = parse_theme_colors({"colors": {"primary": "#112233", "accent": "blue", "bg": " #fff "}})
    assert colors == {"primary": "#112233", "bg": "#fff"}
    with pytest.raises(MalformedResponseError):
        parse_theme_colors({"colors": {"primary": "red"}})


class _ApiError(Exception):
    def __init__(self, message, status=None, error=None):
        super().__init__(message)
        self.status = status
        self.error = error


def test_classify_service_error():
    assert isinstance(classify_service_error(_ApiError("bad", error={"code": "insufficient_quota"})), QuotaError)
    assert isinstance(classify_service_error(_ApiError("nope", status=401)), AuthError)
    assert isinstance(classify_service_error(_ApiError("slow down", status=429)), RateLimitError)
    assert isinstance(classify_service_error(_ApiError("You exceeded your quota", status=429)), QuotaError)
    assert isinstance(classify_service_error(_ApiError("upstream", status=503)), NetworkError)
    assert isinstance(classify_service_error(ConnectionError("reset")), NetworkError)
    assert isinstance(classify_service_error(RuntimeError("Incorrect API key provided: invalid key")), AuthError)
    assert isinstance(classify_service_error(ValueError("???")), GenericServiceError)

    already = RateLimitError("busy")
    assert classify_service_error(already) is already
    assert already.terminal is False
    assert classify_service_error(_ApiError("nope", status=401)).terminal
