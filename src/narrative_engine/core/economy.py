from __future__ import annotations

import math

SELL_MULTIPLIER = 0.5
BUY_MULTIPLIER = 1.0
MAX_STACK_SIZE = 99
MIN_GOLD = 0

DEFAULT_HP = 100
DEFAULT_MAX_HP = 100
DEFAULT_NPC_GOLD = 0

PRICE_RANGES: dict[str, tuple[int, int]] = {
    "consumable": (5, 50),
    "weapon": (20, 500),
    "armor": (30, 600),
    "valuable": (50, 1000),
    "material": (1, 20),
    "quest": (0, 0),
    "currency": (1, 1000),
    "misc": (1, 50),
}

STARTING_GOLD: dict[str, int] = {
    "fantasy": 50,
    "medieval": 50,
    "scifi": 100,
    "modern": 200,
    "horror": 30,
    "postapocalyptic": 20,
    "cyberpunk": 150,
    "steampunk": 75,
    "western": 40,
}

# Order matters: "neo" must not shadow the sci-fi bracket, "space" must win
# over "modern" and so on. First match wins.
STARTING_GOLD_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("scifi", ("star wars", "star trek", "sci-fi", "scifi", "space", "future", "alien")),
    ("cyberpunk", ("cyberpunk", "blade runner", "neo", "neon")),
    ("steampunk", ("steampunk", "victorian", "clockwork")),
    ("horror", ("horror", "lovecraft", "cthulhu", "zombie", "resident evil", "silent hill")),
    ("western", ("western", "cowboy", "red dead")),
    ("postapocalyptic", ("post-apocal", "postapocalyp", "fallout", "wasteland")),
    ("modern", ("modern", "contemporary", "real world", "gta", "present day")),
)

DEFAULT_BRACKET = "fantasy"


def starting_gold_bracket(universe_name: str) -> str:
    lowered = (universe_name or "").lower()
    for bracket, keywords in STARTING_GOLD_RULES:
        if any(keyword in lowered for keyword in keywords):
            return bracket
    return DEFAULT_BRACKET


def get_starting_gold(universe_name: str) -> int:
    """Starting gold for a new player in the given universe."""
    return STARTING_GOLD[starting_gold_bracket(universe_name)]


def default_player_stats(universe_name: str = "") -> dict[str, int]:
    return {"hp": DEFAULT_HP, "max_hp": DEFAULT_MAX_HP, "gold": get_starting_gold(universe_name)}


def default_npc_stats() -> dict[str, int]:
    return {"hp": DEFAULT_HP, "max_hp": DEFAULT_MAX_HP, "gold": DEFAULT_NPC_GOLD}


def get_price_range(category: str) -> tuple[int, int]:
    return PRICE_RANGES.get(category, PRICE_RANGES["misc"])


def midpoint_value(category: str) -> int:
    low, high = get_price_range(category)
    # Match half-up rounding rather than Python's banker's rounding.
    return int(math.floor((low + high) / 2 + 0.5))


def sell_price(base_value: int) -> int:
    return int(math.floor(base_value * SELL_MULTIPLIER))


def buy_price(base_value: int) -> int:
    return int(math.ceil(base_value * BUY_MULTIPLIER))


def clamp_gold(gold: int | float) -> int:
    return max(MIN_GOLD, int(math.floor(gold)))
