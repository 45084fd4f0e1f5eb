from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class EngineConfig:
    history_window: int = 20
    context_token_budget: int = 6_000
    duplicate_window_ms: int = 2_000
    digest_list_limit: int = 5
    grid_size: int = 10
    max_action_options: int = 5
    max_fate_chance: int = 50
    default_language: str = "en"
