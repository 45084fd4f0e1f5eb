from __future__ import annotations

from typing import Any, Optional, Protocol

from .types import FateResult, Location, Session, SessionConfig, TurnResolution

# Collaborators return raw payloads: a mapping, or JSON text that may be
# wrapped in a markdown fence. The engine parses them with ``normalize``.
Payload = Any


class InputClassifierPort(Protocol):
    async def classify(self, session: Session, raw_input: str) -> Payload:
        ...


class TurnResolverPort(Protocol):
    async def resolve(
        self,
        session: Session,
        player_input: str,
        fate: Optional[FateResult],
        history: list,
    ) -> Payload:
        ...


class MemoryDigestPort(Protocol):
    async def update_digest(self, session: Session, resolution: TurnResolution) -> Payload:
        ...


class SpatialTrackerPort(Protocol):
    async def update_positions(
        self,
        session: Session,
        resolution: TurnResolution,
        message_count: int,
    ) -> Payload:
        ...


class LocationImagePort(Protocol):
    async def generate_background(self, session: Session, location: Location) -> Optional[str]:
        ...


class ThemeColorPort(Protocol):
    async def generate_colors(self, session: Session, considerations: Optional[str]) -> Payload:
        ...


class ActionOptionsPort(Protocol):
    async def generate_options(self, session: Session) -> Payload:
        ...


class StoryInitializerPort(Protocol):
    async def initialize_story(
        self,
        config: SessionConfig,
        player_name: str,
        player_description: str,
    ) -> Payload:
        ...


class CredentialsPort(Protocol):
    def has_credentials(self) -> bool:
        ...

    async def validate(self) -> bool:
        ...


class Notifier(Protocol):
    def notify_blocking(self, error: Exception) -> None:
        ...
