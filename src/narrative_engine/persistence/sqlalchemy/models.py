from __future__ import annotations

import uuid

from sqlalchemy import BigInteger, Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin

EpochMsType = BigInteger().with_variant(Integer, "sqlite")


class SessionRecord(TimestampMixin, Base):
    __tablename__ = "nse_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    title: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    turn_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_played: Mapped[int] = mapped_column(EpochMsType, nullable=False, default=0)

    config_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    player_character_id: Mapped[str] = mapped_column(String(128), nullable=False)
    current_location_id: Mapped[str] = mapped_column(String(128), nullable=False)

    heavy_context_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    grid_snapshots_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    theme_colors_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    viewed_cards_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    universe_context: Mapped[str | None] = mapped_column(Text, nullable=True)


Index("ix_nse_session_last_played", SessionRecord.last_played.desc())


class CharacterRecord(Base):
    __tablename__ = "nse_characters"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    session_id: Mapped[str] = mapped_column(String(64), ForeignKey("nse_sessions.id", ondelete="CASCADE"), nullable=False)
    character_id: Mapped[str] = mapped_column(String(128), nullable=False)

    name: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_player: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    location_id: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    state: Mapped[str] = mapped_column(String(24), nullable=False, default="idle")
    stats_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    inventory_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    relationships_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    avatar_color: Mapped[str | None] = mapped_column(String(32), nullable=True)

    __table_args__ = (
        UniqueConstraint("session_id", "character_id", name="uq_nse_character_session_character"),
    )


class LocationRecord(Base):
    __tablename__ = "nse_locations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    session_id: Mapped[str] = mapped_column(String(64), ForeignKey("nse_sessions.id", ondelete="CASCADE"), nullable=False)
    location_id: Mapped[str] = mapped_column(String(128), nullable=False)

    name: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    connected_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    background_image: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("session_id", "location_id", name="uq_nse_location_session_location"),
    )


class MessageRecord(Base):
    __tablename__ = "nse_messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    session_id: Mapped[str] = mapped_column(String(64), ForeignKey("nse_sessions.id", ondelete="CASCADE"), nullable=False)
    message_id: Mapped[str] = mapped_column(String(128), nullable=False)

    sender_id: Mapped[str] = mapped_column(String(256), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    timestamp: Mapped[int] = mapped_column(EpochMsType, nullable=False)
    page_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    voice_tone: Mapped[str | None] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        UniqueConstraint("session_id", "message_id", name="uq_nse_message_session_message"),
    )


Index("ix_nse_message_session_page", MessageRecord.session_id, MessageRecord.page_number)


class EventRecord(Base):
    __tablename__ = "nse_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    session_id: Mapped[str] = mapped_column(String(64), ForeignKey("nse_sessions.id", ondelete="CASCADE"), nullable=False)
    event_id: Mapped[str] = mapped_column(String(128), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    turn: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    importance: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")


Index("ix_nse_event_session_position", EventRecord.session_id, EventRecord.position)


class ActionOptionCacheRecord(TimestampMixin, Base):
    __tablename__ = "nse_action_option_cache"

    session_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)
