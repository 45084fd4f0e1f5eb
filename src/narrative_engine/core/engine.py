from __future__ import annotations

import copy
import logging
import random
import uuid
from typing import Any, Callable, Optional

from ..persistence.interfaces import SessionGateway
from .action_options import ActionOptionsCache, build_fingerprint, default_options
from .agency import PlayerAgencyFilter, find_character_by_name, normalize_speaker_name
from .background import (
    MEMORY_DIGEST,
    SPATIAL_SNAPSHOT,
    THEME_COLORS,
    BackgroundTaskCoordinator,
    TaskHandle,
    location_background_key,
)
from .config import EngineConfig
from .economy import clamp_gold, default_npc_stats, default_player_stats
from .errors import EngineError, QuotaError, ServiceError, ValidationError, classify_service_error
from .grid import create_initial_snapshot, latest_snapshot, snapshot_id
from .migration import load_and_migrate
from .normalize import (
    coerce_payload,
    parse_action_options,
    parse_classification,
    parse_digest_update,
    parse_spatial_update,
    parse_theme_colors,
    parse_turn_resolution,
)
from .ports import (
    ActionOptionsPort,
    CredentialsPort,
    InputClassifierPort,
    LocationImagePort,
    MemoryDigestPort,
    Notifier,
    SpatialTrackerPort,
    StoryInitializerPort,
    ThemeColorPort,
    TurnResolverPort,
)
from .timeline import next_page_number, sanitize_messages, trailing_window
from .tokens import count_tokens
from .types import (
    DIALOGUE,
    GM_SENDER_ID,
    NARRATION,
    SYSTEM,
    SYSTEM_SENDER_ID,
    ActionOption,
    Character,
    ClassifiedInput,
    DialogueMessage,
    FateResult,
    GameEvent,
    ImportResult,
    Location,
    Message,
    ResolvedMessage,
    Session,
    SessionConfig,
    SessionSummary,
    SystemMessage,
    TurnOutcome,
    TurnResolution,
    epoch_ms,
)

AVATAR_PALETTE = ("#ef4444", "#f59e0b", "#10b981", "#3b82f6", "#8b5cf6")
BOT_MESSAGE_SPACING_MS = 100


class TurnPhase:
    IDLE = "idle"
    CLASSIFYING = "classifying"
    RESOLVING = "resolving"
    UPDATING = "updating"


TURN_FAILURE_TEXT = {
    "en": "The story stalls for a moment ({kind}). Try your action again.",
    "pt": "A história hesitou por um instante ({kind}). Tente sua ação novamente.",
    "es": "La historia se detiene un momento ({kind}). Intenta tu acción de nuevo.",
    "fr": "L'histoire marque une pause ({kind}). Réessayez votre action.",
    "ru": "История ненадолго замерла ({kind}). Попробуйте действие ещё раз.",
    "zh": "故事暂时停顿了（{kind}）。请再次尝试你的行动。",
}

FALLBACK_INTRO_TEXT = {
    "en": "Your adventure begins in {location}.",
    "pt": "Sua aventura começa em {location}.",
    "es": "Tu aventura comienza en {location}.",
    "fr": "Votre aventure commence à {location}.",
    "ru": "Ваше приключение начинается: {location}.",
    "zh": "你的冒险从{location}开始。",
}

FALLBACK_LOCATION_NAME = {
    "en": "Starting Point",
    "pt": "Ponto de Partida",
    "es": "Punto de Partida",
    "fr": "Point de Départ",
    "ru": "Начальная точка",
    "zh": "起点",
}


def _localized(table: dict[str, str], language: str) -> str:
    return table.get(language, table["en"])


class SessionEngine:
    """Owns the in-memory sessions and sequences every turn's side effects.

    All mutations go through :meth:`update_session`, which sanitizes the
    timeline and persists. Persistence failures are logged and never roll
    back the in-memory state.
    """

    def __init__(
        self,
        gateway: SessionGateway,
        *,
        classifier: InputClassifierPort,
        resolver: TurnResolverPort,
        credentials: CredentialsPort,
        notifier: Notifier | None = None,
        digest: MemoryDigestPort | None = None,
        spatial: SpatialTrackerPort | None = None,
        location_images: LocationImagePort | None = None,
        theme_colors: ThemeColorPort | None = None,
        action_options: ActionOptionsPort | None = None,
        story_initializer: StoryInitializerPort | None = None,
        options_cache: ActionOptionsCache | None = None,
        coordinator: BackgroundTaskCoordinator | None = None,
        config: EngineConfig | None = None,
        clock: Callable[[], int] | None = None,
        id_factory: Callable[[], str] | None = None,
        token_counter: Callable[[str], int] | None = None,
        rng: random.Random | None = None,
        logger: logging.Logger | None = None,
    ):
        self._gateway = gateway
        self._classifier = classifier
        self._resolver = resolver
        self._credentials = credentials
        self._notifier = notifier
        self._digest = digest
        self._spatial = spatial
        self._location_images = location_images
        self._theme_colors = theme_colors
        self._action_options = action_options
        self._story_initializer = story_initializer
        self._options_cache = options_cache or ActionOptionsCache()
        self._coordinator = coordinator or BackgroundTaskCoordinator()
        self._config = config or EngineConfig()
        self._clock = clock or epoch_ms
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self._token_counter = token_counter or count_tokens
        self._rng = rng or random.Random()
        self._logger = logger or logging.getLogger(__name__)

        self._sessions: dict[str, Session] = {}
        self._active_id: Optional[str] = None
        self._processing: set[str] = set()
        self._updating_context: set[str] = set()
        self._phases: dict[str, str] = {}

    # ------------------------------------------------------------------
    # State inspection
    # ------------------------------------------------------------------

    @property
    def coordinator(self) -> BackgroundTaskCoordinator:
        return self._coordinator

    @property
    def active_session(self) -> Optional[Session]:
        if self._active_id is None:
            return None
        return self._sessions.get(self._active_id)

    def get_session(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def is_processing(self, session_id: Optional[str] = None) -> bool:
        return (session_id or self._active_id) in self._processing

    def is_updating_context(self, session_id: Optional[str] = None) -> bool:
        return (session_id or self._active_id) in self._updating_context

    def phase(self, session_id: Optional[str] = None) -> str:
        sid = session_id or self._active_id
        return self._phases.get(sid, TurnPhase.IDLE) if sid else TurnPhase.IDLE

    # ------------------------------------------------------------------
    # Mutation path
    # ------------------------------------------------------------------

    def update_session(
        self,
        session_id: str,
        updater: Callable[[Session], Optional[Session]],
    ) -> Optional[Session]:
        """Apply ``updater`` to the in-memory session, sanitize, then persist.

        The updater may mutate the session in place or return a replacement.
        Returns None when the session is not loaded.
        """
        session = self._sessions.get(session_id)
        if session is None:
            self._logger.warning("Update for unknown session %s ignored", session_id)
            return None
        replaced = updater(session)
        updated = replaced if replaced is not None else session
        updated.messages = sanitize_messages(updated.messages, self._config.duplicate_window_ms)
        self._sessions[session_id] = updated
        self._persist(updated)
        return updated

    def _persist(self, session: Session) -> None:
        try:
            self._gateway.save(session)
        except Exception:
            self._logger.exception("Failed to persist session %s", session.id)

    def _new_id(self, prefix: str) -> str:
        return f"{prefix}_{self._id_factory()}"

    # ------------------------------------------------------------------
    # Turn orchestration
    # ------------------------------------------------------------------

    async def submit_turn(
        self,
        raw_input: str,
        fate: Optional[FateResult] = None,
        *,
        session_id: Optional[str] = None,
    ) -> TurnOutcome:
        sid = session_id or self._active_id
        if sid is None or sid not in self._sessions:
            return TurnOutcome(status="rejected", reason="no_session", preserved_input=raw_input)
        if not self._credentials.has_credentials():
            return TurnOutcome(status="rejected", reason="no_credentials", preserved_input=raw_input)
        if sid in self._processing or sid in self._updating_context:
            return TurnOutcome(status="rejected", reason="busy", preserved_input=raw_input)
        text = (raw_input or "").strip()
        if not text:
            return TurnOutcome(status="rejected", reason="empty_input", preserved_input=raw_input)

        self._processing.add(sid)
        try:
            return await self._run_turn(sid, raw_input, text, fate)
        finally:
            self._processing.discard(sid)
            self._phases[sid] = TurnPhase.IDLE

    async def _run_turn(
        self,
        sid: str,
        raw_input: str,
        text: str,
        fate: Optional[FateResult],
    ) -> TurnOutcome:
        self._phases[sid] = TurnPhase.CLASSIFYING
        classified = await self._classify(sid, text)

        now = self._clock()
        player_message_id = self._new_id("msg")

        def _append_player_message(session: Session) -> None:
            session.messages.append(
                Message(
                    id=player_message_id,
                    sender_id=session.player_character_id,
                    text=classified.processed_text,
                    type=DIALOGUE,
                    timestamp=now,
                    page_number=next_page_number(session.messages),
                )
            )

        session = self.update_session(sid, _append_player_message)
        if session is None:
            return TurnOutcome(status="rejected", reason="no_session", preserved_input=raw_input)

        self._phases[sid] = TurnPhase.RESOLVING
        history = trailing_window(
            session.messages,
            self._config.history_window,
            self._config.context_token_budget,
            self._token_counter,
        )
        try:
            raw = await self._resolver.resolve(session, classified.processed_text, fate, history)
            resolution = parse_turn_resolution(raw)
        except Exception as exc:
            return self._handle_turn_failure(sid, exc, raw_input)

        outcome = TurnOutcome(status="ok", appended_message_ids=[player_message_id])
        session = self.update_session(sid, lambda s: self._apply_resolution(s, resolution, outcome))
        if session is None:
            return outcome

        self._phases[sid] = TurnPhase.UPDATING
        self._spawn_spatial_update(sid, resolution)
        self.ensure_location_background(session_id=sid)
        await self._run_digest_update(sid, resolution)
        return outcome

    async def _classify(self, sid: str, text: str) -> ClassifiedInput:
        session = self._sessions[sid]
        try:
            raw = await self._classifier.classify(session, text)
        except Exception as exc:
            self._logger.warning("Input classification failed for session %s, treating as action: %s", sid, exc)
            return ClassifiedInput(type="action", processed_text=text)
        classified = parse_classification(raw, text)
        if not classified.processed_text.strip():
            self._logger.warning("Empty classification for session %s, treating as action", sid)
            return ClassifiedInput(type="action", processed_text=text)
        return classified

    def _handle_turn_failure(self, sid: str, exc: Exception, raw_input: str) -> TurnOutcome:
        error = classify_service_error(exc)
        if error.terminal:
            self._logger.error("Turn for session %s failed with terminal error %s: %s", sid, error.kind, error)
            self._notify_blocking(error)
        else:
            self._logger.warning("Turn for session %s failed with recoverable error %s: %s", sid, error.kind, error)

            def _append_system_message(session: Session) -> None:
                session.messages.append(
                    Message(
                        id=self._new_id("msg"),
                        sender_id=SYSTEM_SENDER_ID,
                        text=_localized(TURN_FAILURE_TEXT, session.config.language).format(kind=error.kind),
                        type=SYSTEM,
                        timestamp=self._clock(),
                        page_number=next_page_number(session.messages),
                    )
                )

            self.update_session(sid, _append_system_message)
        return TurnOutcome(status="error", reason=error.kind, preserved_input=raw_input)

    def _notify_blocking(self, error: ServiceError) -> None:
        if self._notifier is None:
            self._logger.error("No notifier configured for blocking error %s", error.kind)
            return
        try:
            self._notifier.notify_blocking(error)
        except Exception:
            self._logger.exception("Blocking notification failed")

    # ------------------------------------------------------------------
    # Delta application
    # ------------------------------------------------------------------

    def _apply_resolution(self, session: Session, resolution: TurnResolution, outcome: TurnOutcome) -> None:
        updates = resolution.state_updates
        now = self._clock()

        for location in updates.new_locations:
            existing = session.locations.get(location.id)
            if existing is not None and location.background_image is None:
                location.background_image = existing.background_image
            session.locations[location.id] = location

        # New characters default to where the turn ends.
        if updates.location_change:
            if updates.location_change in session.locations:
                session.current_location_id = updates.location_change
                player = session.player
                if player is not None:
                    player.location_id = updates.location_change
            else:
                self._logger.warning(
                    "Session %s: ignoring move to unknown location %r",
                    session.id,
                    updates.location_change,
                )

        for character in updates.new_characters:
            self._merge_new_character(session, character)

        for update in updates.updated_characters:
            self._merge_character_update(session, update)

        session.turn_count += 1
        session.last_played = now

        if updates.event_log:
            session.events.append(
                GameEvent(id=self._new_id("evt"), turn=session.turn_count, description=updates.event_log)
            )

        player = session.player
        agency = PlayerAgencyFilter(player.name if player else None)
        kept, blocked = agency.apply(resolution.messages)
        outcome.blocked_speakers.extend(blocked)

        new_messages = self._build_messages(session, kept, now)
        session.messages.extend(new_messages)
        outcome.appended_message_ids.extend(m.id for m in new_messages)

    def _merge_new_character(self, session: Session, character: Character) -> None:
        if not character.id:
            character.id = self._new_id("char")
        if character.id in session.characters:
            self._logger.debug("Session %s: new character %s already known", session.id, character.id)
            return
        stats = default_npc_stats()
        stats.update(character.stats)
        stats["gold"] = clamp_gold(stats.get("gold", 0))
        character.stats = stats
        character.is_player = False
        if not character.location_id:
            character.location_id = session.current_location_id
        if not character.avatar_color:
            character.avatar_color = self._rng.choice(AVATAR_PALETTE)
        session.characters[character.id] = character

    def _merge_character_update(self, session: Session, update: dict[str, Any]) -> None:
        existing = session.characters.get(update["id"])
        if existing is None:
            self._logger.warning("Session %s: update for unknown character %s", session.id, update["id"])
            return
        for key in ("name", "description", "location_id", "state", "avatar_color"):
            if key in update:
                setattr(existing, key, update[key])
        if "stats" in update:
            existing.stats = {**existing.stats, **update["stats"]}
            if "gold" in existing.stats:
                existing.stats["gold"] = clamp_gold(existing.stats["gold"])
        if "relationships" in update:
            existing.relationships = {**existing.relationships, **update["relationships"]}
        if "inventory" in update:
            existing.inventory = list(update["inventory"])

    def _build_messages(self, session: Session, resolved: list[ResolvedMessage], now: int) -> list[Message]:
        first_page = next_page_number(session.messages)
        messages: list[Message] = []
        for idx, item in enumerate(resolved):
            if isinstance(item, DialogueMessage):
                speaker = find_character_by_name(session.characters, item.character_name)
                if speaker is not None:
                    sender_id = speaker.id
                elif item.character_name:
                    self._logger.warning(
                        "Session %s: speaker %r not found, using name as sender",
                        session.id,
                        item.character_name,
                    )
                    sender_id = item.character_name
                else:
                    sender_id = GM_SENDER_ID
                msg_type, text = DIALOGUE, item.dialogue
            elif isinstance(item, SystemMessage):
                sender_id, msg_type, text = SYSTEM_SENDER_ID, SYSTEM, item.text
            else:
                sender_id, msg_type, text = GM_SENDER_ID, NARRATION, item.text
            messages.append(
                Message(
                    id=self._new_id("msg"),
                    sender_id=sender_id,
                    text=text,
                    type=msg_type,
                    timestamp=now + idx * BOT_MESSAGE_SPACING_MS,
                    page_number=first_page + idx,
                    voice_tone=item.voice_tone or "neutral",
                )
            )
        return messages

    # ------------------------------------------------------------------
    # Background jobs
    # ------------------------------------------------------------------

    async def _run_digest_update(self, sid: str, resolution: TurnResolution) -> bool:
        if self._digest is None:
            return False
        session = self._sessions.get(sid)
        if session is None:
            return False

        async def _work():
            raw = await self._digest.update_digest(session, resolution)
            return parse_digest_update(
                raw,
                session.heavy_context,
                self._clock(),
                self._config.digest_list_limit,
            )

        def _apply(update) -> None:
            if not update.should_update or update.digest is None:
                return

            def _set_digest(s: Session) -> None:
                s.heavy_context = update.digest

            self.update_session(sid, _set_digest)

        self._updating_context.add(sid)
        try:
            return await self._coordinator.run_exclusive(MEMORY_DIGEST, _work, _apply, scope=sid)
        finally:
            self._updating_context.discard(sid)

    def _spawn_spatial_update(self, sid: str, resolution: TurnResolution) -> Optional[TaskHandle]:
        session = self._sessions.get(sid)
        if session is None:
            return None

        async def _work():
            current = self._sessions.get(sid, session)
            message_count = len(current.messages)
            now = self._clock()
            if latest_snapshot(current) is None:
                return create_initial_snapshot(current, message_count, now, self._config.grid_size)
            if self._spatial is None:
                return None
            raw = await self._spatial.update_positions(current, resolution, message_count)
            location = current.current_location
            update = parse_spatial_update(
                raw,
                snapshot_id=snapshot_id(current.id, now),
                message_number=message_count,
                now_ms=now,
                location_id=current.current_location_id,
                location_name=location.name if location else "Unknown",
                grid_size=self._config.grid_size,
            )
            return update.snapshot if update.updated else None

        def _apply(snapshot) -> None:
            if snapshot is None:
                return

            def _append_snapshot(s: Session) -> None:
                s.grid_snapshots.append(snapshot)

            self.update_session(sid, _append_snapshot)

        return self._coordinator.spawn(SPATIAL_SNAPSHOT, _work, _apply, scope=sid)

    def ensure_location_background(self, *, session_id: Optional[str] = None) -> Optional[TaskHandle]:
        """Start background imagery generation for the current location if it has none."""
        sid = session_id or self._active_id
        session = self._sessions.get(sid) if sid else None
        if session is None or self._location_images is None:
            return None
        location = session.current_location
        if location is None or location.background_image:
            return None

        async def _work():
            return await self._location_images.generate_background(session, location)

        def _apply(image) -> None:
            if not image:
                return

            def _set_image(s: Session) -> None:
                target = s.locations.get(location.id)
                if target is not None:
                    target.background_image = image

            self.update_session(sid, _set_image)

        return self._coordinator.spawn(location_background_key(location.id), _work, _apply, scope=sid)

    async def regenerate_theme_colors(
        self,
        considerations: Optional[str] = None,
        *,
        session_id: Optional[str] = None,
        force: bool = True,
    ) -> bool:
        """Regenerate the session's colour theme.

        An explicit request (``force``) runs even when colours already exist.
        """
        sid = session_id or self._active_id
        session = self._sessions.get(sid) if sid else None
        if session is None or self._theme_colors is None:
            return False
        if not force and session.theme_colors:
            return False

        async def _work():
            raw = await self._theme_colors.generate_colors(session, considerations)
            return parse_theme_colors(raw)

        def _apply(colors: dict[str, str]) -> None:
            def _set_colors(s: Session) -> None:
                s.theme_colors = colors

            self.update_session(sid, _set_colors)

        return await self._coordinator.run_exclusive(THEME_COLORS, _work, _apply, scope=sid)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def create_session(
        self,
        config: SessionConfig,
        player_name: str,
        player_description: str = "",
    ) -> Session:
        """Generate the opening of a new story, persist it and make it active.

        Raises the classified ``ServiceError`` when the initializer fails;
        terminal errors are also reported through the notifier.
        """
        if self._story_initializer is None:
            raise EngineError("no story initializer configured")
        try:
            raw = await self._story_initializer.initialize_story(config, player_name, player_description)
            data = coerce_payload(raw)
            resolution = parse_turn_resolution(data)
        except Exception as exc:
            error = classify_service_error(exc)
            if error.terminal:
                self._notify_blocking(error)
            self._logger.error("Story initialization failed: %s", error)
            if error is exc:
                raise
            raise error from exc

        now = self._clock()
        session_id = self._id_factory()
        updates = resolution.state_updates

        locations = {loc.id: loc for loc in updates.new_locations}
        if updates.location_change and updates.location_change in locations:
            start = locations[updates.location_change]
        elif updates.new_locations:
            start = updates.new_locations[0]
        else:
            start = Location(
                id=self._new_id("loc"),
                name=_localized(FALLBACK_LOCATION_NAME, config.language),
            )
            locations[start.id] = start

        player = self._pick_player(updates.new_characters, player_name)
        player_id = f"player_{session_id}"
        if player is None:
            player = Character(id=player_id, name=player_name, description=player_description)
        stats = default_player_stats(config.universe_name)
        stats.update(player.stats)
        stats["gold"] = clamp_gold(stats["gold"])
        player.id = player_id
        player.name = player.name or player_name
        player.description = player.description or player_description
        player.is_player = True
        player.location_id = start.id
        player.stats = stats

        session = Session(
            id=session_id,
            title=str(data.get("title") or config.universe_name or player_name),
            config=config,
            player_character_id=player_id,
            current_location_id=start.id,
            last_played=now,
            characters={player_id: player},
            locations=locations,
            universe_context=data.get("universe_context", data.get("universeContext")),
        )
        for character in updates.new_characters:
            if character is not player:
                self._merge_new_character(session, character)

        agency = PlayerAgencyFilter(player.name)
        kept, _ = agency.apply(resolution.messages)
        session.messages = self._build_messages(session, kept, now)
        if not session.messages:
            session.messages = [
                Message(
                    id=self._new_id("msg"),
                    sender_id=GM_SENDER_ID,
                    text=_localized(FALLBACK_INTRO_TEXT, config.language).format(location=start.name),
                    type=NARRATION,
                    timestamp=now,
                    page_number=1,
                )
            ]
        session.messages = sanitize_messages(session.messages, self._config.duplicate_window_ms)
        session.grid_snapshots.append(
            create_initial_snapshot(session, len(session.messages), now, self._config.grid_size)
        )

        self._sessions[session_id] = session
        self._persist(session)
        self.switch_session(session_id)
        self._logger.info("Created session %s (%s)", session_id, session.title)

        self.ensure_location_background(session_id=session_id)
        if self._theme_colors is not None:
            self._coordinator.spawn(
                THEME_COLORS,
                lambda: self._generate_colors(session),
                lambda colors: self.update_session(session_id, lambda s: setattr(s, "theme_colors", colors)),
                scope=session_id,
            )
        return session

    async def _generate_colors(self, session: Session) -> dict[str, str]:
        raw = await self._theme_colors.generate_colors(session, None)
        return parse_theme_colors(raw)

    @staticmethod
    def _pick_player(candidates: list[Character], player_name: str) -> Optional[Character]:
        for character in candidates:
            if character.is_player:
                return character
        wanted = normalize_speaker_name(player_name)
        for character in candidates:
            if wanted and normalize_speaker_name(character.name) == wanted:
                return character
        return candidates[0] if candidates else None

    def open_session(self, session_id: str) -> Optional[Session]:
        """Load, validate and migrate a stored session, then make it active.

        Messages only held in memory are merged into the loaded timeline.
        Returns None when the session is missing or its record is invalid.
        """
        in_memory = self._sessions.get(session_id)
        try:
            record = self._gateway.load(session_id)
        except Exception:
            self._logger.exception("Failed to load session %s", session_id)
            record = None

        if record is None:
            if in_memory is None:
                return None
            self.switch_session(session_id)
            return in_memory

        try:
            result = load_and_migrate(record)
        except ValidationError as exc:
            self._logger.error("Session %s is invalid: %s", session_id, "; ".join(exc.errors))
            return None

        session = result.session
        if in_memory is not None:
            session.messages = [*session.messages, *in_memory.messages]
        session.messages = sanitize_messages(session.messages, self._config.duplicate_window_ms)
        self._sessions[session_id] = session
        if result.migrated:
            self._persist(session)
        self.switch_session(session_id)
        return session

    def switch_session(self, session_id: Optional[str]) -> Optional[Session]:
        """Activate another session; jobs of the one left behind are cancelled."""
        previous = self._active_id
        if previous is not None and previous != session_id:
            self._coordinator.cancel_scope(previous)
        if session_id is not None and session_id not in self._sessions:
            session = self.open_session(session_id)
            if session is None:
                self._active_id = None
            return session
        self._active_id = session_id
        return self.active_session

    def list_sessions(self) -> list[SessionSummary]:
        try:
            return self._gateway.load_all()
        except Exception:
            self._logger.exception("Failed to list sessions")
            return [
                SessionSummary(
                    id=s.id,
                    title=s.title,
                    turn_count=s.turn_count,
                    last_played=s.last_played,
                    universe_name=s.config.universe_name,
                )
                for s in sorted(self._sessions.values(), key=lambda s: s.last_played, reverse=True)
            ]

    def delete_session(self, session_id: str) -> None:
        self._coordinator.cancel_scope(session_id)
        self._sessions.pop(session_id, None)
        self._phases.pop(session_id, None)
        self._options_cache.invalidate(session_id)
        if self._active_id == session_id:
            self._active_id = None
        try:
            self._gateway.delete(session_id)
        except Exception:
            self._logger.exception("Failed to delete session %s", session_id)

    def export_session(self, session_id: str) -> Optional[dict[str, Any]]:
        session = self._sessions.get(session_id)
        if session is not None:
            self._persist(session)
        try:
            return self._gateway.export(session_id)
        except Exception:
            self._logger.exception("Failed to export session %s", session_id)
            return None

    def import_session(self, record: Any) -> ImportResult:
        """Import an exported record under a fresh id. Never raises."""
        try:
            validation = self._gateway.validate_import(record)
        except Exception:
            self._logger.exception("Import validation crashed")
            return ImportResult(success=False, error="format")
        if not validation.valid:
            error = "version" if validation.error == "version" else "format"
            self._logger.warning("Rejected import: %s", validation.error)
            return ImportResult(success=False, error=error)
        try:
            new_id = self._gateway.import_record(copy.deepcopy(record))
        except Exception:
            self._logger.exception("Import failed")
            return ImportResult(success=False, error="format")
        self._logger.info("Imported session %s", new_id)
        return ImportResult(success=True, session_id=new_id)

    # ------------------------------------------------------------------
    # Misc operations
    # ------------------------------------------------------------------

    async def validate_credentials(self) -> bool:
        """Check the configured credentials.

        Terminal failures raise the blocking notification. An exhausted quota
        still means the key itself is present and valid.
        """
        if not self._credentials.has_credentials():
            return False
        try:
            return bool(await self._credentials.validate())
        except Exception as exc:
            error = classify_service_error(exc)
            if error.terminal:
                self._notify_blocking(error)
                return isinstance(error, QuotaError)
            self._logger.warning("Credential check failed: %s", error)
            return False

    def mark_card_viewed(self, message_id: str, *, session_id: Optional[str] = None) -> None:
        sid = session_id or self._active_id
        if sid is None:
            return
        session = self._sessions.get(sid)
        if session is None or message_id in session.viewed_cards:
            return

        def _mark(s: Session) -> None:
            s.viewed_cards.append(message_id)

        self.update_session(sid, _mark)

    async def suggest_actions(self, *, session_id: Optional[str] = None) -> list[ActionOption]:
        """Suggested actions for the current context, served from the cache when fresh.

        Collaborator failures yield localized defaults, which are not cached.
        """
        sid = session_id or self._active_id
        session = self._sessions.get(sid) if sid else None
        if session is None:
            return []
        language = session.config.language or self._config.default_language
        if self._action_options is None:
            return default_options(language)

        async def _fetch() -> list[ActionOption]:
            raw = await self._action_options.generate_options(session)
            return parse_action_options(raw, self._config.max_action_options, self._config.max_fate_chance)

        last_id = session.messages[-1].id if session.messages else ""
        try:
            options = await self._options_cache.fetch_with_cache(sid, build_fingerprint(session), _fetch, last_id)
        except Exception as exc:
            self._logger.warning("Action option generation failed for session %s: %s", sid, exc)
            return default_options(language)
        return options or default_options(language)

    async def shutdown(self) -> None:
        await self._coordinator.shutdown()
