from .action_options import ActionOptionsCache, build_fingerprint, default_options, roll_fate
from .agency import PlayerAgencyFilter, find_character_by_name
from .background import BackgroundTaskCoordinator, TaskHandle
from .config import EngineConfig
from .engine import SessionEngine, TurnPhase
from .errors import (
    AuthError,
    EngineError,
    GenericServiceError,
    MalformedResponseError,
    NetworkError,
    QuotaError,
    RateLimitError,
    ServiceError,
    ValidationError,
    classify_service_error,
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
from .tokens import count_tokens
from .types import (
    ActionOption,
    Character,
    FateResult,
    GridSnapshot,
    HeavyContext,
    ImportResult,
    Item,
    Location,
    Message,
    Session,
    SessionConfig,
    SessionSummary,
    TurnOutcome,
)

__all__ = [
    "SessionEngine",
    "TurnPhase",
    "EngineConfig",
    "BackgroundTaskCoordinator",
    "TaskHandle",
    "ActionOptionsCache",
    "build_fingerprint",
    "default_options",
    "roll_fate",
    "PlayerAgencyFilter",
    "find_character_by_name",
    "count_tokens",
    "EngineError",
    "ValidationError",
    "ServiceError",
    "AuthError",
    "QuotaError",
    "RateLimitError",
    "NetworkError",
    "GenericServiceError",
    "MalformedResponseError",
    "classify_service_error",
    "InputClassifierPort",
    "TurnResolverPort",
    "MemoryDigestPort",
    "SpatialTrackerPort",
    "LocationImagePort",
    "ThemeColorPort",
    "ActionOptionsPort",
    "StoryInitializerPort",
    "CredentialsPort",
    "Notifier",
    "ActionOption",
    "Character",
    "FateResult",
    "GridSnapshot",
    "HeavyContext",
    "ImportResult",
    "Item",
    "Location",
    "Message",
    "Session",
    "SessionConfig",
    "SessionSummary",
    "TurnOutcome",
]
