from .core.engine import SessionEngine
from .core.config import EngineConfig
from .core.errors import ServiceError, ValidationError
from .core.tokens import count_tokens
from .core.types import FateResult, Session, SessionConfig, TurnOutcome
from .persistence.sqlalchemy import SQLAlchemyActionOptionsStore, SQLAlchemySessionGateway, open_store

__all__ = [
    "SessionEngine",
    "EngineConfig",
    "ServiceError",
    "ValidationError",
    "count_tokens",
    "FateResult",
    "Session",
    "SessionConfig",
    "TurnOutcome",
    "SQLAlchemySessionGateway",
    "SQLAlchemyActionOptionsStore",
    "open_store",
]
