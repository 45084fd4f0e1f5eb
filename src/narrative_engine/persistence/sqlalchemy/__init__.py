from .db import build_engine, build_session_factory, create_schema, open_store
from .gateway import SQLAlchemyActionOptionsStore, SQLAlchemySessionGateway
from .uow import SQLAlchemyUnitOfWork

__all__ = [
    "build_engine",
    "build_session_factory",
    "create_schema",
    "open_store",
    "SQLAlchemySessionGateway",
    "SQLAlchemyActionOptionsStore",
    "SQLAlchemyUnitOfWork",
]
