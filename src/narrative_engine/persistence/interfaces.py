from __future__ import annotations

from typing import Any, Iterable, Optional, Protocol

from ..core.types import ImportValidation, Session, SessionSummary


class SessionRepo(Protocol):
    def get(self, session_id: str): ...
    def list_recent(self): ...
    def upsert(self, session_id: str, values: dict[str, Any]): ...
    def delete(self, session_id: str) -> int: ...


class SessionChildRepo(Protocol):
    def list_by_session(self, session_id: str): ...
    def delete_by_session(self, session_id: str) -> int: ...
    def replace_all(self, session_id: str, rows: Iterable[dict[str, Any]]) -> int: ...


class ActionOptionCacheRepo(Protocol):
    def get(self, session_id: str): ...
    def put(self, session_id: str, payload_json: str): ...
    def delete(self, session_id: str) -> int: ...


class UnitOfWork(Protocol):
    sessions: SessionRepo
    characters: SessionChildRepo
    locations: SessionChildRepo
    messages: SessionChildRepo
    events: SessionChildRepo
    action_options: ActionOptionCacheRepo

    def commit(self) -> None: ...
    def rollback(self) -> None: ...

    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...


class SessionGateway(Protocol):
    """Durable per-session record store.

    ``load`` returns the raw record (a dict in ``Session.to_dict`` shape that
    may still carry legacy fields); the engine validates and migrates it.
    """

    def load_all(self) -> list[SessionSummary]: ...
    def load(self, session_id: str) -> Optional[dict[str, Any]]: ...
    def save(self, session: Session) -> None: ...
    def delete(self, session_id: str) -> None: ...
    def export(self, session_id: str) -> Optional[dict[str, Any]]: ...
    def import_record(self, record: dict[str, Any]) -> str: ...
    def validate_import(self, record: Any) -> ImportValidation: ...


class ActionOptionsStore(Protocol):
    def get(self, session_id: str) -> Optional[str]: ...
    def put(self, session_id: str, payload: str) -> None: ...
    def delete(self, session_id: str) -> None: ...
