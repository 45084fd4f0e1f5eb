from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from .models import (
    ActionOptionCacheRecord,
    CharacterRecord,
    EventRecord,
    LocationRecord,
    MessageRecord,
    SessionRecord,
)


class SessionRepo:
    def __init__(self, session: Session):
        self.session = session

    def get(self, session_id: str) -> SessionRecord | None:
        return self.session.get(SessionRecord, session_id)

    def list_recent(self) -> list[SessionRecord]:
        stmt = select(SessionRecord).order_by(SessionRecord.last_played.desc(), SessionRecord.id)
        return list(self.session.execute(stmt).scalars().all())

    def upsert(self, session_id: str, values: dict[str, Any]) -> SessionRecord:
        row = self.get(session_id)
        if row is None:
            row = SessionRecord(id=session_id, **values)
            self.session.add(row)
        else:
            for key, value in values.items():
                setattr(row, key, value)
            row.updated_at = datetime.utcnow()
        self.session.flush()
        return row

    def delete(self, session_id: str) -> int:
        stmt = delete(SessionRecord).where(SessionRecord.id == session_id)
        return self.session.execute(stmt).rowcount or 0


class _ChildRepo:
    model: Any = None

    def __init__(self, session: Session):
        self.session = session

    def list_by_session(self, session_id: str) -> list[Any]:
        stmt = select(self.model).where(self.model.session_id == session_id)
        return list(self.session.execute(stmt).scalars().all())

    def delete_by_session(self, session_id: str) -> int:
        stmt = delete(self.model).where(self.model.session_id == session_id)
        return self.session.execute(stmt).rowcount or 0

    def replace_all(self, session_id: str, rows: Iterable[dict[str, Any]]) -> int:
        self.delete_by_session(session_id)
        count = 0
        for values in rows:
            self.session.add(self.model(session_id=session_id, **values))
            count += 1
        self.session.flush()
        return count


class CharacterRepo(_ChildRepo):
    model = CharacterRecord


class LocationRepo(_ChildRepo):
    model = LocationRecord


class MessageRepo(_ChildRepo):
    model = MessageRecord

    def list_by_session(self, session_id: str) -> list[MessageRecord]:
        stmt = (
            select(MessageRecord)
            .where(MessageRecord.session_id == session_id)
            .order_by(MessageRecord.timestamp, MessageRecord.message_id)
        )
        return list(self.session.execute(stmt).scalars().all())


class EventRepo(_ChildRepo):
    model = EventRecord

    def list_by_session(self, session_id: str) -> list[EventRecord]:
        stmt = (
            select(EventRecord)
            .where(EventRecord.session_id == session_id)
            .order_by(EventRecord.position)
        )
        return list(self.session.execute(stmt).scalars().all())


class ActionOptionCacheRepo:
    def __init__(self, session: Session):
        self.session = session

    def get(self, session_id: str) -> ActionOptionCacheRecord | None:
        return self.session.get(ActionOptionCacheRecord, session_id)

    def put(self, session_id: str, payload_json: str) -> ActionOptionCacheRecord:
        row = self.get(session_id)
        if row is None:
            row = ActionOptionCacheRecord(session_id=session_id, payload_json=payload_json)
            self.session.add(row)
        else:
            row.payload_json = payload_json
            row.updated_at = datetime.utcnow()
        self.session.flush()
        return row

    def delete(self, session_id: str) -> int:
        stmt = delete(ActionOptionCacheRecord).where(ActionOptionCacheRecord.session_id == session_id)
        return self.session.execute(stmt).rowcount or 0
