"""
Session State Store - durable snapshots of in-progress sessions.

Snapshots are addressed by test id within a device/browser context, so a
reload in the same context resumes the same question set, answers, position
and remaining time instead of regenerating anything. Callers treat save as
fire-and-continue: the engine logs a failed save and retries on the next
interval.
"""

import threading
from typing import Callable, Dict, Optional, Protocol, Tuple

from sqlalchemy.orm import Session

from exam_session.models.session_snapshot import SessionSnapshotRecord
from exam_session.services.domain import SessionSnapshot
from exam_session.logging_config import get_logger, log_with_context

logger = get_logger("db")

DEFAULT_CONTEXT = "default"


class SessionStateStore(Protocol):
    def save(self, test_id: str, snapshot: SessionSnapshot, context_id: str = DEFAULT_CONTEXT) -> None:
        ...

    def load(self, test_id: str, context_id: str = DEFAULT_CONTEXT) -> Optional[SessionSnapshot]:
        ...

    def clear(self, test_id: str, context_id: str = DEFAULT_CONTEXT) -> None:
        ...


class InMemorySnapshotStore:
    """Keeps serialized snapshots so loads never alias live session state."""

    def __init__(self):
        self._payloads: Dict[Tuple[str, str], str] = {}
        self._lock = threading.Lock()

    def save(self, test_id: str, snapshot: SessionSnapshot, context_id: str = DEFAULT_CONTEXT) -> None:
        payload = snapshot.model_dump_json()
        with self._lock:
            self._payloads[(context_id, test_id)] = payload

    def load(self, test_id: str, context_id: str = DEFAULT_CONTEXT) -> Optional[SessionSnapshot]:
        with self._lock:
            payload = self._payloads.get((context_id, test_id))
        if payload is None:
            return None
        return SessionSnapshot.model_validate_json(payload)

    def clear(self, test_id: str, context_id: str = DEFAULT_CONTEXT) -> None:
        with self._lock:
            self._payloads.pop((context_id, test_id), None)

    def raw(self, test_id: str, context_id: str = DEFAULT_CONTEXT) -> Optional[str]:
        with self._lock:
            return self._payloads.get((context_id, test_id))


class SqlSnapshotStore:
    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def save(self, test_id: str, snapshot: SessionSnapshot, context_id: str = DEFAULT_CONTEXT) -> None:
        payload = snapshot.model_dump_json()
        db = self._session_factory()
        try:
            record = db.get(SessionSnapshotRecord, (context_id, test_id))
            if record is None:
                db.add(SessionSnapshotRecord(context_id=context_id, test_id=test_id, payload=payload))
            else:
                record.payload = payload
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def load(self, test_id: str, context_id: str = DEFAULT_CONTEXT) -> Optional[SessionSnapshot]:
        db = self._session_factory()
        try:
            record = db.get(SessionSnapshotRecord, (context_id, test_id))
            if record is None:
                return None
            payload = record.payload
        finally:
            db.close()
        try:
            return SessionSnapshot.model_validate_json(payload)
        except ValueError:
            # A corrupt snapshot cannot be resumed; the session starts over
            log_with_context(logger, "ERROR", "Discarding unreadable snapshot",
                             context={"test_id": test_id, "context_id": context_id}, exc_info=True)
            return None

    def clear(self, test_id: str, context_id: str = DEFAULT_CONTEXT) -> None:
        db = self._session_factory()
        try:
            db.query(SessionSnapshotRecord).filter(
                SessionSnapshotRecord.context_id == context_id,
                SessionSnapshotRecord.test_id == test_id
            ).delete()
            db.commit()
        finally:
            db.close()
