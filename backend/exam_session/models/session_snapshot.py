"""
SessionSnapshotRecord model - resumable state of an in-progress test session.

One row per (context_id, test_id). The payload is the JSON-serialized
SessionSnapshot and is overwritten on every save.
"""

from datetime import datetime, timezone
from sqlalchemy import Column, Text, DateTime, String
from exam_session.database import Base


class SessionSnapshotRecord(Base):
    """SQLAlchemy model for the session_snapshots table."""
    __tablename__ = "session_snapshots"

    context_id = Column(String(100), primary_key=True,
                        doc="Device/browser context the snapshot belongs to")
    test_id = Column(String(100), primary_key=True,
                     doc="Test the snapshot belongs to")
    payload = Column(Text, nullable=False,
                     doc="Serialized SessionSnapshot JSON")
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc),
                        onupdate=lambda: datetime.now(timezone.utc),
                        doc="Time of the last successful save")

    def __repr__(self):
        return f"<SessionSnapshotRecord(context={self.context_id}, test={self.test_id})>"
