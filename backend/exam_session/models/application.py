"""
Application model - scholarship applications that admit a candidate to a test.

The record-lookup dependency of the eligibility gate reads this table by
application number. Registration itself happens elsewhere.
"""

import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, Text, Boolean, DateTime, String, Index
from exam_session.database import Base


class Application(Base):
    """
    SQLAlchemy model for the applications table.

    payment_verified is flipped by an administrator once the fee is confirmed;
    until then the gate answers PaymentRequired.
    """
    __tablename__ = "applications"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()),
                doc="Internal identifier")
    application_number = Column(String(64), nullable=False, unique=True,
                                doc="Public application number, e.g. 'GSA2024AB12C'")
    unique_id = Column(Text, nullable=True,
                       doc="Secret access code printed on the admit card")
    full_name = Column(Text, nullable=False,
                       doc="Applicant's full name as registered")
    test_mode = Column(Text, nullable=False, default="online",
                       doc="Registered modality: online | offline")
    payment_verified = Column(Boolean, nullable=False, default=False,
                              doc="Whether the application fee has been verified")
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc),
                        doc="Timestamp when the application was received")

    __table_args__ = (
        Index("ix_applications_application_number", "application_number"),
    )

    def __repr__(self):
        return f"<Application(number={self.application_number}, name='{self.full_name}', mode='{self.test_mode}')>"
