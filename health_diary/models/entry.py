"""Diary entry model."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String

from health_diary.database import Base

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

# Forward-only: a stage status never moves back.
ALLOWED_TRANSITIONS = {
    STATUS_PENDING: (STATUS_PROCESSING, STATUS_FAILED),
    STATUS_PROCESSING: (STATUS_COMPLETED, STATUS_FAILED),
    STATUS_COMPLETED: (),
    STATUS_FAILED: (),
}


def new_id() -> str:
    return str(uuid.uuid4())


class Entry(Base):
    """One recorded diary entry and the refs of its derived artifacts."""

    __tablename__ = "entry"

    id = Column(String(36), primary_key=True, default=new_id)
    owner_id = Column(String(64), ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True)
    occurred_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    audio_ref = Column(String(512), nullable=False)
    transcript_ref = Column(String(512), nullable=True)
    summary_ref = Column(String(512), nullable=True)
    transcription_status = Column(String(32), nullable=False, default=STATUS_PENDING, index=True)
    analysis_status = Column(String(32), nullable=False, default=STATUS_PENDING, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    @property
    def blob_refs(self) -> list[str]:
        """All blob refs held by this entry."""
        return [ref for ref in (self.audio_ref, self.transcript_ref, self.summary_ref) if ref]
