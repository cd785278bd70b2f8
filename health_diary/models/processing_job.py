"""Processing job model: one attempt at one stage for one entry."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text

from health_diary.database import Base
from health_diary.models.entry import STATUS_PENDING, new_id

JOB_TYPE_TRANSCRIPTION = "transcription"
JOB_TYPE_ANALYSIS = "analysis"


class ProcessingJob(Base):
    """Internal attempt record; the entry's stage status is the visible summary."""

    __tablename__ = "processing_job"

    id = Column(String(36), primary_key=True, default=new_id)
    entry_id = Column(String(36), ForeignKey("entry.id", ondelete="CASCADE"), nullable=False, index=True)
    job_type = Column(String(32), nullable=False)  # transcription, analysis
    status = Column(String(32), nullable=False, default=STATUS_PENDING, index=True)
    provider_job_id = Column(String(256), nullable=True)
    error_message = Column(Text, nullable=True)
    poll_error_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
