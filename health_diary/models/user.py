"""User profile and tracked-topic models."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from health_diary.database import Base

TONES = ("minimal", "friendly", "reassuring")
DEFAULT_TONE = "friendly"
TOPICS = ("sleep", "food", "exercise", "wellness", "mood", "symptoms")
DEFAULT_TOPICS = ("wellness", "mood")


class User(Base):
    """Diary owner. Accounts live in the account service; this row holds analysis preferences."""

    __tablename__ = "user"

    id = Column(String(64), primary_key=True)
    email = Column(String(256), nullable=True, index=True)
    display_name = Column(String(256), nullable=True)
    interaction_style = Column(String(32), nullable=False, default=DEFAULT_TONE)  # minimal, friendly, reassuring
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class UserTopic(Base):
    """A health topic the user wants tracked in their entries."""

    __tablename__ = "user_topic"
    __table_args__ = (UniqueConstraint("user_id", "topic", name="uq_user_topic_user_id_topic"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True)
    topic = Column(String(64), nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
