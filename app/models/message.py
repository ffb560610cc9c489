"""Message, theme and association models."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from app.database import Base


class ProcessingStatus(str, enum.Enum):
    """Processing state of a message."""

    PENDING = "PENDING"
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Tone(str, enum.Enum):
    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"
    NEUTRAL = "NEUTRAL"


class EmotionalLoad(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


TERMINAL_STATUSES = frozenset({ProcessingStatus.COMPLETED, ProcessingStatus.FAILED})


def _new_id() -> str:
    return str(uuid.uuid4())


class Theme(Base):
    """Project theme that messages can be tagged with."""

    __tablename__ = "theme"

    id = Column(String(36), primary_key=True, default=_new_id)
    project_id = Column(String(36), nullable=False, index=True)
    name = Column(String(256), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class MessageTheme(Base):
    """Message <-> theme link."""

    __tablename__ = "message_theme"

    message_id = Column(String(36), ForeignKey("message.id", ondelete="CASCADE"), primary_key=True)
    theme_id = Column(String(36), ForeignKey("theme.id", ondelete="CASCADE"), primary_key=True)


class MessageEmotion(Base):
    """Free-form emotion label attached to a message."""

    __tablename__ = "message_emotion"

    message_id = Column(String(36), ForeignKey("message.id", ondelete="CASCADE"), primary_key=True)
    emotion_name = Column(String(128), primary_key=True)


class Message(Base):
    """One recorded audio submission and its processing state."""

    __tablename__ = "message"

    id = Column(String(36), primary_key=True, default=_new_id)
    project_id = Column(String(36), nullable=False, index=True)
    filename = Column(String(512), nullable=False)
    audio_key = Column(String(1024), nullable=True)
    duration = Column(Float, nullable=True)
    speaker = Column(String(256), nullable=True)
    transcript_txt = Column(Text, nullable=True)
    tone = Column(String(16), nullable=True)  # POSITIVE, NEGATIVE, NEUTRAL
    quote = Column(Text, nullable=True)
    emotional_load = Column(String(16), nullable=True)  # LOW, MEDIUM, HIGH

    processing_status = Column(String(16), nullable=False, default=ProcessingStatus.PENDING.value, index=True)
    processing_error = Column(Text, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    gcp_job_id = Column(String(256), nullable=True)
    gcp_duration = Column(Float, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    themes = relationship(MessageTheme, cascade="all, delete-orphan", lazy="selectin")
    emotions = relationship(MessageEmotion, cascade="all, delete-orphan", lazy="selectin")

    @property
    def theme_ids(self) -> list[str]:
        return [link.theme_id for link in self.themes]

    @property
    def emotion_names(self) -> list[str]:
        return [link.emotion_name for link in self.emotions]

    def __repr__(self) -> str:
        return f"<Message {self.id} status={self.processing_status}>"
