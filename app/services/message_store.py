"""Message record persistence."""

from typing import Any

from sqlalchemy.orm import Session

from app.models.message import Message, MessageEmotion, MessageTheme, ProcessingStatus


class MessageStore:
    """CRUD over message rows and their theme/emotion links."""

    def create(
        self,
        db: Session,
        project_id: str,
        filename: str,
        audio_key: str | None = None,
        theme_ids: list[str] | None = None,
        emotions: list[str] | None = None,
        **fields: Any,
    ) -> Message:
        """Create a message record in PENDING state."""
        message = Message(
            project_id=project_id,
            filename=filename,
            audio_key=audio_key,
            processing_status=ProcessingStatus.PENDING.value,
            retry_count=0,
            **{k: v for k, v in fields.items() if v is not None},
        )
        for theme_id in dict.fromkeys(theme_ids or []):
            message.themes.append(MessageTheme(theme_id=theme_id))
        for emotion in dict.fromkeys(emotions or []):
            message.emotions.append(MessageEmotion(emotion_name=emotion))

        db.add(message)
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(message)
        return message

    def get(self, db: Session, message_id: str) -> Message | None:
        return db.get(Message, message_id)

    def find_many(
        self,
        db: Session,
        project_id: str,
        status: ProcessingStatus | None = None,
        has_audio: bool | None = None,
    ) -> list[Message]:
        """Messages of a project, most recently updated first."""
        query = db.query(Message).filter(Message.project_id == project_id)
        if status is not None:
            query = query.filter(Message.processing_status == ProcessingStatus(status).value)
        if has_audio is True:
            query = query.filter(Message.audio_key.is_not(None))
        elif has_audio is False:
            query = query.filter(Message.audio_key.is_(None))
        return query.order_by(Message.updated_at.desc(), Message.created_at.desc()).all()

    def update(self, db: Session, message: Message, patch: dict[str, Any]) -> Message:
        """Write only the supplied fields."""
        for name, value in patch.items():
            setattr(message, name, value)
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(message)
        return message

    def delete(self, db: Session, message: Message) -> None:
        db.delete(message)
        db.commit()


_message_store: MessageStore | None = None


def get_message_store() -> MessageStore:
    """Get singleton message store instance."""
    global _message_store
    if _message_store is None:
        _message_store = MessageStore()
    return _message_store
