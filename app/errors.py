"""Ingestion pipeline errors.

Services raise these; ``main.py`` renders them as JSON responses using
``status_code``.
"""


class IngestionError(Exception):
    """Base class for errors surfaced by the ingestion pipeline."""

    status_code: int = 500

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class MessageNotFoundError(IngestionError):
    """Referenced message does not exist."""

    status_code = 404

    def __init__(self, message_id: str) -> None:
        super().__init__(f'Message with id "{message_id}" not found')
        self.message_id = message_id


class MissingAudioError(IngestionError):
    """Processing requested for a message that has no uploaded audio."""

    status_code = 400

    def __init__(self, message_id: str) -> None:
        super().__init__(f'Message "{message_id}" has no audio file')
        self.message_id = message_id


class InvalidArchiveError(IngestionError):
    """Bulk archive is unreadable or holds no audio entries."""

    status_code = 400


class InvalidTransitionError(IngestionError):
    """Requested processing status change is not allowed."""

    status_code = 409

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"Cannot move message from {current} to {requested}")
        self.current = current
        self.requested = requested


class GatewayUnavailableError(IngestionError):
    """Blob store or job queue call failed."""

    status_code = 503


class UnknownThemeError(IngestionError):
    """Message references themes that do not belong to its project."""

    status_code = 400

    def __init__(self, theme_ids: list[str]) -> None:
        super().__init__(f"Unknown theme ids: {', '.join(theme_ids)}")
        self.theme_ids = theme_ids
