"""Audio message ingestion and processing orchestration.

Creates message records, stores their audio, submits processing jobs and
owns the processing status state machine::

    PENDING -> QUEUED -> PROCESSING -> COMPLETED
                 ^            |
                 |            v
                 +-------- FAILED      (explicit retry only)

Single and bulk ingestion are best-effort: a storage or queue failure for
one file is logged and the rest carry on. Trigger and retry on a single
message propagate gateway failures to the caller.
"""

import logging
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.errors import (
    GatewayUnavailableError,
    IngestionError,
    InvalidTransitionError,
    MessageNotFoundError,
    MissingAudioError,
    UnknownThemeError,
)
from app.models.message import TERMINAL_STATUSES, Message, ProcessingStatus, Theme, Tone
from app.schemas.message import MessageCreate
from app.services.archive import AUDIO_MIME_TYPE, parse_archive
from app.services.blob_store import BlobStore, get_blob_store
from app.services.job_queue import JobQueue, get_job_queue
from app.services.message_store import MessageStore, get_message_store

logger = logging.getLogger("allo_ingest")

# Status changes the worker callback may report. Re-reporting the current
# status is always accepted so duplicate deliveries are harmless. QUEUED ->
# COMPLETED covers a retry issued while the job was running: the queue leaves
# the in-flight job alone, so its result settles the retry.
ALLOWED_TRANSITIONS: dict[ProcessingStatus, frozenset[ProcessingStatus]] = {
    ProcessingStatus.PENDING: frozenset({ProcessingStatus.QUEUED}),
    ProcessingStatus.QUEUED: frozenset(
        {ProcessingStatus.PROCESSING, ProcessingStatus.COMPLETED, ProcessingStatus.FAILED}
    ),
    ProcessingStatus.PROCESSING: frozenset({ProcessingStatus.COMPLETED, ProcessingStatus.FAILED}),
    ProcessingStatus.FAILED: frozenset({ProcessingStatus.QUEUED}),
    ProcessingStatus.COMPLETED: frozenset(),
}


def can_transition(current: ProcessingStatus, target: ProcessingStatus) -> bool:
    return current == target or target in ALLOWED_TRANSITIONS[current]


@dataclass
class AudioPayload:
    """Raw audio submitted by a client."""

    filename: str
    data: bytes
    mime_type: str = AUDIO_MIME_TYPE


@dataclass
class StoredPayload:
    payload: AudioPayload
    audio_key: str | None = None
    error: Exception | None = None


@dataclass
class FileUploadResult:
    """Terminal outcome of one file in a multi-file upload."""

    filename: str
    status: str  # uploaded, error
    message_id: str | None = None
    processing_status: str | None = None
    error: str | None = None


class IngestionService:
    """Drives messages from upload through processing."""

    def __init__(
        self,
        blob_store: BlobStore,
        job_queue: JobQueue,
        store: MessageStore | None = None,
        upload_concurrency: int = 5,
    ) -> None:
        self.blob_store = blob_store
        self.job_queue = job_queue
        self.store = store or get_message_store()
        self.upload_concurrency = max(1, upload_concurrency)

    # --- Lookups ---

    def get_message(self, db: Session, message_id: str) -> Message:
        message = self.store.get(db, message_id)
        if message is None:
            raise MessageNotFoundError(message_id)
        return message

    def list_messages(self, db: Session, project_id: str, status: ProcessingStatus | None = None) -> list[Message]:
        return self.store.find_many(db, project_id, status=status)

    def list_failed(self, db: Session, project_id: str) -> list[Message]:
        """FAILED messages of a project, most recent first."""
        return self.store.find_many(db, project_id, status=ProcessingStatus.FAILED)

    # --- Ingestion ---

    def create_message(
        self,
        db: Session,
        project_id: str,
        data: MessageCreate,
        audio: AudioPayload | None = None,
    ) -> Message:
        """Create one message, storing and queueing its audio when supplied.

        A storage failure leaves the message without audio; a queue failure
        leaves it PENDING for backlog processing. Neither fails creation.
        """
        self._check_themes(db, project_id, data.theme_ids)

        audio_key = None
        if audio is not None:
            try:
                audio_key = self.blob_store.upload(project_id, audio.filename, audio.data, audio.mime_type)
            except GatewayUnavailableError as e:
                logger.warning("Audio upload failed for '%s', creating message without audio: %s", data.filename, e)

        try:
            message = self.store.create(
                db,
                project_id,
                data.filename,
                audio_key=audio_key,
                theme_ids=data.theme_ids,
                emotions=data.emotions,
                duration=data.duration,
                speaker=data.speaker,
                transcript_txt=data.transcript_txt,
                emotional_load=data.emotional_load.value if data.emotional_load else None,
                quote=data.quote,
            )
        except SQLAlchemyError:
            if audio_key:
                self._discard_blob(audio_key)
            raise

        if audio_key:
            self._try_enqueue(db, message)
        return message

    def bulk_upload(self, db: Session, project_id: str, archive: bytes) -> list[Message]:
        """Ingest every audio entry of a ZIP archive.

        Raises InvalidArchiveError when the archive holds no audio. Entries
        whose storage or record creation fails are skipped; the created
        messages are returned.
        """
        parsed = parse_archive(archive)
        payloads = [AudioPayload(entry.filename, entry.data) for entry in parsed.entries]

        created: list[Message] = []
        for stored in self._upload_in_batches(project_id, payloads):
            if stored.error is not None:
                continue
            metadata = parsed.metadata_for(stored.payload.filename)
            message = self._create_stored(
                db,
                project_id,
                stored,
                transcript_txt=metadata.transcript,
                speaker=metadata.speaker,
                tone=metadata.tone,
            )
            if message is None:
                continue
            self._try_enqueue(db, message)
            created.append(message)

        logger.info(
            "Bulk uploaded %d of %d audio files to project %s", len(created), len(payloads), project_id
        )
        return created

    def upload_files(self, db: Session, project_id: str, files: list[AudioPayload]) -> list[FileUploadResult]:
        """Ingest several individually submitted files, reporting per-file status."""
        results: list[FileUploadResult] = []
        for stored in self._upload_in_batches(project_id, files):
            filename = stored.payload.filename
            if stored.error is not None:
                results.append(FileUploadResult(filename=filename, status="error", error=str(stored.error)))
                continue

            message = self._create_stored(db, project_id, stored)
            if message is None:
                results.append(FileUploadResult(filename=filename, status="error", error="Failed to save message"))
                continue

            self._try_enqueue(db, message)
            results.append(
                FileUploadResult(
                    filename=filename,
                    status="uploaded",
                    message_id=message.id,
                    processing_status=message.processing_status,
                )
            )

        uploaded = sum(1 for r in results if r.status == "uploaded")
        logger.info("Uploaded %d of %d files to project %s", uploaded, len(files), project_id)
        return results

    # --- Processing state machine ---

    def trigger_processing(self, db: Session, message_id: str) -> Message:
        """Queue a message for processing.

        Messages already QUEUED or PROCESSING are returned untouched so a
        repeated trigger does not submit a second job.
        """
        message = self.get_message(db, message_id)
        if not message.audio_key:
            raise MissingAudioError(message_id)

        current = ProcessingStatus(message.processing_status)
        if current in (ProcessingStatus.QUEUED, ProcessingStatus.PROCESSING):
            logger.info("Message %s is already %s, not enqueueing again", message_id, current.value)
            return message
        if not can_transition(current, ProcessingStatus.QUEUED):
            raise InvalidTransitionError(current.value, ProcessingStatus.QUEUED.value)

        self._enqueue(db, message)
        return message

    def retry_processing(self, db: Session, message_id: str) -> Message:
        """Put a message back to QUEUED and resubmit its job.

        Raises MissingAudioError for a message without audio. This is the
        only place retry_count is incremented.
        """
        message = self.get_message(db, message_id)
        if not message.audio_key:
            raise MissingAudioError(message_id)
        previous = self._snapshot(message)
        self.store.update(
            db,
            message,
            {
                "processing_status": ProcessingStatus.QUEUED.value,
                "processing_error": None,
                "retry_count": (message.retry_count or 0) + 1,
            },
        )
        try:
            self.job_queue.retry(message.id, message.project_id)
        except GatewayUnavailableError:
            self.store.update(db, message, previous)
            raise

        logger.info("Retrying message %s (attempt %d)", message.id, message.retry_count)
        return message

    def update_processing_status(self, db: Session, message_id: str, patch: dict[str, Any]) -> Message:
        """Apply a sparse progress report from the processing worker.

        Only supplied fields are written. A status change must follow
        ALLOWED_TRANSITIONS; derived fields (transcript, tone, ...) are
        written freely.
        """
        message = self.get_message(db, message_id)
        changes = dict(patch)

        # Non-nullable columns: an explicit null means "not reported".
        for name in ("processing_status", "retry_count"):
            if name in changes and changes[name] is None:
                del changes[name]

        if "processing_status" in changes:
            current = ProcessingStatus(message.processing_status)
            target = ProcessingStatus(changes["processing_status"])
            if not can_transition(current, target):
                raise InvalidTransitionError(current.value, target.value)
            changes["processing_status"] = target.value
            if target in TERMINAL_STATUSES and changes.get("processed_at") is None:
                changes["processed_at"] = datetime.utcnow()
            if target != ProcessingStatus.FAILED:
                changes["processing_error"] = None

        if "retry_count" in changes:
            changes["retry_count"] = max(message.retry_count or 0, int(changes["retry_count"]))

        if changes.get("tone") is not None:
            changes["tone"] = Tone(changes["tone"]).value

        if not changes:
            return message
        return self.store.update(db, message, changes)

    def process_backlog(self, db: Session, project_id: str) -> int:
        """Trigger every PENDING message that has audio. Returns how many were queued."""
        backlog = self.store.find_many(db, project_id, status=ProcessingStatus.PENDING, has_audio=True)
        queued = 0
        for message in backlog:
            try:
                self.trigger_processing(db, message.id)
                queued += 1
            except (IngestionError, SQLAlchemyError) as e:
                logger.warning("Could not queue message %s: %s", message.id, e)

        logger.info("Queued %d of %d backlog messages for project %s", queued, len(backlog), project_id)
        return queued

    def retry_all_failed(self, db: Session, project_id: str) -> int:
        """Retry every FAILED message of a project. Returns how many were retried."""
        failed = self.list_failed(db, project_id)
        retried = 0
        for message in failed:
            try:
                self.retry_processing(db, message.id)
                retried += 1
            except (IngestionError, SQLAlchemyError) as e:
                logger.warning("Could not retry message %s: %s", message.id, e)

        logger.info("Retried %d of %d failed messages for project %s", retried, len(failed), project_id)
        return retried

    def delete_message(self, db: Session, message_id: str) -> None:
        """Delete a message record and its stored audio."""
        message = self.get_message(db, message_id)
        if message.audio_key:
            self.blob_store.delete(message.audio_key)
        self.store.delete(db, message)

    # --- Internals ---

    def _check_themes(self, db: Session, project_id: str, theme_ids: list[str]) -> None:
        if not theme_ids:
            return
        known = {
            row.id
            for row in db.query(Theme.id).filter(Theme.project_id == project_id, Theme.id.in_(theme_ids)).all()
        }
        unknown = [theme_id for theme_id in theme_ids if theme_id not in known]
        if unknown:
            raise UnknownThemeError(unknown)

    def _upload_in_batches(self, project_id: str, payloads: list[AudioPayload]) -> Iterator[StoredPayload]:
        """Store payloads at most ``upload_concurrency`` at a time.

        Each batch settles completely before the next one starts. Failures
        are reported on the yielded StoredPayload, never raised.
        """
        size = self.upload_concurrency
        with ThreadPoolExecutor(max_workers=size, thread_name_prefix="blob-upload") as executor:
            for start in range(0, len(payloads), size):
                batch = payloads[start : start + size]
                futures = [
                    executor.submit(self.blob_store.upload, project_id, p.filename, p.data, p.mime_type)
                    for p in batch
                ]
                wait(futures)
                for payload, future in zip(batch, futures):
                    error = future.exception()
                    if error is not None:
                        logger.error("Audio upload failed for '%s': %s", payload.filename, error)
                        yield StoredPayload(payload, error=error)
                    else:
                        yield StoredPayload(payload, audio_key=future.result())

    def _create_stored(self, db: Session, project_id: str, stored: StoredPayload, **fields: Any) -> Message | None:
        try:
            return self.store.create(db, project_id, stored.payload.filename, audio_key=stored.audio_key, **fields)
        except SQLAlchemyError as e:
            logger.error("Failed to save message for '%s': %s", stored.payload.filename, e)
            self._discard_blob(stored.audio_key)
            return None

    def _discard_blob(self, audio_key: str | None) -> None:
        if not audio_key:
            return
        try:
            self.blob_store.delete(audio_key)
        except GatewayUnavailableError as e:
            logger.warning("Could not remove orphaned audio %s: %s", audio_key, e)

    @staticmethod
    def _snapshot(message: Message) -> dict[str, Any]:
        return {
            "processing_status": message.processing_status,
            "processing_error": message.processing_error,
            "retry_count": message.retry_count,
        }

    def _enqueue(self, db: Session, message: Message) -> None:
        """Mark QUEUED and submit the job, restoring the previous state if submission fails."""
        previous = self._snapshot(message)
        self.store.update(
            db,
            message,
            {"processing_status": ProcessingStatus.QUEUED.value, "processing_error": None},
        )
        try:
            self.job_queue.enqueue_processing(message.id, message.project_id)
        except GatewayUnavailableError:
            self.store.update(db, message, previous)
            raise

    def _try_enqueue(self, db: Session, message: Message) -> None:
        try:
            self._enqueue(db, message)
        except (GatewayUnavailableError, SQLAlchemyError) as e:
            logger.warning("Could not enqueue message %s, leaving it PENDING: %s", message.id, e)


_ingestion_service: IngestionService | None = None


def get_ingestion_service() -> IngestionService:
    """Get singleton ingestion service wired to the configured gateways."""
    global _ingestion_service
    if _ingestion_service is None:
        settings = get_settings()
        _ingestion_service = IngestionService(
            blob_store=get_blob_store(),
            job_queue=get_job_queue(),
            upload_concurrency=settings.UPLOAD_CONCURRENCY,
        )
    return _ingestion_service
