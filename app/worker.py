"""RQ job that transcribes one message and reports progress.

Progress goes through ``IngestionService.update_processing_status``, the
same callback external workers reach over HTTP.
"""

import logging
import time
from collections.abc import Callable

from rq import get_current_job
from sqlalchemy.orm import Session

from app.database import session_scope
from app.errors import InvalidTransitionError, MessageNotFoundError, MissingAudioError
from app.models.message import ProcessingStatus
from app.services.ingestion import get_ingestion_service
from app.services.transcription import get_transcription_service

logger = logging.getLogger("allo_ingest")

# Overridable in tests
_session_factory: Callable[[], Session] | None = None


def process_message_job(message_id: str, project_id: str) -> dict:
    """Transcribe a message's audio and record the outcome.

    Marks the message PROCESSING, then COMPLETED with the transcript, or
    FAILED with the error before re-raising so RQ keeps the failed job for
    an explicit retry.
    """
    job = get_current_job()
    service = get_ingestion_service()
    started = time.time()

    with session_scope(_session_factory) as db:
        try:
            message = service.update_processing_status(
                db, message_id, {"processing_status": ProcessingStatus.PROCESSING}
            )
        except MessageNotFoundError:
            logger.warning("Message %s was deleted before processing, skipping", message_id)
            return {"message_id": message_id, "status": "skipped"}
        except InvalidTransitionError as e:
            logger.warning("Skipping job for message %s: %s", message_id, e)
            return {"message_id": message_id, "status": "skipped"}

        logger.info("Processing message %s of project %s (retry %d)", message_id, project_id, message.retry_count)
        try:
            if not message.audio_key:
                raise MissingAudioError(message_id)
            audio = service.blob_store.download(message.audio_key)
            result = get_transcription_service().transcribe(audio)
        except Exception as e:
            logger.error("Processing failed for message %s: %s", message_id, e)
            db.rollback()
            try:
                service.update_processing_status(
                    db,
                    message_id,
                    {
                        "processing_status": ProcessingStatus.FAILED,
                        "processing_error": str(e) or e.__class__.__name__,
                    },
                )
            except (MessageNotFoundError, InvalidTransitionError) as report_error:
                logger.warning("Could not record failure for message %s: %s", message_id, report_error)
            raise

        update = {
            "processing_status": ProcessingStatus.COMPLETED,
            "transcript_txt": result.text,
            "gcp_job_id": job.id if job else None,
            "gcp_duration": round(time.time() - started, 2),
        }
        if result.duration:
            update["duration"] = result.duration
        try:
            service.update_processing_status(db, message_id, update)
        except (MessageNotFoundError, InvalidTransitionError) as e:
            logger.warning("Discarding result for message %s: %s", message_id, e)
            return {"message_id": message_id, "status": "skipped"}

    logger.info("Completed message %s (%d chars)", message_id, len(result.text))
    return {"message_id": message_id, "status": ProcessingStatus.COMPLETED.value}
