"""Message ingestion and processing API endpoints."""

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import get_db
from app.dependencies import CurrentUser, require_admin, require_worker_or_admin
from app.errors import MessageNotFoundError
from app.models.message import EmotionalLoad, Message, ProcessingStatus
from app.rate_limit import limiter
from app.schemas.message import (
    BacklogResponse,
    BatchUploadResponse,
    BulkUploadItem,
    BulkUploadResponse,
    FileUploadResponse,
    MessageCreate,
    MessageListResponse,
    MessageResponse,
    ProcessingUpdate,
    RetryAllResponse,
)
from app.services.ingestion import AudioPayload, FileUploadResult, get_ingestion_service
from app.services.uploads import (
    UploadTooLargeError,
    read_limited,
    validate_archive_metadata,
    validate_audio_metadata,
)

router = APIRouter(prefix="/api/v1/projects/{project_id}/messages", tags=["Messages"])


def _get_project_message(db: Session, project_id: str, message_id: str) -> Message:
    """Fetch a message, treating one from another project as missing."""
    message = get_ingestion_service().get_message(db, message_id)
    if message.project_id != project_id:
        raise MessageNotFoundError(message_id)
    return message


@router.post("", response_model=MessageResponse)
@limiter.limit("60/minute")
async def create_message(
    request: Request,
    project_id: str,
    filename: str = Form(...),
    duration: float | None = Form(None),
    speaker: str | None = Form(None),
    transcript_txt: str | None = Form(None),
    emotional_load: EmotionalLoad | None = Form(None),
    quote: str | None = Form(None),
    theme_ids: list[str] = Form([]),
    emotions: list[str] = Form([]),
    audio: UploadFile | None = File(None),
    user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> MessageResponse:
    """Create a message, optionally with its audio file."""
    data = MessageCreate(
        filename=filename,
        duration=duration,
        speaker=speaker,
        transcript_txt=transcript_txt,
        emotional_load=emotional_load,
        quote=quote,
        theme_ids=theme_ids,
        emotions=emotions,
    )

    payload = None
    if audio is not None and audio.filename:
        error = validate_audio_metadata(audio.filename, audio.content_type)
        if error:
            raise HTTPException(status_code=400, detail=error)
        try:
            content = await read_limited(audio, get_settings().MAX_UPLOAD_SIZE_MB)
        except UploadTooLargeError as e:
            raise HTTPException(status_code=400, detail=str(e)) from None
        payload = AudioPayload(filename=audio.filename, data=content, mime_type=audio.content_type or "audio/mpeg")

    service = get_ingestion_service()
    message = await run_in_threadpool(service.create_message, db, project_id, data, payload)
    return MessageResponse.model_validate(message)


@router.get("", response_model=MessageListResponse)
def list_messages(
    project_id: str,
    status: ProcessingStatus | None = None,
    user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> MessageListResponse:
    """List a project's messages, optionally filtered by processing status."""
    messages = get_ingestion_service().list_messages(db, project_id, status=status)
    return MessageListResponse(
        items=[MessageResponse.model_validate(m) for m in messages],
        total=len(messages),
    )


@router.post("/bulk", response_model=BulkUploadResponse)
@limiter.limit("10/minute")
async def bulk_upload(
    request: Request,
    project_id: str,
    archive_file: UploadFile = File(..., alias="zip"),
    user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> BulkUploadResponse:
    """Upload a ZIP of MP3 files with an optional CSV sidecar (filename, transcript, speaker[, tone])."""
    error = validate_archive_metadata(archive_file.filename or "", archive_file.content_type)
    if error:
        raise HTTPException(status_code=400, detail=error)
    try:
        archive = await read_limited(archive_file, get_settings().MAX_ARCHIVE_SIZE_MB)
    except UploadTooLargeError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None

    service = get_ingestion_service()
    created = await run_in_threadpool(service.bulk_upload, db, project_id, archive)
    return BulkUploadResponse(
        uploaded=len(created),
        messages=[BulkUploadItem(filename=m.filename, id=m.id) for m in created],
    )


@router.post("/batch", response_model=BatchUploadResponse)
@limiter.limit("10/minute")
async def batch_upload(
    request: Request,
    project_id: str,
    files: list[UploadFile] = File(...),
    user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> BatchUploadResponse:
    """Upload several audio files at once. Each file gets its own status."""
    settings = get_settings()
    rejected: list[FileUploadResult] = []
    payloads: list[AudioPayload] = []
    for upload in files:
        name = upload.filename or "unknown"
        error = validate_audio_metadata(name, upload.content_type)
        if not error:
            try:
                content = await read_limited(upload, settings.MAX_UPLOAD_SIZE_MB)
            except UploadTooLargeError as e:
                error = str(e)
        if error:
            rejected.append(FileUploadResult(filename=name, status="error", error=error))
            continue
        payloads.append(AudioPayload(filename=name, data=content, mime_type=upload.content_type or "audio/mpeg"))

    service = get_ingestion_service()
    results = await run_in_threadpool(service.upload_files, db, project_id, payloads)
    items = [FileUploadResponse.model_validate(r) for r in rejected + results]
    uploaded = sum(1 for item in items if item.status == "uploaded")
    return BatchUploadResponse(items=items, uploaded=uploaded, failed=len(items) - uploaded)


@router.get("/failed", response_model=MessageListResponse)
def list_failed(
    project_id: str,
    user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> MessageListResponse:
    """List messages whose processing failed, most recent first."""
    messages = get_ingestion_service().list_failed(db, project_id)
    return MessageListResponse(
        items=[MessageResponse.model_validate(m) for m in messages],
        total=len(messages),
    )


@router.post("/process-backlog", response_model=BacklogResponse)
def process_backlog(
    project_id: str,
    user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> BacklogResponse:
    """Queue every pending message that has audio."""
    return BacklogResponse(queued=get_ingestion_service().process_backlog(db, project_id))


@router.post("/retry-failed", response_model=RetryAllResponse)
def retry_failed(
    project_id: str,
    user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> RetryAllResponse:
    """Retry every failed message of the project."""
    return RetryAllResponse(retried=get_ingestion_service().retry_all_failed(db, project_id))


@router.get("/{message_id}", response_model=MessageResponse)
def get_message(
    project_id: str,
    message_id: str,
    user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> MessageResponse:
    """Get a single message."""
    return MessageResponse.model_validate(_get_project_message(db, project_id, message_id))


@router.delete("/{message_id}")
def delete_message(
    project_id: str,
    message_id: str,
    user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> dict:
    """Delete a message and its stored audio."""
    _get_project_message(db, project_id, message_id)
    get_ingestion_service().delete_message(db, message_id)
    return {"deleted": True}


@router.post("/{message_id}/process", response_model=MessageResponse)
def trigger_processing(
    project_id: str,
    message_id: str,
    user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> MessageResponse:
    """Queue a message for transcription and analysis."""
    _get_project_message(db, project_id, message_id)
    message = get_ingestion_service().trigger_processing(db, message_id)
    return MessageResponse.model_validate(message)


@router.post("/{message_id}/retry", response_model=MessageResponse)
def retry_processing(
    project_id: str,
    message_id: str,
    user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> MessageResponse:
    """Put a message back in the queue."""
    _get_project_message(db, project_id, message_id)
    message = get_ingestion_service().retry_processing(db, message_id)
    return MessageResponse.model_validate(message)


@router.patch("/{message_id}/processing", response_model=MessageResponse)
def update_processing(
    project_id: str,
    message_id: str,
    body: ProcessingUpdate,
    user: CurrentUser = Depends(require_worker_or_admin),
    db: Session = Depends(get_db),
) -> MessageResponse:
    """Progress callback for the processing worker. Only supplied fields are written."""
    _get_project_message(db, project_id, message_id)
    message = get_ingestion_service().update_processing_status(db, message_id, body.model_dump(exclude_unset=True))
    return MessageResponse.model_validate(message)
