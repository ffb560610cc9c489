"""Pydantic schemas for message ingestion endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field

from app.models.message import EmotionalLoad, ProcessingStatus, Tone


class MessageCreate(BaseModel):
    filename: str = Field(min_length=1, max_length=512)
    duration: float | None = Field(default=None, ge=0)
    speaker: str | None = None
    transcript_txt: str | None = None
    emotional_load: EmotionalLoad | None = None
    quote: str | None = None
    theme_ids: list[str] = []
    emotions: list[str] = []


class MessageResponse(BaseModel):
    id: str
    project_id: str
    filename: str
    audio_key: str | None
    duration: float | None
    speaker: str | None
    transcript_txt: str | None
    tone: Tone | None
    quote: str | None
    emotional_load: EmotionalLoad | None
    processing_status: ProcessingStatus
    processing_error: str | None
    processed_at: datetime | None
    retry_count: int
    gcp_job_id: str | None
    gcp_duration: float | None
    theme_ids: list[str] = []
    emotion_names: list[str] = []
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class MessageListResponse(BaseModel):
    items: list[MessageResponse]
    total: int


class ProcessingUpdate(BaseModel):
    """Sparse progress report from the processing worker."""

    processing_status: ProcessingStatus | None = None
    processing_error: str | None = None
    processed_at: datetime | None = None
    retry_count: int | None = Field(default=None, ge=0)
    gcp_job_id: str | None = None
    gcp_duration: float | None = None
    tone: Tone | None = None
    transcript_txt: str | None = None
    speaker: str | None = None
    duration: float | None = Field(default=None, ge=0)


class BulkUploadItem(BaseModel):
    filename: str
    id: str


class BulkUploadResponse(BaseModel):
    uploaded: int
    messages: list[BulkUploadItem]


class FileUploadResponse(BaseModel):
    filename: str
    status: str
    message_id: str | None = None
    processing_status: ProcessingStatus | None = None
    error: str | None = None

    model_config = {"from_attributes": True}


class BatchUploadResponse(BaseModel):
    items: list[FileUploadResponse]
    uploaded: int
    failed: int


class BacklogResponse(BaseModel):
    queued: int


class RetryAllResponse(BaseModel):
    retried: int
