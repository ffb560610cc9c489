"""Validation and reading of uploaded audio files."""

from pathlib import Path

from fastapi import UploadFile

ALLOWED_EXTENSIONS = {".mp3", ".m4a", ".mp4", ".wav", ".webm", ".ogg", ".flac"}
ALLOWED_MIME_TYPES = {
    "audio/mpeg",
    "audio/mp4",
    "audio/x-m4a",
    "audio/wav",
    "audio/x-wav",
    "audio/webm",
    "audio/ogg",
    "audio/flac",
    "audio/x-flac",
    "video/mp4",  # phone voice memos shared through messaging apps
}
ARCHIVE_EXTENSION = ".zip"
ARCHIVE_MIME_TYPES = {
    "application/zip",
    "application/x-zip-compressed",
    "application/x-zip",
    "application/octet-stream",
    "multipart/x-zip",
}
CHUNK_SIZE = 1024 * 64


class UploadTooLargeError(ValueError):
    pass


def validate_audio_metadata(filename: str, content_type: str | None) -> str | None:
    """Validate audio file metadata (extension + MIME). Returns error message or None if valid."""
    ext = Path(filename).suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        return f"Unsupported file type '{ext}'. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"

    # Relaxed: some browsers and apps send generic or video types for audio
    if (
        content_type
        and content_type not in ALLOWED_MIME_TYPES
        and not content_type.startswith("audio/")
        and content_type != "video/mp4"
    ):
        return f"Invalid content type '{content_type}'. Must be an audio file."

    return None


def validate_archive_metadata(filename: str, content_type: str | None) -> str | None:
    """Validate archive metadata. Returns error message or None if valid."""
    if Path(filename).suffix.lower() != ARCHIVE_EXTENSION:
        return "Bulk upload expects a .zip archive"
    if content_type and content_type not in ARCHIVE_MIME_TYPES:
        return f"Invalid content type '{content_type}'. Must be a ZIP archive."
    return None


async def read_limited(upload: UploadFile, max_mb: int) -> bytes:
    """Read an upload into memory, enforcing a size limit.

    Raises UploadTooLargeError once more than ``max_mb`` megabytes were read.
    """
    max_bytes = max_mb * 1024 * 1024
    chunks = []
    size = 0
    while True:
        chunk = await upload.read(CHUNK_SIZE)
        if not chunk:
            break
        size += len(chunk)
        if size > max_bytes:
            raise UploadTooLargeError(f"File too large ({size // (1024 * 1024)}MB). Maximum: {max_mb}MB")
        chunks.append(chunk)
    return b"".join(chunks)
