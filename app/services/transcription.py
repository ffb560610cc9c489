"""Transcription service using faster-whisper."""

import io
import time
from dataclasses import dataclass

from app.config import get_settings


@dataclass
class TranscriptionResult:
    text: str
    language: str | None
    duration: float | None
    processing_time_seconds: float


class TranscriptionService:
    """Transcribes audio bytes with a lazily loaded whisper model."""

    def __init__(self) -> None:
        self._model = None

    def _get_model(self):
        """Lazy-load the whisper model."""
        if self._model is None:
            from faster_whisper import WhisperModel

            settings = get_settings()
            self._model = WhisperModel(settings.WHISPER_MODEL_SIZE, device="cpu", compute_type="int8")
        return self._model

    def transcribe(self, audio: bytes) -> TranscriptionResult:
        """Transcribe an audio payload. Raises RuntimeError on failure."""
        settings = get_settings()
        try:
            start_time = time.time()
            model = self._get_model()
            segments_iter, info = model.transcribe(io.BytesIO(audio), beam_size=5, language=settings.WHISPER_LANGUAGE)
            segments = list(segments_iter)
            processing_time = time.time() - start_time
        except Exception as e:
            raise RuntimeError(f"Transcription failed: {e}") from e

        duration = getattr(info, "duration", None) or None
        return TranscriptionResult(
            text=" ".join(seg.text.strip() for seg in segments).strip(),
            language=getattr(info, "language", None),
            duration=duration,
            processing_time_seconds=round(processing_time, 2),
        )


_transcription_service: TranscriptionService | None = None


def get_transcription_service() -> TranscriptionService:
    """Get singleton transcription service instance."""
    global _transcription_service
    if _transcription_service is None:
        _transcription_service = TranscriptionService()
    return _transcription_service
