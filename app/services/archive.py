"""ZIP archive parsing for bulk audio ingestion."""

import io
import logging
import re
import zipfile
from dataclasses import dataclass, field

from app.errors import InvalidArchiveError
from app.models.message import Tone

logger = logging.getLogger("allo_ingest")

AUDIO_EXTENSION = ".mp3"
AUDIO_MIME_TYPE = "audio/mpeg"
SIDECAR_EXTENSION = ".csv"
PLATFORM_METADATA_DIR = "__macosx"

_TONES = {tone.value for tone in Tone}
_LINE_SPLIT = re.compile(r"\r?\n")
_WRAPPING_QUOTES = re.compile(r"^[\"']|[\"']$")


@dataclass
class SidecarRow:
    """Metadata for one audio file, keyed by filename in the sidecar table."""

    transcript: str | None = None
    speaker: str | None = None
    tone: str | None = None


@dataclass
class ArchiveEntry:
    filename: str
    data: bytes


@dataclass
class ParsedArchive:
    """Audio payloads and the sidecar lookup extracted from one archive."""

    entries: list[ArchiveEntry]
    metadata: dict[str, SidecarRow] = field(default_factory=dict)

    def metadata_for(self, filename: str) -> SidecarRow:
        return self.metadata.get(filename) or SidecarRow()


def _is_platform_metadata(name: str) -> bool:
    lowered = name.lower()
    return lowered.startswith(PLATFORM_METADATA_DIR) or f"{PLATFORM_METADATA_DIR}/" in lowered


def _matches(info: zipfile.ZipInfo, extension: str) -> bool:
    return (
        not info.is_dir()
        and info.filename.lower().endswith(extension)
        and not _is_platform_metadata(info.filename)
    )


def split_row(line: str) -> list[str]:
    """Split one sidecar row on commas, honouring double-quoted fields.

    A double quote only toggles the quoted state and is dropped; every
    field is whitespace-trimmed.
    """
    parts: list[str] = []
    current: list[str] = []
    in_quotes = False
    for char in line:
        if char == '"':
            in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(char)
    parts.append("".join(current).strip())
    return parts


def _clean(value: str) -> str:
    return _WRAPPING_QUOTES.sub("", value)


def parse_sidecar(content: str) -> dict[str, SidecarRow]:
    """Build the filename -> metadata lookup from sidecar CSV text.

    The header row is skipped, rows with fewer than three fields are ignored
    and an unrecognized tone leaves the tone unset. Never raises on
    malformed content.
    """
    lines = [line for line in _LINE_SPLIT.split(content) if line.strip()]
    metadata: dict[str, SidecarRow] = {}

    for line in lines[1:]:
        parts = split_row(line)
        if len(parts) < 3:
            continue

        filename = _clean(parts[0])
        if not filename:
            continue

        tone = None
        if len(parts) >= 4:
            candidate = _clean(parts[3]).upper()
            if candidate in _TONES:
                tone = candidate

        metadata[filename] = SidecarRow(
            transcript=_clean(parts[1]) or None,
            speaker=_clean(parts[2]) or None,
            tone=tone,
        )

    return metadata


def parse_archive(data: bytes) -> ParsedArchive:
    """Extract every audio entry and the optional sidecar table from ZIP bytes.

    Raises InvalidArchiveError if the bytes are not a ZIP archive or it
    contains no audio entries.
    """
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        raise InvalidArchiveError("Uploaded file is not a valid ZIP archive") from e

    with archive:
        infos = archive.infolist()

        metadata: dict[str, SidecarRow] = {}
        sidecar = next((info for info in infos if _matches(info, SIDECAR_EXTENSION)), None)
        if sidecar is not None:
            try:
                content = archive.read(sidecar).decode("utf-8", errors="replace")
                metadata = parse_sidecar(content)
                logger.info("Parsed sidecar %s with %d entries", sidecar.filename, len(metadata))
            except (zipfile.BadZipFile, OSError, RuntimeError) as e:
                logger.warning("Ignoring unreadable sidecar %s: %s", sidecar.filename, e)

        entries = []
        for info in infos:
            if not _matches(info, AUDIO_EXTENSION):
                continue
            filename = info.filename.rsplit("/", 1)[-1] or info.filename
            try:
                payload = archive.read(info)
            except (zipfile.BadZipFile, OSError, RuntimeError) as e:
                logger.warning("Skipping unreadable archive entry %s: %s", info.filename, e)
                continue
            entries.append(ArchiveEntry(filename=filename, data=payload))

    if not entries:
        raise InvalidArchiveError("No MP3 files found in the ZIP archive")

    return ParsedArchive(entries=entries, metadata=metadata)
