"""Dataclasses describing audio, transcripts and persistent objects for lecturelink."""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

DEFAULT_MIME_TYPE = "audio/webm"


@dataclass(frozen=True)
class AudioSource:
    """Raw audio captured or uploaded by the user."""

    data: bytes
    mime_type: str = DEFAULT_MIME_TYPE
    filename: str = "recording.webm"

    @property
    def length(self) -> int:
        return len(self.data)

    @classmethod
    def from_path(cls, path: Path, mime_type: Optional[str] = None) -> "AudioSource":
        guessed, _ = mimetypes.guess_type(path.name)
        return cls(
            data=path.read_bytes(),
            mime_type=mime_type or guessed or DEFAULT_MIME_TYPE,
            filename=path.name,
        )


@dataclass(frozen=True)
class Segment:
    """A contiguous byte range of an :class:`AudioSource`."""

    source: AudioSource
    index: int
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start

    @property
    def data(self) -> bytes:
        return self.source.data[self.start : self.end]

    @property
    def mime_type(self) -> str:
        return self.source.mime_type


@dataclass(slots=True)
class TextResult:
    """Text returned by the transcription service for one segment."""

    text: str
    segments: List[Dict[str, Any]] = field(default_factory=list)
    language: Optional[str] = None


@dataclass(slots=True)
class TranscriptResult:
    """Per-segment texts in offset order."""

    texts: List[str] = field(default_factory=list)
    attempts: int = 0

    @property
    def text(self) -> str:
        accumulator = ""
        for part in self.texts:
            accumulator += part + " "
        return accumulator.strip()

    @property
    def segment_count(self) -> int:
        return len(self.texts)


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """Observational event emitted while a transcript is being produced."""

    kind: str
    segment_index: int
    total_segments: int
    attempt: int = 0
    credential_index: int = 0
    message: str = ""


class LectureStatus(str, Enum):
    DRAFT = "draft"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    TRANSCRIBING = "transcribing"
    ENHANCING = "enhancing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True)
class SubjectRecord:
    """A course or subject lectures are filed under."""

    id: int
    name: str
    user_id: str
    created_at: datetime


@dataclass(slots=True)
class LectureRecord:
    """Represents a stored lecture entry."""

    id: int
    subject_id: int
    user_id: str
    heading: str
    subject_tag: str
    transcript: str
    enhanced_notes: str
    recorded_at: datetime
    status: LectureStatus
    audio_path: Optional[Path]
    error_message: Optional[str]
    share_token: Optional[str]
    created_at: datetime
    updated_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class SharedLecture:
    """Read-only view of a lecture exposed through a public link."""

    lecture: LectureRecord
    subject_name: str

    @property
    def formatted_date(self) -> str:
        return self.lecture.recorded_at.strftime("%Y-%m-%d")

    @property
    def formatted_time(self) -> str:
        return self.lecture.recorded_at.strftime("%H:%M")


@dataclass(slots=True)
class Config:
    """User configuration stored on disk."""

    groq_api_keys: List[str] = field(default_factory=list)
    transcription_model: str = "whisper-large-v3-turbo"
    transcription_url: str = "https://api.groq.com/openai/v1/audio/transcriptions"
    response_format: str = "verbose_json"
    language: str = "en"
    max_segment_bytes: int = 20 * 1024 * 1024
    max_retries: int = 3
    base_backoff: float = 2.0
    max_backoff: float = 60.0
    inter_segment_delay: float = 1.0
    request_timeout: float = 120.0
    randomise_credentials: bool = False
    notes_backend: str = "auto"
    llm_base_url: str = "https://api.groq.com/openai/v1"
    notes_model: str = "llama-3.3-70b-versatile"
    heading_model: str = "llama-3.1-8b-instant"
    user_id: str = "local"
    server_url: Optional[str] = None
    server_token: Optional[str] = None
    verify_ssl: bool = True
    api_timeout: float = 600.0
