"""Exceptions raised by the transcription pipeline and its collaborators."""

from __future__ import annotations

from typing import Optional


class ConfigurationError(ValueError):
    """Raised when the pipeline is given parameters it cannot work with."""


class NoCredentialsConfigured(ConfigurationError):
    """Raised before any work starts when no API key is available."""

    def __init__(self) -> None:
        super().__init__(
            "No transcription API keys configured. Run `lecturelink config --groq-api-key ...` "
            "or set LECTURELINK_GROQ_API_KEYS."
        )


class TranscriptionError(RuntimeError):
    """Base class for failures reported by a transcription request."""

    kind = "transcription_error"
    retryable = True

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class PayloadTooLarge(TranscriptionError):
    """The service refused the segment because it exceeds its own size limit."""

    kind = "payload_too_large"
    retryable = False


class RateLimited(TranscriptionError):
    """The credential used for the request is being rate limited."""

    kind = "rate_limited"


class TransientError(TranscriptionError):
    """Network failures, timeouts, server errors and other rejected requests."""

    kind = "transient"


class TranscriptionCancelled(TranscriptionError):
    """The caller cancelled the transcription."""

    kind = "cancelled"
    retryable = False

    def __init__(self, message: str = "Transcription cancelled") -> None:
        super().__init__(message)


class ChunkProcessingError(RuntimeError):
    """Terminal pipeline failure for one segment of the audio."""

    def __init__(self, segment_index: int, total_segments: int, cause: Exception) -> None:
        self.segment_index = segment_index
        self.total_segments = total_segments
        self.cause = cause
        super().__init__(
            f"Failed to transcribe segment {segment_index + 1} of {total_segments}: {cause}"
        )


class NotesError(RuntimeError):
    """Raised when enhanced notes or a heading cannot be generated."""


class LectureProcessingError(RuntimeError):
    """Raised when a lecture could not be processed; the lecture is marked failed."""

    def __init__(self, lecture_id: int, message: str, cause: Optional[Exception] = None) -> None:
        self.lecture_id = lecture_id
        self.cause = cause
        super().__init__(message)
