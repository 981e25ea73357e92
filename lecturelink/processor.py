"""End to end processing of a recorded lecture: transcript, notes, heading, storage."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from .config import TranscriptionConfig
from .exceptions import LectureProcessingError
from .models import AudioSource, LectureRecord, LectureStatus
from .notes import NotesGenerator
from .storage import Storage
from .transcriber import ChunkedTranscriber

logger = logging.getLogger(__name__)

StepCallback = Callable[[int, int, str], None]
TOTAL_STEPS = 3


class LectureProcessor:
    """Turns an audio recording into a stored lecture with notes.

    The lecture row is created before any remote call so that a failure is
    always recorded against it, together with the path of the source audio.
    """

    def __init__(
        self,
        storage: Storage,
        transcriber: ChunkedTranscriber,
        notes: NotesGenerator,
        *,
        on_step: Optional[StepCallback] = None,
    ) -> None:
        self.storage = storage
        self.transcriber = transcriber
        self.notes = notes
        self._on_step = on_step

    @classmethod
    def from_config(
        cls,
        storage: Storage,
        config: TranscriptionConfig,
        notes: NotesGenerator,
        **kwargs,
    ) -> "LectureProcessor":
        return cls(storage, ChunkedTranscriber(config), notes, **kwargs)

    def _step(self, index: int, message: str) -> None:
        logger.info("[%d/%d] %s", index, TOTAL_STEPS, message)
        if self._on_step is not None:
            self._on_step(index, TOTAL_STEPS, message)

    def process(
        self,
        audio: AudioSource,
        subject_id: int,
        user_id: str,
        *,
        audio_path: Optional[Path] = None,
        heading: Optional[str] = None,
    ) -> LectureRecord:
        lecture = self.storage.create_lecture(
            subject_id,
            user_id,
            status=LectureStatus.PROCESSING,
            audio_path=audio_path,
            metadata={"filename": audio.filename, "mime_type": audio.mime_type, "bytes": audio.length},
        )
        try:
            self.storage.update_lecture_status(lecture.id, LectureStatus.TRANSCRIBING)
            self._step(0, "Getting transcription...")
            result = self.transcriber.transcribe(audio)
            transcript = result.text
            if not transcript:
                raise LectureProcessingError(lecture.id, "No transcription received")
            self.storage.update_lecture_status(
                lecture.id,
                LectureStatus.ENHANCING,
                transcript=transcript,
                metadata={**lecture.metadata, "segments": result.segment_count, "attempts": result.attempts},
            )
            return self._generate_notes(lecture.id, transcript, heading=heading)
        except Exception as exc:
            logger.exception("Processing lecture %s failed", lecture.id)
            self.storage.update_lecture_status(
                lecture.id,
                LectureStatus.FAILED,
                error_message=str(exc) or exc.__class__.__name__,
            )
            if isinstance(exc, LectureProcessingError):
                raise
            raise LectureProcessingError(lecture.id, str(exc), cause=exc) from exc

    def regenerate_notes(self, lecture_id: int) -> LectureRecord:
        lecture = self.storage.get_lecture(lecture_id)
        if not lecture.transcript:
            raise LectureProcessingError(lecture_id, "Lecture has no transcript to generate notes from")
        self.storage.update_lecture_status(lecture_id, LectureStatus.ENHANCING)
        try:
            return self._generate_notes(lecture_id, lecture.transcript)
        except Exception as exc:
            # Restore the status the lecture had before regeneration.
            self.storage.update_lecture_status(lecture_id, lecture.status, error_message=str(exc))
            raise LectureProcessingError(lecture_id, str(exc), cause=exc) from exc

    def _generate_notes(self, lecture_id: int, transcript: str, heading: Optional[str] = None) -> LectureRecord:
        self._step(1, "Generating enhanced notes...")
        enhanced_notes = self.notes.enhance(transcript)
        self._step(2, "Generating heading...")
        generated = self.notes.generate_heading(transcript, enhanced_notes)
        record = self.storage.update_lecture_status(
            lecture_id,
            LectureStatus.COMPLETED,
            transcript=transcript.strip(),
            enhanced_notes=enhanced_notes,
            heading=heading or generated.heading,
            subject_tag=generated.subject_tag,
            error_message="",
        )
        self._step(3, "Processing complete")
        return record
