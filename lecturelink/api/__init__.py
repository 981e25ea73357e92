"""FastAPI application for the lecturelink service."""

from __future__ import annotations

import os
import shutil
import uuid
from dataclasses import replace
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import (
    Depends,
    FastAPI,
    File,
    Form,
    HTTPException,
    Query,
    UploadFile,
    status,
)
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field

from ..config import ConfigError, TranscriptionConfig, load_config
from ..exceptions import ConfigurationError, LectureProcessingError, NotesError
from ..models import AudioSource, LectureRecord, SubjectRecord
from ..notes import get_notes_generator
from ..processor import LectureProcessor
from ..storage import APP_DIR, Storage, StorageError

MEDIA_ROOT = Path(os.getenv("LECTURELINK_MEDIA_ROOT", str(APP_DIR / "media")))

app = FastAPI(
    title="LectureLink API",
    description="Lecture transcription, study notes and sharing.",
    version="0.1.0",
)


class HealthResponse(BaseModel):
    status: str = "ok"
    transcription_model: str
    credentials: int
    notes_backend: str


class SubjectCreate(BaseModel):
    name: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)


class SubjectPayload(BaseModel):
    id: int
    name: str
    user_id: str
    created_at: datetime


class LecturePayload(BaseModel):
    id: int
    subject_id: int
    user_id: str
    heading: str
    subject_tag: str
    transcript: str
    enhanced_notes: str
    recorded_at: datetime
    status: str
    has_audio: bool
    error_message: Optional[str]
    share_token: Optional[str]
    created_at: datetime
    updated_at: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ShareResponse(BaseModel):
    share_token: str
    url: str


class SharedLecturePayload(BaseModel):
    heading: str
    subject_tag: str
    subject_name: str
    enhanced_notes: str
    transcript: str
    recorded_at: datetime
    formatted_date: str
    formatted_time: str


@lru_cache(maxsize=1)
def _default_storage() -> Storage:
    return Storage()


def get_storage() -> Storage:
    return _default_storage()


def get_processor(storage: Storage = Depends(get_storage)) -> LectureProcessor:
    try:
        cfg = load_config()
        return LectureProcessor.from_config(
            storage,
            TranscriptionConfig.from_config(cfg),
            get_notes_generator(config=cfg),
        )
    except (ConfigError, ConfigurationError, NotesError) as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


def _ensure_media_root() -> Path:
    MEDIA_ROOT.mkdir(parents=True, exist_ok=True)
    return MEDIA_ROOT


def _subject_to_payload(record: SubjectRecord) -> SubjectPayload:
    return SubjectPayload(
        id=record.id,
        name=record.name,
        user_id=record.user_id,
        created_at=record.created_at,
    )


def _record_to_payload(record: LectureRecord) -> LecturePayload:
    return LecturePayload(
        id=record.id,
        subject_id=record.subject_id,
        user_id=record.user_id,
        heading=record.heading,
        subject_tag=record.subject_tag,
        transcript=record.transcript,
        enhanced_notes=record.enhanced_notes,
        recorded_at=record.recorded_at,
        status=record.status.value,
        has_audio=bool(record.audio_path and record.audio_path.exists()),
        error_message=record.error_message,
        share_token=record.share_token,
        created_at=record.created_at,
        updated_at=record.updated_at,
        metadata=record.metadata,
    )


def _not_found(exc: StorageError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@app.get("/health", response_model=HealthResponse)
async def healthcheck() -> HealthResponse:
    cfg = load_config()
    return HealthResponse(
        transcription_model=cfg.transcription_model,
        credentials=len(cfg.groq_api_keys),
        notes_backend=cfg.notes_backend,
    )


@app.get("/subjects", response_model=List[SubjectPayload])
async def list_subjects(
    user_id: Optional[str] = Query(None),
    storage: Storage = Depends(get_storage),
) -> List[SubjectPayload]:
    return [_subject_to_payload(record) for record in storage.list_subjects(user_id)]


@app.post("/subjects", response_model=SubjectPayload, status_code=status.HTTP_201_CREATED)
async def create_subject(payload: SubjectCreate, storage: Storage = Depends(get_storage)) -> SubjectPayload:
    try:
        record = storage.add_subject(payload.name, payload.user_id)
    except StorageError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return _subject_to_payload(record)


@app.get("/subjects/{subject_id}", response_model=SubjectPayload)
async def get_subject(subject_id: int, storage: Storage = Depends(get_storage)) -> SubjectPayload:
    try:
        return _subject_to_payload(storage.get_subject(subject_id))
    except StorageError as exc:
        raise _not_found(exc) from exc


@app.delete("/subjects/{subject_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_subject(subject_id: int, storage: Storage = Depends(get_storage)) -> None:
    try:
        storage.delete_subject(subject_id)
    except StorageError as exc:
        raise _not_found(exc) from exc


@app.get("/lectures", response_model=List[LecturePayload])
async def list_lectures(
    subject_id: Optional[List[int]] = Query(None),
    user_id: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    storage: Storage = Depends(get_storage),
) -> List[LecturePayload]:
    records = storage.list_lectures(subject_ids=subject_id, user_id=user_id, search=search)
    return [_record_to_payload(record) for record in records]


@app.get("/lectures/{lecture_id}", response_model=LecturePayload)
async def get_lecture(lecture_id: int, storage: Storage = Depends(get_storage)) -> LecturePayload:
    try:
        return _record_to_payload(storage.get_lecture(lecture_id))
    except StorageError as exc:
        raise _not_found(exc) from exc


@app.delete("/lectures/{lecture_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_lecture(lecture_id: int, storage: Storage = Depends(get_storage)) -> None:
    try:
        record = storage.get_lecture(lecture_id)
        storage.delete_lecture(lecture_id)
    except StorageError as exc:
        raise _not_found(exc) from exc
    if record.audio_path is not None:
        record.audio_path.unlink(missing_ok=True)


@app.post("/lectures", response_model=LecturePayload, status_code=status.HTTP_201_CREATED)
async def create_lecture(
    file: UploadFile = File(...),
    subject_id: int = Form(...),
    user_id: str = Form(...),
    heading: Optional[str] = Form(None),
    storage: Storage = Depends(get_storage),
    processor: LectureProcessor = Depends(get_processor),
) -> LecturePayload:
    try:
        storage.get_subject(subject_id)
    except StorageError as exc:
        raise _not_found(exc) from exc

    media_dir = _ensure_media_root()
    suffix = Path(file.filename or "recording.webm").suffix or ".webm"
    destination = media_dir / f"{uuid.uuid4().hex}{suffix}"

    # The upload is kept on disk even if processing fails so it can be downloaded again.
    with destination.open("wb") as output:
        shutil.copyfileobj(file.file, output)

    audio = AudioSource.from_path(destination, mime_type=file.content_type or None)
    if file.filename:
        audio = replace(audio, filename=file.filename)

    try:
        record = await run_in_threadpool(
            processor.process,
            audio,
            subject_id,
            user_id,
            audio_path=destination,
            heading=heading,
        )
    except LectureProcessingError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "message": str(exc),
                "lecture_id": exc.lecture_id,
                "audio_url": f"/lectures/{exc.lecture_id}/audio",
            },
        ) from exc
    return _record_to_payload(record)


@app.get("/lectures/{lecture_id}/audio")
async def download_audio(lecture_id: int, storage: Storage = Depends(get_storage)) -> FileResponse:
    try:
        record = storage.get_lecture(lecture_id)
    except StorageError as exc:
        raise _not_found(exc) from exc
    if record.audio_path is None or not record.audio_path.exists():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No audio stored for this lecture")
    return FileResponse(
        record.audio_path,
        media_type=record.metadata.get("mime_type") or "application/octet-stream",
        filename=record.metadata.get("filename") or record.audio_path.name,
    )


@app.post("/lectures/{lecture_id}/notes", response_model=LecturePayload)
async def refresh_notes(
    lecture_id: int,
    storage: Storage = Depends(get_storage),
    processor: LectureProcessor = Depends(get_processor),
) -> LecturePayload:
    try:
        storage.get_lecture(lecture_id)
    except StorageError as exc:
        raise _not_found(exc) from exc
    try:
        record = await run_in_threadpool(processor.regenerate_notes, lecture_id)
    except (LectureProcessingError, NotesError) as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return _record_to_payload(record)


@app.post("/lectures/{lecture_id}/share", response_model=ShareResponse)
async def share_lecture(lecture_id: int, storage: Storage = Depends(get_storage)) -> ShareResponse:
    try:
        token = storage.share_lecture(lecture_id)
    except StorageError as exc:
        raise _not_found(exc) from exc
    return ShareResponse(share_token=token, url=f"/shared/{token}")


@app.get("/shared/{token}", response_model=SharedLecturePayload)
async def get_shared_lecture(token: str, storage: Storage = Depends(get_storage)) -> SharedLecturePayload:
    try:
        shared = storage.get_shared_lecture(token)
    except StorageError as exc:
        raise _not_found(exc) from exc
    lecture = shared.lecture
    return SharedLecturePayload(
        heading=lecture.heading,
        subject_tag=lecture.subject_tag,
        subject_name=shared.subject_name,
        enhanced_notes=lecture.enhanced_notes,
        transcript=lecture.transcript,
        recorded_at=lecture.recorded_at,
        formatted_date=shared.formatted_date,
        formatted_time=shared.formatted_time,
    )
