"""SQLite backed persistence for subjects and lectures."""

from __future__ import annotations

import json
import logging
import secrets
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Sequence, Union

from .models import LectureRecord, LectureStatus, SharedLecture, SubjectRecord

APP_DIR = Path.home() / ".lecturelink"
DB_PATH = APP_DIR / "lecturelink.db"
SCHEMA_VERSION = 1

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = ("transcript", "enhanced_notes", "heading", "subject_tag", "error_message")


class StorageError(RuntimeError):
    """Raised when something goes wrong while accessing the storage."""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Storage:
    """Manage persistence of subjects and lectures using SQLite."""

    def __init__(self, db_path: Path = DB_PATH) -> None:
        self.db_path = db_path
        self._ensure_initialised()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _ensure_initialised(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS subjects (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS lectures (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    subject_id INTEGER NOT NULL REFERENCES subjects(id) ON DELETE CASCADE,
                    user_id TEXT NOT NULL,
                    heading TEXT NOT NULL DEFAULT '',
                    subject_tag TEXT NOT NULL DEFAULT '',
                    transcript TEXT NOT NULL DEFAULT '',
                    enhanced_notes TEXT NOT NULL DEFAULT '',
                    recorded_at TEXT NOT NULL,
                    status TEXT NOT NULL,
                    audio_path TEXT,
                    error_message TEXT,
                    share_token TEXT UNIQUE,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    metadata TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS metadata (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            cur = conn.execute("SELECT value FROM metadata WHERE key = ?", ("schema_version",))
            if cur.fetchone() is None:
                conn.execute(
                    "INSERT INTO metadata(key, value) VALUES(?, ?)",
                    ("schema_version", str(SCHEMA_VERSION)),
                )

    # Subjects

    def add_subject(self, name: str, user_id: str) -> SubjectRecord:
        if not name.strip() or not user_id.strip():
            raise StorageError("Name and user id are required")
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT INTO subjects(name, user_id, created_at) VALUES(?, ?, ?)",
                (name.strip(), user_id, _now()),
            )
            subject_id = cur.lastrowid
        return self.get_subject(subject_id)

    def get_subject(self, subject_id: int) -> SubjectRecord:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM subjects WHERE id = ?", (subject_id,)).fetchone()
        if row is None:
            raise StorageError(f"Subject with id {subject_id} not found")
        return _row_to_subject(row)

    def find_subject(self, name: str, user_id: str) -> Optional[SubjectRecord]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM subjects WHERE name = ? COLLATE NOCASE AND user_id = ?",
                (name.strip(), user_id),
            ).fetchone()
        return _row_to_subject(row) if row is not None else None

    def list_subjects(self, user_id: Optional[str] = None) -> Iterator[SubjectRecord]:
        query = "SELECT * FROM subjects"
        params: tuple = ()
        if user_id is not None:
            query += " WHERE user_id = ?"
            params = (user_id,)
        with self._connect() as conn:
            rows = conn.execute(query + " ORDER BY name COLLATE NOCASE ASC", params).fetchall()
        for row in rows:
            yield _row_to_subject(row)

    def delete_subject(self, subject_id: int) -> None:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM subjects WHERE id = ?", (subject_id,))
            if cur.rowcount == 0:
                raise StorageError(f"Subject with id {subject_id} not found")

    # Lectures

    def create_lecture(
        self,
        subject_id: int,
        user_id: str,
        *,
        status: Union[LectureStatus, str] = LectureStatus.PROCESSING,
        audio_path: Optional[Path] = None,
        recorded_at: Optional[datetime] = None,
        metadata: Optional[dict] = None,
    ) -> LectureRecord:
        self.get_subject(subject_id)
        lecture_status = _coerce_status(status)
        now = _now()
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO lectures(subject_id, user_id, recorded_at, status, audio_path,
                                     created_at, updated_at, metadata)
                VALUES(?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    subject_id,
                    user_id,
                    (recorded_at or datetime.now(timezone.utc)).isoformat(),
                    lecture_status.value,
                    str(audio_path) if audio_path else None,
                    now,
                    now,
                    json.dumps(metadata or {}),
                ),
            )
            lecture_id = cur.lastrowid
        logger.debug("Created lecture %s for subject %s", lecture_id, subject_id)
        return self.get_lecture(lecture_id)

    def update_lecture_status(
        self,
        lecture_id: int,
        status: Union[LectureStatus, str],
        *,
        transcript: Optional[str] = None,
        enhanced_notes: Optional[str] = None,
        heading: Optional[str] = None,
        subject_tag: Optional[str] = None,
        error_message: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> LectureRecord:
        """Set the status and whichever fields are given; ``None`` leaves a field untouched."""

        lecture_status = _coerce_status(status)
        provided: Dict[str, Any] = {
            key: value
            for key, value in zip(
                _UPDATABLE_FIELDS, (transcript, enhanced_notes, heading, subject_tag, error_message)
            )
            if value is not None
        }
        provided["status"] = lecture_status.value
        provided["updated_at"] = _now()
        if metadata is not None:
            provided["metadata"] = json.dumps(metadata)

        assignments = ", ".join(f"{column} = ?" for column in provided)
        with self._connect() as conn:
            cur = conn.execute(
                f"UPDATE lectures SET {assignments} WHERE id = ?",
                (*provided.values(), lecture_id),
            )
            if cur.rowcount == 0:
                raise StorageError(f"Lecture with id {lecture_id} not found")
        logger.debug("Lecture %s is now %s", lecture_id, lecture_status.value)
        return self.get_lecture(lecture_id)

    def get_lecture(self, lecture_id: int) -> LectureRecord:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM lectures WHERE id = ?", (lecture_id,)).fetchone()
        if row is None:
            raise StorageError(f"Lecture with id {lecture_id} not found")
        return _row_to_lecture(row)

    def list_lectures(
        self,
        *,
        subject_ids: Optional[Sequence[int]] = None,
        user_id: Optional[str] = None,
        search: Optional[str] = None,
    ) -> Iterator[LectureRecord]:
        clauses = []
        params: list = []
        if subject_ids:
            clauses.append(f"subject_id IN ({', '.join('?' for _ in subject_ids)})")
            params.extend(subject_ids)
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if search:
            clauses.append("(LOWER(heading) LIKE ? OR LOWER(subject_tag) LIKE ?)")
            needle = f"%{search.lower()}%"
            params.extend([needle, needle])
        query = "SELECT * FROM lectures"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        with self._connect() as conn:
            rows = conn.execute(query + " ORDER BY recorded_at DESC, id DESC", params).fetchall()
        for row in rows:
            yield _row_to_lecture(row)

    def delete_lecture(self, lecture_id: int) -> None:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM lectures WHERE id = ?", (lecture_id,))
            if cur.rowcount == 0:
                raise StorageError(f"Lecture with id {lecture_id} not found")

    def share_lecture(self, lecture_id: int) -> str:
        """Return the public share token for a lecture, issuing one if needed."""

        record = self.get_lecture(lecture_id)
        if record.share_token:
            return record.share_token
        token = secrets.token_urlsafe(16)
        with self._connect() as conn:
            conn.execute(
                "UPDATE lectures SET share_token = ?, updated_at = ? WHERE id = ?",
                (token, _now(), lecture_id),
            )
        return token

    def get_shared_lecture(self, token: str) -> SharedLecture:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT lectures.*, subjects.name AS subject_name
                FROM lectures LEFT JOIN subjects ON subjects.id = lectures.subject_id
                WHERE lectures.share_token = ?
                """,
                (token,),
            ).fetchone()
        if row is None:
            raise StorageError("Shared lecture not found")
        return SharedLecture(
            lecture=_row_to_lecture(row),
            subject_name=row["subject_name"] or "Unknown Subject",
        )


def _coerce_status(status: Union[LectureStatus, str]) -> LectureStatus:
    try:
        return LectureStatus(status)
    except ValueError as exc:
        raise StorageError(f"Invalid status: {status}") from exc


def _row_to_subject(row: sqlite3.Row) -> SubjectRecord:
    return SubjectRecord(
        id=row["id"],
        name=row["name"],
        user_id=row["user_id"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _row_to_lecture(row: sqlite3.Row) -> LectureRecord:
    return LectureRecord(
        id=row["id"],
        subject_id=row["subject_id"],
        user_id=row["user_id"],
        heading=row["heading"],
        subject_tag=row["subject_tag"],
        transcript=row["transcript"],
        enhanced_notes=row["enhanced_notes"],
        recorded_at=datetime.fromisoformat(row["recorded_at"]),
        status=LectureStatus(row["status"]),
        audio_path=Path(row["audio_path"]) if row["audio_path"] else None,
        error_message=row["error_message"],
        share_token=row["share_token"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        metadata=json.loads(row["metadata"] or "{}"),
    )
