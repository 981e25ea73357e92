from datetime import datetime, timezone

import pytest

from lecturelink.models import LectureStatus
from lecturelink.storage import Storage, StorageError


@pytest.fixture()
def storage(tmp_path):
    return Storage(db_path=tmp_path / "store.db")


def test_add_and_find_subject(storage):
    record = storage.add_subject("  Linear Algebra ", "user-1")

    assert record.name == "Linear Algebra"
    assert storage.get_subject(record.id).user_id == "user-1"
    assert storage.find_subject("linear algebra", "user-1").id == record.id
    assert storage.find_subject("linear algebra", "user-2") is None


def test_subjects_are_listed_by_name(storage):
    storage.add_subject("Physics", "user-1")
    storage.add_subject("biology", "user-1")
    storage.add_subject("Chemistry", "user-2")

    assert [s.name for s in storage.list_subjects("user-1")] == ["biology", "Physics"]
    assert len(list(storage.list_subjects())) == 3


def test_blank_subject_is_rejected(storage):
    try:
        storage.add_subject("   ", "user-1")
    except StorageError:
        pass
    else:
        raise AssertionError("Expected StorageError for a blank name")


def test_create_lecture_starts_processing(storage, tmp_path):
    subject = storage.add_subject("History", "user-1")
    audio_path = tmp_path / "lecture.webm"

    record = storage.create_lecture(subject.id, "user-1", audio_path=audio_path, metadata={"bytes": 12})

    assert record.status is LectureStatus.PROCESSING
    assert record.audio_path == audio_path
    assert record.metadata == {"bytes": 12}
    assert record.transcript == ""
    assert record.share_token is None


def test_create_lecture_requires_subject(storage):
    with pytest.raises(StorageError):
        storage.create_lecture(42, "user-1")


def test_update_status_only_touches_given_fields(storage):
    subject = storage.add_subject("History", "user-1")
    record = storage.create_lecture(subject.id, "user-1")

    storage.update_lecture_status(record.id, LectureStatus.ENHANCING, transcript="Rome was not built in a day")
    updated = storage.update_lecture_status(record.id, "completed", heading="Rome", subject_tag="History")

    assert updated.status is LectureStatus.COMPLETED
    assert updated.transcript == "Rome was not built in a day"
    assert updated.heading == "Rome"
    assert updated.subject_tag == "History"


def test_invalid_status_is_rejected(storage):
    subject = storage.add_subject("History", "user-1")
    record = storage.create_lecture(subject.id, "user-1")

    with pytest.raises(StorageError, match="Invalid status"):
        storage.update_lecture_status(record.id, "archived")
    assert storage.get_lecture(record.id).status is LectureStatus.PROCESSING


def test_update_missing_lecture(storage):
    with pytest.raises(StorageError):
        storage.update_lecture_status(99, LectureStatus.FAILED, error_message="boom")


def test_list_lectures_filters_and_orders(storage):
    maths = storage.add_subject("Maths", "user-1")
    art = storage.add_subject("Art", "user-1")
    older = storage.create_lecture(maths.id, "user-1", recorded_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
    newer = storage.create_lecture(maths.id, "user-1", recorded_at=datetime(2024, 2, 1, tzinfo=timezone.utc))
    painting = storage.create_lecture(art.id, "user-1")
    storage.update_lecture_status(painting.id, "completed", heading="Oil painting", subject_tag="Art")

    assert [r.id for r in storage.list_lectures(subject_ids=[maths.id])] == [newer.id, older.id]
    assert [r.id for r in storage.list_lectures(search="PAINT")] == [painting.id]
    assert list(storage.list_lectures(user_id="someone-else")) == []


def test_share_token_is_stable_and_resolves(storage):
    subject = storage.add_subject("Economics", "user-1")
    record = storage.create_lecture(
        subject.id, "user-1", recorded_at=datetime(2024, 3, 5, 14, 30, tzinfo=timezone.utc)
    )
    storage.update_lecture_status(record.id, "completed", heading="Supply and demand")

    token = storage.share_lecture(record.id)
    assert storage.share_lecture(record.id) == token

    shared = storage.get_shared_lecture(token)
    assert shared.subject_name == "Economics"
    assert shared.lecture.heading == "Supply and demand"
    assert shared.formatted_date == "2024-03-05"
    assert shared.formatted_time == "14:30"

    with pytest.raises(StorageError):
        storage.get_shared_lecture("not-a-token")


def test_deleting_subject_removes_its_lectures(storage):
    subject = storage.add_subject("Note", "user-1")
    record = storage.create_lecture(subject.id, "user-1")
    storage.delete_subject(subject.id)

    try:
        storage.get_lecture(record.id)
    except StorageError:
        pass
    else:
        raise AssertionError("Lecture should have been removed with its subject")


def test_delete_lecture(storage):
    subject = storage.add_subject("Note", "user-1")
    record = storage.create_lecture(subject.id, "user-1")
    storage.delete_lecture(record.id)

    with pytest.raises(StorageError):
        storage.delete_lecture(record.id)
