import pytest
from fastapi.testclient import TestClient

from conftest import ScriptedBackend, make_config
from lecturelink import api, config
from lecturelink.exceptions import PayloadTooLarge
from lecturelink.notes import ExtractiveNotesGenerator
from lecturelink.processor import LectureProcessor
from lecturelink.storage import Storage
from lecturelink.transcriber import ChunkedTranscriber


@pytest.fixture()
def storage(tmp_path):
    return Storage(db_path=tmp_path / "api.db")


@pytest.fixture()
def outcomes():
    return []


@pytest.fixture()
def client(storage, outcomes, tmp_path, monkeypatch):
    monkeypatch.setattr(api, "MEDIA_ROOT", tmp_path / "media")

    def processor():
        transcriber = ChunkedTranscriber(make_config(), ScriptedBackend(outcomes), sleep=lambda s: None)
        return LectureProcessor(storage, transcriber, ExtractiveNotesGenerator())

    api.app.dependency_overrides[api.get_storage] = lambda: storage
    api.app.dependency_overrides[api.get_processor] = processor
    yield TestClient(api.app)
    api.app.dependency_overrides.clear()


def _upload(client, subject_id, data=b"x" * 15, filename="week1.webm"):
    return client.post(
        "/lectures",
        files={"file": (filename, data, "audio/webm")},
        data={"subject_id": str(subject_id), "user_id": "user-1"},
    )


def test_health_reports_configuration(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["credentials"] == 0
    assert body["transcription_model"] == "whisper-large-v3-turbo"


def test_subject_crud(client):
    created = client.post("/subjects", json={"name": "Physics", "user_id": "user-1"})
    assert created.status_code == 201
    subject_id = created.json()["id"]

    assert client.get(f"/subjects/{subject_id}").json()["name"] == "Physics"
    assert [s["name"] for s in client.get("/subjects", params={"user_id": "user-1"}).json()] == ["Physics"]
    assert client.delete(f"/subjects/{subject_id}").status_code == 204
    assert client.get(f"/subjects/{subject_id}").status_code == 404


def test_blank_subject_is_rejected(client):
    assert client.post("/subjects", json={"name": "", "user_id": "user-1"}).status_code == 422
    assert client.post("/subjects", json={"name": "   ", "user_id": "user-1"}).status_code == 400


def test_upload_transcribes_and_stores_audio(client, storage, outcomes):
    outcomes.extend(["Forces cause", "acceleration of mass."])
    subject = storage.add_subject("Physics", "user-1")

    response = _upload(client, subject.id)

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "completed"
    assert body["transcript"] == "Forces cause acceleration of mass."
    assert body["has_audio"] is True
    assert body["metadata"]["filename"] == "week1.webm"

    audio = client.get(f"/lectures/{body['id']}/audio")
    assert audio.status_code == 200
    assert audio.content == b"x" * 15

    listed = client.get("/lectures", params={"subject_id": subject.id}).json()
    assert [item["id"] for item in listed] == [body["id"]]


def test_upload_to_unknown_subject(client):
    assert _upload(client, 999).status_code == 404


def test_failed_upload_keeps_audio_for_download(client, storage, outcomes):
    outcomes.append(PayloadTooLarge("413: too big", status_code=413))
    subject = storage.add_subject("Physics", "user-1")

    response = _upload(client, subject.id, data=b"y" * 5)

    assert response.status_code == 502
    detail = response.json()["detail"]
    assert "segment 1 of 1" in detail["message"]
    lecture = client.get(f"/lectures/{detail['lecture_id']}").json()
    assert lecture["status"] == "failed"
    assert lecture["error_message"]
    assert client.get(detail["audio_url"]).content == b"y" * 5


def test_share_and_view_shared_lecture(client, storage, outcomes):
    outcomes.append("A lecture about the water cycle.")
    subject = storage.add_subject("Geography", "user-1")
    lecture_id = _upload(client, subject.id, data=b"z" * 5).json()["id"]

    share = client.post(f"/lectures/{lecture_id}/share").json()
    assert share["url"] == f"/shared/{share['share_token']}"

    shared = client.get(share["url"]).json()
    assert shared["subject_name"] == "Geography"
    assert shared["transcript"] == "A lecture about the water cycle."
    assert client.get("/shared/unknown").status_code == 404


def test_regenerate_notes_endpoint(client, storage, outcomes):
    outcomes.append("A lecture about the water cycle.")
    subject = storage.add_subject("Geography", "user-1")
    lecture_id = _upload(client, subject.id, data=b"z" * 5).json()["id"]

    response = client.post(f"/lectures/{lecture_id}/notes")
    assert response.status_code == 200
    assert response.json()["enhanced_notes"].startswith("### Key points")
    assert client.post("/lectures/999/notes").status_code == 404


def test_delete_lecture_removes_audio(client, storage, outcomes):
    outcomes.append("A lecture about the water cycle.")
    subject = storage.add_subject("Geography", "user-1")
    lecture_id = _upload(client, subject.id, data=b"z" * 5).json()["id"]
    audio_path = storage.get_lecture(lecture_id).audio_path

    assert client.delete(f"/lectures/{lecture_id}").status_code == 204
    assert not audio_path.exists()
    assert client.get(f"/lectures/{lecture_id}").status_code == 404


def test_unusable_notes_backend_is_reported(storage, tmp_path, monkeypatch):
    config.update_config(notes_backend="llm")
    monkeypatch.setattr(api, "MEDIA_ROOT", tmp_path / "media")
    api.app.dependency_overrides[api.get_storage] = lambda: storage
    try:
        client = TestClient(api.app)
        subject = storage.add_subject("Physics", "user-1")

        response = _upload(client, subject.id, data=b"abc")

        assert response.status_code == 503
        assert "LLM notes" in response.json()["detail"]
        assert list(storage.list_lectures()) == []
    finally:
        api.app.dependency_overrides.clear()
