import json

import pytest
from typer.testing import CliRunner

from conftest import ScriptedBackend
from lecturelink import cli, config
from lecturelink.exceptions import TransientError
from lecturelink.storage import Storage
from lecturelink.transcriber import ChunkedTranscriber

runner = CliRunner()


@pytest.fixture()
def storage(tmp_path, monkeypatch):
    db_path = tmp_path / "cli.db"
    monkeypatch.setattr(cli, "Storage", lambda: Storage(db_path=db_path))
    return Storage(db_path=db_path)


def _scripted_transcriber(monkeypatch, outcomes):
    def factory(transcription_config, **kwargs):
        return ChunkedTranscriber(transcription_config, ScriptedBackend(outcomes), sleep=lambda s: None, **kwargs)

    monkeypatch.setattr(cli, "ChunkedTranscriber", factory)


def test_config_updates_and_masks_keys():
    result = runner.invoke(
        cli.app,
        ["config", "--groq-api-key", "gsk-first-1111", "--groq-api-key", "gsk-second-2222", "--max-segment-mb", "5"],
    )
    assert result.exit_code == 0, result.output

    stored = config.load_config()
    assert stored.groq_api_keys == ["gsk-first-1111", "gsk-second-2222"]
    assert stored.max_segment_bytes == 5 * 1024 * 1024

    shown = runner.invoke(cli.app, ["config", "--show"])
    data = json.loads(shown.output)
    assert data["groq_api_keys"] == ["…1111", "…2222"]


def test_transcribe_offline_saves_lecture(storage, tmp_path, monkeypatch):
    monkeypatch.setenv(config.API_KEYS_ENV, "gsk-one,gsk-two")
    _scripted_transcriber(monkeypatch, ["Entropy always increases in an isolated system."])
    audio = tmp_path / "thermo.webm"
    audio.write_bytes(b"audio")

    result = runner.invoke(
        cli.app, ["transcribe", str(audio), "--subject", "Physics", "--notes", "extractive", "--offline"]
    )

    assert result.exit_code == 0, result.output
    assert "Entropy always increases" in result.output
    [record] = storage.list_lectures()
    assert record.status.value == "completed"
    assert storage.get_subject(record.subject_id).name == "Physics"


def test_transcribe_failure_reports_preserved_audio(storage, tmp_path, monkeypatch):
    monkeypatch.setenv(config.API_KEYS_ENV, "gsk-one")
    config.update_config(max_retries=0)
    _scripted_transcriber(monkeypatch, [TransientError("503: unavailable", status_code=503)])
    audio = tmp_path / "lecture.webm"
    audio.write_bytes(b"audio")

    result = runner.invoke(
        cli.app, ["transcribe", str(audio), "--subject", "Physics", "--notes", "extractive", "--offline"]
    )

    assert result.exit_code == 1
    assert "marked as failed" in result.output
    assert audio.read_bytes() == b"audio"
    [record] = storage.list_lectures()
    assert record.status.value == "failed"


def test_transcribe_without_keys_fails(storage, tmp_path):
    audio = tmp_path / "lecture.webm"
    audio.write_bytes(b"audio")

    result = runner.invoke(
        cli.app, ["transcribe", str(audio), "--subject", "Physics", "--notes", "extractive", "--offline"]
    )

    assert result.exit_code == 1
    assert "No transcription API keys configured" in result.output


def test_list_and_show_offline(storage):
    empty = runner.invoke(cli.app, ["list", "--offline"])
    assert "No lectures found" in empty.output

    subject = storage.add_subject("Art", "local")
    record = storage.create_lecture(subject.id, "local")
    storage.update_lecture_status(record.id, "completed", heading="Impressionism", transcript="Monet painted light.")

    listed = runner.invoke(cli.app, ["list", "--offline"])
    assert "Impressionism" in listed.output

    shown = runner.invoke(cli.app, ["show", str(record.id), "--transcript", "--offline"])
    assert shown.exit_code == 0
    assert "Monet painted light." in shown.output

    missing = runner.invoke(cli.app, ["show", "999", "--offline"])
    assert missing.exit_code == 1


def test_remote_commands_require_server():
    result = runner.invoke(cli.app, ["health"])
    assert result.exit_code == 1
    assert "No API server configured" in result.output


def test_config_rejects_out_of_range_retries():
    result = runner.invoke(cli.app, ["config", "--max-retries", "9"])
    assert result.exit_code == 2
    assert not config.CONFIG_PATH.exists()


def test_transcribe_rejects_plain_text_response_format(storage, tmp_path, monkeypatch):
    monkeypatch.setenv(config.API_KEYS_ENV, "gsk-one")
    config.update_config(response_format="text")
    audio = tmp_path / "lecture.webm"
    audio.write_bytes(b"audio")

    result = runner.invoke(
        cli.app, ["transcribe", str(audio), "--subject", "Physics", "--notes", "extractive", "--offline"]
    )

    assert result.exit_code == 1
    assert "response_format" in result.output
    assert list(storage.list_lectures()) == []
