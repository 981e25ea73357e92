"""Command line interface for the lecturelink application."""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, List, Optional

import httpx
import typer

from . import config as config_mod
from .config import ConfigError, TranscriptionConfig
from .exceptions import ConfigurationError, LectureProcessingError, NotesError
from .models import AudioSource, LectureRecord, ProgressEvent
from .notes import get_notes_generator
from .processor import LectureProcessor
from .storage import Storage, StorageError
from .transcriber import ChunkedTranscriber

app = typer.Typer(add_completion=False, help="Lecture transcription and study notes tool.")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _format_timestamp(value: Optional[str]) -> str:
    if not value:
        return "-"
    try:
        return datetime.fromisoformat(value).strftime("%Y-%m-%d %H:%M")
    except ValueError:
        return value


def _fail(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)


def _ensure_server_config(cfg: config_mod.Config) -> None:
    if not cfg.server_url:
        _fail("No API server configured. Run `lecturelink config --server-url https://host` first.")
        raise typer.Exit(code=1)


def _report_http_error(exc: httpx.HTTPError) -> None:
    detail: object = str(exc)
    status_text = ""
    if exc.request is not None:
        status_text = f"{exc.request.method} {exc.request.url}"
    if getattr(exc, "response", None) is not None:
        response = exc.response
        status_text = f"{response.status_code} {response.request.method} {response.request.url}"
        try:
            payload = response.json()
            detail = payload.get("detail", detail)
        except ValueError:
            detail = response.text or detail
    if isinstance(detail, dict):
        message = detail.get("message", "")
        if detail.get("audio_url"):
            message += f" (original audio: {detail['audio_url']})"
        detail = message
    _fail(f"Request to API failed ({status_text}): {detail}")


@contextmanager
def _api_client(cfg: config_mod.Config) -> Iterator[httpx.Client]:
    _ensure_server_config(cfg)
    headers: Dict[str, str] = {}
    if cfg.server_token:
        headers["Authorization"] = f"Bearer {cfg.server_token}"
    base_url = cfg.server_url.rstrip("/")
    with httpx.Client(
        base_url=base_url,
        headers=headers,
        timeout=cfg.api_timeout,
        verify=cfg.verify_ssl,
    ) as client:
        yield client


def _load_config() -> config_mod.Config:
    try:
        return config_mod.load_config()
    except ConfigError as exc:
        _fail(str(exc))
        raise typer.Exit(code=1) from exc


def _use_local(cfg: config_mod.Config, offline: bool) -> bool:
    return offline or not cfg.server_url


def _resolve_subject(storage: Storage, subject: str, user_id: str) -> int:
    if subject.isdigit():
        try:
            return storage.get_subject(int(subject)).id
        except StorageError as exc:
            _fail(str(exc))
            raise typer.Exit(code=1) from exc
    existing = storage.find_subject(subject, user_id)
    if existing is not None:
        return existing.id
    record = storage.add_subject(subject, user_id)
    typer.secho(f"Created subject '{record.name}' with id {record.id}.", fg=typer.colors.BLUE)
    return record.id


def _resolve_remote_subject(client: httpx.Client, subject: str, user_id: str) -> int:
    if subject.isdigit():
        return int(subject)
    response = client.get("/subjects", params={"user_id": user_id})
    response.raise_for_status()
    for row in response.json():
        if row.get("name", "").lower() == subject.lower():
            return int(row["id"])
    response = client.post("/subjects", json={"name": subject, "user_id": user_id})
    response.raise_for_status()
    return int(response.json()["id"])


def _print_progress(event: ProgressEvent) -> None:
    position = f"Segment {event.segment_index + 1}/{event.total_segments}"
    if event.kind == "segment_done":
        typer.echo(f"{position} transcribed.")
    elif event.kind == "rotate":
        typer.secho(f"{position}: rate limited, switching to key #{event.credential_index + 1}.", fg=typer.colors.YELLOW)
    elif event.kind == "retry":
        typer.secho(f"{position}: {event.message}; retry {event.attempt}.", fg=typer.colors.YELLOW)


def _print_step(completed: int, total: int, message: str) -> None:
    typer.secho(f"[{completed}/{total}] {message}", fg=typer.colors.CYAN)


def _print_lecture_rows(rows: List[dict]) -> None:
    header = f"{'ID':<4}  {'Heading':<36}  {'Tag':<16}  {'Status':<12}  {'Recorded':<16}"
    typer.echo(header)
    typer.echo("-" * len(header))
    for row in rows:
        typer.echo(
            f"{row.get('id', '-'):<4}  {row.get('heading') or '(untitled)':<36.36}  "
            f"{row.get('subject_tag', ''):<16.16}  {row.get('status', ''):<12}  "
            f"{_format_timestamp(row.get('recorded_at')):<16}"
        )


def _record_row(record: LectureRecord) -> dict:
    return {
        "id": record.id,
        "heading": record.heading,
        "subject_tag": record.subject_tag,
        "status": record.status.value,
        "recorded_at": record.recorded_at.isoformat(),
    }


def _record_detail(record: LectureRecord) -> dict:
    return _record_row(record) | {
        "transcript": record.transcript,
        "enhanced_notes": record.enhanced_notes,
        "error_message": record.error_message,
    }


def _print_lecture(payload: dict, transcript: bool) -> None:
    typer.secho(f"Heading: {payload.get('heading') or '(untitled)'}", fg=typer.colors.BLUE)
    typer.echo(f"Subject tag: {payload.get('subject_tag') or '-'}")
    typer.echo(f"Recorded: {_format_timestamp(payload.get('recorded_at'))}")
    typer.echo(f"Status: {payload.get('status', '-')}")
    if payload.get("error_message"):
        typer.secho(f"Error: {payload['error_message']}", fg=typer.colors.RED)
    if payload.get("enhanced_notes"):
        typer.secho("\nNotes:\n" + payload["enhanced_notes"], fg=typer.colors.GREEN)
    if transcript:
        typer.echo("\nTranscript:\n" + (payload.get("transcript") or ""))


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", "-v", help="Show version and exit"),
    verbose: bool = typer.Option(False, "--verbose", help="Log pipeline activity to stderr"),
) -> None:
    if version:
        typer.echo("lecturelink v0.1.0")
        raise typer.Exit()

    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, format=LOG_FORMAT)

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command()
def transcribe(
    audio: Path = typer.Argument(..., exists=True, readable=True, help="Path to the lecture recording."),
    subject: str = typer.Option(..., "--subject", "-s", help="Subject name or id to file the lecture under."),
    heading: Optional[str] = typer.Option(None, "--heading", help="Use this heading instead of generating one."),
    notes_backend: Optional[str] = typer.Option(None, "--notes", help="Notes backend (auto, llm, extractive)."),
    offline: bool = typer.Option(False, "--offline", help="Process locally instead of sending to the API server."),
) -> None:
    """Transcribe a lecture recording, generate notes and store the result."""

    cfg = _load_config()

    if _use_local(cfg, offline):
        storage = Storage()
        subject_id = _resolve_subject(storage, subject, cfg.user_id)
        try:
            notes = get_notes_generator(notes_backend, config=cfg)
            transcription_config = TranscriptionConfig.from_config(cfg)
        except (NotesError, ConfigurationError) as exc:
            _fail(str(exc))
            raise typer.Exit(code=1) from exc

        transcriber = ChunkedTranscriber(transcription_config, on_progress=_print_progress)
        processor = LectureProcessor(storage, transcriber, notes, on_step=_print_step)
        try:
            record = processor.process(
                AudioSource.from_path(audio),
                subject_id,
                cfg.user_id,
                audio_path=audio.resolve(),
                heading=heading,
            )
        except LectureProcessingError as exc:
            _fail(f"Processing failed: {exc}")
            typer.secho(
                f"Lecture {exc.lecture_id} marked as failed. The original audio is untouched at {audio.resolve()}.",
                fg=typer.colors.YELLOW,
                err=True,
            )
            raise typer.Exit(code=1) from exc

        _print_lecture(_record_detail(record), transcript=True)
        typer.secho(f"\nSaved lecture with id {record.id}.", fg=typer.colors.BLUE)
        return

    if notes_backend:
        _fail("The --notes option is only available with --offline.")
        raise typer.Exit(code=1)

    try:
        with _api_client(cfg) as client:
            subject_id = _resolve_remote_subject(client, subject, cfg.user_id)
            data = {"subject_id": str(subject_id), "user_id": cfg.user_id}
            if heading:
                data["heading"] = heading
            response = client.post(
                "/lectures",
                data=data,
                files={"file": (audio.name, audio.read_bytes())},
            )
            response.raise_for_status()
    except httpx.HTTPError as exc:
        _report_http_error(exc)
        raise typer.Exit(code=1) from exc

    payload = response.json()
    _print_lecture(payload, transcript=True)
    typer.secho(f"\nSaved lecture with id {payload.get('id')}.", fg=typer.colors.BLUE)


@app.command("list")
def list_command(
    subject: Optional[int] = typer.Option(None, "--subject", "-s", help="Only lectures of this subject id."),
    search: Optional[str] = typer.Option(None, "--search", help="Filter by heading or subject tag."),
    offline: bool = typer.Option(False, "--offline", help="Use local storage instead of the API server."),
) -> None:
    """List stored lectures."""

    cfg = _load_config()

    if _use_local(cfg, offline):
        storage = Storage()
        rows = [
            _record_row(record)
            for record in storage.list_lectures(
                subject_ids=[subject] if subject is not None else None,
                search=search,
            )
        ]
        if not rows:
            typer.echo("No lectures found. Use `lecturelink transcribe` to create one.")
            return
        _print_lecture_rows(rows)
        return

    params: Dict[str, object] = {}
    if subject is not None:
        params["subject_id"] = subject
    if search:
        params["search"] = search
    try:
        with _api_client(cfg) as client:
            response = client.get("/lectures", params=params)
            response.raise_for_status()
    except httpx.HTTPError as exc:
        _report_http_error(exc)
        raise typer.Exit(code=1) from exc

    rows = response.json()
    if not rows:
        typer.echo("No lectures found on the server.")
        return
    _print_lecture_rows(rows)


@app.command()
def show(
    lecture_id: int = typer.Argument(..., help="Identifier of the lecture to display."),
    transcript: bool = typer.Option(False, "--transcript/--no-transcript", help="Include the full transcript."),
    offline: bool = typer.Option(False, "--offline", help="Use local storage instead of the API server."),
) -> None:
    """Show a stored lecture."""

    cfg = _load_config()

    if _use_local(cfg, offline):
        storage = Storage()
        try:
            record = storage.get_lecture(lecture_id)
        except StorageError as exc:
            _fail(str(exc))
            raise typer.Exit(code=1) from exc
        _print_lecture(_record_detail(record), transcript)
        if record.audio_path is not None:
            typer.echo(f"Audio: {record.audio_path}")
        return

    try:
        with _api_client(cfg) as client:
            response = client.get(f"/lectures/{lecture_id}")
            response.raise_for_status()
    except httpx.HTTPError as exc:
        _report_http_error(exc)
        raise typer.Exit(code=1) from exc

    _print_lecture(response.json(), transcript)


@app.command()
def delete(
    lecture_id: int = typer.Argument(..., help="Identifier of the lecture to delete."),
    offline: bool = typer.Option(False, "--offline", help="Use local storage instead of the API server."),
) -> None:
    """Delete a stored lecture."""

    cfg = _load_config()

    if _use_local(cfg, offline):
        storage = Storage()
        try:
            storage.delete_lecture(lecture_id)
        except StorageError as exc:
            _fail(str(exc))
            raise typer.Exit(code=1) from exc
        typer.secho(f"Lecture {lecture_id} deleted.", fg=typer.colors.BLUE)
        return

    try:
        with _api_client(cfg) as client:
            response = client.delete(f"/lectures/{lecture_id}")
            if response.status_code not in (200, 202, 204):
                response.raise_for_status()
    except httpx.HTTPError as exc:
        _report_http_error(exc)
        raise typer.Exit(code=1) from exc

    typer.secho(f"Lecture {lecture_id} deleted on the server.", fg=typer.colors.BLUE)


@app.command()
def notes(
    lecture_id: int = typer.Argument(..., help="Identifier of the lecture."),
    notes_backend: Optional[str] = typer.Option(None, "--notes", help="Notes backend (auto, llm, extractive)."),
    offline: bool = typer.Option(False, "--offline", help="Use local storage instead of the API server."),
) -> None:
    """Generate or refresh the study notes for a lecture."""

    cfg = _load_config()

    if _use_local(cfg, offline):
        storage = Storage()
        try:
            generator = get_notes_generator(notes_backend, config=cfg)
            processor = LectureProcessor(
                storage,
                ChunkedTranscriber(TranscriptionConfig.from_config(cfg)),
                generator,
                on_step=_print_step,
            )
            record = processor.regenerate_notes(lecture_id)
        except (StorageError, NotesError, ConfigurationError, LectureProcessingError) as exc:
            _fail(str(exc))
            raise typer.Exit(code=1) from exc
        typer.secho(f"Notes updated for '{record.heading}':\n" + record.enhanced_notes, fg=typer.colors.GREEN)
        return

    try:
        with _api_client(cfg) as client:
            response = client.post(f"/lectures/{lecture_id}/notes")
            response.raise_for_status()
    except httpx.HTTPError as exc:
        _report_http_error(exc)
        raise typer.Exit(code=1) from exc

    payload = response.json()
    typer.secho("Notes updated:\n" + (payload.get("enhanced_notes") or ""), fg=typer.colors.GREEN)


@app.command()
def share(
    lecture_id: int = typer.Argument(..., help="Identifier of the lecture to share."),
    offline: bool = typer.Option(False, "--offline", help="Use local storage instead of the API server."),
) -> None:
    """Create a read-only public link for a lecture."""

    cfg = _load_config()

    if _use_local(cfg, offline):
        try:
            token = Storage().share_lecture(lecture_id)
        except StorageError as exc:
            _fail(str(exc))
            raise typer.Exit(code=1) from exc
        typer.secho(f"Share token: {token}", fg=typer.colors.BLUE)
        typer.echo(f"Served at /shared/{token} by `lecturelink serve`.")
        return

    try:
        with _api_client(cfg) as client:
            response = client.post(f"/lectures/{lecture_id}/share")
            response.raise_for_status()
    except httpx.HTTPError as exc:
        _report_http_error(exc)
        raise typer.Exit(code=1) from exc

    payload = response.json()
    typer.secho(f"Public link: {cfg.server_url.rstrip('/')}{payload['url']}", fg=typer.colors.BLUE)


@app.command()
def subjects() -> None:
    """List local subjects."""

    cfg = _load_config()
    rows = list(Storage().list_subjects(cfg.user_id))
    if not rows:
        typer.echo("No subjects yet. Use `lecturelink add-subject <name>` to create one.")
        return
    for record in rows:
        typer.echo(f"{record.id:<4}  {record.name}")


@app.command("add-subject")
def add_subject(name: str = typer.Argument(..., help="Name of the subject.")) -> None:
    """Create a local subject."""

    cfg = _load_config()
    try:
        record = Storage().add_subject(name, cfg.user_id)
    except StorageError as exc:
        _fail(str(exc))
        raise typer.Exit(code=1) from exc
    typer.secho(f"Subject '{record.name}' created with id {record.id}.", fg=typer.colors.BLUE)


@app.command()
def config(
    groq_api_key: Optional[List[str]] = typer.Option(
        None, "--groq-api-key", help="Transcription API key; repeat to configure several."
    ),
    max_segment_mb: Optional[int] = typer.Option(None, min=1, help="Maximum segment size in megabytes."),
    max_retries: Optional[int] = typer.Option(
        None, min=0, max=5, help="Retries per segment after the first attempt (0-5)."
    ),
    base_backoff: Optional[float] = typer.Option(None, help="Initial retry delay in seconds."),
    inter_segment_delay: Optional[float] = typer.Option(None, help="Pause between segments in seconds."),
    request_timeout: Optional[float] = typer.Option(None, help="Timeout for one transcription request (seconds)."),
    notes_backend: Optional[str] = typer.Option(None, help="Notes backend (auto, llm, extractive)."),
    user_id: Optional[str] = typer.Option(None, help="User id recorded on subjects and lectures."),
    server_url: Optional[str] = typer.Option(None, help="Base URL of the lecturelink API server."),
    server_token: Optional[str] = typer.Option(None, help="Bearer token for the API server."),
    verify_ssl: Optional[bool] = typer.Option(
        None,
        "--verify-ssl/--no-verify-ssl",
        help="Toggle TLS certificate verification for API calls.",
    ),
    api_timeout: Optional[float] = typer.Option(None, help="HTTP client timeout (seconds) for API calls."),
    show: bool = typer.Option(False, "--show", help="Display the active configuration."),
) -> None:
    """Update or inspect configuration settings."""

    updates: Dict[str, object] = {
        key: value
        for key, value in {
            "groq_api_keys": list(groq_api_key) if groq_api_key else None,
            "max_segment_bytes": max_segment_mb * 1024 * 1024 if max_segment_mb is not None else None,
            "max_retries": max_retries,
            "base_backoff": base_backoff,
            "inter_segment_delay": inter_segment_delay,
            "request_timeout": request_timeout,
            "notes_backend": notes_backend,
            "user_id": user_id,
            "server_url": server_url,
            "server_token": server_token,
            "verify_ssl": verify_ssl,
            "api_timeout": api_timeout,
        }.items()
        if value is not None
    }

    if show or not updates:
        cfg = _load_config()
        data = asdict(cfg)
        data["groq_api_keys"] = [f"…{key[-4:]}" for key in cfg.groq_api_keys]
        if data.get("server_token"):
            data["server_token"] = "****"
        typer.echo(json.dumps(data, indent=2, default=str))
        return

    try:
        config_mod.update_config(**updates)
    except ConfigError as exc:
        _fail(str(exc))
        raise typer.Exit(code=1) from exc
    typer.secho("Configuration updated.", fg=typer.colors.BLUE)


@app.command()
def login(
    token: Optional[str] = typer.Option(
        None,
        "--token",
        help="API token for authenticating with the lecturelink server.",
        prompt=True,
        hide_input=True,
    ),
) -> None:
    """Persist the API bearer token for server requests."""

    try:
        config_mod.update_config(server_token=token or None)
    except ConfigError as exc:
        _fail(str(exc))
        raise typer.Exit(code=1) from exc
    typer.secho("Server token stored.", fg=typer.colors.BLUE)


@app.command()
def health() -> None:
    """Check connectivity to the configured API server."""

    cfg = _load_config()
    try:
        with _api_client(cfg) as client:
            response = client.get("/health")
            response.raise_for_status()
    except httpx.HTTPError as exc:
        _report_http_error(exc)
        raise typer.Exit(code=1) from exc

    payload = response.json()
    typer.echo(f"Status: {payload.get('status', 'unknown')}")
    typer.echo(f"Transcription model: {payload.get('transcription_model', 'unknown')}")
    typer.echo(f"API keys configured: {payload.get('credentials', 0)}")
    typer.echo(f"Notes backend: {payload.get('notes_backend', 'unknown')}")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Host interface for the API server."),
    port: int = typer.Option(8000, help="Port for the API server."),
) -> None:  # pragma: no cover - runs a server
    """Run the LectureLink HTTP API."""

    import uvicorn

    from .api import app as api_app

    uvicorn.run(api_app, host=host, port=port, log_config=None)


@app.command()
def setup() -> None:
    """Run the interactive setup wizard."""

    from .onboarding import run_onboarding

    try:
        run_onboarding()
    except ConfigError as exc:
        _fail(f"Setup failed: {exc}")
        raise typer.Exit(code=1) from exc


if __name__ == "__main__":  # pragma: no cover
    app()
