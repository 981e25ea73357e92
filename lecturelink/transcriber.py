"""Chunked audio transcription with retries and API key rotation."""

from __future__ import annotations

import logging
import random
import threading
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

import httpx
from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from .chunking import segment_audio
from .config import TranscriptionConfig
from .exceptions import (
    ChunkProcessingError,
    ConfigurationError,
    NoCredentialsConfigured,
    PayloadTooLarge,
    RateLimited,
    TranscriptionCancelled,
    TranscriptionError,
    TransientError,
)
from .models import AudioSource, ProgressEvent, Segment, TextResult, TranscriptResult

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]

_EXTENSIONS = {
    "audio/webm": "webm",
    "audio/mp4": "m4a",
    "audio/x-m4a": "m4a",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/ogg": "ogg",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/flac": "flac",
}


class TranscriptionBackend(Protocol):
    """Common interface for transcription backends."""

    def transcribe(self, segment: Segment, credential: str) -> TextResult:
        """Transcribe one segment using ``credential`` or raise a ``TranscriptionError``."""


class GroqBackend:
    """Hosted transcription through Groq's OpenAI compatible audio endpoint."""

    def __init__(
        self,
        endpoint: str,
        model: str,
        *,
        response_format: str = "verbose_json",
        language: Optional[str] = "en",
        timeout: float = 120.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.endpoint = endpoint
        self.model = model
        self.response_format = response_format
        self.language = language
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)
        self._timeout = timeout

    @classmethod
    def from_config(cls, config: TranscriptionConfig) -> "GroqBackend":
        return cls(
            config.endpoint,
            config.model,
            response_format=config.response_format,
            language=config.language,
            timeout=config.request_timeout,
        )

    def __enter__(self) -> "GroqBackend":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def transcribe(self, segment: Segment, credential: str) -> TextResult:
        form: Dict[str, str] = {
            "model": self.model,
            "response_format": self.response_format,
            "temperature": "0.0",
        }
        if self.language:
            form["language"] = self.language
        filename = f"segment-{segment.index}.{_EXTENSIONS.get(segment.mime_type, 'webm')}"

        try:
            response = self._client.post(
                self.endpoint,
                headers={"Authorization": f"Bearer {credential}"},
                data=form,
                files={"file": (filename, segment.data, segment.mime_type)},
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise TransientError(f"Transcription request timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientError(f"Transcription request failed: {exc}") from exc

        if response.is_success:
            try:
                payload = response.json()
            except ValueError as exc:
                raise TransientError("Transcription service returned invalid JSON") from exc
            return TextResult(
                text=(payload.get("text") or "").strip(),
                segments=payload.get("segments") or [],
                language=payload.get("language"),
            )

        raise _classify_failure(response)


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return response.text or response.reason_phrase


def _classify_failure(response: httpx.Response) -> TranscriptionError:
    status = response.status_code
    message = f"{status}: {_error_message(response)}"
    if status == 413:
        return PayloadTooLarge(message, status_code=status)
    if status == 429:
        return RateLimited(message, status_code=status)
    return TransientError(message, status_code=status)


class CancellationToken:
    """Cooperative cancellation honoured between segments and during sleeps."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TranscriptionCancelled()

    def sleep(self, seconds: float) -> None:
        if seconds > 0 and self._event.wait(seconds):
            raise TranscriptionCancelled()
        self.raise_if_cancelled()


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, TranscriptionError) and exc.retryable


class RetryController:
    """Drives one segment through retries and credential rotation.

    One retry level tries the credentials in turn: a rate limited credential
    hands over to the next one at no cost, and ``RateLimited`` only escapes the
    level once every credential has been refused. Any other retryable failure
    ends the level at once. Levels are retried by ``tenacity`` with exponential
    backoff; a rate limited level restarts at the first credential, any other
    failure moves on round-robin. Oversized payloads are never retried.
    """

    def __init__(
        self,
        backend: TranscriptionBackend,
        credentials: Sequence[str],
        *,
        max_retries: int = 3,
        base_backoff: float = 2.0,
        max_backoff: float = 60.0,
        sleep: Optional[Callable[[float], None]] = None,
        on_progress: Optional[ProgressCallback] = None,
        rng: Optional[random.Random] = None,
        randomise_start: bool = False,
    ) -> None:
        if not credentials:
            raise NoCredentialsConfigured()
        if max_retries < 0:
            raise ConfigurationError(f"max_retries cannot be negative, got {max_retries}")
        self.backend = backend
        self.credentials = tuple(credentials)
        self.max_retries = max_retries
        self.base_backoff = base_backoff
        self.max_backoff = max_backoff
        self._sleep = sleep or CancellationToken().sleep
        self._on_progress = on_progress
        self._rng = rng or random.Random()
        self._randomise_start = randomise_start
        self.attempts = 0

    def transcribe_with_retry(self, segment: Segment, total_segments: int = 1) -> TextResult:
        count = len(self.credentials)
        start_index = self._rng.randrange(count) if self._randomise_start else 0
        credential_index = start_index
        level = 0

        def attempt_level() -> TextResult:
            nonlocal credential_index
            tried = 1
            while True:
                self.attempts += 1
                logger.debug(
                    "Segment %d/%d attempt %d with credential %d",
                    segment.index + 1,
                    total_segments,
                    level + 1,
                    credential_index,
                )
                self._emit("attempt", segment, total_segments, level, credential_index)
                try:
                    return self.backend.transcribe(segment, self.credentials[credential_index])
                except RateLimited as exc:
                    if tried >= count:
                        raise
                    tried += 1
                    credential_index = (credential_index + 1) % count
                    logger.info(
                        "Credential rate limited on segment %d; rotating to credential %d",
                        segment.index + 1,
                        credential_index,
                    )
                    self._emit("rotate", segment, total_segments, level, credential_index, str(exc))

        def before_sleep(retry_state: RetryCallState) -> None:
            nonlocal credential_index, level
            exc = retry_state.outcome.exception()
            logger.warning(
                "Segment %d/%d failed (%s); retry %d/%d in %.1fs",
                segment.index + 1,
                total_segments,
                exc,
                retry_state.attempt_number,
                self.max_retries,
                retry_state.next_action.sleep,
            )
            self._emit("retry", segment, total_segments, retry_state.attempt_number, credential_index, str(exc))
            level = retry_state.attempt_number
            if isinstance(exc, RateLimited):
                credential_index = start_index
            else:
                credential_index = (credential_index + 1) % count

        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.base_backoff, max=self.max_backoff),
            retry=retry_if_exception(_is_retryable),
            sleep=self._sleep,
            before_sleep=before_sleep,
            reraise=True,
        )
        try:
            return retrying(attempt_level)
        except TranscriptionError as exc:
            if exc.retryable:
                logger.warning(
                    "Segment %d/%d exhausted %d retries: %s",
                    segment.index + 1,
                    total_segments,
                    self.max_retries,
                    exc,
                )
            raise

    def _emit(
        self,
        kind: str,
        segment: Segment,
        total_segments: int,
        attempt: int,
        credential_index: int,
        message: str = "",
    ) -> None:
        if self._on_progress is None:
            return
        self._on_progress(
            ProgressEvent(
                kind=kind,
                segment_index=segment.index,
                total_segments=total_segments,
                attempt=attempt,
                credential_index=credential_index,
                message=message,
            )
        )


class ChunkedTranscriber:
    """Transcribes a whole recording one segment at a time, in order."""

    def __init__(
        self,
        config: TranscriptionConfig,
        backend: Optional[TranscriptionBackend] = None,
        *,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
        sleep: Optional[Callable[[float], None]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.config = config
        self._backend = backend
        self._on_progress = on_progress
        self._cancel = cancel_token or CancellationToken()
        self._sleep = sleep or self._cancel.sleep
        self._rng = rng

    def transcribe(self, audio: AudioSource) -> TranscriptResult:
        if not self.config.credentials:
            raise NoCredentialsConfigured()
        segments = segment_audio(audio, self.config.max_segment_bytes)
        logger.info(
            "Transcribing %d bytes of %s in %d segment(s)",
            audio.length,
            audio.mime_type,
            len(segments),
        )

        if self._backend is not None:
            return self._run(segments, self._backend)
        with GroqBackend.from_config(self.config) as backend:
            return self._run(segments, backend)

    def _run(self, segments: List[Segment], backend: TranscriptionBackend) -> TranscriptResult:
        total = len(segments)
        controller = RetryController(
            backend,
            self.config.credentials,
            max_retries=self.config.max_retries,
            base_backoff=self.config.base_backoff,
            max_backoff=self.config.max_backoff,
            sleep=self._sleep,
            on_progress=self._on_progress,
            rng=self._rng,
            randomise_start=self.config.randomise_start,
        )
        result = TranscriptResult()

        for segment in segments:
            self._cancel.raise_if_cancelled()
            if segment.index > 0 and self.config.inter_segment_delay > 0:
                self._sleep(self.config.inter_segment_delay)
            try:
                text = controller.transcribe_with_retry(segment, total)
            except TranscriptionCancelled:
                raise
            except TranscriptionError as exc:
                logger.error("Aborting transcript at segment %d/%d: %s", segment.index + 1, total, exc)
                raise ChunkProcessingError(segment.index, total, exc) from exc
            result.texts.append(text.text)
            self._notify("segment_done", segment.index, total)
            logger.info("Segment %d/%d transcribed", segment.index + 1, total)

        result.attempts = controller.attempts
        return result

    def _notify(self, kind: str, index: int, total: int) -> None:
        if self._on_progress is not None:
            self._on_progress(ProgressEvent(kind=kind, segment_index=index, total_segments=total))


def transcribe_audio(
    audio: AudioSource,
    config: TranscriptionConfig,
    backend: Optional[TranscriptionBackend] = None,
    **kwargs: Any,
) -> TranscriptResult:
    """High level convenience wrapper."""

    return ChunkedTranscriber(config, backend, **kwargs).transcribe(audio)
