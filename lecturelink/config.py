"""Persisted configuration management."""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, List, Optional, Tuple

from .exceptions import ConfigurationError
from .models import Config

CONFIG_PATH = (Path.home() / ".lecturelink" / "config.json").expanduser()
API_KEYS_ENV = "LECTURELINK_GROQ_API_KEYS"
SINGLE_API_KEY_ENV = "GROQ_API_KEY"
JSON_RESPONSE_FORMATS = frozenset({"json", "verbose_json"})


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded or saved."""


def load_config() -> Config:
    return _apply_environment(load_stored_config())


def save_config(config: Config) -> None:
    CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
    data = {k: v for k, v in asdict(config).items() if v is not None}
    CONFIG_PATH.write_text(json.dumps(data, indent=2))


def update_config(**kwargs: Any) -> Config:
    config = load_stored_config()
    for key, value in kwargs.items():
        if hasattr(config, key):
            setattr(config, key, value)
        else:
            raise ConfigError(f"Unknown configuration key: {key}")
    save_config(config)
    # Environment keys are applied only after saving so they never reach disk.
    return _apply_environment(config)


def parse_api_keys(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [key.strip() for key in raw.split(",") if key.strip()]


def load_stored_config() -> Config:
    """Return the configuration as saved on disk, without environment overrides."""

    if not CONFIG_PATH.exists():
        return Config()
    try:
        payload = json.loads(CONFIG_PATH.read_text())
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Failed to parse configuration file: {exc}") from exc
    try:
        return Config(**payload)
    except TypeError as exc:
        raise ConfigError(f"Invalid configuration file: {exc}") from exc


def _apply_environment(config: Config) -> Config:
    keys = parse_api_keys(os.getenv(API_KEYS_ENV)) or parse_api_keys(os.getenv(SINGLE_API_KEY_ENV))
    if keys:
        config.groq_api_keys = keys
    return config


@dataclass(frozen=True)
class TranscriptionConfig:
    """Settings for one chunked transcription run.

    Built explicitly from :class:`Config` (or by hand in tests) and passed into
    the pipeline; nothing in the pipeline reads process-wide state.
    """

    credentials: Tuple[str, ...]
    max_segment_bytes: int = 20 * 1024 * 1024
    max_retries: int = 3
    base_backoff: float = 2.0
    max_backoff: float = 60.0
    inter_segment_delay: float = 1.0
    request_timeout: float = 120.0
    randomise_start: bool = False
    model: str = "whisper-large-v3-turbo"
    response_format: str = "verbose_json"
    language: str = "en"
    endpoint: str = "https://api.groq.com/openai/v1/audio/transcriptions"

    def __post_init__(self) -> None:
        if self.response_format not in JSON_RESPONSE_FORMATS:
            raise ConfigurationError(
                f"response_format must be one of {sorted(JSON_RESPONSE_FORMATS)}, got {self.response_format!r}"
            )

    @classmethod
    def from_config(cls, config: Config) -> "TranscriptionConfig":
        return cls(
            credentials=tuple(config.groq_api_keys),
            max_segment_bytes=config.max_segment_bytes,
            max_retries=config.max_retries,
            base_backoff=config.base_backoff,
            max_backoff=config.max_backoff,
            inter_segment_delay=config.inter_segment_delay,
            request_timeout=config.request_timeout,
            randomise_start=config.randomise_credentials,
            model=config.transcription_model,
            response_format=config.response_format,
            language=config.language,
            endpoint=config.transcription_url,
        )
