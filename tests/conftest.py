from __future__ import annotations

from typing import Callable, List, Sequence, Tuple, Union

import pytest

from lecturelink import config
from lecturelink.config import TranscriptionConfig
from lecturelink.models import Segment, TextResult


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    cfg_path = tmp_path / "config" / "config.json"
    monkeypatch.setattr(config, "CONFIG_PATH", cfg_path)
    monkeypatch.delenv(config.API_KEYS_ENV, raising=False)
    monkeypatch.delenv(config.SINGLE_API_KEY_ENV, raising=False)
    return cfg_path


Outcome = Union[str, Exception]


class ScriptedBackend:
    """Backend returning scripted outcomes; strings are transcripts, exceptions are raised."""

    def __init__(self, outcomes: Union[Sequence[Outcome], Callable[[Segment, str], Outcome]]) -> None:
        self._outcomes = outcomes if callable(outcomes) else list(outcomes)
        self.calls: List[Tuple[int, str]] = []

    def transcribe(self, segment: Segment, credential: str) -> TextResult:
        self.calls.append((segment.index, credential))
        if callable(self._outcomes):
            outcome = self._outcomes(segment, credential)
        else:
            outcome = self._outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return TextResult(text=outcome)


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture()
def sleeper() -> SleepRecorder:
    return SleepRecorder()


def make_config(**overrides) -> TranscriptionConfig:
    values = dict(
        credentials=("key-a",),
        max_segment_bytes=10,
        max_retries=3,
        base_backoff=2.0,
        max_backoff=60.0,
        inter_segment_delay=0.0,
    )
    values.update(overrides)
    return TranscriptionConfig(**values)
