import io
import json

import pytest
from rich.console import Console

from lecturelink import config, onboarding


@pytest.fixture()
def answer(monkeypatch):
    answers = {}

    def ask(prompt, *args, default=None, **kwargs):
        return answers.get(prompt, default)

    for prompt_class in (onboarding.Prompt, onboarding.IntPrompt, onboarding.FloatPrompt, onboarding.Confirm):
        monkeypatch.setattr(prompt_class, "ask", ask)
    return answers


def _run():
    return onboarding.run_onboarding(Console(file=io.StringIO()))


def test_environment_keys_are_not_saved(answer, monkeypatch, isolated_config):
    monkeypatch.setenv(config.API_KEYS_ENV, "env-secret-1,env-secret-2")
    answer["API keys"] = ""

    _run()

    saved = json.loads(isolated_config.read_text())
    assert saved["groq_api_keys"] == []


def test_typed_keys_and_choices_are_saved(answer, isolated_config):
    answer.update(
        {
            "API keys": "gsk-one, gsk-two",
            "Maximum segment size (MB)": 8,
            "Retries per segment (0-5)": 9,
            "Select option": "3",
        }
    )

    cfg = _run()

    saved = json.loads(isolated_config.read_text())
    assert saved["groq_api_keys"] == ["gsk-one", "gsk-two"]
    assert saved["max_segment_bytes"] == 8 * 1024 * 1024
    assert saved["max_retries"] == 5
    assert saved["notes_backend"] == "extractive"
    assert cfg.notes_backend == "extractive"


def test_declining_leaves_config_untouched(answer, isolated_config):
    answer["Save this configuration?"] = False

    _run()

    assert not isolated_config.exists()
