from __future__ import annotations

from pathlib import Path

import allure
import pytest

from applykit.config import LlmSettings, RetrySettings, Settings, WorkerSettings
from applykit.llm.models import FREE_TIER_MODEL, FREE_TIER_PROVIDER

pytestmark = [
    allure.epic("Job Pipeline"),
    allure.feature("Configuration"),
]


def test_from_env_defaults() -> None:
    settings = Settings.from_env()

    assert settings.db_path == Path(".applykit.db")
    assert settings.worker.batch_size == 5
    assert settings.worker.poll_interval_seconds == 5.0
    assert settings.worker.inline_timeout_seconds == 60.0
    assert settings.worker.worker_id
    assert settings.llm.default_provider == FREE_TIER_PROVIDER
    assert settings.llm.default_model == FREE_TIER_MODEL
    assert settings.llm.api_keys == {}
    assert settings.llm.token_limits == {}
    assert not settings.llm.bypass_token_limits
    assert settings.retry.max_attempts == 1
    settings.validate()


def test_from_env_reads_overrides(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("APPLYKIT_BATCH_SIZE", "9")
    monkeypatch.setenv("APPLYKIT_WORKER_ID", "worker-a")
    monkeypatch.setenv("APPLYKIT_DEFAULT_PROVIDER", "anthropic")
    monkeypatch.setenv("APPLYKIT_DEFAULT_MODEL", "claude-sonnet-4")
    monkeypatch.setenv("APPLYKIT_TOKEN_LIMITS", "cover_letter|900, resume_parsing|5000")
    monkeypatch.setenv("APPLYKIT_BYPASS_TOKEN_LIMITS", "yes")
    monkeypatch.setenv("APPLYKIT_OUTPUT_DIR", str(tmp_path / "out"))
    monkeypatch.setenv("APPLYKIT_RETRY_MAX_ATTEMPTS", "3")
    monkeypatch.setenv("OPENROUTER_API_KEY", " or-key ")
    monkeypatch.setenv("GEMINI_API_KEY", "g-key")

    settings = Settings.from_env(db_path=tmp_path / "x.db")

    assert settings.db_path == tmp_path / "x.db"
    assert settings.worker.batch_size == 9
    assert settings.worker.worker_id == "worker-a"
    assert settings.llm.api_keys == {"openrouter": "or-key", "google": "g-key"}
    assert settings.llm.token_limits == {"cover_letter": 900, "resume_parsing": 5000}
    assert settings.llm.bypass_token_limits
    assert settings.storage.output_dir == tmp_path / "out"
    assert settings.retry.max_attempts == 3

    defaults = settings.llm.default_provider_settings()
    assert defaults.provider == "anthropic"
    assert defaults.model == "claude-sonnet-4"
    assert defaults.token_limit_for("cover_letter") == 900
    assert defaults.token_limit_for("resume_generation") is None
    assert defaults.bypass_token_limits


@pytest.mark.parametrize(
    ("value", "match"),
    [
        ("cover_letter=900", "Expected format"),
        ("cover_letter|lots", "Invalid APPLYKIT_TOKEN_LIMITS value"),
        ("cover_letter|0", "must be > 0"),
    ],
)
def test_invalid_token_limits_are_rejected(monkeypatch, value: str, match: str) -> None:
    monkeypatch.setenv("APPLYKIT_TOKEN_LIMITS", value)

    with pytest.raises(ValueError, match=match):
        Settings.from_env()


def test_invalid_boolean_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("APPLYKIT_BYPASS_TOKEN_LIMITS", "maybe")

    with pytest.raises(ValueError, match="APPLYKIT_BYPASS_TOKEN_LIMITS"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("settings", "match"),
    [
        (Settings(worker=WorkerSettings(batch_size=0)), "APPLYKIT_BATCH_SIZE"),
        (Settings(worker=WorkerSettings(poll_interval_seconds=0)), "APPLYKIT_POLL_INTERVAL_SECONDS"),
        (Settings(worker=WorkerSettings(inline_timeout_seconds=-1)), "APPLYKIT_INLINE_TIMEOUT"),
        (Settings(llm=LlmSettings(default_model=" ")), "APPLYKIT_DEFAULT_MODEL"),
        (Settings(llm=LlmSettings(timeout_seconds=-1)), "APPLYKIT_PROVIDER_TIMEOUT_SECONDS"),
        (Settings(retry=RetrySettings(max_attempts=0)), "APPLYKIT_RETRY_MAX_ATTEMPTS"),
        (Settings(retry=RetrySettings(base_seconds=5, max_seconds=1)), "APPLYKIT_RETRY_MAX_SECONDS"),
    ],
)
def test_validate_names_offending_variable(settings: Settings, match: str) -> None:
    with pytest.raises(ValueError, match=match):
        settings.validate()
