from __future__ import annotations

from collections.abc import Iterator

import pytest

from app.config import get_settings


@pytest.fixture(autouse=True)
def fresh_settings() -> Iterator[None]:
  get_settings.cache_clear()
  yield
  get_settings.cache_clear()


def test_defaults_match_the_pipeline_contract(monkeypatch: pytest.MonkeyPatch) -> None:
  for name in ("RECIPES_VISIBILITY_TIMEOUT_SECONDS", "RECIPES_CLAIM_TTL_SECONDS", "RECIPES_PROGRESS_CHANNEL", "RECIPES_AI_TOKEN_BUDGET", "RECIPES_AI_RETRY_DELAYS"):
    monkeypatch.delenv(name, raising=False)

  settings = get_settings()

  assert settings.visibility_timeout_seconds == 300
  assert settings.claim_ttl_seconds == 240
  assert settings.progress_channel == "progressChannel"
  assert settings.ai_token_budget == 128000
  assert settings.ai_retry_delays == (2.0, 5.0, 10.0)


def test_claim_ttl_must_be_shorter_than_visibility_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
  monkeypatch.setenv("RECIPES_VISIBILITY_TIMEOUT_SECONDS", "60")
  monkeypatch.setenv("RECIPES_CLAIM_TTL_SECONDS", "60")
  with pytest.raises(ValueError, match="CLAIM_TTL"):
    get_settings()


def test_legacy_variable_names_are_honoured(monkeypatch: pytest.MonkeyPatch) -> None:
  monkeypatch.delenv("RECIPES_REDIS_URL", raising=False)
  monkeypatch.delenv("RECIPES_AI_QUEUE", raising=False)
  monkeypatch.setenv("REDIS_URL", "redis://cache:6379/2")
  monkeypatch.setenv("AI_QUEUE_NAME", "ai-legacy")

  settings = get_settings()

  assert settings.redis_url == "redis://cache:6379/2"
  assert settings.ai_queue == "ai-legacy"


def test_wildcard_origins_are_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
  monkeypatch.setenv("RECIPES_ALLOWED_ORIGINS", "*")
  with pytest.raises(ValueError):
    get_settings()
