"""Shared fixtures: fake Redis, recording publishers and in-memory collaborators."""

from __future__ import annotations

import os

# Settings are cached per process; pin the values tests rely on before any app import.
os.environ.setdefault("RECIPES_ENV", "test")
os.environ.setdefault("RECIPES_ALLOWED_ORIGINS", "http://localhost")
os.environ.setdefault("RECIPES_AUTH_REQUIRED", "1")
os.environ.setdefault("RECIPES_REDIS_URL", "redis://localhost:6379/15")
os.environ.pop("FIREBASE_PROJECT_ID", None)

from collections.abc import AsyncIterator  # noqa: E402

import pytest  # noqa: E402
from fakeredis import FakeAsyncRedis, FakeServer  # noqa: E402

from app.jobs.models import ProgressEvent  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
def redis_server() -> FakeServer:
  return FakeServer()


@pytest.fixture
async def redis(redis_server: FakeServer) -> AsyncIterator[FakeAsyncRedis]:
  client = FakeAsyncRedis(server=redis_server, decode_responses=True)
  yield client
  await client.aclose()


class RecordingPublisher:
  """Collects published progress events in order."""

  def __init__(self) -> None:
    self.events: list[ProgressEvent] = []

  async def publish(self, event: ProgressEvent) -> None:
    self.events.append(event)

  def stages(self, url: str | None = None) -> list[str]:
    return [event.stage.value for event in self.events if url is None or event.url == url]


@pytest.fixture
def publisher() -> RecordingPublisher:
  return RecordingPublisher()
