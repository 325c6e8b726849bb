from __future__ import annotations

import pytest

from app.ai.backoff import retry_transient
from app.core.exceptions import CompletionError, TransientCompletionError


class Recorder:
  def __init__(self) -> None:
    self.delays: list[float] = []

  async def __call__(self, delay: float) -> None:
    self.delays.append(delay)


@pytest.mark.anyio
async def test_transient_failures_are_retried_with_growing_delays() -> None:
  sleep = Recorder()
  attempts = 0

  async def flaky() -> str:
    nonlocal attempts
    attempts += 1
    if attempts < 3:
      raise TransientCompletionError("rate limited")
    return "ok"

  assert await retry_transient(flaky, sleep=sleep) == "ok"
  assert sleep.delays == [2.0, 5.0]


@pytest.mark.anyio
async def test_exhausted_retries_raise_the_last_error() -> None:
  sleep = Recorder()
  attempts = 0

  async def always_down() -> None:
    nonlocal attempts
    attempts += 1
    raise TransientCompletionError("503")

  with pytest.raises(TransientCompletionError):
    await retry_transient(always_down, sleep=sleep)
  assert attempts == 4
  assert sleep.delays == [2.0, 5.0, 10.0]


@pytest.mark.anyio
async def test_permanent_failures_are_not_retried() -> None:
  sleep = Recorder()

  async def bad_request() -> None:
    raise CompletionError("400 bad request")

  with pytest.raises(CompletionError):
    await retry_transient(bad_request, sleep=sleep)
  assert sleep.delays == []
