from __future__ import annotations

import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.jobs.claims import ClaimTracker
from app.jobs.dispatch import TaskOutcome, process_task
from app.jobs.models import PipelineResult, Stage, Task
from app.jobs.progress import ProgressReporter
from app.jobs.queue import DurableQueue

URL = "https://example.com/pasta"


class StubHandler:
  kind = "ai"

  def __init__(self, *, recipe_id: int | None = 7, error: Exception | None = None) -> None:
    self.recipe_id = recipe_id
    self.error = error
    self.calls = 0

  def task_key(self, task: Task) -> str:
    return task.payload["url"]

  async def process(self, task: Task, reporter: ProgressReporter) -> PipelineResult:
    self.calls += 1
    await reporter.emit(Stage.AI_PROCESSING)
    if self.error is not None:
      raise self.error
    return PipelineResult(recipe_id=self.recipe_id)


@pytest.fixture
def queue(redis) -> DurableQueue:
  return DurableQueue(redis, "ai", visibility_timeout=300, max_deliveries=5)


@pytest.fixture
def claims(redis) -> ClaimTracker:
  return ClaimTracker(redis, namespace="ai", processed_scope="recipes", claim_ttl_seconds=240)


async def _dequeue(queue: DurableQueue, payload: dict) -> Task:
  await queue.enqueue(payload)
  task = await queue.dequeue(1)
  assert task is not None
  return task


@pytest.mark.anyio
async def test_successful_task_stores_marks_and_acks(queue, claims, publisher) -> None:
  task = await _dequeue(queue, {"url": URL, "userId": "user-1"})

  outcome = await process_task(task, StubHandler(recipe_id=42), queue=queue, claims=claims, publisher=publisher)

  assert outcome is TaskOutcome.STORED
  assert publisher.stages(URL) == ["ai_processing", "ai_processed", "stored"]
  assert publisher.events[-1].recipe_id == 42
  assert publisher.events[-1].user_id == "user-1"
  assert await claims.processed_recipe_id(URL) == 42
  assert await queue.in_flight() == 0
  assert await claims.try_claim(URL) is True


@pytest.mark.anyio
async def test_failing_task_publishes_failed_and_is_not_retried(queue, claims, publisher) -> None:
  task = await _dequeue(queue, {"url": URL})

  outcome = await process_task(task, StubHandler(error=ValueError("AI JSON validation failed: title must be a non-empty string")), queue=queue, claims=claims, publisher=publisher)

  assert outcome is TaskOutcome.FAILED
  assert publisher.stages(URL) == ["ai_processing", "failed"]
  assert "title" in publisher.events[-1].error
  assert await queue.in_flight() == 0
  assert await queue.depth() == 0
  assert await claims.has_processed(URL) is False


@pytest.mark.anyio
async def test_claimed_subject_is_dropped_as_duplicate(redis, queue, claims, publisher) -> None:
  other_worker = ClaimTracker(redis, namespace="ai", processed_scope="recipes", claim_ttl_seconds=240)
  assert await other_worker.try_claim(URL) is True
  handler = StubHandler()
  task = await _dequeue(queue, {"url": URL})

  outcome = await process_task(task, handler, queue=queue, claims=claims, publisher=publisher)

  assert outcome is TaskOutcome.DUPLICATE
  assert handler.calls == 0
  assert publisher.events == []
  assert await queue.in_flight() == 0


@pytest.mark.anyio
async def test_processed_subject_is_skipped_with_stored_event(queue, claims, publisher) -> None:
  await claims.mark_processed(URL, 42)
  handler = StubHandler()
  task = await _dequeue(queue, {"url": URL})

  outcome = await process_task(task, handler, queue=queue, claims=claims, publisher=publisher)

  assert outcome is TaskOutcome.SKIPPED
  assert handler.calls == 0
  assert publisher.stages() == ["stored"]
  assert publisher.events[0].recipe_id == 42


@pytest.mark.anyio
async def test_redis_errors_leave_the_task_for_redelivery(queue, claims, publisher) -> None:
  task = await _dequeue(queue, {"url": URL})

  with pytest.raises(RedisConnectionError):
    await process_task(task, StubHandler(error=RedisConnectionError("connection reset")), queue=queue, claims=claims, publisher=publisher)

  assert await queue.in_flight() == 1
  assert "failed" not in publisher.stages()
  assert await claims.try_claim(URL) is True


@pytest.mark.anyio
async def test_handler_without_recipe_advances(queue, claims, publisher) -> None:
  task = await _dequeue(queue, {"url": URL})

  outcome = await process_task(task, StubHandler(recipe_id=None), queue=queue, claims=claims, publisher=publisher)

  assert outcome is TaskOutcome.ADVANCED
  assert await claims.has_processed(URL) is False
  assert await queue.in_flight() == 0


class SlowHandler(StubHandler):
  """Holds the claim long enough for every racing worker to reach it."""

  async def process(self, task: Task, reporter: ProgressReporter) -> PipelineResult:
    await asyncio.sleep(0.05)
    return await super().process(task, reporter)


@pytest.mark.anyio
async def test_racing_workers_run_the_handler_once(redis, queue, publisher) -> None:
  handler = SlowHandler(recipe_id=42)
  tasks = [await _dequeue(queue, {"url": URL}) for _ in range(10)]
  workers = [ClaimTracker(redis, namespace="ai", processed_scope="recipes", claim_ttl_seconds=240) for _ in tasks]

  outcomes = await asyncio.gather(*(process_task(task, handler, queue=queue, claims=claims, publisher=publisher) for task, claims in zip(tasks, workers, strict=True)))

  assert handler.calls == 1
  assert outcomes.count(TaskOutcome.STORED) == 1
  assert outcomes.count(TaskOutcome.DUPLICATE) == 9
  assert publisher.stages(URL).count("stored") == 1
  assert await queue.in_flight() == 0
