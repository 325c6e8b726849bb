from __future__ import annotations

import asyncio
import json

import pytest

from app.jobs.claims import ClaimTracker
from app.jobs.dispatch import TaskOutcome
from app.jobs.models import PipelineResult, Stage, Task
from app.jobs.progress import ProgressReporter
from app.jobs.queue import DurableQueue
from app.jobs.worker import QueueWorker, WorkerPool


class CountingHandler:
  kind = "scrape"

  def __init__(self) -> None:
    self.seen: list[str] = []
    self.done = asyncio.Event()
    self.expected = 0

  def task_key(self, task: Task) -> str:
    return task.payload["url"]

  async def process(self, task: Task, reporter: ProgressReporter) -> PipelineResult:
    await reporter.emit(Stage.SCRAPING)
    self.seen.append(task.payload["url"])
    if len(self.seen) >= self.expected:
      self.done.set()
    return PipelineResult()


def _worker(redis, publisher, handler, *, concurrency: int = 1) -> QueueWorker:
  queue = DurableQueue(redis, "scrape", visibility_timeout=300, max_deliveries=5)
  claims = ClaimTracker(redis, namespace="scrape", processed_scope="recipes", claim_ttl_seconds=240)
  return QueueWorker(queue=queue, handler=handler, claims=claims, publisher=publisher, concurrency=concurrency, poll_timeout=1, reaper_interval=60)


@pytest.mark.anyio
async def test_run_once_returns_none_on_empty_queue(redis, publisher) -> None:
  worker = _worker(redis, publisher, CountingHandler())
  assert await worker.run_once() is None


@pytest.mark.anyio
async def test_pool_processes_every_task_and_stops(redis, publisher) -> None:
  handler = CountingHandler()
  handler.expected = 6
  worker = _worker(redis, publisher, handler, concurrency=3)
  for index in range(6):
    await worker.queue.enqueue({"url": f"https://example.com/{index}"})

  pool = WorkerPool([worker])
  pool.start()
  assert pool.running
  await asyncio.wait_for(handler.done.wait(), timeout=5)
  await pool.stop(grace=3)

  assert not pool.running
  assert sorted(handler.seen) == [f"https://example.com/{index}" for index in range(6)]
  assert worker.outcomes[TaskOutcome.ADVANCED] == 6
  assert await worker.queue.in_flight() == 0


def test_concurrency_must_be_positive(publisher) -> None:
  with pytest.raises(ValueError):
    _worker(None, publisher, CountingHandler(), concurrency=0)


@pytest.mark.anyio
async def test_loop_keeps_consuming_after_a_malformed_envelope(redis, publisher) -> None:
  handler = CountingHandler()
  handler.expected = 1
  worker = _worker(redis, publisher, handler)
  await redis.lpush(worker.queue.pending_key, json.dumps({"id": "x", "payload": {"url": "https://example.com/x"}, "attempts": [1]}))
  await worker.queue.enqueue({"url": "https://example.com/pasta"})

  pool = WorkerPool([worker])
  pool.start()
  await asyncio.wait_for(handler.done.wait(), timeout=5)
  await pool.stop(grace=3)

  assert handler.seen == ["https://example.com/pasta"]
  assert await worker.queue.in_flight() == 0


@pytest.mark.anyio
async def test_loop_survives_an_unexpected_error(redis, publisher) -> None:
  handler = CountingHandler()
  handler.expected = 1
  worker = QueueWorker(
    queue=DurableQueue(redis, "scrape", visibility_timeout=300, max_deliveries=5),
    handler=handler,
    claims=ClaimTracker(redis, namespace="scrape", processed_scope="recipes", claim_ttl_seconds=240),
    publisher=publisher,
    poll_timeout=1,
    reaper_interval=60,
    error_backoff=0.01,
  )
  # No "url" in the payload: task_key raises KeyError outside the handler.
  await worker.queue.enqueue({"link": "https://example.com/broken"})
  await worker.queue.enqueue({"url": "https://example.com/pasta"})

  pool = WorkerPool([worker])
  pool.start()
  await asyncio.wait_for(handler.done.wait(), timeout=5)
  await pool.stop(grace=3)

  assert handler.seen == ["https://example.com/pasta"]
  # The broken task is left for the visibility reaper.
  assert await worker.queue.in_flight() == 1
