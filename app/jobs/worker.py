"""Queue worker loops and the pool that runs them inside one process."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import Counter

from redis.exceptions import RedisError

from app.jobs.claims import ClaimTracker
from app.jobs.dispatch import PipelineHandler, TaskOutcome, process_task
from app.jobs.progress import ProgressPublisher
from app.jobs.queue import DurableQueue

logger = logging.getLogger(__name__)


async def _wait_or_stop(stop: asyncio.Event, seconds: float) -> None:
  """Sleep for `seconds`, returning early once the stop event is set."""
  with contextlib.suppress(TimeoutError):
    await asyncio.wait_for(stop.wait(), timeout=seconds)


class QueueWorker:
  """Runs `concurrency` independent dequeue loops plus a visibility reaper for one queue."""

  def __init__(
    self,
    *,
    queue: DurableQueue,
    handler: PipelineHandler,
    claims: ClaimTracker,
    publisher: ProgressPublisher,
    concurrency: int = 1,
    poll_timeout: float = 5.0,
    reaper_interval: float = 15.0,
    error_backoff: float = 0.5,
  ) -> None:
    if concurrency < 1:
      raise ValueError("Worker concurrency must be at least 1.")
    self.queue = queue
    self.handler = handler
    self.claims = claims
    self.publisher = publisher
    self.concurrency = concurrency
    self.poll_timeout = poll_timeout
    self.reaper_interval = reaper_interval
    self.error_backoff = error_backoff
    self.outcomes: Counter[TaskOutcome] = Counter()

  async def run_once(self) -> TaskOutcome | None:
    """Dequeue and process a single task; None when the poll timed out."""
    task = await self.queue.dequeue(self.poll_timeout)
    if task is None:
      return None
    outcome = await process_task(task, self.handler, queue=self.queue, claims=self.claims, publisher=self.publisher)
    self.outcomes[outcome] += 1
    return outcome

  async def run_loop(self, index: int, stop: asyncio.Event) -> None:
    """Process tasks until stopped; one bad task or Redis outage never ends the loop."""
    logger.info("Worker loop %s/%d started on queue %s", self.handler.kind, index, self.queue.name)
    while not stop.is_set():
      try:
        await self.run_once()
      except RedisError as exc:
        # Infrastructure trouble: leave the task to visibility-timeout redelivery.
        logger.warning("Queue %s unavailable in loop %d: %s", self.queue.name, index, exc)
        await _wait_or_stop(stop, self.error_backoff)
      except Exception:  # noqa: BLE001
        # The task, if any, stays in processing and the reaper redelivers it.
        logger.exception("Unexpected error in %s loop %d on queue %s", self.handler.kind, index, self.queue.name)
        await _wait_or_stop(stop, self.error_backoff)
    logger.info("Worker loop %s/%d stopped", self.handler.kind, index)

  async def run_reaper(self, stop: asyncio.Event) -> None:
    """Periodically move tasks whose visibility window elapsed back to pending."""
    while not stop.is_set():
      try:
        moved = await self.queue.requeue_expired()
        if moved:
          logger.info("Requeued %d expired task(s) on %s", moved, self.queue.name)
      except RedisError as exc:
        logger.warning("Visibility reaper failed on %s: %s", self.queue.name, exc)
      except Exception:  # noqa: BLE001
        logger.exception("Visibility reaper crashed on %s; retrying next interval", self.queue.name)
      await _wait_or_stop(stop, self.reaper_interval)


class WorkerPool:
  """Explicit start/stop lifecycle around one or more queue workers."""

  def __init__(self, workers: list[QueueWorker]) -> None:
    self.workers = workers
    self._stop = asyncio.Event()
    self._tasks: list[asyncio.Task[None]] = []

  @property
  def running(self) -> bool:
    """True between `start()` and `stop()`."""
    return bool(self._tasks) and not self._stop.is_set()

  def start(self) -> None:
    """Spawn every dequeue loop and one reaper per worker."""
    if self._tasks:
      raise RuntimeError("Worker pool already started.")
    self._stop = asyncio.Event()
    for worker in self.workers:
      for index in range(worker.concurrency):
        self._tasks.append(asyncio.create_task(worker.run_loop(index, self._stop), name=f"{worker.handler.kind}-loop-{index}"))
      self._tasks.append(asyncio.create_task(worker.run_reaper(self._stop), name=f"{worker.handler.kind}-reaper"))
    logger.info("Worker pool started: %s", ", ".join(f"{w.handler.kind}x{w.concurrency}" for w in self.workers))

  async def stop(self, *, grace: float | None = None) -> None:
    """Signal every loop and wait one poll interval before cancelling stragglers."""
    if not self._tasks:
      return
    self._stop.set()
    if grace is None:
      grace = max((worker.poll_timeout for worker in self.workers), default=5.0) + 1.0
    _, pending = await asyncio.wait(self._tasks, timeout=grace)
    for task in pending:
      task.cancel()
    if pending:
      await asyncio.gather(*pending, return_exceptions=True)
      logger.warning("Cancelled %d worker task(s) that outlived the shutdown grace period", len(pending))
    self._tasks = []
    logger.info("Worker pool stopped")

  async def wait(self) -> None:
    """Block until every loop exits, re-raising the first unexpected crash."""
    if self._tasks:
      await asyncio.gather(*self._tasks)
