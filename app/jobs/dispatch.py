"""Per-task processing contract shared by every queue worker."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Protocol

from redis.exceptions import RedisError

from app.jobs.claims import ClaimTracker
from app.jobs.models import PipelineResult, Stage, Task
from app.jobs.progress import ProgressPublisher, ProgressReporter
from app.jobs.queue import DurableQueue

logger = logging.getLogger(__name__)


class PipelineHandler(Protocol):
  """Processor contract for one task type (scrape, ai, invent)."""

  kind: str

  def task_key(self, task: Task) -> str:
    """Return the subject key used for claims and progress correlation."""

  async def process(self, task: Task, reporter: ProgressReporter) -> PipelineResult:
    """Run the external work; raise to fail the task."""


class TaskOutcome(str, Enum):
  """What happened to one dequeued task; counted per worker."""

  STORED = "stored"
  ADVANCED = "advanced"
  DUPLICATE = "duplicate"
  SKIPPED = "skipped"
  FAILED = "failed"


class PipelineRegistry:
  """Registry mapping task kinds to pipeline handlers."""

  def __init__(self, handlers: dict[str, PipelineHandler]) -> None:
    self._handlers = handlers

  def resolve(self, kind: str) -> PipelineHandler:
    """Return the handler for a task kind, or raise ValueError for unknown kinds."""
    handler = self._handlers.get(kind)
    if handler is None:
      raise ValueError(f"Unsupported task kind: {kind}")
    return handler


async def process_task(task: Task, handler: PipelineHandler, *, queue: DurableQueue, claims: ClaimTracker, publisher: ProgressPublisher) -> TaskOutcome:
  """Claim, run, publish and acknowledge one dequeued task.

  Business failures end as a `failed` event plus ack; nothing is requeued.
  RedisError propagates so the task stays unacked and the visibility timeout
  redelivers it.
  """
  key = handler.task_key(task)
  user_id = task.payload.get("userId")
  reporter = ProgressReporter(publisher, key, user_id=str(user_id) if user_id else None)

  owner = claims.new_owner()
  if not await claims.try_claim(key, owner=owner):
    logger.info("Dropping %s task %s: subject %s is claimed by another worker", handler.kind, task.id, key)
    await queue.ack(task)
    return TaskOutcome.DUPLICATE

  try:
    if await claims.has_processed(key):
      recipe_id = await claims.processed_recipe_id(key)
      logger.info("Skipping %s task %s: subject %s already processed (recipe_id=%s)", handler.kind, task.id, key, recipe_id)
      if recipe_id is not None:
        await reporter.emit(Stage.STORED, recipe_id=recipe_id)
      await queue.ack(task)
      return TaskOutcome.SKIPPED

    try:
      result = await handler.process(task, reporter)
    except RedisError:
      raise
    except Exception as exc:  # noqa: BLE001
      message = str(exc) or type(exc).__name__
      logger.warning("%s task %s failed for %s: %s", handler.kind, task.id, key, message, exc_info=True)
      await reporter.emit(Stage.FAILED, error=message)
      await queue.ack(task)
      return TaskOutcome.FAILED

    if result.recipe_id is None:
      await queue.ack(task)
      return TaskOutcome.ADVANCED

    await claims.mark_processed(key, result.recipe_id)
    await reporter.emit(Stage.AI_PROCESSED, recipe_id=result.recipe_id)
    await reporter.emit(Stage.STORED, recipe_id=result.recipe_id)
    await queue.ack(task)
    logger.info("%s task %s stored recipe %s for %s", handler.kind, task.id, result.recipe_id, key)
    return TaskOutcome.STORED
  finally:
    await claims.release_claim(key, owner=owner)
