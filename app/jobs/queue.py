"""Redis list-backed durable FIFO with visibility-timeout redelivery."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import replace
from typing import Any

from redis.asyncio import Redis

from app.jobs.models import Task, now_ms
from app.utils.ids import generate_task_id

logger = logging.getLogger(__name__)


class DurableQueue:
  """One logical queue: `queue:{name}` pending, `:processing` invisible, `:deadlines` visibility timers."""

  def __init__(self, redis: Redis, name: str, *, visibility_timeout: float, max_deliveries: int, clock: Callable[[], float] = time.time) -> None:
    if visibility_timeout < 1:
      raise ValueError("Visibility timeout must be at least one second.")
    self.name = name
    self._redis = redis
    self._visibility_timeout = visibility_timeout
    self._max_deliveries = max_deliveries
    self._clock = clock
    self.pending_key = f"queue:{name}"
    self.processing_key = f"{self.pending_key}:processing"
    self.deadlines_key = f"{self.pending_key}:deadlines"
    self.dead_key = f"{self.pending_key}:dead"

  async def enqueue(self, payload: dict[str, Any]) -> str:
    """Wrap the payload in a fresh envelope and push it to the tail."""
    task = Task(id=generate_task_id(), payload=payload, created_at=now_ms())
    await self._redis.lpush(self.pending_key, task.to_json())
    logger.debug("Enqueued task %s on %s", task.id, self.name)
    return task.id

  async def dequeue(self, timeout: float) -> Task | None:
    """Move one task into the processing list, or return None once the timeout elapses."""
    # Pop the oldest entry and park it in processing in one atomic step.
    raw = await self._redis.blmove(self.pending_key, self.processing_key, timeout, "RIGHT", "LEFT")
    if raw is None:
      return None

    try:
      task = Task.from_json(raw)
    except ValueError:
      # Not a task envelope; drop it.
      logger.warning("Discarding unparsable message on %s: %.200s", self.name, raw)
      await self._redis.lrem(self.processing_key, 1, raw)
      return None

    # The task stays invisible until this deadline; the reaper moves it back after.
    await self._redis.zadd(self.deadlines_key, {raw: self._clock() + self._visibility_timeout})
    return task

  async def ack(self, task: Task) -> None:
    """Permanently remove a finished task from the processing list."""
    raw = _raw(task)
    async with self._redis.pipeline(transaction=True) as pipe:
      pipe.lrem(self.processing_key, 1, raw)
      pipe.zrem(self.deadlines_key, raw)
      await pipe.execute()

  async def nack(self, task: Task) -> bool:
    """Return a task to the tail with one more attempt; False when it was no longer held."""
    raw = _raw(task)
    # Only requeue if we still held it; a reaper may have moved it already.
    removed = await self._redis.lrem(self.processing_key, 1, raw)
    await self._redis.zrem(self.deadlines_key, raw)
    if not removed:
      return False
    await self._requeue(task)
    return True

  async def requeue_expired(self) -> int:
    """Move tasks whose visibility window elapsed back to the tail; safe to run from many processes."""
    await self._track_orphans()
    expired = await self._redis.zrangebyscore(self.deadlines_key, "-inf", self._clock())
    moved = 0
    for raw in expired:
      # Whoever removes the deadline owns the move-back; everyone else skips it.
      if not await self._redis.zrem(self.deadlines_key, raw):
        continue
      # Acked by its worker after the deadline passed.
      if not await self._redis.lrem(self.processing_key, 1, raw):
        continue
      try:
        task = Task.from_json(raw)
      except ValueError:
        logger.warning("Dropping unparsable expired message on %s", self.name)
        continue
      logger.info("Visibility timeout elapsed for task %s on %s (attempts=%s)", task.id, self.name, task.attempts)
      await self._requeue(task)
      moved += 1
    return moved

  async def depth(self) -> int:
    """Return the number of tasks waiting to be dequeued."""
    return int(await self._redis.llen(self.pending_key))

  async def in_flight(self) -> int:
    """Return the number of dequeued tasks not yet acked or requeued."""
    return int(await self._redis.llen(self.processing_key))

  async def _track_orphans(self) -> None:
    """Give every processing entry without a deadline one, without touching existing timers."""
    # A consumer that died between BLMOVE and ZADD leaves a task without a timer.
    processing = await self._redis.lrange(self.processing_key, 0, -1)
    if not processing:
      return
    deadline = self._clock() + self._visibility_timeout
    await self._redis.zadd(self.deadlines_key, dict.fromkeys(processing, deadline), nx=True)

  async def _requeue(self, task: Task) -> None:
    """Push a task back with one more attempt, or to the dead letters once it is out of deliveries."""
    retried = replace(task, attempts=task.attempts + 1, raw=None)
    if retried.attempts > self._max_deliveries:
      logger.warning("Task %s on %s exceeded %s deliveries; moving to dead letters", task.id, self.name, self._max_deliveries)
      await self._redis.lpush(self.dead_key, retried.to_json())
      return
    await self._redis.lpush(self.pending_key, retried.to_json())


def _raw(task: Task) -> str:
  """Return the exact serialized form a task was dequeued as."""
  if task.raw is None:
    raise ValueError(f"Task {task.id} was not dequeued from a queue.")
  return task.raw
