"""Progress pub/sub over a Redis channel, with explicit subscription handles."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from app.jobs.models import ProgressEvent, Stage

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], Awaitable[None] | None]

_READ_TIMEOUT_SECONDS = 1.0
_STOP_GRACE_SECONDS = 2.0


class ProgressPublisher(Protocol):
  """Anything that can broadcast a progress event."""

  async def publish(self, event: ProgressEvent) -> None:
    """Broadcast one event without waiting for subscribers."""


class Subscription:
  """Handle returned by `ProgressBus.subscribe`; unsubscribe is idempotent."""

  def __init__(self, bus: ProgressBus, callback: ProgressCallback) -> None:
    self._bus = bus
    self.callback = callback

  @property
  def active(self) -> bool:
    """Whether the callback is still registered with the bus."""
    return self._bus.is_registered(self)

  async def unsubscribe(self) -> None:
    """Remove the callback; stops the reader when it was the last one."""
    await self._bus._remove(self)


class ProgressBus:
  """Fire-and-forget broadcast of stage transitions; subscribers only see events published while connected."""

  def __init__(self, redis: Redis, channel: str) -> None:
    self.channel = channel
    self._redis = redis
    self._subscriptions: dict[ProgressCallback, Subscription] = {}
    self._lock = asyncio.Lock()
    self._pubsub: PubSub | None = None
    self._reader: asyncio.Task[None] | None = None
    self._stop = asyncio.Event()

  async def publish(self, event: ProgressEvent) -> None:
    """Publish an event; transport failures are logged, never raised to the worker."""
    try:
      await self._redis.publish(self.channel, json.dumps(event.to_wire(), separators=(",", ":")))
    except RedisError as exc:
      logger.warning("Progress publish failed url=%s stage=%s: %s", event.url, event.stage.value, exc)

  async def subscribe(self, callback: ProgressCallback) -> Subscription:
    """Register a callback; registering the same callback again returns its existing handle."""
    async with self._lock:
      existing = self._subscriptions.get(callback)
      if existing is not None:
        return existing
      subscription = Subscription(self, callback)
      self._subscriptions[callback] = subscription
      if self._reader is None:
        await self._start_reader()
      return subscription

  def is_registered(self, subscription: Subscription) -> bool:
    """Whether this exact handle is the current one for its callback."""
    return self._subscriptions.get(subscription.callback) is subscription

  @property
  def subscriber_count(self) -> int:
    """Number of registered callbacks."""
    return len(self._subscriptions)

  async def close(self) -> None:
    """Drop every subscription and stop the reader task."""
    async with self._lock:
      self._subscriptions.clear()
      await self._stop_reader()

  async def _remove(self, subscription: Subscription) -> None:
    """Drop one subscription under the lock."""
    async with self._lock:
      if not self.is_registered(subscription):
        return
      del self._subscriptions[subscription.callback]
      if not self._subscriptions:
        await self._stop_reader()

  async def _start_reader(self) -> None:
    """Open the PubSub connection and start the reader task."""
    pubsub = self._redis.pubsub(ignore_subscribe_messages=True)
    await pubsub.subscribe(self.channel)
    self._pubsub = pubsub
    self._stop = asyncio.Event()
    self._reader = asyncio.create_task(self._read_loop(pubsub, self._stop), name=f"progress-reader:{self.channel}")
    logger.info("Subscribed to progress channel %s", self.channel)

  async def _stop_reader(self) -> None:
    """Signal the reader, wait briefly for it, then close the PubSub connection."""
    reader, pubsub = self._reader, self._pubsub
    self._reader = None
    self._pubsub = None
    if reader is None:
      return
    self._stop.set()
    if reader is asyncio.current_task():
      # Unsubscribed from inside a callback: the loop exits on its own after this dispatch.
      if pubsub is not None:
        await pubsub.aclose()
      return
    # The reader notices the stop event within one read timeout.
    try:
      await asyncio.wait_for(reader, timeout=_STOP_GRACE_SECONDS)
    except TimeoutError:
      reader.cancel()
      with contextlib.suppress(asyncio.CancelledError):
        await reader
    if pubsub is not None:
      try:
        await pubsub.unsubscribe(self.channel)
      finally:
        await pubsub.aclose()
    logger.info("Unsubscribed from progress channel %s", self.channel)

  async def _read_loop(self, pubsub: PubSub, stop: asyncio.Event) -> None:
    """Poll the channel until the stop event is set."""
    while not stop.is_set():
      try:
        message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=_READ_TIMEOUT_SECONDS)
      except RedisError as exc:
        logger.warning("Progress channel read failed; retrying: %s", exc)
        await asyncio.sleep(_READ_TIMEOUT_SECONDS)
        continue
      # Timeouts return None so the stop flag is checked at least once a second.
      if message is None or message.get("type") != "message":
        continue
      await self._dispatch(message.get("data"))

  async def _dispatch(self, data: object) -> None:
    """Decode one message and hand the event to every callback in turn."""
    try:
      event = ProgressEvent.model_validate_json(data)  # type: ignore[arg-type]
    except (ValidationError, TypeError, ValueError):
      logger.warning("Ignoring malformed progress message: %.200r", data)
      return

    # Iterate a copy: callbacks may unsubscribe while we dispatch.
    for subscription in list(self._subscriptions.values()):
      try:
        result = subscription.callback(event)
        if inspect.isawaitable(result):
          await result
      except Exception:  # noqa: BLE001
        logger.exception("Progress subscriber failed for url=%s stage=%s", event.url, event.stage.value)


class ProgressReporter:
  """Publishes events for one subject so pipelines don't repeat the url/user bookkeeping."""

  def __init__(self, publisher: ProgressPublisher, url: str, *, user_id: str | None = None) -> None:
    self._publisher = publisher
    self.url = url
    self.user_id = user_id

  async def emit(self, stage: Stage, *, error: str | None = None, recipe_id: int | None = None) -> ProgressEvent:
    """Publish one stage for this subject and return the event."""
    event = ProgressEvent(url=self.url, stage=stage, error=error, recipe_id=recipe_id, user_id=self.user_id)
    await self._publisher.publish(event)
    return event
