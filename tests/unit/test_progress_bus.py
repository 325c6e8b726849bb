from __future__ import annotations

import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.jobs.models import ProgressEvent, Stage
from app.jobs.progress import ProgressBus, ProgressReporter


class BrokenRedis:
  async def publish(self, channel: str, message: str) -> int:
    raise RedisConnectionError("connection refused")


@pytest.mark.anyio
async def test_subscribers_receive_published_events(redis) -> None:
  bus = ProgressBus(redis, "progressChannel")
  received: list[ProgressEvent] = []
  arrived = asyncio.Event()

  def on_event(event: ProgressEvent) -> None:
    received.append(event)
    arrived.set()

  subscription = await bus.subscribe(on_event)
  await bus.publish(ProgressEvent(url="https://example.com/pasta", stage=Stage.STORED, recipe_id=42, user_id="user-1"))
  await asyncio.wait_for(arrived.wait(), timeout=3)

  assert received[0].stage is Stage.STORED
  assert received[0].recipe_id == 42
  assert received[0].to_wire()["recipeId"] == 42
  await subscription.unsubscribe()
  assert bus.subscriber_count == 0
  await bus.close()


@pytest.mark.anyio
async def test_subscribing_the_same_callback_twice_returns_one_handle(redis) -> None:
  bus = ProgressBus(redis, "progressChannel")

  async def on_event(event: ProgressEvent) -> None:
    return None

  first = await bus.subscribe(on_event)
  second = await bus.subscribe(on_event)

  assert first is second
  assert bus.subscriber_count == 1
  await first.unsubscribe()
  await first.unsubscribe()
  assert not first.active
  await bus.close()


@pytest.mark.anyio
async def test_failing_subscriber_does_not_block_others(redis) -> None:
  bus = ProgressBus(redis, "progressChannel")
  arrived = asyncio.Event()

  def broken(event: ProgressEvent) -> None:
    raise RuntimeError("subscriber bug")

  async def healthy(event: ProgressEvent) -> None:
    arrived.set()

  await bus.subscribe(broken)
  await bus.subscribe(healthy)
  await bus.publish(ProgressEvent(url="https://example.com/soup", stage=Stage.SCRAPING))

  await asyncio.wait_for(arrived.wait(), timeout=3)
  await bus.close()


@pytest.mark.anyio
async def test_publish_failures_are_not_raised() -> None:
  bus = ProgressBus(BrokenRedis(), "progressChannel")  # type: ignore[arg-type]
  reporter = ProgressReporter(bus, "https://example.com/pasta", user_id="user-1")

  event = await reporter.emit(Stage.FAILED, error="boom")

  assert event.url == "https://example.com/pasta"
  assert event.user_id == "user-1"
