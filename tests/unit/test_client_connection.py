from __future__ import annotations

import asyncio
import json

import pytest

from app.client.connection import ProgressConnection
from app.client.tracker import ConnectionState, JobTracker


class FakeApi:
  async def enqueue(self, kind: str, payload: dict) -> dict:
    return {}


class FakeSocket:
  """Scripted gateway socket; `ending` is the close code applied when the script runs out."""

  def __init__(self, frames: list[dict] = (), *, ending: int | None = 1000, replies: dict[str, dict] | None = None) -> None:
    self.incoming: asyncio.Queue[str | None] = asyncio.Queue()
    for frame in frames:
      self.incoming.put_nowait(json.dumps(frame))
    if ending is not None:
      self.incoming.put_nowait(None)
    self.ending = ending
    self.replies = replies or {}
    self.sent: list[dict] = []
    self.close_code: int | None = None

  async def __aenter__(self) -> FakeSocket:
    return self

  async def __aexit__(self, *exc_info: object) -> None:
    return None

  def __aiter__(self) -> FakeSocket:
    return self

  async def __anext__(self) -> str:
    item = await self.incoming.get()
    if item is None:
      if self.close_code is None:
        self.close_code = self.ending
      raise StopAsyncIteration
    return item

  async def send(self, raw: str) -> None:
    message = json.loads(raw)
    self.sent.append(message)
    reply = self.replies.get(message["event"])
    if reply is not None:
      self.incoming.put_nowait(json.dumps(reply))

  async def close(self, code: int = 1000) -> None:
    self.close_code = code
    self.incoming.put_nowait(None)


class ScriptedConnect:
  def __init__(self, outcomes: list[object]) -> None:
    self.outcomes = outcomes
    self.urls: list[str] = []

  def __call__(self, url: str) -> FakeSocket:
    self.urls.append(url)
    outcome = self.outcomes.pop(0)
    if isinstance(outcome, Exception):
      raise outcome
    return outcome


class RecordingSleep:
  def __init__(self) -> None:
    self.delays: list[float] = []

  async def __call__(self, delay: float) -> None:
    self.delays.append(delay)


def _connection(tracker: JobTracker, outcomes: list[object], sleep: RecordingSleep, **kwargs: object) -> tuple[ProgressConnection, ScriptedConnect]:
  connect = ScriptedConnect(outcomes)
  return ProgressConnection("ws://localhost:8000/ws/progress", tracker, connect=connect, sleep=sleep, **kwargs), connect


@pytest.mark.anyio
async def test_backoff_doubles_until_attempts_run_out() -> None:
  tracker = JobTracker(FakeApi())
  sleep = RecordingSleep()
  connection, connect = _connection(tracker, [OSError("refused")] * 4, sleep, max_reconnect_attempts=3)

  await connection.run()

  assert sleep.delays == [1.0, 2.0, 4.0]
  assert len(connect.urls) == 4
  assert tracker.connection_state is ConnectionState.ERROR


def test_reconnect_delay_is_capped() -> None:
  connection = ProgressConnection("ws://x", JobTracker(FakeApi()), base_delay=1.0, max_delay=3.0)
  assert [connection.reconnect_delay(attempt) for attempt in range(5)] == [1.0, 2.0, 3.0, 3.0, 3.0]


@pytest.mark.anyio
async def test_reconnects_then_delivers_events() -> None:
  tracker = JobTracker(FakeApi())
  sleep = RecordingSleep()
  update = {"event": "progress-update", "data": {"url": "https://example.com/pasta", "stage": "stored", "timestamp": 1, "recipeId": 42}}
  socket = FakeSocket([update], ending=1000)
  connection, _ = _connection(tracker, [OSError("refused"), OSError("refused"), socket], sleep, token="tok")

  await connection.run()

  assert sleep.delays == [1.0, 2.0]
  assert socket.sent[0] == {"event": "join-room", "data": {"room": "progress"}}
  assert tracker.completed[0].recipe_id == 42
  assert tracker.connection_state is ConnectionState.DISCONNECTED


@pytest.mark.anyio
async def test_abnormal_close_reconnects_and_rejoins() -> None:
  tracker = JobTracker(FakeApi())
  sleep = RecordingSleep()
  dropped = FakeSocket([], ending=1006)
  healthy = FakeSocket([], ending=1000)
  connection, connect = _connection(tracker, [dropped, healthy], sleep)

  await connection.run()

  assert len(connect.urls) == 2
  assert sleep.delays == [1.0]
  assert dropped.sent[0]["event"] == "join-room"
  assert healthy.sent[0]["event"] == "join-room"
  assert connection.reconnect_attempts == 0


@pytest.mark.anyio
async def test_client_close_does_not_reconnect_and_status_requests_resolve() -> None:
  tracker = JobTracker(FakeApi())
  sleep = RecordingSleep()
  status = {"event": "queue-status", "data": {"processing": 2, "ai": 1, "invent": 0, "timestamp": 5}}
  socket = FakeSocket([], ending=None, replies={"get-queue-status": status})
  connection, connect = _connection(tracker, [socket], sleep)

  runner = asyncio.create_task(connection.run())
  for _ in range(100):
    if tracker.connection_state is ConnectionState.CONNECTED:
      break
    await asyncio.sleep(0.01)

  assert await connection.request_queue_status() == {"processing": 2, "ai": 1, "invent": 0, "timestamp": 5}
  await connection.close()
  await asyncio.wait_for(runner, timeout=2)

  assert len(connect.urls) == 1
  assert sleep.delays == []
  assert tracker.connection_state is ConnectionState.DISCONNECTED


@pytest.mark.anyio
async def test_queue_status_errors_are_raised() -> None:
  tracker = JobTracker(FakeApi())
  socket = FakeSocket([], ending=None, replies={"get-queue-status": {"event": "queue-status-error", "data": {"error": "redis down"}}})
  connection, _ = _connection(tracker, [socket], RecordingSleep())

  runner = asyncio.create_task(connection.run())
  for _ in range(100):
    if tracker.connection_state is ConnectionState.CONNECTED:
      break
    await asyncio.sleep(0.01)

  with pytest.raises(RuntimeError, match="redis down"):
    await connection.request_queue_status()
  await connection.close()
  await asyncio.wait_for(runner, timeout=2)


@pytest.mark.anyio
async def test_token_is_sent_as_query_parameter() -> None:
  tracker = JobTracker(FakeApi())
  connection, connect = _connection(tracker, [FakeSocket([], ending=1000)], RecordingSleep(), token="abc.def")
  await connection.run()
  assert connect.urls == ["ws://localhost:8000/ws/progress?token=abc.def"]
