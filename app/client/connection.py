"""WebSocket connection to the progress gateway with bounded exponential reconnect."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import urlencode

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosedError, InvalidHandshake

from app.client.tracker import ConnectionState, JobTracker
from app.jobs.models import ProgressEvent

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000


class ProgressConnection:
  """Feeds `progress-update` frames into a JobTracker and keeps the socket alive.

  Events published while disconnected are not replayed.
  """

  def __init__(
    self,
    url: str,
    tracker: JobTracker,
    *,
    token: str | None = None,
    room: str = "progress",
    max_reconnect_attempts: int = 5,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    status_timeout: float = 5.0,
    connect: Callable[..., Any] = websockets.connect,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
  ) -> None:
    self.url = url
    self.tracker = tracker
    self.room = room
    self.max_reconnect_attempts = max_reconnect_attempts
    self.base_delay = base_delay
    self.max_delay = max_delay
    self.status_timeout = status_timeout
    self.reconnect_attempts = 0
    self._token = token
    self._connect = connect
    self._sleep = sleep
    self._socket: Any = None
    self._closing = False
    self._status_waiters: list[asyncio.Future[dict[str, Any]]] = []
    self._set_state(ConnectionState.DISCONNECTED)

  @property
  def state(self) -> ConnectionState:
    """Current connection state, stored on the tracker."""
    return self.tracker.connection_state

  def reconnect_delay(self, attempt: int) -> float:
    """Backoff before reconnect attempt `attempt` (0-based): base * 2**attempt, capped."""
    return min(self.base_delay * 2**attempt, self.max_delay)

  async def run(self) -> None:
    """Connect and read until closed by us, closed normally by the server, or out of attempts."""
    self._closing = False
    self.reconnect_attempts = 0
    while not self._closing:
      self._set_state(ConnectionState.CONNECTING if self.reconnect_attempts == 0 else ConnectionState.RECONNECTING)
      try:
        async with self._connect(self._endpoint()) as socket:
          self._socket = socket
          self._set_state(ConnectionState.CONNECTED)
          self.reconnect_attempts = 0
          # Rejoin on every connect; events published while we were away are gone.
          await self._send(socket, "join-room", {"room": self.room})
          await self._read(socket)
        # A deliberate close from either side ends the session without retrying.
        close_code = getattr(socket, "close_code", None)
        if self._closing or close_code == NORMAL_CLOSURE:
          break
        logger.info("Progress socket closed with code %s; reconnecting", close_code)
      except (ConnectionClosedError, InvalidHandshake, OSError) as exc:
        if self._closing:
          break
        logger.warning("Progress socket lost: %s", exc)
      finally:
        self._socket = None
        self._fail_status_waiters()

      self._set_state(ConnectionState.DISCONNECTED)
      if self.reconnect_attempts >= self.max_reconnect_attempts:
        logger.error("Giving up on progress socket after %d reconnect attempts", self.reconnect_attempts)
        self._set_state(ConnectionState.ERROR)
        return
      delay = self.reconnect_delay(self.reconnect_attempts)
      self.reconnect_attempts += 1
      await self._sleep(delay)

    self._set_state(ConnectionState.DISCONNECTED)

  async def close(self) -> None:
    """Close the socket without triggering a reconnect."""
    self._closing = True
    socket = self._socket
    if socket is not None:
      await socket.close(code=NORMAL_CLOSURE)

  async def request_queue_status(self) -> dict[str, Any]:
    """Ask the gateway for queue depths and wait for the reply."""
    socket = self._socket
    if socket is None:
      raise ConnectionError("Progress socket is not connected.")
    waiter: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
    self._status_waiters.append(waiter)
    try:
      await self._send(socket, "get-queue-status", None)
      return await asyncio.wait_for(waiter, timeout=self.status_timeout)
    finally:
      if waiter in self._status_waiters:
        self._status_waiters.remove(waiter)

  def _endpoint(self) -> str:
    """Gateway URL with the token as a query parameter."""
    if not self._token:
      return self.url
    separator = "&" if "?" in self.url else "?"
    return f"{self.url}{separator}{urlencode({'token': self._token})}"

  async def _read(self, socket: Any) -> None:
    """Decode frames until the socket closes."""
    async for raw in socket:
      try:
        message = json.loads(raw)
      except (TypeError, ValueError):
        logger.warning("Ignoring malformed gateway frame: %.200r", raw)
        continue
      if isinstance(message, dict):
        self._handle(message.get("event"), message.get("data"))

  def _handle(self, event: Any, data: Any) -> None:
    """Route one decoded frame by event name."""
    if event == "progress-update":
      try:
        self.tracker.apply_event(ProgressEvent.model_validate(data))
      except ValidationError:
        logger.warning("Ignoring malformed progress update: %.200r", data)
    elif event == "queue-status":
      self._resolve_status(result=data)
    elif event == "queue-status-error":
      error = data.get("error") if isinstance(data, dict) else data
      self._resolve_status(error=RuntimeError(str(error or "Queue status unavailable")))
    elif event == "error":
      logger.warning("Gateway reported an error: %s", data)

  def _resolve_status(self, *, result: Any = None, error: BaseException | None = None) -> None:
    """Complete every pending queue status request with a result or an error."""
    waiters, self._status_waiters = self._status_waiters, []
    for waiter in waiters:
      if waiter.done():
        continue
      if error is not None:
        waiter.set_exception(error)
      else:
        waiter.set_result(result)

  def _fail_status_waiters(self) -> None:
    """Fail pending status requests when the socket goes away."""
    self._resolve_status(error=ConnectionError("Progress socket closed."))

  def _set_state(self, state: ConnectionState) -> None:
    """Record a state transition on the tracker."""
    if self.tracker.connection_state is not state:
      logger.debug("Progress connection %s -> %s", self.tracker.connection_state.value, state.value)
    self.tracker.connection_state = state

  @staticmethod
  async def _send(socket: Any, event: str, data: Any) -> None:
    """Write one {event, data} frame."""
    await socket.send(json.dumps({"event": event, "data": data}))
