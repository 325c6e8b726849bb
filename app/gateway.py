"""Fan progress events out to connected WebSocket clients and answer their queue queries."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol

from redis.exceptions import RedisError

from app.jobs.factory import PipelineQueues
from app.jobs.models import ProgressEvent, now_ms
from app.jobs.progress import ProgressBus, Subscription

logger = logging.getLogger(__name__)


class ClientSocket(Protocol):
  """The part of a Starlette WebSocket the gateway writes to."""

  async def send_json(self, data: Any) -> None: ...

  async def close(self, code: int = 1000) -> None: ...


@dataclass(eq=False)
class GatewayClient:
  """One connected socket with its own bounded outbox."""

  socket: ClientSocket
  outbox: asyncio.Queue[dict[str, Any]]
  user_id: str | None = None
  id: str = field(default_factory=lambda: uuid.uuid4().hex)
  rooms: set[str] = field(default_factory=set)
  sender: asyncio.Task[None] | None = None
  dropped: int = 0


def frame(event: str, data: Any) -> dict[str, Any]:
  """Build the {event, data} envelope used for every socket frame."""
  return {"event": event, "data": data}


class ProgressGateway:
  """Owns the single bus subscription for this process and every client connection."""

  def __init__(self, bus: ProgressBus, queues: PipelineQueues, *, client_queue_size: int = 256) -> None:
    self._bus = bus
    self._queues = queues
    self._client_queue_size = client_queue_size
    self._clients: dict[str, GatewayClient] = {}
    self._subscription: Subscription | None = None
    self._subscribe_lock = asyncio.Lock()

  @property
  def clients(self) -> list[GatewayClient]:
    """Snapshot of connected clients."""
    return list(self._clients.values())

  @property
  def subscribed(self) -> bool:
    """Whether the bus subscription is live."""
    return self._subscription is not None and self._subscription.active

  async def start(self) -> None:
    """Subscribe to the bus ahead of the first connection."""
    await self.ensure_subscribed()

  async def ensure_subscribed(self) -> None:
    """Subscribe to the bus once, however many connections race here."""
    async with self._subscribe_lock:
      if self.subscribed:
        return
      self._subscription = await self._bus.subscribe(self.broadcast)
      logger.info("Progress gateway subscribed to %s", self._bus.channel)

  async def connect(self, socket: ClientSocket, *, user_id: str | None = None) -> GatewayClient:
    """Register an accepted socket and start its sender."""
    client = GatewayClient(socket=socket, outbox=asyncio.Queue(maxsize=self._client_queue_size), user_id=user_id)
    self._clients[client.id] = client
    client.sender = asyncio.create_task(self._send_loop(client), name=f"gateway-sender:{client.id}")
    await self.ensure_subscribed()
    self._enqueue(client, frame("connected", {"clientId": client.id, "userId": user_id}))
    logger.info("Progress client connected id=%s user=%s clients=%d", client.id, user_id, len(self._clients))
    return client

  async def disconnect(self, client: GatewayClient) -> None:
    """Unregister a client; safe to call more than once."""
    if self._clients.pop(client.id, None) is None:
      return
    sender = client.sender
    client.sender = None
    # The sender itself calls disconnect after a failed send; it must not cancel itself.
    if sender is not None and sender is not asyncio.current_task():
      sender.cancel()
      with contextlib.suppress(asyncio.CancelledError):
        await sender
    logger.info("Progress client disconnected id=%s clients=%d", client.id, len(self._clients))

  def broadcast(self, event: ProgressEvent) -> None:
    """Hand one event to every client without waiting on any socket."""
    message = frame("progress-update", event.to_wire())
    # put_nowait only: a slow socket never delays the bus reader or other clients.
    for client in list(self._clients.values()):
      self._enqueue(client, message)

  async def handle_message(self, client: GatewayClient, message: Any) -> None:
    """Answer one client frame; replies go to the requesting client only."""
    if not isinstance(message, dict) or not isinstance(message.get("event"), str):
      self._enqueue(client, frame("error", {"error": "Expected a JSON object with an 'event' field."}))
      return

    event = message["event"]
    data = message.get("data")
    if event == "join-room":
      room = data.get("room") if isinstance(data, dict) else data
      room = str(room or "progress")
      # Rooms are recorded for the client but do not filter broadcasts.
      client.rooms.add(room)
      self._enqueue(client, frame("joined-room", {"room": room}))
    elif event == "get-queue-status":
      try:
        status = await self.queue_status()
      except RedisError as exc:
        logger.warning("Queue status lookup failed for client=%s: %s", client.id, exc)
        self._enqueue(client, frame("queue-status-error", {"error": str(exc) or "Queue status unavailable"}))
        return
      self._enqueue(client, frame("queue-status", status))
    else:
      self._enqueue(client, frame("error", {"error": f"Unknown event: {event}"}))

  async def queue_status(self) -> dict[str, int]:
    """Pending depth of each pipeline queue."""
    scrape, ai, invent = await asyncio.gather(self._queues.scrape.depth(), self._queues.ai.depth(), self._queues.invent.depth())
    return {"processing": scrape, "ai": ai, "invent": invent, "timestamp": now_ms()}

  async def stop(self) -> None:
    """Drop the bus subscription and close every client."""
    subscription = self._subscription
    self._subscription = None
    if subscription is not None:
      await subscription.unsubscribe()
    for client in list(self._clients.values()):
      await self.disconnect(client)
      with contextlib.suppress(RuntimeError, OSError):
        await client.socket.close(code=1001)

  def _enqueue(self, client: GatewayClient, message: dict[str, Any]) -> None:
    """Queue a frame for one client without blocking; a full outbox drops it."""
    try:
      client.outbox.put_nowait(message)
    except asyncio.QueueFull:
      client.dropped += 1
      logger.warning("Progress client %s is not keeping up; dropped %s (total dropped=%d)", client.id, message.get("event"), client.dropped)

  async def _send_loop(self, client: GatewayClient) -> None:
    """Drain one client's outbox onto its socket until it fails or is cancelled."""
    while True:
      message = await client.outbox.get()
      try:
        await client.socket.send_json(message)
      except Exception as exc:  # noqa: BLE001
        # Closed or broken socket; only this client is affected.
        logger.info("Progress client %s send failed; disconnecting: %s", client.id, exc)
        await self.disconnect(client)
        return
