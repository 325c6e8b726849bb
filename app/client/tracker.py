"""Client-side projection of pipeline jobs built from submissions and progress events."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

import httpx

from app.jobs.models import ProgressEvent, Stage, TaskKind, now_ms
from app.utils.ids import generate_client_job_id, generate_invent_task_id

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
  """Lifecycle of a job as shown to the user."""

  PENDING = "pending"
  IN_PROGRESS = "in_progress"
  COMPLETED = "completed"
  FAILED = "failed"


class ConnectionState(str, Enum):
  """State of the progress socket, mirrored onto the tracker."""

  DISCONNECTED = "disconnected"
  CONNECTING = "connecting"
  CONNECTED = "connected"
  RECONNECTING = "reconnecting"
  ERROR = "error"


@dataclass
class Job:
  """One submission as the client sees it; `subject_key` matches ProgressEvent.url."""

  id: str
  subject_key: str
  kind: TaskKind
  status: JobStatus
  created_at: int
  updated_at: int
  payload: dict[str, Any] = field(default_factory=dict)
  progress: list[ProgressEvent] = field(default_factory=list)
  recipe_id: int | None = None
  error: str | None = None

  @property
  def stage(self) -> Stage | None:
    """Latest stage seen for the job."""
    return self.progress[-1].stage if self.progress else None


class PipelineApi(Protocol):
  """Enqueue endpoint used by the tracker."""

  async def enqueue(self, kind: TaskKind, payload: dict[str, Any]) -> dict[str, Any]: ...


class PipelineApiClient:
  """httpx client for the enqueue and queue status endpoints."""

  def __init__(self, base_url: str, *, token: str | None = None, timeout: float = 10.0, client: httpx.AsyncClient | None = None) -> None:
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    self._client = client or httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout)

  async def enqueue(self, kind: TaskKind, payload: dict[str, Any]) -> dict[str, Any]:
    """x"""
    if kind == "scrape":
      response = await self._client.post("/api/scrape/queue", json={"url": payload["url"]})
    elif kind == "invent":
      response = await self._client.post("/api/invent", json=payload)
    else:
      raise ValueError(f"Tasks of kind {kind!r} are not submitted by clients.")
    response.raise_for_status()
    return response.json()

  async def queue_status(self) -> dict[str, Any]:
    """Fetch queue depths over HTTP."""
    response = await self._client.get("/api/scrape/queue/status")
    response.raise_for_status()
    return response.json()

  async def aclose(self) -> None:
    """Close the underlying httpx client."""
    await self._client.aclose()


class JobTracker:
  """Tracks active, completed and failed jobs keyed by subject.

  Moves between collections never await, so concurrent event handlers cannot
  observe a job in two collections or in none.
  """

  def __init__(self, api: PipelineApi, *, max_completed: int = 50, max_failed: int = 20) -> None:
    self._api = api
    self.max_completed = max_completed
    self.max_failed = max_failed
    self.active: dict[str, Job] = {}
    self.completed: list[Job] = []
    self.failed: list[Job] = []
    self.connection_state = ConnectionState.DISCONNECTED
    self._requests: set[asyncio.Task[None]] = set()

  def submit(self, kind: TaskKind, payload: dict[str, Any]) -> str:
    """Register a pending job and send it in the background; returns the job id."""
    job = self._new_job(kind, payload, job_id=generate_client_job_id())
    self.active[job.id] = job
    self._schedule(job)
    return job.id

  def retry(self, job_id: str) -> str:
    """Resubmit a failed job as a new task under the same job id."""
    job = next((item for item in self.failed if item.id == job_id), None)
    if job is None:
      raise KeyError(job_id)
    self.failed.remove(job)
    payload = dict(job.payload)
    payload.pop("taskId", None)
    fresh = self._new_job(job.kind, payload, job_id=job.id)
    self.active[fresh.id] = fresh
    self._schedule(fresh)
    return fresh.id

  def apply_event(self, event: ProgressEvent) -> Job | None:
    """Fold one progress event into the job for its subject."""
    subject = event.url
    job = self.find_active(subject)
    if job is None:
      # Late or duplicate event for a job that already finished.
      if self.is_finalized(subject):
        return None
      # Submitted elsewhere (another tab, or before a reload).
      kind: TaskKind = "invent" if subject.startswith("invent-") else "scrape"
      job = Job(id=generate_client_job_id(), subject_key=subject, kind=kind, status=JobStatus.PENDING, created_at=event.timestamp, updated_at=event.timestamp)
      self.active[job.id] = job

    job.progress.append(event)
    job.updated_at = event.timestamp
    if event.stage in (Stage.SCRAPING, Stage.AI_PROCESSING):
      job.status = JobStatus.IN_PROGRESS
    elif event.stage is Stage.STORED:
      job.status = JobStatus.COMPLETED
      job.recipe_id = event.recipe_id
      self._finalize(job, self.completed, self.max_completed)
    elif event.stage is Stage.FAILED:
      job.status = JobStatus.FAILED
      job.error = event.error
      self._finalize(job, self.failed, self.max_failed)
    return job

  def find_active(self, subject_key: str) -> Job | None:
    """Return the oldest active job for a subject; duplicate submissions finish in order."""
    for job in self.active.values():
      if job.subject_key == subject_key:
        return job
    return None

  def is_finalized(self, subject_key: str) -> bool:
    """Whether a retained completed or failed job carries this subject."""
    return any(job.subject_key == subject_key for job in (*self.completed, *self.failed))

  def get(self, job_id: str) -> Job | None:
    """Look a job up by id across active, completed and failed."""
    if job_id in self.active:
      return self.active[job_id]
    return next((job for job in (*self.completed, *self.failed) if job.id == job_id), None)

  def remove_job(self, job_id: str) -> bool:
    """Forget a job wherever it lives; returns whether it was found."""
    if self.active.pop(job_id, None) is not None:
      return True
    for collection in (self.completed, self.failed):
      for job in collection:
        if job.id == job_id:
          collection.remove(job)
          return True
    return False

  def clear_completed(self) -> None:
    self.completed.clear()

  def clear_failed(self) -> None:
    self.failed.clear()

  async def drain(self) -> None:
    """Wait for in-flight enqueue requests."""
    if self._requests:
      await asyncio.gather(*self._requests)

  def _new_job(self, kind: TaskKind, payload: dict[str, Any], *, job_id: str) -> Job:
    """Build a pending job with its synthetic `queued` event; invent jobs get their task id here."""
    if kind == "scrape":
      subject = str(payload["url"])
    elif kind == "invent":
      payload = {**payload, "taskId": payload.get("taskId") or generate_invent_task_id()}
      subject = payload["taskId"]
    else:
      raise ValueError(f"Tasks of kind {kind!r} are not submitted by clients.")

    created = now_ms()
    queued = ProgressEvent(url=subject, stage=Stage.QUEUED, timestamp=created)
    return Job(id=job_id, subject_key=subject, kind=kind, status=JobStatus.PENDING, created_at=created, updated_at=created, payload=payload, progress=[queued])

  def _schedule(self, job: Job) -> None:
    """Send the enqueue request in the background and keep a reference until it finishes."""
    request = asyncio.create_task(self._send(job), name=f"enqueue:{job.id}")
    self._requests.add(request)
    request.add_done_callback(self._requests.discard)

  async def _send(self, job: Job) -> None:
    """POST the job; a rejected or unreachable request becomes a local `failed` event."""
    try:
      await self._api.enqueue(job.kind, job.payload)
    except (httpx.HTTPError, ValueError) as exc:
      logger.warning("Enqueue failed for job=%s subject=%s: %s", job.id, job.subject_key, exc)
      self.apply_event(ProgressEvent(url=job.subject_key, stage=Stage.FAILED, error=str(exc) or type(exc).__name__))

  def _finalize(self, job: Job, collection: list[Job], cap: int) -> None:
    """Move a job from active to the front of a capped terminal list in one step."""
    self.active.pop(job.id, None)
    collection.insert(0, job)
    del collection[cap:]
