"""Wire queues, claim trackers and pipelines from settings."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from redis.asyncio import Redis

from app.ai.client import CompletionClient
from app.config import Settings
from app.jobs.claims import ClaimTracker
from app.jobs.dispatch import PipelineHandler, PipelineRegistry
from app.jobs.models import TaskKind
from app.jobs.progress import ProgressPublisher
from app.jobs.queue import DurableQueue
from app.jobs.worker import QueueWorker
from app.pipelines.extract import ExtractPipeline
from app.pipelines.invent import InventPipeline
from app.pipelines.scrape import ScrapePipeline
from app.services.page_fetcher import PageFetcher
from app.storage.recipes_repo import RecipeStore

TASK_KINDS: tuple[TaskKind, ...] = ("scrape", "ai", "invent")

# Scrape and AI share one completion scope: both work on the recipe behind a URL.
_PROCESSED_SCOPES: dict[str, str] = {"scrape": "recipes", "ai": "recipes", "invent": "inventions"}


@dataclass(frozen=True)
class PipelineQueues:
  """The three pipeline queues, shared by the API and the workers."""

  scrape: DurableQueue
  ai: DurableQueue
  invent: DurableQueue

  def for_kind(self, kind: str) -> DurableQueue:
    """Return the queue feeding a worker kind."""
    return getattr(self, kind)


def build_queue(redis: Redis, settings: Settings, name: str) -> DurableQueue:
  """Build one durable queue with the configured visibility and delivery limits."""
  return DurableQueue(redis, name, visibility_timeout=settings.visibility_timeout_seconds, max_deliveries=settings.max_deliveries)


def build_queues(redis: Redis, settings: Settings) -> PipelineQueues:
  """Build the scrape, ai and invent queues from their configured names."""
  return PipelineQueues(scrape=build_queue(redis, settings, settings.scrape_queue), ai=build_queue(redis, settings, settings.ai_queue), invent=build_queue(redis, settings, settings.invent_queue))


def build_claims(redis: Redis, settings: Settings, kind: str) -> ClaimTracker:
  """Build the claim tracker for a worker kind and its processed scope."""
  return ClaimTracker(redis, namespace=kind, processed_scope=_PROCESSED_SCOPES[kind], claim_ttl_seconds=settings.claim_ttl_seconds)


def build_registry(settings: Settings, queues: PipelineQueues, *, store: RecipeStore | None, completion: CompletionClient | None, fetcher: PageFetcher | None) -> PipelineRegistry:
  """Build handlers for whichever collaborators were supplied."""
  handlers: dict[str, PipelineHandler] = {}
  if fetcher is not None:
    handlers["scrape"] = ScrapePipeline(fetcher=fetcher, ai_queue=queues.ai, output_dir=Path(settings.scrape_output_dir))
  if completion is not None and store is not None:
    handlers["ai"] = ExtractPipeline(completion=completion, store=store, token_budget=settings.ai_token_budget)
    handlers["invent"] = InventPipeline(completion=completion, store=store)
  return PipelineRegistry(handlers)


def build_worker(kind: str, settings: Settings, redis: Redis, queues: PipelineQueues, registry: PipelineRegistry, publisher: ProgressPublisher, *, concurrency: int | None = None) -> QueueWorker:
  """Build the queue worker for one kind; `concurrency` overrides the configured loop count."""
  default_concurrency = {"scrape": settings.scrape_concurrency, "ai": settings.ai_concurrency, "invent": settings.invent_concurrency}[kind]
  return QueueWorker(
    queue=queues.for_kind(kind),
    handler=registry.resolve(kind),
    claims=build_claims(redis, settings, kind),
    publisher=publisher,
    concurrency=concurrency or default_concurrency,
    poll_timeout=settings.poll_timeout_seconds,
    reaper_interval=settings.reaper_interval_seconds,
    error_backoff=settings.worker_error_backoff_seconds,
  )
