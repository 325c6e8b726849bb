"""Start N worker processes per task type.

Usage: python -m app.jobs.launcher [scrape|ai|invent|all] [--processes N] [--concurrency C]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import multiprocessing
import os
import signal
from collections.abc import Sequence

from app.ai.client import CompletionClient, build_completion_client
from app.config import Settings, get_settings
from app.core.logging import initialize_logging
from app.core.redis import build_redis
from app.jobs.factory import TASK_KINDS, build_queues, build_registry, build_worker
from app.jobs.progress import ProgressBus
from app.jobs.worker import WorkerPool
from app.services.page_fetcher import FallbackPageFetcher, build_page_fetcher
from app.storage.recipes_repo import RecipeStore, build_recipe_store

logger = logging.getLogger("app.jobs.launcher")


def _default_processes(settings: Settings, kind: str) -> int:
  """Configured process count for one worker kind."""
  return {"scrape": settings.scrape_workers, "ai": settings.ai_workers, "invent": settings.invent_workers}[kind]


async def serve(kinds: Sequence[str], *, concurrency: int | None = None) -> None:
  """Run worker loops for `kinds` in this process until SIGINT/SIGTERM."""
  settings = get_settings()
  initialize_logging(settings, role="worker-" + "-".join(kinds))

  redis = build_redis(settings)
  queues = build_queues(redis, settings)
  bus = ProgressBus(redis, settings.progress_channel)
  # Only build the collaborators the selected kinds use.
  needs_ai = any(kind in ("ai", "invent") for kind in kinds)
  store: RecipeStore | None = build_recipe_store(settings) if needs_ai else None
  completion: CompletionClient | None = build_completion_client(settings) if needs_ai else None
  fetcher: FallbackPageFetcher | None = build_page_fetcher(settings) if "scrape" in kinds else None
  registry = build_registry(settings, queues, store=store, completion=completion, fetcher=fetcher)

  pool = WorkerPool([build_worker(kind, settings, redis, queues, registry, bus, concurrency=concurrency) for kind in kinds])
  stop = asyncio.Event()
  loop = asyncio.get_running_loop()
  for sig in (signal.SIGINT, signal.SIGTERM):
    loop.add_signal_handler(sig, stop.set)

  pool.start()
  try:
    await stop.wait()
    logger.info("Shutdown requested; stopping %s workers", ",".join(kinds))
  finally:
    await pool.stop()
    if fetcher is not None:
      await fetcher.aclose()
    await redis.aclose()


def run_worker_process(kinds: Sequence[str], concurrency: int | None) -> None:
  """Process entry point; every child builds its own connections."""
  asyncio.run(serve(kinds, concurrency=concurrency))


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
  """Parse launcher arguments."""
  parser = argparse.ArgumentParser(description="Run recipe pipeline queue workers.")
  parser.add_argument("kind", nargs="?", default="all", choices=[*TASK_KINDS, "all"], help="Worker type to run.")
  parser.add_argument("--processes", type=int, default=None, help="Processes per worker type (defaults to settings).")
  parser.add_argument("--concurrency", type=int, default=None, help="Dequeue loops per process (defaults to settings).")
  parser.add_argument("--in-process", action="store_true", help="Run every selected worker type in this process.")
  return parser.parse_args(argv)


def plan_processes(kinds: Sequence[str], settings: Settings, processes: int | None) -> list[str]:
  """Expand worker types into one entry per process to spawn."""
  plan: list[str] = []
  for kind in kinds:
    count = processes if processes is not None else _default_processes(settings, kind)
    if count < 1:
      raise ValueError(f"Process count for {kind} must be at least 1.")
    plan.extend([kind] * count)
  return plan


def main(argv: Sequence[str] | None = None) -> int:
  """Spawn worker processes per kind and wait for them; returns the process exit code."""
  args = _parse_args(argv)
  settings = get_settings()
  initialize_logging(settings, role="launcher")
  kinds = list(TASK_KINDS) if args.kind == "all" else [args.kind]

  if args.in_process:
    run_worker_process(kinds, args.concurrency)
    return 0

  plan = plan_processes(kinds, settings, args.processes)
  cpus = os.cpu_count() or 1
  if len(plan) > cpus:
    logger.warning("Spawning %d worker processes on %d CPUs", len(plan), cpus)

  # Spawn, not fork: each child starts clean and opens its own Redis and HTTP clients.
  context = multiprocessing.get_context("spawn")
  processes = [context.Process(target=run_worker_process, args=([kind], args.concurrency), name=f"{kind}-worker-{index}") for index, kind in enumerate(plan)]
  for process in processes:
    process.start()
    logger.info("Started %s (pid=%s)", process.name, process.pid)

  def _forward(signum: int, _frame: object) -> None:
    """Pass SIGINT/SIGTERM on to every live child."""
    for process in processes:
      if process.is_alive():
        process.terminate()

  signal.signal(signal.SIGTERM, _forward)
  signal.signal(signal.SIGINT, _forward)

  exit_code = 0
  for process in processes:
    process.join()
    if process.exitcode not in (0, -signal.SIGTERM):
      logger.error("%s exited with code %s", process.name, process.exitcode)
      exit_code = 1
  return exit_code


if __name__ == "__main__":
  raise SystemExit(main())
