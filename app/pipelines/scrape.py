"""Scrape pipeline: fetch the page, keep the raw HTML, hand off to AI extraction."""

from __future__ import annotations

import asyncio
import hashlib
import re
from pathlib import Path
from urllib.parse import urlsplit

from app.core.exceptions import PipelineError
from app.jobs.models import PipelineResult, Stage, Task
from app.jobs.progress import ProgressReporter
from app.jobs.queue import DurableQueue
from app.services.page_fetcher import PageFetcher

_SLUG_INVALID = re.compile(r"[^a-z0-9]+")


def html_filename_for(url: str) -> str:
  """Stable, filesystem-safe filename derived from the URL."""
  digest = hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]
  parts = urlsplit(url)
  slug = _SLUG_INVALID.sub("-", f"{parts.netloc}{parts.path}".lower()).strip("-")[:60] or "page"
  return f"{digest}-{slug}.html"


class ScrapePipeline:
  """Fetches a recipe page, saves its HTML and queues the AI extraction step."""

  kind = "scrape"

  def __init__(self, *, fetcher: PageFetcher, ai_queue: DurableQueue, output_dir: Path) -> None:
    self._fetcher = fetcher
    self._ai_queue = ai_queue
    self._output_dir = output_dir

  def task_key(self, task: Task) -> str:
    """The submitted URL is the subject key, exactly as the client sent it."""
    return str(task.payload.get("url") or task.id)

  async def process(self, task: Task, reporter: ProgressReporter) -> PipelineResult:
    """Fetch, persist and hand off; returns no recipe id since nothing is stored yet."""
    url = task.payload.get("url")
    if not isinstance(url, str) or not url:
      raise PipelineError("Scrape task is missing a url")

    await reporter.emit(Stage.SCRAPING)
    page = await self._fetcher.fetch(url)
    # The AI stage reads the page back from this path.
    html_path = await asyncio.to_thread(self._write_html, url, page.html)

    # The AI task keeps the original URL so both stages report under one subject.
    await self._ai_queue.enqueue({"url": url, "htmlPath": str(html_path), "finalUrl": page.final_url, "fetchedWith": page.strategy, "userId": task.payload.get("userId")})
    await reporter.emit(Stage.SCRAPED)
    return PipelineResult()

  def _write_html(self, url: str, html: str) -> Path:
    """Write the page under the output directory; runs in a worker thread."""
    self._output_dir.mkdir(parents=True, exist_ok=True)
    path = self._output_dir / html_filename_for(url)
    path.write_text(html, encoding="utf-8")
    return path
