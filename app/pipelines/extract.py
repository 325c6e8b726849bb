"""AI extraction pipeline: scraped HTML in, validated stored recipe out."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from pathlib import Path

from app.ai.client import CompletionClient
from app.ai.html_cleaner import UrlCodec, prepare_html_for_ai
from app.ai.prompts import EXTRACTION_SYSTEM_PROMPT, build_extraction_prompt
from app.ai.validation import validate_recipe_payload
from app.core.exceptions import PipelineError
from app.jobs.models import PipelineResult, Stage, Task
from app.jobs.progress import ProgressReporter
from app.storage.recipes_repo import RecipeStore, recipe_from_payload

EXTRACTION_TEMPERATURE = 0.0


class ExtractPipeline:
  """Turns scraped HTML into a validated recipe upserted by source URL."""

  kind = "ai"

  def __init__(self, *, completion: CompletionClient, store: RecipeStore, token_budget: int) -> None:
    self._completion = completion
    self._store = store
    self._token_budget = token_budget

  def task_key(self, task: Task) -> str:
    """Same subject as the scrape that produced the HTML."""
    return str(task.payload.get("url") or task.payload.get("htmlPath") or task.id)

  async def process(self, task: Task, reporter: ProgressReporter) -> PipelineResult:
    """Clean, extract, validate and store; any failure leaves the store untouched."""
    html_path = task.payload.get("htmlPath")
    if not isinstance(html_path, str) or not html_path:
      raise PipelineError("AI task is missing htmlPath")
    url = task.payload.get("url") or None

    await reporter.emit(Stage.AI_PROCESSING)
    html = await asyncio.to_thread(Path(html_path).read_text, encoding="utf-8")

    # URLs are swapped for short codes to save tokens and restored in the parsed result.
    codec = UrlCodec()
    prepared = prepare_html_for_ai(html, token_budget=self._token_budget, codec=codec)
    prompt = build_extraction_prompt(prepared.content, url)
    completion = await self._completion.complete_json(system=EXTRACTION_SYSTEM_PROMPT, user=prompt, temperature=EXTRACTION_TEMPERATURE)

    # Validation gates every write: nothing reaches the store unless this passes.
    payload = validate_recipe_payload(codec.restore(completion.data))
    record = recipe_from_payload(
      payload,
      source_url=url,
      scraped_html_path=html_path,
      ai_query=prompt,
      ai_response=completion.raw,
      url_mappings=prepared.url_mappings or None,
      scraped_at=datetime.now(UTC),
      user_id=task.payload.get("userId"),
    )
    # Upsert keeps one row per URL when the same page is extracted twice.
    recipe_id = await self._store.upsert_by_source_url(record) if url else await self._store.save(record)
    return PipelineResult(recipe_id=recipe_id)
