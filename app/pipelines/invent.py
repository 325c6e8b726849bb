"""Invent pipeline: structured creative prompt in, validated stored recipe out."""

from __future__ import annotations

from dataclasses import replace

from app.ai.client import CompletionClient
from app.ai.prompts import INVENT_SYSTEM_PROMPT, build_invent_prompt
from app.ai.validation import validate_recipe_payload
from app.core.exceptions import PipelineError
from app.jobs.models import PipelineResult, Stage, Task
from app.jobs.progress import ProgressReporter
from app.storage.recipes_repo import RecipeStore, recipe_from_payload

INVENT_TEMPERATURE = 0.7
INVENTED_AUTHOR = "AI Chef"


class InventPipeline:
  """Generates a new recipe from the invent form fields."""

  kind = "invent"

  def __init__(self, *, completion: CompletionClient, store: RecipeStore) -> None:
    self._completion = completion
    self._store = store

  def task_key(self, task: Task) -> str:
    """The client-visible task id doubles as the subject key."""
    return str(task.payload.get("taskId") or task.id)

  async def process(self, task: Task, reporter: ProgressReporter) -> PipelineResult:
    """Prompt, validate with sections required, then save under the AI author."""
    request = task.payload.get("request")
    if not isinstance(request, dict) or not request.get("title"):
      raise PipelineError("Invent task is missing a title")

    await reporter.emit(Stage.AI_PROCESSING)
    prompt = build_invent_prompt(request)
    completion = await self._completion.complete_json(system=INVENT_SYSTEM_PROMPT, user=prompt, temperature=INVENT_TEMPERATURE)

    # Invented recipes must come back in the sectioned (chunks) shape.
    payload = validate_recipe_payload(completion.data, require_sections=True)
    record = recipe_from_payload(payload, ai_query=prompt, ai_response=completion.raw, user_id=task.payload.get("userId"))
    recipe_id = await self._store.save(replace(record, author=INVENTED_AUTHOR))
    return PipelineResult(recipe_id=recipe_id)
