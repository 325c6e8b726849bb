"""Minimal structural contract every AI-produced recipe must meet before it is stored."""

from __future__ import annotations

from typing import Any

from app.core.exceptions import RecipeValidationError

_STEP_TYPES = {"text", "image"}


def _is_number(value: Any) -> bool:
  return isinstance(value, int | float) and not isinstance(value, bool)


def _non_empty_string(value: Any) -> bool:
  return isinstance(value, str) and value.strip() != ""


def unwrap_recipe(data: Any) -> Any:
  """Accept both `{...recipe}` and `{"recipe": {...}}` shaped model output."""
  if isinstance(data, dict) and isinstance(data.get("recipe"), dict):
    return data["recipe"]
  return data


def _check_steps(steps: list[Any], prefix: str, errors: list[str]) -> None:
  """Each step needs an instruction; a step number, when given, must be numeric."""
  for index, step in enumerate(steps):
    where = f"{prefix}recipeSteps[{index}]"
    if not isinstance(step, dict):
      errors.append(f"{where} must be an object")
      continue
    if step.get("type") not in _STEP_TYPES:
      errors.append(f"{where}.type must be 'text' or 'image'")
    if not isinstance(step.get("content"), str):
      errors.append(f"{where}.content must be a string")
    if "imageUrl" in step and step["imageUrl"] is not None and not isinstance(step["imageUrl"], str):
      errors.append(f"{where}.imageUrl must be a string when present")


def _check_chunk(chunk: Any, index: int, errors: list[str]) -> None:
  """Validate one section of a sectioned recipe."""
  prefix = f"chunks[{index}]."
  if not isinstance(chunk, dict):
    errors.append(f"chunks[{index}] must be an object")
    return
  if not _non_empty_string(chunk.get("title")):
    errors.append(f"{prefix}title must be a non-empty string")
  for key in ("ingredients", "recipeSteps", "tags"):
    if not isinstance(chunk.get(key), list):
      errors.append(f"{prefix}{key} must be an array")
  for key in ("prepTime", "cookTime", "orderIndex", "servings", "rating"):
    if not _is_number(chunk.get(key)):
      errors.append(f"{prefix}{key} must be a number")
  if not isinstance(chunk.get("difficulty"), str):
    errors.append(f"{prefix}difficulty must be a string")
  if isinstance(chunk.get("recipeSteps"), list):
    _check_steps(chunk["recipeSteps"], prefix, errors)


def validate_recipe_payload(data: Any, *, require_sections: bool = False) -> dict[str, Any]:
  """Return the unwrapped recipe or raise RecipeValidationError listing every problem found."""
  recipe = unwrap_recipe(data)
  if not isinstance(recipe, dict):
    raise RecipeValidationError(["response must be a JSON object"])

  errors: list[str] = []
  if not _non_empty_string(recipe.get("title")):
    errors.append("title must be a non-empty string")
  if not _is_number(recipe.get("servings")):
    errors.append("servings must be a number")
  if not isinstance(recipe.get("difficulty"), str):
    errors.append("difficulty must be a string")

  sectioned = require_sections or "chunks" in recipe
  if sectioned:
    if not isinstance(recipe.get("overview"), list):
      errors.append("overview must be an array")
    for key in ("totalPrepTime", "totalCookTime"):
      if not _is_number(recipe.get(key)):
        errors.append(f"{key} must be a number")
    chunks = recipe.get("chunks")
    if not isinstance(chunks, list):
      errors.append("chunks must be an array")
    else:
      for index, chunk in enumerate(chunks):
        _check_chunk(chunk, index, errors)
  else:
    for key in ("ingredients", "recipeSteps"):
      if not isinstance(recipe.get(key), list):
        errors.append(f"{key} must be an array")
    if isinstance(recipe.get("recipeSteps"), list):
      _check_steps(recipe["recipeSteps"], "", errors)

  if errors:
    raise RecipeValidationError(errors)
  return recipe
