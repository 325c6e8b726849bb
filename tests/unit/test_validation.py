from __future__ import annotations

import pytest

from app.ai.validation import validate_recipe_payload
from app.core.exceptions import RecipeValidationError


def _flat_recipe(**overrides: object) -> dict:
  recipe = {
    "title": "Pasta al limone",
    "servings": 2,
    "difficulty": "easy",
    "ingredients": ["200g spaghetti", "1 lemon"],
    "recipeSteps": [{"type": "text", "content": "Boil the pasta."}, {"type": "image", "content": "Plate it.", "imageUrl": "https://cdn.example.com/p.jpg"}],
  }
  recipe.update(overrides)
  return recipe


def _sectioned_recipe() -> dict:
  chunk = {"title": "Main", "ingredients": ["rice"], "recipeSteps": [{"type": "text", "content": "Cook."}], "tags": ["rice"], "prepTime": 10, "cookTime": 20, "orderIndex": 0, "servings": 4, "rating": 4.5, "difficulty": "easy"}
  return {"title": "Rice bowl", "servings": 4, "difficulty": "easy", "overview": ["A bowl."], "totalPrepTime": 10, "totalCookTime": 20, "chunks": [chunk]}


def test_valid_flat_recipe_passes() -> None:
  recipe = _flat_recipe()
  assert validate_recipe_payload(recipe) is recipe


def test_wrapped_recipe_is_unwrapped() -> None:
  assert validate_recipe_payload({"recipe": _flat_recipe()})["title"] == "Pasta al limone"


def test_empty_title_is_rejected() -> None:
  with pytest.raises(RecipeValidationError) as excinfo:
    validate_recipe_payload(_flat_recipe(title="  "))
  assert "title" in str(excinfo.value)
  assert str(excinfo.value).startswith("AI JSON validation failed: ")


@pytest.mark.parametrize(("field", "value"), [("servings", "two"), ("servings", True), ("difficulty", 3), ("ingredients", "rice"), ("recipeSteps", None)])
def test_wrong_field_types_are_rejected(field: str, value: object) -> None:
  with pytest.raises(RecipeValidationError) as excinfo:
    validate_recipe_payload(_flat_recipe(**{field: value}))
  assert field in str(excinfo.value)


def test_step_type_is_checked() -> None:
  with pytest.raises(RecipeValidationError) as excinfo:
    validate_recipe_payload(_flat_recipe(recipeSteps=[{"type": "video", "content": "Watch"}]))
  assert "recipeSteps[0].type" in str(excinfo.value)


def test_sectioned_recipe_passes_when_required() -> None:
  assert validate_recipe_payload(_sectioned_recipe(), require_sections=True)["chunks"][0]["title"] == "Main"


def test_missing_chunks_are_rejected_when_required() -> None:
  with pytest.raises(RecipeValidationError) as excinfo:
    validate_recipe_payload(_flat_recipe(), require_sections=True)
  message = str(excinfo.value)
  assert "chunks must be an array" in message
  assert "overview must be an array" in message


def test_non_object_response_is_rejected() -> None:
  with pytest.raises(RecipeValidationError):
    validate_recipe_payload(["not", "an", "object"])
