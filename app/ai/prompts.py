"""Prompt builders for recipe extraction and recipe invention."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

EXTRACTION_SYSTEM_PROMPT = "You are a parser that extracts structured recipe JSON. Respond with strict JSON matching the schema."

EXTRACTION_FIELDS = (
  'title(string), description(string), ingredients(string[]), overview(string[]), recipeSteps({type:"text"|"image",content,imageUrl?}[]), '
  'prepTime(number), cookTime(number), servings(number), difficulty("easy"|"medium"|"hard"), tags(string[]), imageUrl(string), rating(number), author(string)'
)

INVENT_SYSTEM_PROMPT = (
  "You are a creative chef and recipe developer. Create a complete, detailed recipe based on the user's specifications. "
  "The recipe should be practical, well-structured, and include all necessary details for successful cooking."
)

INVENT_FIELDS = (
  'title(string), description(string), overview(string[]), totalPrepTime(number), totalCookTime(number), servings(number), '
  'difficulty("easy"|"medium"|"hard"), tags(string[]), imageUrl(string), rating(number), author(string), '
  'chunks({title(string), description?(string), ingredients(string[]), recipeSteps({type:"text"|"image",content,imageUrl?}[]), '
  'prepTime(number), cookTime(number), servings(number), difficulty("easy"|"medium"|"hard"), tags(string[]), imageUrl?(string), rating(number), orderIndex(number)}[])'
)

INVENT_RULES = """Rules:
1. Every recipe has a chunks array. Use a single chunk with orderIndex 0 unless the dish has distinct components (dough and filling, cake and frosting).
2. The overview is 2-4 sentences on the dish, its flavors and key techniques.
3. Ingredients carry quantities and units.
4. Steps are short, ordered and actionable.
5. Times are realistic minutes; difficulty reflects the techniques used.
6. Tags cover cuisine, dish type, diet and cooking methods.
7. Rating is between 4.0 and 5.0.
8. imageUrl is "https://images.unsplash.com/photo-1546069901-ba9599a7e63c?w=800".
9. author is "AI Chef".
Return valid JSON only."""

# Optional invent fields rendered as "Label: value" lines, in prompt order.
_INVENT_LINES: tuple[tuple[str, str, str], ...] = (
  ("description", "Description", "{}"),
  ("cuisine", "Cuisine", "{}"),
  ("type", "Type", "{}"),
  ("difficulty", "Difficulty", "{}"),
  ("servings", "Servings", "{}"),
  ("prepTime", "Prep Time", "{} minutes"),
  ("cookTime", "Cook Time", "{} minutes"),
  ("ingredients", "Preferred Ingredients", "{}"),
  ("dietaryRestrictions", "Dietary Restrictions", "{}"),
  ("cookingMethods", "Cooking Methods", "{}"),
  ("specialInstructions", "Special Instructions", "{}"),
)


def build_extraction_prompt(html: str, url: str | None) -> str:
  """Return the user message asking the model to extract one recipe from cleaned HTML."""
  return f"Extract a recipe object with fields: {EXTRACTION_FIELDS}. Source URL: {url or ''}. HTML:\n{html}"


def build_invent_prompt(request: Mapping[str, Any]) -> str:
  """Return the user message for inventing a recipe from the optional request fields."""
  lines = ["Create a complete recipe with the following specifications:", "", f"Title: {request['title']}"]
  for key, label, template in _INVENT_LINES:
    value = request.get(key)
    if value in (None, "", []):
      continue
    if isinstance(value, list):
      value = ", ".join(str(item) for item in value)
    lines.append(f"{label}: {template.format(value)}")
  lines.extend(["", f"Create a complete recipe object in JSON format with fields: {INVENT_FIELDS}.", "", INVENT_RULES])
  return "\n".join(lines)
