"""Storage interfaces for recipes produced by the pipelines."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Protocol

from app.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecipeRecord:
  """A validated recipe ready to persist; `id` is assigned by the store."""

  title: str
  description: str | None = None
  ingredients: list[Any] = field(default_factory=list)
  overview: list[Any] = field(default_factory=list)
  recipe_steps: list[Any] = field(default_factory=list)
  chunks: list[Any] = field(default_factory=list)
  prep_time: int | None = None
  cook_time: int | None = None
  servings: int | None = None
  difficulty: str | None = None
  tags: list[str] = field(default_factory=list)
  image_url: str | None = None
  rating: float | None = None
  author: str | None = None
  source_url: str | None = None
  scraped_html_path: str | None = None
  ai_query: str | None = None
  ai_response: str | None = None
  url_mappings: dict[str, str] | None = None
  scraped_at: datetime | None = None
  user_id: str | None = None
  id: int | None = None


class RecipeStore(Protocol):
  """Repository contract for the recipe persistence collaborator."""

  async def save(self, record: RecipeRecord) -> int:
    """Insert a new recipe and return its id."""

  async def upsert_by_source_url(self, record: RecipeRecord) -> int:
    """Insert or update the recipe keyed on `source_url` and return its id."""

  async def find_by_id(self, recipe_id: int) -> RecipeRecord | None:
    """Fetch a recipe by id."""

  async def find_by_source_url(self, source_url: str) -> RecipeRecord | None:
    """Fetch the recipe scraped from a URL."""

  async def delete(self, recipe_id: int) -> bool:
    """Delete a recipe; False when it did not exist."""


class InMemoryRecipeStore:
  """Process-local store for development without Postgres."""

  def __init__(self, *, first_id: int = 1) -> None:
    self._records: dict[int, RecipeRecord] = {}
    self._next_id = first_id
    self._lock = asyncio.Lock()

  async def save(self, record: RecipeRecord) -> int:
    async with self._lock:
      return self._insert(record)

  async def upsert_by_source_url(self, record: RecipeRecord) -> int:
    """Replace the record sharing this source URL, keeping its id, or insert a new one."""
    if not record.source_url:
      raise ValueError("upsert_by_source_url requires a source_url")
    async with self._lock:
      existing = self._by_source_url(record.source_url)
      if existing is None:
        return self._insert(record)
      self._records[existing.id] = replace(record, id=existing.id)
      return existing.id

  async def find_by_id(self, recipe_id: int) -> RecipeRecord | None:
    return self._records.get(recipe_id)

  async def find_by_source_url(self, source_url: str) -> RecipeRecord | None:
    return self._by_source_url(source_url)

  async def delete(self, recipe_id: int) -> bool:
    async with self._lock:
      return self._records.pop(recipe_id, None) is not None

  def __len__(self) -> int:
    return len(self._records)

  def _insert(self, record: RecipeRecord) -> int:
    """Assign the next id and store the record; caller holds the lock."""
    recipe_id = self._next_id
    self._next_id += 1
    self._records[recipe_id] = replace(record, id=recipe_id)
    return recipe_id

  def _by_source_url(self, source_url: str) -> RecipeRecord | None:
    """Linear scan; the in-memory store only holds development data."""
    return next((record for record in self._records.values() if record.source_url == source_url), None)


def recipe_from_payload(payload: dict[str, Any], **extra: Any) -> RecipeRecord:
  """Map a validated camelCase AI payload onto a RecipeRecord."""

  def _int(key: str) -> int | None:
    value = payload.get(key)
    return int(value) if isinstance(value, int | float) and not isinstance(value, bool) else None

  rating = payload.get("rating")
  return RecipeRecord(
    title=str(payload["title"]).strip(),
    description=payload.get("description") if isinstance(payload.get("description"), str) else None,
    ingredients=list(payload.get("ingredients") or []),
    overview=list(payload.get("overview") or []),
    recipe_steps=list(payload.get("recipeSteps") or []),
    chunks=list(payload.get("chunks") or []),
    prep_time=_int("totalPrepTime") if "chunks" in payload else _int("prepTime"),
    cook_time=_int("totalCookTime") if "chunks" in payload else _int("cookTime"),
    servings=_int("servings"),
    difficulty=payload.get("difficulty"),
    tags=[str(tag) for tag in payload.get("tags") or []],
    image_url=payload.get("imageUrl") if isinstance(payload.get("imageUrl"), str) else None,
    rating=float(rating) if isinstance(rating, int | float) and not isinstance(rating, bool) else None,
    author=payload.get("author") if isinstance(payload.get("author"), str) else None,
    **extra,
  )


def build_recipe_store(settings: Settings) -> RecipeStore:
  """Return the Postgres store when a DSN is configured, else an in-memory one."""
  if settings.pg_dsn:
    from app.storage.postgres_recipes_repo import PostgresRecipeStore

    return PostgresRecipeStore()
  logger.warning("No database configured; recipes are kept in memory for this process only.")
  return InMemoryRecipeStore()
