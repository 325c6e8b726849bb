"""Postgres-backed recipe store using SQLAlchemy."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import Insert, insert

from app.core.database import get_session_factory
from app.schema.sql import Recipe
from app.storage.recipes_repo import RecipeRecord, RecipeStore

# Columns an upsert may overwrite; id and created_at stay with the first row.
_UPSERT_COLUMNS = (
  "title",
  "description",
  "ingredients",
  "overview",
  "recipe_steps",
  "chunks",
  "prep_time",
  "cook_time",
  "servings",
  "difficulty",
  "tags",
  "image_url",
  "rating",
  "author",
  "scraped_html_path",
  "ai_query",
  "ai_response",
  "url_mappings",
  "user_id",
  "scraped_at",
)


def _record_values(record: RecipeRecord) -> dict[str, Any]:
  """Return column values for a record, leaving the id to the database."""
  values = asdict(record)
  values.pop("id")
  return values


def build_upsert_statement(values: dict[str, Any]) -> Insert:
  """Insert keyed on source_url; a conflict overwrites the content columns and bumps updated_at."""
  statement = insert(Recipe).values(**values)
  updates: dict[str, Any] = {column: statement.excluded[column] for column in _UPSERT_COLUMNS}
  # Column onupdate hooks do not fire for ON CONFLICT DO UPDATE.
  updates["updated_at"] = func.now()
  return statement.on_conflict_do_update(index_elements=[Recipe.source_url], set_=updates).returning(Recipe.id)


class PostgresRecipeStore(RecipeStore):
  """Persist recipes to Postgres; concurrent retries converge on one row per source URL."""

  def __init__(self) -> None:
    self._session_factory = get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def save(self, record: RecipeRecord) -> int:
    """Insert a new row and return its id."""
    async with self._session_factory() as session:
      row = Recipe(**_record_values(record))
      session.add(row)
      await session.commit()
      return row.id

  async def upsert_by_source_url(self, record: RecipeRecord) -> int:
    """Single-statement upsert so concurrent retries cannot create duplicates."""
    if not record.source_url:
      raise ValueError("upsert_by_source_url requires a source_url")
    statement = build_upsert_statement(_record_values(record))
    async with self._session_factory() as session:
      result = await session.execute(statement)
      await session.commit()
      return int(result.scalar_one())

  async def find_by_id(self, recipe_id: int) -> RecipeRecord | None:
    async with self._session_factory() as session:
      row = await session.get(Recipe, recipe_id)
      return None if row is None else self._model_to_record(row)

  async def find_by_source_url(self, source_url: str) -> RecipeRecord | None:
    async with self._session_factory() as session:
      result = await session.execute(select(Recipe).where(Recipe.source_url == source_url))
      row = result.scalar_one_or_none()
      return None if row is None else self._model_to_record(row)

  async def delete(self, recipe_id: int) -> bool:
    async with self._session_factory() as session:
      result = await session.execute(delete(Recipe).where(Recipe.id == recipe_id))
      await session.commit()
      return bool(result.rowcount)

  def _model_to_record(self, row: Recipe) -> RecipeRecord:
    """Map an ORM row back onto the storage-agnostic record."""
    return RecipeRecord(
      id=row.id,
      title=row.title,
      description=row.description,
      ingredients=list(row.ingredients or []),
      overview=list(row.overview or []),
      recipe_steps=list(row.recipe_steps or []),
      chunks=list(row.chunks or []),
      prep_time=row.prep_time,
      cook_time=row.cook_time,
      servings=row.servings,
      difficulty=row.difficulty,
      tags=list(row.tags or []),
      image_url=row.image_url,
      rating=row.rating,
      author=row.author,
      source_url=row.source_url,
      scraped_html_path=row.scraped_html_path,
      ai_query=row.ai_query,
      ai_response=row.ai_response,
      url_mappings=row.url_mappings,
      scraped_at=row.scraped_at,
      user_id=row.user_id,
    )
