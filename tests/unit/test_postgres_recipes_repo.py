from __future__ import annotations

from dataclasses import asdict

from sqlalchemy.dialects import postgresql

from app.storage.postgres_recipes_repo import build_upsert_statement
from app.storage.recipes_repo import RecipeRecord


def _compiled_upsert() -> str:
  values = asdict(RecipeRecord(title="Pasta", ingredients=["pasta", "water"], servings=2, source_url="https://example.com/pasta"))
  values.pop("id")
  return str(build_upsert_statement(values).compile(dialect=postgresql.dialect()))


def test_upsert_conflicts_on_source_url() -> None:
  sql = _compiled_upsert()
  assert "ON CONFLICT (source_url) DO UPDATE SET" in sql
  assert "RETURNING" in sql


def test_upsert_refreshes_updated_at_and_keeps_created_at() -> None:
  updates = _compiled_upsert().split("DO UPDATE SET", 1)[1]
  assert "updated_at = now()" in updates
  assert "title = excluded.title" in updates
  assert "created_at" not in updates
  assert "source_url =" not in updates
