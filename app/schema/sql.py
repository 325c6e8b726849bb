from __future__ import annotations

import datetime

from sqlalchemy import DateTime, Float, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class Recipe(Base):
  """Stored recipe; `source_url` is unique so scrape retries upsert one row."""

  __tablename__ = "recipes"

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  title: Mapped[str] = mapped_column(String(255), nullable=False)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  ingredients: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
  overview: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
  recipe_steps: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
  chunks: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
  prep_time: Mapped[int | None] = mapped_column(Integer, nullable=True)
  cook_time: Mapped[int | None] = mapped_column(Integer, nullable=True)
  servings: Mapped[int | None] = mapped_column(Integer, nullable=True)
  difficulty: Mapped[str | None] = mapped_column(String(32), nullable=True)
  tags: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
  image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
  rating: Mapped[float | None] = mapped_column(Float, nullable=True)
  author: Mapped[str | None] = mapped_column(String(255), nullable=True)
  # Natural idempotency key for scraped recipes; NULL for invented ones.
  source_url: Mapped[str | None] = mapped_column(Text, unique=True, nullable=True)
  scraped_html_path: Mapped[str | None] = mapped_column(Text, nullable=True)
  ai_query: Mapped[str | None] = mapped_column(Text, nullable=True)
  ai_response: Mapped[str | None] = mapped_column(Text, nullable=True)
  url_mappings: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  user_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
  scraped_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
