"""Domain models for queued recipe pipeline tasks and their progress events."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

TaskKind = Literal["scrape", "ai", "invent"]


class Stage(str, Enum):
  """Pipeline stages in their total order; FAILED is terminal from anywhere."""

  QUEUED = "queued"
  SCRAPING = "scraping"
  SCRAPED = "scraped"
  AI_PROCESSING = "ai_processing"
  AI_PROCESSED = "ai_processed"
  STORED = "stored"
  FAILED = "failed"

  @property
  def is_terminal(self) -> bool:
    """Whether no further stage can follow."""
    return self in (Stage.STORED, Stage.FAILED)

  @property
  def rank(self) -> int:
    """Position in the stage order; FAILED ranks after everything."""
    if self is Stage.FAILED:
      return len(_STAGE_ORDER)
    return _STAGE_ORDER.index(self)


_STAGE_ORDER = (Stage.QUEUED, Stage.SCRAPING, Stage.SCRAPED, Stage.AI_PROCESSING, Stage.AI_PROCESSED, Stage.STORED)


def now_ms() -> int:
  """Return the current epoch time in milliseconds."""
  return int(time.time() * 1000)


@dataclass
class Task:
  """Queue envelope; `raw` is the exact serialized form held in the processing list."""

  id: str
  payload: dict[str, Any]
  created_at: int
  attempts: int = 0
  type: str = "task"
  raw: str | None = field(default=None, compare=False, repr=False)

  def to_json(self) -> str:
    """Serialize the envelope in its compact wire form."""
    return json.dumps({"id": self.id, "type": self.type, "payload": self.payload, "createdAt": self.created_at, "attempts": self.attempts}, separators=(",", ":"))

  @classmethod
  def from_json(cls, raw: str) -> Task:
    """Parse a raw queue entry; any malformed envelope raises ValueError."""
    data = json.loads(raw)
    if not isinstance(data, dict) or "id" not in data or not isinstance(data.get("payload"), dict):
      raise ValueError("Queue message is not a task envelope.")
    try:
      created_at = int(data.get("createdAt") or 0)
      attempts = int(data.get("attempts") or 0)
    except (TypeError, ValueError) as exc:
      raise ValueError(f"Queue message has a malformed counter: {exc}") from exc
    return cls(id=str(data["id"]), payload=data["payload"], created_at=created_at, attempts=attempts, type=str(data.get("type") or "task"), raw=raw)


class ProgressEvent(BaseModel):
  """Stage transition broadcast for one subject; `url` is the subject key."""

  model_config = ConfigDict(populate_by_name=True, use_enum_values=False)

  url: str = Field(..., min_length=1)
  stage: Stage
  timestamp: int = Field(default_factory=now_ms)
  error: str | None = None
  recipe_id: int | None = Field(default=None, alias="recipeId")
  user_id: str | None = Field(default=None, alias="userId")

  def to_wire(self) -> dict[str, Any]:
    """Return the camelCase payload sent over pub/sub and websockets."""
    return self.model_dump(mode="json", by_alias=True, exclude_none=True)


@dataclass(frozen=True)
class PipelineResult:
  """Outcome of one pipeline run; a recipe id means the subject reached storage."""

  recipe_id: int | None = None
