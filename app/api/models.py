from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, StrictStr, TypeAdapter, ValidationError, field_validator

_HTTP_URL = TypeAdapter(HttpUrl)


class RecipeDifficulty(str, Enum):
  EASY = "easy"
  MEDIUM = "medium"
  HARD = "hard"


class RecipeCuisine(str, Enum):
  FRENCH = "french"
  ITALIAN = "italian"
  ASIAN = "asian"
  MEXICAN = "mexican"
  MEDITERRANEAN = "mediterranean"
  AMERICAN = "american"
  INDIAN = "indian"
  JAPANESE = "japanese"
  THAI = "thai"
  CHINESE = "chinese"
  OTHER = "other"


class RecipeType(str, Enum):
  APPETIZER = "appetizer"
  MAIN_COURSE = "main_course"
  DESSERT = "dessert"
  SIDE_DISH = "side_dish"
  SOUP = "soup"
  SALAD = "salad"
  BREAKFAST = "breakfast"
  SNACK = "snack"
  BEVERAGE = "beverage"


class ScrapeRequest(BaseModel):
  """Request payload for queueing a recipe page scrape."""

  url: StrictStr = Field(max_length=2048, description="Recipe page to scrape.", examples=["https://example.com/pasta"])
  model_config = ConfigDict(extra="forbid")

  @field_validator("url")
  @classmethod
  def url_is_http(cls, value: str) -> str:
    # Validate as an http(s) URL but keep the caller's spelling; it is the progress subject key.
    value = value.strip()
    try:
      _HTTP_URL.validate_python(value)
    except ValidationError:
      raise ValueError("url must be an absolute http(s) URL") from None
    return value


class ScrapeQueuedResponse(BaseModel):
  message: str
  url: str
  task_id: str = Field(alias="taskId")
  queued: bool = True
  model_config = ConfigDict(populate_by_name=True)


class InventRecipeRequest(BaseModel):
  """Request payload for inventing a new recipe; the optional fields steer the prompt."""

  title: StrictStr = Field(min_length=1, max_length=200, examples=["Smoky chickpea stew"])
  description: StrictStr | None = None
  cuisine: RecipeCuisine | None = None
  type: RecipeType | None = None
  difficulty: RecipeDifficulty | None = None
  servings: int | None = Field(default=None, ge=1, le=20)
  prep_time: int | None = Field(default=None, ge=5, le=300, alias="prepTime")
  cook_time: int | None = Field(default=None, ge=5, le=480, alias="cookTime")
  ingredients: list[StrictStr] | None = None
  dietary_restrictions: list[StrictStr] | None = Field(default=None, alias="dietaryRestrictions")
  cooking_methods: list[StrictStr] | None = Field(default=None, alias="cookingMethods")
  special_instructions: StrictStr | None = Field(default=None, alias="specialInstructions")
  task_id: StrictStr | None = Field(default=None, alias="taskId", pattern=r"^invent-[A-Za-z0-9-]+$", max_length=80, description="Optional client-generated id used as the progress subject key.")
  model_config = ConfigDict(extra="forbid", populate_by_name=True)

  @field_validator("title")
  @classmethod
  def title_not_blank(cls, value: str) -> str:
    """Reject titles that are only whitespace."""
    if not value.strip():
      raise ValueError("title must not be blank")
    return value.strip()

  def prompt_fields(self) -> dict[str, Any]:
    """Return the request as the camelCase mapping the invent prompt reads."""
    return self.model_dump(mode="json", by_alias=True, exclude_none=True, exclude={"task_id"})


class InventQueuedResponse(BaseModel):
  message: str
  task_id: str = Field(alias="taskId")
  title: str
  queued: bool = True
  model_config = ConfigDict(populate_by_name=True)


class QueueStatusResponse(BaseModel):
  """Pending depth per pipeline queue; `processing` is the scrape queue."""

  processing: int
  ai: int
  invent: int
  timestamp: int
