"""Unit tests for API exception sanitization behavior."""

from __future__ import annotations

from app.core.exceptions import RecipeValidationError, _sanitize_validation_errors


def test_sanitize_validation_errors_removes_input_and_serializes_exception_ctx() -> None:
  """Ensure validation errors stay JSON-serializable and redact raw request payloads."""
  errors = [{"type": "value_error", "loc": ("body", "url"), "msg": "Value error, url must be an absolute http(s) URL", "input": "ftp://example.com", "url": "https://errors.pydantic.dev", "ctx": {"error": ValueError("url must be an absolute http(s) URL"), "input": "ftp://example.com"}}]
  sanitized = _sanitize_validation_errors(errors)
  assert "input" not in sanitized[0]
  assert "url" not in sanitized[0]
  assert sanitized[0]["loc"] == ["body", "url"]
  assert sanitized[0]["ctx"]["error"] == "ValueError: url must be an absolute http(s) URL"
  assert "input" not in sanitized[0]["ctx"]


def test_recipe_validation_error_lists_every_problem() -> None:
  error = RecipeValidationError(["title must be a non-empty string", "servings must be a number"])
  assert str(error) == "AI JSON validation failed: title must be a non-empty string; servings must be a number"
  assert error.errors == ["title must be a non-empty string", "servings must be a number"]
