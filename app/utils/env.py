"""Minimal .env support so workers and the API share one local configuration file."""

from __future__ import annotations

import os
from pathlib import Path

_QUOTES = ('"', "'")


def default_env_path() -> Path:
  """Return the .env path next to the project's pyproject.toml."""

  return Path(__file__).resolve().parents[2] / ".env"


def parse_env_line(raw_line: str) -> tuple[str, str] | None:
  """Split one .env line into a key/value pair, or None for blanks and comments."""

  line = raw_line.strip()
  if not line or line.startswith("#"):
    return None
  line = line.removeprefix("export ").lstrip()
  key, sep, value = line.partition("=")
  key = key.strip()
  if not sep or not key:
    return None

  value = value.strip()
  if len(value) >= 2 and value[0] in _QUOTES and value[-1] == value[0]:
    return key, value[1:-1]

  # Unquoted values may carry a trailing comment: REDIS_URL=redis://x  # local
  comment_at = value.find(" #")
  if comment_at != -1:
    value = value[:comment_at].rstrip()
  return key, value


def load_env_file(path: Path, *, override: bool = False) -> list[str]:
  """Load key=value pairs into the process environment and return the keys applied."""

  if not path.is_file():
    return []

  applied: list[str] = []
  for raw_line in path.read_text(encoding="utf-8").splitlines():
    parsed = parse_env_line(raw_line)
    if parsed is None:
      continue
    key, value = parsed
    if not override and key in os.environ:
      continue
    os.environ[key] = value
    applied.append(key)
  return applied
