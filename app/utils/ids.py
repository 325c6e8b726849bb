"""Identifier utilities."""

from __future__ import annotations

import secrets
import string
import time
import uuid

_ALPHABET = string.ascii_lowercase + string.digits


def generate_task_id() -> str:
  """Return a new queue envelope identifier."""
  return str(uuid.uuid4())


def generate_nanoid(size: int = 9) -> str:
  """Return a short random suffix for human-readable ids."""
  return "".join(secrets.choice(_ALPHABET) for _ in range(size))


def generate_invent_task_id() -> str:
  """Return the subject key for an invented recipe, e.g. invent-1718000000000-k3j9x0a1b."""
  return f"invent-{int(time.time() * 1000)}-{generate_nanoid()}"


def generate_client_job_id() -> str:
  """Return a locally unique job id for the client tracker."""
  return f"job-{int(time.time() * 1000)}-{generate_nanoid()}"
