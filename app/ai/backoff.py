"""Bounded in-process retry for transient completion failures."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from app.core.exceptions import TransientCompletionError

T = TypeVar("T")
logger = logging.getLogger(__name__)

DEFAULT_DELAYS: tuple[float, ...] = (2.0, 5.0, 10.0)


async def retry_transient(func: Callable[[], Awaitable[T]], *, delays: Sequence[float] = DEFAULT_DELAYS, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> T:
  """
  Call `func`, retrying only TransientCompletionError.

  One attempt per delay, then a final attempt whose error propagates. Every
  other exception, validation and 4xx included, is raised immediately.
  """
  for attempt, delay in enumerate(delays, start=1):
    try:
      return await func()
    except TransientCompletionError as exc:
      logger.warning("Transient completion failure (attempt %d/%d): %s. Retrying in %ss", attempt, len(delays) + 1, exc, delay)
      await sleep(delay)

  return await func()
