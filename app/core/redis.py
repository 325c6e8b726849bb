"""Process-wide Redis connection shared by queues, claims and the progress bus."""

from __future__ import annotations

import logging

from redis.asyncio import Redis

from app.config import Settings

logger = logging.getLogger(__name__)

_client: Redis | None = None


def build_redis(settings: Settings) -> Redis:
  """Create a new client; worker processes call this after fork/spawn."""
  return Redis.from_url(settings.redis_url, decode_responses=True, health_check_interval=30)


def get_redis(settings: Settings) -> Redis:
  """Return the lazily created client for this process."""
  global _client
  if _client is None:
    _client = build_redis(settings)
    logger.info("Redis client created for %s", _redact_redis_url(settings.redis_url))
  return _client


async def close_redis() -> None:
  """Close the process client if one was created."""
  global _client
  if _client is None:
    return
  await _client.aclose()
  _client = None


def _redact_redis_url(url: str) -> str:
  # redis://:secret@host:6379/0 -> redis://host:6379/0
  scheme, sep, rest = url.partition("://")
  if not sep:
    return "<invalid>"
  return f"{scheme}://{rest.rpartition('@')[2]}"
