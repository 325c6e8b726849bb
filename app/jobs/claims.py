"""Claim and completion markers that keep one worker per subject key."""

from __future__ import annotations

import logging
import os
import socket
import uuid

from redis.asyncio import Redis
from redis.exceptions import WatchError

logger = logging.getLogger(__name__)


class ClaimTracker:
  """In-progress claims (`claims:{namespace}:{key}`, with TTL) and a permanent processed hash.

  Every claim value is an owner token. Release only deletes the key while it
  still carries the caller's token, so a worker whose claim expired cannot
  remove the claim a newer worker took over.
  """

  def __init__(self, redis: Redis, *, namespace: str, processed_scope: str, claim_ttl_seconds: int) -> None:
    self._redis = redis
    self._namespace = namespace
    self._processed_key = f"processed:{processed_scope}"
    self._claim_ttl_seconds = claim_ttl_seconds
    # Unique per tracker instance, not just per process.
    self.owner = f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"

  def _claim_key(self, key: str) -> str:
    """Return the Redis key holding the claim for one subject."""
    return f"claims:{self._namespace}:{key}"

  def new_owner(self) -> str:
    """Return a fresh owner token for one processing attempt."""
    return f"{self.owner}:{uuid.uuid4().hex}"

  async def try_claim(self, key: str, *, owner: str | None = None) -> bool:
    """Atomically take the claim; True only for the caller that set it."""
    acquired = await self._redis.set(self._claim_key(key), owner or self.owner, nx=True, ex=self._claim_ttl_seconds)
    return bool(acquired)

  async def release_claim(self, key: str, *, owner: str | None = None) -> bool:
    """Delete the claim if it is still held by `owner`; returns whether it was deleted."""
    claim_key = self._claim_key(key)
    expected = owner or self.owner
    async with self._redis.pipeline(transaction=True) as pipe:
      try:
        await pipe.watch(claim_key)
        current = await pipe.get(claim_key)
        if current != expected:
          if current is not None:
            logger.warning("Claim on %s expired and now belongs to %s; leaving it in place", claim_key, current)
          return False
        pipe.multi()
        pipe.delete(claim_key)
        await pipe.execute()
      except WatchError:
        # Changed between GET and DEL: it is no longer ours to remove.
        logger.warning("Claim on %s changed hands during release", claim_key)
        return False
    return True

  async def mark_processed(self, key: str, recipe_id: int | None = None) -> bool:
    """Record permanent completion; returns whether the key was newly marked."""
    value = "" if recipe_id is None else str(recipe_id)
    return bool(await self._redis.hsetnx(self._processed_key, key, value))

  async def has_processed(self, key: str) -> bool:
    """Return whether the subject already produced a result in this scope."""
    return bool(await self._redis.hexists(self._processed_key, key))

  async def processed_recipe_id(self, key: str) -> int | None:
    """Return the recipe id stored with the completion marker, if any."""
    value = await self._redis.hget(self._processed_key, key)
    if not value:
      return None
    try:
      return int(value)
    except ValueError:
      logger.warning("Ignoring non-numeric recipe id %r for %s", value, key)
      return None
