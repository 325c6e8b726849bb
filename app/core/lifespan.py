import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.config import get_settings
from app.core.database import create_schema, dispose_engine
from app.core.firebase import initialize_firebase
from app.core.logging import initialize_logging
from app.core.redis import close_redis, get_redis
from app.gateway import ProgressGateway
from app.jobs.factory import build_queues
from app.jobs.progress import ProgressBus


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Build the queues and the progress gateway for this API process."""
  settings = get_settings()
  initialize_logging(settings, role="api")
  logger = logging.getLogger("app.core.lifespan")

  if settings.auth_required:
    initialize_firebase()

  redis = get_redis(settings)
  queues = build_queues(redis, settings)
  bus = ProgressBus(redis, settings.progress_channel)
  gateway = ProgressGateway(bus, queues, client_queue_size=settings.gateway_client_queue_size)
  app.state.queues = queues
  app.state.bus = bus
  app.state.gateway = gateway

  await gateway.start()
  if settings.pg_dsn:
    await create_schema()
  logger.info("Startup complete environment=%s channel=%s", settings.environment, settings.progress_channel)

  try:
    yield
  finally:
    await gateway.stop()
    await bus.close()
    await close_redis()
    await dispose_engine()
    logger.info("Shutdown complete.")
