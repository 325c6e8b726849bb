import logging

from fastapi import APIRouter, Depends, HTTPException, status
from redis.exceptions import RedisError

from app.api.deps import get_gateway, get_queues
from app.api.models import QueueStatusResponse, ScrapeQueuedResponse, ScrapeRequest
from app.core.security import VerifiedUser, get_verified_user
from app.gateway import ProgressGateway
from app.jobs.factory import PipelineQueues

router = APIRouter()
logger = logging.getLogger("app.api.routes.scrape")


@router.post("/queue", response_model=ScrapeQueuedResponse, response_model_by_alias=True, status_code=status.HTTP_202_ACCEPTED)
async def queue_scrape(  # noqa: B008
  request: ScrapeRequest,
  queues: PipelineQueues = Depends(get_queues),  # noqa: B008
  current_user: VerifiedUser = Depends(get_verified_user),  # noqa: B008
) -> ScrapeQueuedResponse:
  """Queue a recipe page for scraping; progress is reported under the URL."""
  try:
    task_id = await queues.scrape.enqueue({"url": request.url, "userId": current_user.uid})
  except RedisError as exc:
    logger.error("Failed to enqueue scrape for %s: %s", request.url, exc)
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Queue unavailable") from exc
  logger.info("Queued scrape task=%s url=%s user=%s", task_id, request.url, current_user.uid)
  return ScrapeQueuedResponse(message="URL queued for scraping", url=request.url, task_id=task_id)


@router.get("/queue/status", response_model=QueueStatusResponse)
async def queue_status(gateway: ProgressGateway = Depends(get_gateway)) -> QueueStatusResponse:  # noqa: B008
  """Return the pending depth of each pipeline queue."""
  try:
    return QueueStatusResponse(**await gateway.queue_status())
  except RedisError as exc:
    logger.warning("Queue status lookup failed: %s", exc)
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Queue status unavailable") from exc
