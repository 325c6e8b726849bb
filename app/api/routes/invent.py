import logging

from fastapi import APIRouter, Depends, HTTPException, status
from redis.exceptions import RedisError

from app.api.deps import get_queues
from app.api.models import InventQueuedResponse, InventRecipeRequest
from app.core.security import VerifiedUser, get_verified_user
from app.jobs.factory import PipelineQueues
from app.utils.ids import generate_invent_task_id

router = APIRouter()
logger = logging.getLogger("app.api.routes.invent")


@router.post("", response_model=InventQueuedResponse, response_model_by_alias=True, status_code=status.HTTP_202_ACCEPTED)
async def invent_recipe(  # noqa: B008
  request: InventRecipeRequest,
  queues: PipelineQueues = Depends(get_queues),  # noqa: B008
  current_user: VerifiedUser = Depends(get_verified_user),  # noqa: B008
) -> InventQueuedResponse:
  """Queue a recipe invention; progress is reported under the returned task id."""
  task_id = request.task_id or generate_invent_task_id()
  payload = {"taskId": task_id, "request": request.prompt_fields(), "userId": current_user.uid}
  try:
    await queues.invent.enqueue(payload)
  except RedisError as exc:
    logger.error("Failed to enqueue invention %s: %s", task_id, exc)
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Queue unavailable") from exc
  logger.info("Queued recipe invention task=%s title=%r user=%s", task_id, request.title, current_user.uid)
  return InventQueuedResponse(message="Recipe invention request accepted", task_id=task_id, title=request.title)
