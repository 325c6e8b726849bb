"""Shared FastAPI dependencies resolved from application state."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from app.gateway import ProgressGateway
from app.jobs.factory import PipelineQueues


def get_queues(request: Request) -> PipelineQueues:
  """Return the queues built at startup."""
  queues = getattr(request.app.state, "queues", None)
  if queues is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Queues are not ready")
  return queues


def get_gateway(request: Request) -> ProgressGateway:
  """Return the progress gateway started with the app."""
  gateway = getattr(request.app.state, "gateway", None)
  if gateway is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Progress gateway is not ready")
  return gateway
