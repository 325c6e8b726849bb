import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from app.core.security import verify_token
from app.gateway import ProgressGateway

router = APIRouter()
logger = logging.getLogger("app.api.routes.progress")


@router.websocket("/progress")
async def progress_socket(websocket: WebSocket) -> None:
  """Stream progress updates; the ID token travels in the `token` query parameter."""
  user = await verify_token(websocket.query_params.get("token"))
  if user is None:
    logger.info("Rejected progress socket: invalid token")
    await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
    return

  gateway: ProgressGateway = websocket.app.state.gateway
  await websocket.accept()
  client = await gateway.connect(websocket, user_id=user.uid)
  try:
    while True:
      raw = await websocket.receive_text()
      try:
        message = json.loads(raw)
      except json.JSONDecodeError:
        message = None
      await gateway.handle_message(client, message)
  except WebSocketDisconnect:
    pass
  finally:
    await gateway.disconnect(client)
