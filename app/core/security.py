from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.concurrency import run_in_threadpool

from app.config import get_settings
from app.core.firebase import verify_id_token

security_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class VerifiedUser:
  """Identity taken from a verified Firebase ID token."""

  uid: str
  email: str | None = None


ANONYMOUS = VerifiedUser(uid="anonymous")


async def verify_token(id_token: str | None) -> VerifiedUser | None:
  """Resolve a raw ID token to a user; None when the token is missing or rejected."""
  if not get_settings().auth_required:
    return ANONYMOUS
  if not id_token:
    return None
  claims = await run_in_threadpool(verify_id_token, id_token)
  if not claims or not claims.get("uid"):
    return None
  email = claims.get("email")
  return VerifiedUser(uid=str(claims["uid"]), email=str(email) if email else None)


async def get_verified_user(token: Annotated[HTTPAuthorizationCredentials | None, Depends(security_scheme)]) -> VerifiedUser:
  """Require a valid bearer token on HTTP routes."""
  user = await verify_token(token.credentials if token else None)
  if user is None:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid authentication credentials", headers={"WWW-Authenticate": "Bearer"})
  return user
