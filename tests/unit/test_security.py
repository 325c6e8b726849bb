from __future__ import annotations

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from app.core import security
from app.core.security import VerifiedUser, get_verified_user, verify_token


@pytest.mark.anyio
async def test_valid_token_resolves_to_user(monkeypatch: pytest.MonkeyPatch) -> None:
  monkeypatch.setattr(security, "verify_id_token", lambda token: {"uid": "user-1", "email": "cook@example.com"} if token == "good" else None)

  assert await verify_token("good") == VerifiedUser(uid="user-1", email="cook@example.com")
  assert await verify_token("bad") is None
  assert await verify_token(None) is None


@pytest.mark.anyio
async def test_missing_credentials_are_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
  monkeypatch.setattr(security, "verify_id_token", lambda token: None)

  with pytest.raises(HTTPException) as excinfo:
    await get_verified_user(None)
  assert excinfo.value.status_code == 401

  with pytest.raises(HTTPException):
    await get_verified_user(HTTPAuthorizationCredentials(scheme="Bearer", credentials="expired"))
