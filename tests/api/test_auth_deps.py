from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from fastapi import HTTPException
from jose import jwt

from app.api import deps
from app.services.user_auth import AuthTokenInvalidError
from tests.api.api_fakes import USER, FakeSessionLocal

SECRET = "test_jwt_secret"


def _request(token: str | None) -> SimpleNamespace:
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    return SimpleNamespace(headers=headers)


def _token(**claims) -> str:
    payload = {"sub": str(USER.user_id), "email": USER.email}
    payload.update(claims)
    return jwt.encode(payload, SECRET, algorithm="HS256")


@pytest.fixture(autouse=True)
def _auth_settings(monkeypatch):
    monkeypatch.setattr(
        deps,
        "get_settings",
        lambda: SimpleNamespace(auth_jwt_secret=SECRET, auth_jwt_algorithm="HS256"),
    )
    monkeypatch.setattr(deps, "SessionLocal", FakeSessionLocal())


@pytest.mark.asyncio
async def test_missing_token_resolves_to_anonymous() -> None:
    assert await deps.get_current_user_optional(_request(None)) is None


@pytest.mark.asyncio
async def test_valid_token_provisions_user(monkeypatch) -> None:
    captured: dict[str, object] = {}

    async def _fake_ensure_user(session, *, claims):
        captured["claims"] = claims
        return USER

    monkeypatch.setattr(deps.UserOnboardingService, "ensure_user", _fake_ensure_user)

    user = await deps.get_current_user_optional(_request(_token()))

    assert user == USER
    assert captured["claims"].user_id == USER.user_id


@pytest.mark.asyncio
async def test_expired_token_is_rejected_with_marker() -> None:
    expired = _token(exp=datetime.now(timezone.utc) - timedelta(minutes=1))

    with pytest.raises(HTTPException) as exc_info:
        await deps.get_current_user_optional(_request(expired))

    assert exc_info.value.status_code == 401
    assert exc_info.value.detail == {
        "code": "E_AUTH_TOKEN_EXPIRED",
        "error": "TOKEN_EXPIRED",
        "token_expired": True,
    }


@pytest.mark.asyncio
async def test_malformed_token_is_rejected_with_marker() -> None:
    with pytest.raises(HTTPException) as exc_info:
        await deps.get_current_user_optional(_request("garbage"))

    assert exc_info.value.status_code == 401
    assert exc_info.value.detail == {"code": "E_AUTH_TOKEN_INVALID", "error": "INVALID_TOKEN"}


@pytest.mark.asyncio
async def test_onboarding_rejection_is_reported_as_invalid_token(monkeypatch) -> None:
    async def _fake_ensure_user(session, *, claims):
        raise AuthTokenInvalidError

    monkeypatch.setattr(deps.UserOnboardingService, "ensure_user", _fake_ensure_user)

    with pytest.raises(HTTPException) as exc_info:
        await deps.get_current_user_optional(_request(_token()))

    assert exc_info.value.detail["error"] == "INVALID_TOKEN"


@pytest.mark.asyncio
async def test_required_user_dependency_rejects_anonymous() -> None:
    with pytest.raises(HTTPException) as exc_info:
        await deps.get_current_user(None)

    assert exc_info.value.detail == {"code": "E_AUTH_REQUIRED", "error": "UNAUTHENTICATED"}
