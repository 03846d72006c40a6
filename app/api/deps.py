from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status

from app.billing.entitlements.types import (
    MARKER_INVALID_TOKEN,
    MARKER_TOKEN_EXPIRED,
    MARKER_UNAUTHENTICATED,
)
from app.billing.services import BillingServices
from app.core.config import get_settings
from app.db.session import SessionLocal
from app.services.user_auth import (
    AuthenticatedUser,
    AuthTokenExpiredError,
    AuthTokenInvalidError,
    decode_access_token,
    extract_bearer_token,
)
from app.services.user_onboarding import UserOnboardingService


def get_billing_services(request: Request) -> BillingServices:
    return request.app.state.billing_services


async def get_current_user_optional(request: Request) -> AuthenticatedUser | None:
    token = extract_bearer_token(request)
    if token is None:
        return None

    settings = get_settings()
    try:
        claims = decode_access_token(
            token,
            secret=settings.auth_jwt_secret,
            algorithm=settings.auth_jwt_algorithm,
        )
        async with SessionLocal.begin() as session:
            return await UserOnboardingService.ensure_user(session, claims=claims)
    except AuthTokenExpiredError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "code": "E_AUTH_TOKEN_EXPIRED",
                "error": MARKER_TOKEN_EXPIRED,
                "token_expired": True,
            },
        ) from exc
    except AuthTokenInvalidError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "E_AUTH_TOKEN_INVALID", "error": MARKER_INVALID_TOKEN},
        ) from exc


async def get_current_user(
    user: AuthenticatedUser | None = Depends(get_current_user_optional),
) -> AuthenticatedUser:
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "E_AUTH_REQUIRED", "error": MARKER_UNAUTHENTICATED},
        )
    return user
