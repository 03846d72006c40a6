from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from uuid import UUID

from fastapi import Request
from jose import ExpiredSignatureError, JWTError, jwt


class AuthError(Exception):
    pass


class AuthenticationRequiredError(AuthError):
    pass


class AuthTokenExpiredError(AuthError):
    pass


class AuthTokenInvalidError(AuthError):
    pass


@dataclass(frozen=True, slots=True)
class TokenClaims:
    user_id: UUID
    email: str


@dataclass(frozen=True, slots=True)
class AuthenticatedUser:
    user_id: UUID
    email: str
    role: str


def extract_bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization")
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def decode_access_token(token: str, *, secret: str, algorithm: str = "HS256") -> TokenClaims:
    try:
        payload = jwt.decode(token, secret, algorithms=[algorithm])
    except ExpiredSignatureError as exc:
        raise AuthTokenExpiredError from exc
    except JWTError as exc:
        raise AuthTokenInvalidError from exc

    raw_user_id = payload.get("sub")
    raw_email = payload.get("email")
    if not isinstance(raw_user_id, str) or not isinstance(raw_email, str) or not raw_email.strip():
        raise AuthTokenInvalidError
    try:
        user_id = UUID(raw_user_id)
    except ValueError as exc:
        raise AuthTokenInvalidError from exc
    return TokenClaims(user_id=user_id, email=raw_email.strip().lower())


@lru_cache(maxsize=32)
def _parse_origin_allowlist(allowlist: str) -> frozenset[str]:
    return frozenset(
        entry.strip().rstrip("/") for entry in allowlist.split(",") if entry.strip()
    )


def resolve_redirect_origin(
    request_origin: str | None,
    *,
    allowlist: str,
    fallback_origin: str,
) -> str:
    if request_origin:
        candidate = request_origin.strip().rstrip("/")
        if candidate in _parse_origin_allowlist(allowlist):
            return candidate
    return fallback_origin.rstrip("/")
