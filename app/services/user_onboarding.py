from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.constants import ROLE_USER
from app.db.repo.users_repo import UsersRepo
from app.services.user_auth import AuthenticatedUser, AuthTokenInvalidError, TokenClaims


class UserOnboardingService:
    @staticmethod
    async def ensure_user(session: AsyncSession, *, claims: TokenClaims) -> AuthenticatedUser:
        user = await UsersRepo.get_by_id(session, claims.user_id)
        if user is None:
            by_email = await UsersRepo.get_by_email(session, claims.email)
            if by_email is not None:
                raise AuthTokenInvalidError
            user = await UsersRepo.create(
                session,
                user_id=claims.user_id,
                email=claims.email,
                role=ROLE_USER,
            )
        if user.status != "ACTIVE":
            raise AuthTokenInvalidError
        return AuthenticatedUser(user_id=user.id, email=user.email, role=user.role)
