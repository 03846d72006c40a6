from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.users import User


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UsersRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, user_id: UUID) -> User | None:
        return await session.get(User, user_id)

    @staticmethod
    async def get_by_email(session: AsyncSession, email: str) -> User | None:
        normalized = normalize_email(email)
        if not normalized:
            return None
        stmt = select(User).where(User.email == normalized)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        session: AsyncSession,
        *,
        user_id: UUID,
        email: str,
        role: str = "user",
        display_name: str | None = None,
    ) -> User:
        user = User(
            id=user_id,
            email=normalize_email(email),
            role=role,
            display_name=display_name,
            status="ACTIVE",
        )
        session.add(user)
        await session.flush()
        return user
