from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.promo_codes import PromoCode
from app.db.models.promo_redemptions import PromoRedemption


class PromoRepo:
    @staticmethod
    async def get_code_by_code_for_update(session: AsyncSession, code: str) -> PromoCode | None:
        stmt = select(PromoCode).where(PromoCode.code == code).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_redemption_by_code_and_user(
        session: AsyncSession,
        *,
        promo_code_id: int,
        user_id: UUID,
    ) -> PromoRedemption | None:
        stmt = select(PromoRedemption).where(
            PromoRedemption.promo_code_id == promo_code_id,
            PromoRedemption.user_id == user_id,
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def try_create_redemption(
        session: AsyncSession,
        *,
        promo_code_id: int,
        user_id: UUID,
        subscription_id: int | None,
    ) -> UUID | None:
        stmt = (
            insert(PromoRedemption)
            .values(
                id=uuid4(),
                promo_code_id=promo_code_id,
                user_id=user_id,
                subscription_id=subscription_id,
                redeemed_at=func.now(),
            )
            .on_conflict_do_nothing(
                constraint="uq_promo_code_redemptions_code_user",
            )
            .returning(PromoRedemption.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def increment_use_count(session: AsyncSession, *, promo_code_id: int) -> int:
        stmt = (
            update(PromoCode)
            .where(PromoCode.id == promo_code_id)
            .values(current_uses=PromoCode.current_uses + 1, updated_at=func.now())
            .returning(PromoCode.current_uses)
        )
        result = await session.execute(stmt)
        return int(result.scalar_one())

    @staticmethod
    async def get_code_by_id_for_update(session: AsyncSession, promo_code_id: int) -> PromoCode | None:
        stmt = select(PromoCode).where(PromoCode.id == promo_code_id).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_codes(
        session: AsyncSession,
        *,
        is_active: bool | None,
        limit: int,
    ) -> list[PromoCode]:
        stmt = select(PromoCode).order_by(PromoCode.created_at.desc(), PromoCode.id.desc()).limit(limit)
        if is_active is not None:
            stmt = stmt.where(PromoCode.is_active.is_(is_active))
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def try_create_code(
        session: AsyncSession,
        *,
        code: str,
        plan_type: str,
        max_uses: int,
        duration_days: int | None = None,
        expires_at: datetime | None = None,
        is_active: bool = True,
    ) -> PromoCode | None:
        stmt = (
            insert(PromoCode)
            .values(
                code=code,
                plan_type=plan_type,
                max_uses=max_uses,
                duration_days=duration_days,
                expires_at=expires_at,
                is_active=is_active,
                current_uses=0,
            )
            .on_conflict_do_nothing(constraint="uq_promo_codes_code")
            .returning(PromoCode)
        )
        result = await session.execute(
            stmt,
            execution_options={"populate_existing": True},
        )
        return result.scalar_one_or_none()
