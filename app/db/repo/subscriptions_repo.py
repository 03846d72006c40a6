from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.constants import (
    LOCAL_GRANT_SOURCES,
    SUBSCRIPTION_STATUS_ACTIVE,
    SUBSCRIPTION_STATUS_CANCELED,
)
from app.db.models.subscriptions import Subscription
from app.db.repo.billing_models import SubscriptionUpsert


class SubscriptionsRepo:
    @staticmethod
    async def get_by_external_id(
        session: AsyncSession,
        stripe_subscription_id: str,
    ) -> Subscription | None:
        stmt = select(Subscription).where(
            Subscription.stripe_subscription_id == stripe_subscription_id
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_active_local_grant(
        session: AsyncSession,
        *,
        user_id: UUID,
        now_utc: datetime,
    ) -> Subscription | None:
        stmt = (
            select(Subscription)
            .where(
                Subscription.user_id == user_id,
                Subscription.grant_source.in_(LOCAL_GRANT_SOURCES),
                Subscription.status == SUBSCRIPTION_STATUS_ACTIVE,
                or_(
                    Subscription.current_period_end.is_(None),
                    Subscription.current_period_end > now_utc,
                ),
            )
            .order_by(
                Subscription.current_period_end.desc().nullsfirst(),
                Subscription.id.desc(),
            )
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def upsert(session: AsyncSession, *, row: SubscriptionUpsert) -> Subscription:
        values = asdict(row)
        update_values = {
            key: value
            for key, value in values.items()
            if key not in {"stripe_subscription_id", "user_id"}
        }
        stmt = insert(Subscription).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Subscription.stripe_subscription_id],
            set_={
                **update_values,
                "user_id": func.coalesce(stmt.excluded.user_id, Subscription.user_id),
                "updated_at": func.now(),
            },
        ).returning(Subscription)
        result = await session.execute(
            stmt,
            execution_options={"populate_existing": True},
        )
        return result.scalar_one()

    @staticmethod
    async def set_status_by_external_id(
        session: AsyncSession,
        *,
        stripe_subscription_id: str,
        status: str,
        canceled_at: datetime | None = None,
    ) -> int:
        values: dict[str, object] = {"status": status, "updated_at": func.now()}
        if canceled_at is not None:
            values["canceled_at"] = canceled_at
        stmt = (
            update(Subscription)
            .where(Subscription.stripe_subscription_id == stripe_subscription_id)
            .values(**values)
        )
        result = await session.execute(stmt)
        return result.rowcount or 0

    @staticmethod
    async def cancel_all_for_user(
        session: AsyncSession,
        *,
        user_id: UUID,
        canceled_at: datetime,
    ) -> list[Subscription]:
        stmt = (
            update(Subscription)
            .where(
                Subscription.user_id == user_id,
                Subscription.status != SUBSCRIPTION_STATUS_CANCELED,
            )
            .values(
                status=SUBSCRIPTION_STATUS_CANCELED,
                canceled_at=canceled_at,
                updated_at=func.now(),
            )
            .returning(Subscription)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())
