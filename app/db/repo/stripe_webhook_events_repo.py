from __future__ import annotations

from sqlalchemy import func, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.stripe_webhook_events import StripeWebhookEvent


class StripeWebhookEventsRepo:
    @staticmethod
    async def try_create_processing_slot(
        session: AsyncSession,
        *,
        event_id: str,
        event_type: str,
    ) -> bool:
        stmt = (
            postgresql_insert(StripeWebhookEvent)
            .values(
                event_id=event_id,
                event_type=event_type,
                status="PROCESSING",
                processed_at=func.now(),
            )
            .on_conflict_do_nothing(index_elements=[StripeWebhookEvent.event_id])
            .returning(StripeWebhookEvent.event_id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def try_reclaim_failed_slot(session: AsyncSession, *, event_id: str) -> bool:
        stmt = (
            update(StripeWebhookEvent)
            .where(
                StripeWebhookEvent.event_id == event_id,
                StripeWebhookEvent.status == "FAILED",
            )
            .values(status="PROCESSING", processed_at=func.now())
            .returning(StripeWebhookEvent.event_id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def try_reclaim_stale_processing_slot(
        session: AsyncSession,
        *,
        event_id: str,
        processing_ttl_seconds: int,
    ) -> bool:
        processing_age_seconds = func.extract(
            "epoch",
            func.now() - StripeWebhookEvent.processed_at,
        )
        stmt = (
            update(StripeWebhookEvent)
            .where(
                StripeWebhookEvent.event_id == event_id,
                StripeWebhookEvent.status == "PROCESSING",
                processing_age_seconds >= max(1, int(processing_ttl_seconds)),
            )
            .values(status="PROCESSING", processed_at=func.now())
            .returning(StripeWebhookEvent.event_id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def set_status(session: AsyncSession, *, event_id: str, status: str) -> None:
        stmt = (
            update(StripeWebhookEvent)
            .where(StripeWebhookEvent.event_id == event_id)
            .values(status=status, processed_at=func.now())
        )
        await session.execute(stmt)
