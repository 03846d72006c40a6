from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.billing_sync_runs import BillingSyncRun


class BillingSyncRunsRepo:
    @staticmethod
    async def create(
        session: AsyncSession,
        *,
        triggered_by_user_id: UUID | None,
        started_at: datetime,
        finished_at: datetime | None,
        status: str,
        synced_subscriptions: int,
        synced_payments: int,
        skipped_records: int,
    ) -> BillingSyncRun:
        run = BillingSyncRun(
            triggered_by_user_id=triggered_by_user_id,
            started_at=started_at,
            finished_at=finished_at,
            status=status,
            synced_subscriptions=synced_subscriptions,
            synced_payments=synced_payments,
            skipped_records=skipped_records,
        )
        session.add(run)
        await session.flush()
        return run

    @staticmethod
    async def get_latest(session: AsyncSession) -> BillingSyncRun | None:
        stmt = (
            select(BillingSyncRun)
            .order_by(BillingSyncRun.started_at.desc(), BillingSyncRun.id.desc())
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()
