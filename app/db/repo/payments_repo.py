from __future__ import annotations

from dataclasses import asdict

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.payments import Payment
from app.db.repo.billing_models import PaymentUpsert


class PaymentsRepo:
    @staticmethod
    async def get_by_payment_intent_id(
        session: AsyncSession,
        stripe_payment_intent_id: str,
    ) -> Payment | None:
        stmt = select(Payment).where(Payment.stripe_payment_intent_id == stripe_payment_intent_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def upsert(session: AsyncSession, *, row: PaymentUpsert) -> int:
        values = asdict(row)
        update_values = {
            key: value
            for key, value in values.items()
            if key not in {"stripe_payment_intent_id", "user_id"}
        }
        payments_table = Payment.__table__
        stmt = insert(payments_table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Payment.stripe_payment_intent_id],
            set_={
                **update_values,
                "user_id": func.coalesce(stmt.excluded.user_id, Payment.user_id),
                "updated_at": func.now(),
            },
        ).returning(Payment.id)
        result = await session.execute(stmt)
        return int(result.scalar_one())

    @staticmethod
    async def set_status(
        session: AsyncSession,
        *,
        stripe_payment_intent_id: str,
        status: str,
    ) -> Payment | None:
        stmt = (
            update(Payment)
            .where(Payment.stripe_payment_intent_id == stripe_payment_intent_id)
            .values(status=status, updated_at=func.now())
            .returning(Payment)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()
