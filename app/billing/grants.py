from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.constants import (
    DEFAULT_CURRENCY,
    PLAN_LIFETIME,
    SUBSCRIPTION_STATUS_ACTIVE,
    local_grant_key,
)
from app.db.models.subscriptions import Subscription
from app.db.repo.billing_models import SubscriptionUpsert
from app.db.repo.subscriptions_repo import SubscriptionsRepo

DEFAULT_GRANT_DAYS = 30
LIFETIME_GRANT_YEARS = 100


def end_of_day(value: datetime) -> datetime:
    return value.replace(hour=23, minute=59, second=59, microsecond=999000)


def _add_years(value: datetime, years: int) -> datetime:
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        # Feb 29 in a non-leap target year.
        return value.replace(year=value.year + years, day=28)


def compute_grant_period_end(
    *,
    plan_type: str,
    duration_days: int | None,
    now_utc: datetime,
) -> datetime:
    if plan_type == PLAN_LIFETIME:
        return end_of_day(_add_years(now_utc, LIFETIME_GRANT_YEARS))
    days = duration_days if duration_days and duration_days > 0 else DEFAULT_GRANT_DAYS
    return end_of_day(now_utc + timedelta(days=days))


async def upsert_local_grant(
    session: AsyncSession,
    *,
    user_id: UUID,
    customer_email: str | None,
    grant_source: str,
    plan_type: str,
    customer_marker: str,
    period_start: datetime,
    period_end: datetime,
) -> Subscription:
    """Write the single local-grant row of a user, replacing any previous grant."""
    return await SubscriptionsRepo.upsert(
        session,
        row=SubscriptionUpsert(
            stripe_subscription_id=local_grant_key(user_id),
            grant_source=grant_source,
            plan_type=plan_type,
            status=SUBSCRIPTION_STATUS_ACTIVE,
            user_id=user_id,
            stripe_customer_id=customer_marker,
            amount=0,
            currency=DEFAULT_CURRENCY,
            current_period_start=period_start,
            current_period_end=period_end,
            customer_email=customer_email,
        ),
    )
