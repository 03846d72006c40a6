from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.admin.errors import (
    AdminForbiddenError,
    AdminInvalidPlanError,
    AdminTargetNotFoundError,
)
from app.billing.constants import (
    GRANT_ADMIN_ROLES,
    GRANT_SOURCE_ADMIN,
    PAID_PLAN_TYPES,
    SUBSCRIPTION_STATUS_CANCELED,
    admin_customer_marker,
    local_grant_key,
)
from app.billing.grants import compute_grant_period_end, upsert_local_grant
from app.db.repo.subscriptions_repo import SubscriptionsRepo
from app.db.repo.users_repo import UsersRepo
from app.services.user_auth import AuthenticatedUser

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class AdminGrantResult:
    user_id: UUID
    plan_type: str
    period_end: datetime
    subscription_id: int


def ensure_admin(caller: AuthenticatedUser | None) -> AuthenticatedUser:
    if caller is None or caller.role not in GRANT_ADMIN_ROLES:
        raise AdminForbiddenError
    return caller


class AdminGrantService:
    @staticmethod
    async def grant_access(
        session: AsyncSession,
        *,
        caller: AuthenticatedUser | None,
        target_user_id: UUID,
        plan_type: str,
        duration_days: int | None = None,
        now_utc: datetime | None = None,
    ) -> AdminGrantResult:
        admin = ensure_admin(caller)
        if plan_type not in PAID_PLAN_TYPES:
            raise AdminInvalidPlanError
        now_utc = now_utc or datetime.now(timezone.utc)

        target = await UsersRepo.get_by_id(session, target_user_id)
        if target is None:
            raise AdminTargetNotFoundError

        period_end = compute_grant_period_end(
            plan_type=plan_type,
            duration_days=duration_days,
            now_utc=now_utc,
        )
        subscription = await upsert_local_grant(
            session,
            user_id=target.id,
            customer_email=target.email,
            grant_source=GRANT_SOURCE_ADMIN,
            plan_type=plan_type,
            customer_marker=admin_customer_marker(target.id),
            period_start=now_utc,
            period_end=period_end,
        )
        logger.info(
            "admin_grant_applied",
            admin_user_id=str(admin.user_id),
            target_user_id=str(target.id),
            plan_type=plan_type,
            period_end=period_end.isoformat(),
        )
        return AdminGrantResult(
            user_id=target.id,
            plan_type=plan_type,
            period_end=period_end,
            subscription_id=subscription.id,
        )

    @staticmethod
    async def revoke_access(
        session: AsyncSession,
        *,
        caller: AuthenticatedUser | None,
        target_user_id: UUID,
        now_utc: datetime | None = None,
    ) -> bool:
        admin = ensure_admin(caller)
        now_utc = now_utc or datetime.now(timezone.utc)

        target = await UsersRepo.get_by_id(session, target_user_id)
        if target is None:
            raise AdminTargetNotFoundError

        updated = await SubscriptionsRepo.set_status_by_external_id(
            session,
            stripe_subscription_id=local_grant_key(target.id),
            status=SUBSCRIPTION_STATUS_CANCELED,
            canceled_at=now_utc,
        )
        logger.info(
            "admin_grant_revoked",
            admin_user_id=str(admin.user_id),
            target_user_id=str(target.id),
            revoked=updated > 0,
        )
        return updated > 0
