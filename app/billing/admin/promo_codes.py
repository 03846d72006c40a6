from __future__ import annotations

from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.admin.errors import (
    AdminInvalidPlanError,
    AdminPromoCodeExistsError,
    AdminPromoCodeInvalidError,
    AdminTargetNotFoundError,
)
from app.billing.admin.service import ensure_admin
from app.billing.constants import PAID_PLAN_TYPES, PLAN_LIFETIME
from app.db.models.promo_codes import PromoCode
from app.db.repo.promo_repo import PromoRepo
from app.services.promo_codes import normalize_promo_code, promo_code_log_prefix
from app.services.user_auth import AuthenticatedUser

logger = structlog.get_logger(__name__)

MAX_LIST_LIMIT = 200


class PromoCodeAdminService:
    @staticmethod
    async def create_code(
        session: AsyncSession,
        *,
        caller: AuthenticatedUser | None,
        code: str,
        plan_type: str,
        max_uses: int,
        duration_days: int | None = None,
        expires_at: datetime | None = None,
    ) -> PromoCode:
        admin = ensure_admin(caller)
        if plan_type not in PAID_PLAN_TYPES:
            raise AdminInvalidPlanError
        normalized_code = normalize_promo_code(code)
        if not normalized_code or max_uses <= 0:
            raise AdminPromoCodeInvalidError

        promo_code = await PromoRepo.try_create_code(
            session,
            code=normalized_code,
            plan_type=plan_type,
            max_uses=max_uses,
            # lifetime codes never carry a duration
            duration_days=None if plan_type == PLAN_LIFETIME else duration_days,
            expires_at=expires_at,
        )
        if promo_code is None:
            raise AdminPromoCodeExistsError

        logger.info(
            "admin_promo_code_created",
            admin_user_id=str(admin.user_id),
            promo_code_id=promo_code.id,
            code_prefix=promo_code_log_prefix(normalized_code),
            plan_type=plan_type,
            max_uses=max_uses,
        )
        return promo_code

    @staticmethod
    async def list_codes(
        session: AsyncSession,
        *,
        caller: AuthenticatedUser | None,
        is_active: bool | None = None,
        limit: int = 50,
    ) -> list[PromoCode]:
        ensure_admin(caller)
        return await PromoRepo.list_codes(
            session,
            is_active=is_active,
            limit=max(1, min(limit, MAX_LIST_LIMIT)),
        )

    @staticmethod
    async def set_active(
        session: AsyncSession,
        *,
        caller: AuthenticatedUser | None,
        promo_code_id: int,
        is_active: bool,
    ) -> PromoCode:
        admin = ensure_admin(caller)
        promo_code = await PromoRepo.get_code_by_id_for_update(session, promo_code_id)
        if promo_code is None:
            raise AdminTargetNotFoundError
        if promo_code.is_active != is_active:
            promo_code.is_active = is_active
            await session.flush()
            logger.info(
                "admin_promo_code_toggled",
                admin_user_id=str(admin.user_id),
                promo_code_id=promo_code_id,
                is_active=is_active,
            )
        return promo_code
