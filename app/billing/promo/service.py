from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.constants import GRANT_SOURCE_PROMO, promo_customer_marker
from app.billing.grants import compute_grant_period_end, upsert_local_grant
from app.billing.promo.errors import (
    PromoCodeAlreadyRedeemedError,
    PromoCodeDepletedError,
    PromoCodeExpiredError,
    PromoCodeInactiveError,
    PromoCodeInvalidError,
    PromoCodeNotFoundError,
)
from app.billing.promo.types import PromoRedeemResult
from app.db.repo.promo_repo import PromoRepo
from app.services.promo_codes import normalize_promo_code, promo_code_log_prefix
from app.services.user_auth import AuthenticatedUser

logger = structlog.get_logger(__name__)


class PromoRedemptionService:
    @staticmethod
    async def redeem(
        session: AsyncSession,
        *,
        user: AuthenticatedUser,
        promo_code: str,
        now_utc: datetime | None = None,
    ) -> PromoRedeemResult:
        """Turn a one-time code into a local grant for ``user``.

        Must run inside a transaction owned by the caller. Every rejection is
        raised before the first write; a concurrent winner detected at the
        redemption insert aborts the whole transaction.
        """
        now_utc = now_utc or datetime.now(timezone.utc)

        normalized_code = normalize_promo_code(promo_code)
        if not normalized_code:
            raise PromoCodeInvalidError
        code_prefix = promo_code_log_prefix(normalized_code)

        matched_code = await PromoRepo.get_code_by_code_for_update(session, normalized_code)
        if matched_code is None:
            logger.info("promo_redeem_rejected", reason="not_found", code_prefix=code_prefix)
            raise PromoCodeNotFoundError
        if not matched_code.is_active:
            logger.info("promo_redeem_rejected", reason="inactive", code_prefix=code_prefix)
            raise PromoCodeInactiveError
        if matched_code.expires_at is not None and matched_code.expires_at <= now_utc:
            logger.info("promo_redeem_rejected", reason="expired", code_prefix=code_prefix)
            raise PromoCodeExpiredError
        if matched_code.current_uses >= matched_code.max_uses:
            logger.info("promo_redeem_rejected", reason="depleted", code_prefix=code_prefix)
            raise PromoCodeDepletedError

        existing_redemption = await PromoRepo.get_redemption_by_code_and_user(
            session,
            promo_code_id=matched_code.id,
            user_id=user.user_id,
        )
        if existing_redemption is not None:
            logger.info(
                "promo_redeem_rejected",
                reason="already_redeemed",
                code_prefix=code_prefix,
                user_id=str(user.user_id),
            )
            raise PromoCodeAlreadyRedeemedError

        period_end = compute_grant_period_end(
            plan_type=matched_code.plan_type,
            duration_days=matched_code.duration_days,
            now_utc=now_utc,
        )
        subscription = await upsert_local_grant(
            session,
            user_id=user.user_id,
            customer_email=user.email,
            grant_source=GRANT_SOURCE_PROMO,
            plan_type=matched_code.plan_type,
            customer_marker=promo_customer_marker(code=normalized_code, user_id=user.user_id),
            period_start=now_utc,
            period_end=period_end,
        )

        redemption_id = await PromoRepo.try_create_redemption(
            session,
            promo_code_id=matched_code.id,
            user_id=user.user_id,
            subscription_id=subscription.id,
        )
        if redemption_id is None:
            logger.info(
                "promo_redeem_rejected",
                reason="concurrent_redemption",
                code_prefix=code_prefix,
                user_id=str(user.user_id),
            )
            raise PromoCodeAlreadyRedeemedError

        current_uses = matched_code.current_uses
        try:
            async with session.begin_nested():
                current_uses = await PromoRepo.increment_use_count(
                    session,
                    promo_code_id=matched_code.id,
                )
        except SQLAlchemyError:
            logger.exception(
                "promo_use_count_increment_failed",
                promo_code_id=matched_code.id,
                redemption_id=str(redemption_id),
            )

        logger.info(
            "promo_redeemed",
            user_id=str(user.user_id),
            code_prefix=code_prefix,
            plan_type=matched_code.plan_type,
            period_end=period_end.isoformat(),
            redemption_id=str(redemption_id),
        )
        return PromoRedeemResult(
            redemption_id=redemption_id,
            granted_plan=matched_code.plan_type,
            period_end=period_end,
            subscription_id=subscription.id,
            current_uses=current_uses,
        )
