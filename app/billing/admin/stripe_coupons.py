from __future__ import annotations

import re
from dataclasses import dataclass, field as dataclass_field
from datetime import datetime, timezone
from typing import Any

import structlog

from app.billing.admin.errors import AdminCouponInvalidError, AdminTargetNotFoundError
from app.billing.admin.service import ensure_admin
from app.billing.constants import DEFAULT_CURRENCY
from app.billing.stripe_records import field, from_timestamp
from app.services.stripe_gateway import PaymentProcessorClient, PaymentProcessorNotFoundError
from app.services.user_auth import AuthenticatedUser

logger = structlog.get_logger(__name__)

COUPON_DURATIONS = ("once", "repeating", "forever")
_NON_CODE_CHARS = re.compile(r"[^A-Za-z0-9]")


@dataclass(slots=True)
class PromotionCodeSummary:
    id: str
    code: str
    active: bool
    times_redeemed: int
    max_redemptions: int | None


@dataclass(slots=True)
class CouponSummary:
    id: str
    name: str | None
    percent_off: float | None
    amount_off: int | None
    currency: str | None
    duration: str
    duration_in_months: int | None
    max_redemptions: int | None
    times_redeemed: int
    valid: bool
    created: datetime | None
    redeem_by: datetime | None
    promotion_codes: list[PromotionCodeSummary] = dataclass_field(default_factory=list)


@dataclass(slots=True)
class CouponCreated:
    coupon: CouponSummary
    promotion_code: PromotionCodeSummary


def promotion_code_for(name: str | None, coupon_id: str) -> str:
    """Customer-facing code: the coupon name squeezed to A-Z0-9, else the coupon id."""
    code = _NON_CODE_CHARS.sub("", name or "").upper()
    return code or coupon_id.upper()


def _promotion_code_summary(promotion_code: Any) -> PromotionCodeSummary:
    return PromotionCodeSummary(
        id=field(promotion_code, "id"),
        code=field(promotion_code, "code"),
        active=bool(field(promotion_code, "active", False)),
        times_redeemed=int(field(promotion_code, "times_redeemed", 0)),
        max_redemptions=field(promotion_code, "max_redemptions"),
    )


def _coupon_summary(coupon: Any, promotion_codes: list[Any]) -> CouponSummary:
    return CouponSummary(
        id=field(coupon, "id"),
        name=field(coupon, "name"),
        percent_off=field(coupon, "percent_off"),
        amount_off=field(coupon, "amount_off"),
        currency=field(coupon, "currency"),
        duration=field(coupon, "duration"),
        duration_in_months=field(coupon, "duration_in_months"),
        max_redemptions=field(coupon, "max_redemptions"),
        times_redeemed=int(field(coupon, "times_redeemed", 0)),
        valid=bool(field(coupon, "valid", False)),
        created=from_timestamp(field(coupon, "created")),
        redeem_by=from_timestamp(field(coupon, "redeem_by")),
        promotion_codes=[_promotion_code_summary(item) for item in promotion_codes],
    )


def build_coupon_params(
    *,
    name: str,
    percent_off: float | None,
    amount_off: int | None,
    currency: str | None,
    duration: str,
    duration_in_months: int | None,
    max_redemptions: int | None,
    redeem_by: datetime | None,
    now_utc: datetime,
) -> dict[str, Any]:
    if (percent_off is None) == (amount_off is None):
        raise AdminCouponInvalidError
    if duration not in COUPON_DURATIONS:
        raise AdminCouponInvalidError
    if duration == "repeating" and not duration_in_months:
        raise AdminCouponInvalidError
    if redeem_by is not None and redeem_by <= now_utc:
        raise AdminCouponInvalidError

    params: dict[str, Any] = {"name": name.strip(), "duration": duration}
    if percent_off is not None:
        params["percent_off"] = percent_off
    else:
        params["amount_off"] = amount_off
        params["currency"] = (currency or DEFAULT_CURRENCY).lower()
    if duration == "repeating":
        params["duration_in_months"] = duration_in_months
    if max_redemptions is not None:
        params["max_redemptions"] = max_redemptions
    if redeem_by is not None:
        params["redeem_by"] = int(redeem_by.timestamp())
    return params


class StripeCouponAdminService:
    """Admin view over processor-side discount coupons and their promotion codes."""

    def __init__(self, *, processor: PaymentProcessorClient) -> None:
        self._processor = processor

    async def list_coupons(self, *, caller: AuthenticatedUser | None) -> list[CouponSummary]:
        ensure_admin(caller)
        coupons = await self._processor.list_coupons()
        summaries: list[CouponSummary] = []
        for coupon in coupons:
            promotion_codes = await self._processor.list_promotion_codes(field(coupon, "id"))
            summaries.append(_coupon_summary(coupon, promotion_codes))
        return summaries

    async def create_coupon(
        self,
        *,
        caller: AuthenticatedUser | None,
        name: str,
        percent_off: float | None = None,
        amount_off: int | None = None,
        currency: str | None = None,
        duration: str = "once",
        duration_in_months: int | None = None,
        max_redemptions: int | None = None,
        redeem_by: datetime | None = None,
        now_utc: datetime | None = None,
    ) -> CouponCreated:
        admin = ensure_admin(caller)
        params = build_coupon_params(
            name=name,
            percent_off=percent_off,
            amount_off=amount_off,
            currency=currency,
            duration=duration,
            duration_in_months=duration_in_months,
            max_redemptions=max_redemptions,
            redeem_by=redeem_by,
            now_utc=now_utc or datetime.now(timezone.utc),
        )
        coupon = await self._processor.create_coupon(params)
        coupon_id = field(coupon, "id")
        promotion_code = await self._processor.create_promotion_code(
            coupon_id,
            promotion_code_for(field(coupon, "name"), coupon_id),
        )
        logger.info(
            "admin_coupon_created",
            admin_user_id=str(admin.user_id),
            coupon_id=coupon_id,
            promotion_code_id=field(promotion_code, "id"),
        )
        return CouponCreated(
            coupon=_coupon_summary(coupon, [promotion_code]),
            promotion_code=_promotion_code_summary(promotion_code),
        )

    async def deactivate_coupon(self, *, caller: AuthenticatedUser | None, coupon_id: str) -> int:
        """Switch off every live promotion code of the coupon, then delete the coupon.

        Returns how many promotion codes were deactivated.
        """
        admin = ensure_admin(caller)
        try:
            promotion_codes = await self._processor.list_promotion_codes(coupon_id, active=True)
            for promotion_code in promotion_codes:
                await self._processor.set_promotion_code_active(field(promotion_code, "id"), False)
            await self._processor.delete_coupon(coupon_id)
        except PaymentProcessorNotFoundError as exc:
            raise AdminTargetNotFoundError from exc

        logger.info(
            "admin_coupon_deactivated",
            admin_user_id=str(admin.user_id),
            coupon_id=coupon_id,
            promotion_codes=len(promotion_codes),
        )
        return len(promotion_codes)

    async def set_promotion_code_active(
        self,
        *,
        caller: AuthenticatedUser | None,
        promotion_code_id: str,
        active: bool,
    ) -> PromotionCodeSummary:
        admin = ensure_admin(caller)
        try:
            promotion_code = await self._processor.set_promotion_code_active(
                promotion_code_id,
                active,
            )
        except PaymentProcessorNotFoundError as exc:
            raise AdminTargetNotFoundError from exc

        logger.info(
            "admin_promotion_code_toggled",
            admin_user_id=str(admin.user_id),
            promotion_code_id=promotion_code_id,
            active=active,
        )
        return _promotion_code_summary(promotion_code)
