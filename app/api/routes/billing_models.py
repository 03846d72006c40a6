from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class EntitlementResponse(BaseModel):
    plan: str
    expires_at: datetime | None = None
    source: str | None = None
    error: str | None = None


class CheckoutRequest(BaseModel):
    price_id: str = Field(min_length=1, max_length=255)
    mode: str = Field(min_length=1, max_length=32)
    discount_code: str | None = Field(default=None, max_length=64)


class CheckoutResponse(BaseModel):
    url: str
    session_id: str
    discount_applied: bool = False


class RedeemRequest(BaseModel):
    code: str = Field(max_length=64)


class RedeemResponse(BaseModel):
    granted_plan: str
    period_end: datetime
    redemption_id: UUID


class BillingSyncResponse(BaseModel):
    run_id: int | None = None
    status: str
    synced_subscriptions: int = Field(ge=0)
    synced_payments: int = Field(ge=0)
    skipped_records: int = Field(ge=0)


class BillingSyncRunView(BaseModel):
    run_id: int
    status: str
    started_at: datetime
    finished_at: datetime | None = None
    synced_subscriptions: int
    synced_payments: int
    skipped_records: int


class BillingSyncEnqueueResponse(BaseModel):
    task_id: str


class AdminGrantRequest(BaseModel):
    user_id: UUID
    plan_type: str = Field(min_length=1, max_length=16)
    duration_days: int | None = Field(default=None, gt=0, le=36500)


class AdminGrantResponse(BaseModel):
    user_id: UUID
    plan_type: str
    period_end: datetime


class AdminRevokeRequest(BaseModel):
    user_id: UUID


class AdminRevokeResponse(BaseModel):
    user_id: UUID
    revoked: bool


class AdminPromoCodeCreateRequest(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    plan_type: str = Field(min_length=1, max_length=16)
    max_uses: int = Field(gt=0, le=1_000_000)
    duration_days: int | None = Field(default=None, gt=0, le=36500)
    expires_at: datetime | None = None


class AdminPromoCodeView(BaseModel):
    id: int
    code: str
    plan_type: str
    duration_days: int | None = None
    max_uses: int
    current_uses: int
    expires_at: datetime | None = None
    is_active: bool
    created_at: datetime


class AdminPromoCodeListResponse(BaseModel):
    items: list[AdminPromoCodeView]


class AdminPromoCodeActiveRequest(BaseModel):
    is_active: bool


class AdminPromotionCodeView(BaseModel):
    id: str
    code: str
    active: bool
    times_redeemed: int
    max_redemptions: int | None = None


class AdminCouponView(BaseModel):
    id: str
    name: str | None = None
    percent_off: float | None = None
    amount_off: int | None = None
    currency: str | None = None
    duration: str
    duration_in_months: int | None = None
    max_redemptions: int | None = None
    times_redeemed: int
    valid: bool
    created: datetime | None = None
    redeem_by: datetime | None = None
    promotion_codes: list[AdminPromotionCodeView] = Field(default_factory=list)


class AdminCouponListResponse(BaseModel):
    items: list[AdminCouponView]


class AdminCouponCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=40)
    percent_off: float | None = Field(default=None, gt=0, le=100)
    amount_off: int | None = Field(default=None, gt=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    duration: str = Field(default="once", min_length=1, max_length=16)
    duration_in_months: int | None = Field(default=None, gt=0, le=36)
    max_redemptions: int | None = Field(default=None, gt=0)
    redeem_by: datetime | None = None


class AdminCouponCreateResponse(BaseModel):
    coupon: AdminCouponView
    promotion_code: AdminPromotionCodeView


class AdminCouponDeactivateResponse(BaseModel):
    coupon_id: str
    deactivated_promotion_codes: int


class AdminPromotionCodeActiveRequest(BaseModel):
    active: bool


class AdminRefundRequest(BaseModel):
    payment_intent_id: str = Field(min_length=1, max_length=255)


class AdminRefundResponse(BaseModel):
    refund_id: str
    payment_intent_id: str
    amount: int
    currency: str | None = None
    user_id: UUID | None = None
    canceled_subscription_ids: list[str]
