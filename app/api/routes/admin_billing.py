from __future__ import annotations

import asyncio
from dataclasses import asdict

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.deps import get_billing_services, get_current_user
from app.api.routes.billing import processor_http_error
from app.billing.admin.errors import (
    AdminCouponInvalidError,
    AdminForbiddenError,
    AdminInvalidPlanError,
    AdminPromoCodeExistsError,
    AdminPromoCodeInvalidError,
    AdminRefundNotAllowedError,
    AdminTargetNotFoundError,
)
from app.billing.admin.promo_codes import PromoCodeAdminService
from app.billing.admin.service import AdminGrantService
from app.billing.constants import ROLE_OWNER
from app.billing.services import BillingServices
from app.billing.sync.errors import BillingSyncForbiddenError
from app.db.models.promo_codes import PromoCode
from app.db.repo.billing_sync_runs_repo import BillingSyncRunsRepo
from app.db.session import SessionLocal
from app.services.stripe_gateway import PaymentProcessorError
from app.services.user_auth import AuthenticatedUser
from app.workers.tasks.billing_sync import run_billing_sync

from .billing_models import (
    AdminCouponCreateRequest,
    AdminCouponCreateResponse,
    AdminCouponDeactivateResponse,
    AdminCouponListResponse,
    AdminCouponView,
    AdminGrantRequest,
    AdminGrantResponse,
    AdminPromoCodeActiveRequest,
    AdminPromoCodeCreateRequest,
    AdminPromoCodeListResponse,
    AdminPromoCodeView,
    AdminPromotionCodeActiveRequest,
    AdminPromotionCodeView,
    AdminRefundRequest,
    AdminRefundResponse,
    AdminRevokeRequest,
    AdminRevokeResponse,
    BillingSyncEnqueueResponse,
    BillingSyncResponse,
    BillingSyncRunView,
)

router = APIRouter(prefix="/admin/billing", tags=["admin", "billing"])
logger = structlog.get_logger(__name__)

ENQUEUE_TIMEOUT_SECONDS = 5.0


def _forbidden() -> HTTPException:
    return HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})


@router.post("/sync", response_model=BillingSyncResponse)
async def run_sync(
    user: AuthenticatedUser = Depends(get_current_user),
    services: BillingServices = Depends(get_billing_services),
) -> BillingSyncResponse:
    try:
        result = await services.billing_sync.run(caller=user)
    except BillingSyncForbiddenError as exc:
        raise _forbidden() from exc
    except PaymentProcessorError as exc:
        raise processor_http_error(exc) from exc
    return BillingSyncResponse(**result.as_dict())


@router.get("/sync/latest", response_model=BillingSyncRunView)
async def latest_sync_run(
    user: AuthenticatedUser = Depends(get_current_user),
) -> BillingSyncRunView:
    if user.role != ROLE_OWNER:
        raise _forbidden()

    async with SessionLocal() as session:
        run = await BillingSyncRunsRepo.get_latest(session)
    if run is None:
        raise HTTPException(status_code=404, detail={"code": "E_SYNC_RUN_NOT_FOUND"})
    return BillingSyncRunView(
        run_id=run.id,
        status=run.status,
        started_at=run.started_at,
        finished_at=run.finished_at,
        synced_subscriptions=run.synced_subscriptions,
        synced_payments=run.synced_payments,
        skipped_records=run.skipped_records,
    )


@router.post("/sync/enqueue", response_model=BillingSyncEnqueueResponse, status_code=202)
async def enqueue_sync(
    user: AuthenticatedUser = Depends(get_current_user),
) -> BillingSyncEnqueueResponse:
    if user.role != ROLE_OWNER:
        raise _forbidden()

    def enqueue_call() -> object:
        return run_billing_sync.delay(triggered_by_user_id=str(user.user_id))

    try:
        async_result = await asyncio.wait_for(
            asyncio.to_thread(enqueue_call),
            timeout=ENQUEUE_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError as exc:
        logger.warning("billing_sync_enqueue_timeout", user_id=str(user.user_id))
        raise HTTPException(status_code=503, detail={"code": "E_SYNC_ENQUEUE_FAILED"}) from exc
    except Exception as exc:
        logger.warning(
            "billing_sync_enqueue_failed",
            user_id=str(user.user_id),
            error_type=type(exc).__name__,
        )
        raise HTTPException(status_code=503, detail={"code": "E_SYNC_ENQUEUE_FAILED"}) from exc

    return BillingSyncEnqueueResponse(task_id=str(async_result.id))


@router.post("/grants", response_model=AdminGrantResponse)
async def grant_access(
    payload: AdminGrantRequest,
    user: AuthenticatedUser = Depends(get_current_user),
) -> AdminGrantResponse:
    try:
        async with SessionLocal.begin() as session:
            result = await AdminGrantService.grant_access(
                session,
                caller=user,
                target_user_id=payload.user_id,
                plan_type=payload.plan_type,
                duration_days=payload.duration_days,
            )
    except AdminForbiddenError as exc:
        raise _forbidden() from exc
    except AdminTargetNotFoundError as exc:
        raise HTTPException(status_code=404, detail={"code": "E_USER_NOT_FOUND"}) from exc
    except AdminInvalidPlanError as exc:
        raise HTTPException(status_code=422, detail={"code": "E_GRANT_INVALID_PLAN"}) from exc

    return AdminGrantResponse(
        user_id=result.user_id,
        plan_type=result.plan_type,
        period_end=result.period_end,
    )


@router.post("/grants/revoke", response_model=AdminRevokeResponse)
async def revoke_access(
    payload: AdminRevokeRequest,
    user: AuthenticatedUser = Depends(get_current_user),
) -> AdminRevokeResponse:
    try:
        async with SessionLocal.begin() as session:
            revoked = await AdminGrantService.revoke_access(
                session,
                caller=user,
                target_user_id=payload.user_id,
            )
    except AdminForbiddenError as exc:
        raise _forbidden() from exc
    except AdminTargetNotFoundError as exc:
        raise HTTPException(status_code=404, detail={"code": "E_USER_NOT_FOUND"}) from exc

    return AdminRevokeResponse(user_id=payload.user_id, revoked=revoked)


def _promo_code_view(promo_code: PromoCode) -> AdminPromoCodeView:
    return AdminPromoCodeView(
        id=promo_code.id,
        code=promo_code.code,
        plan_type=promo_code.plan_type,
        duration_days=promo_code.duration_days,
        max_uses=promo_code.max_uses,
        current_uses=promo_code.current_uses,
        expires_at=promo_code.expires_at,
        is_active=promo_code.is_active,
        created_at=promo_code.created_at,
    )


@router.post("/promo-codes", response_model=AdminPromoCodeView, status_code=201)
async def create_promo_code(
    payload: AdminPromoCodeCreateRequest,
    user: AuthenticatedUser = Depends(get_current_user),
) -> AdminPromoCodeView:
    try:
        async with SessionLocal.begin() as session:
            promo_code = await PromoCodeAdminService.create_code(
                session,
                caller=user,
                code=payload.code,
                plan_type=payload.plan_type,
                max_uses=payload.max_uses,
                duration_days=payload.duration_days,
                expires_at=payload.expires_at,
            )
            view = _promo_code_view(promo_code)
    except AdminForbiddenError as exc:
        raise _forbidden() from exc
    except AdminInvalidPlanError as exc:
        raise HTTPException(status_code=422, detail={"code": "E_GRANT_INVALID_PLAN"}) from exc
    except AdminPromoCodeInvalidError as exc:
        raise HTTPException(status_code=422, detail={"code": "E_PROMO_CODE_INVALID"}) from exc
    except AdminPromoCodeExistsError as exc:
        raise HTTPException(status_code=409, detail={"code": "E_PROMO_CODE_EXISTS"}) from exc
    return view


@router.get("/promo-codes", response_model=AdminPromoCodeListResponse)
async def list_promo_codes(
    is_active: bool | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    user: AuthenticatedUser = Depends(get_current_user),
) -> AdminPromoCodeListResponse:
    try:
        async with SessionLocal() as session:
            promo_codes = await PromoCodeAdminService.list_codes(
                session,
                caller=user,
                is_active=is_active,
                limit=limit,
            )
    except AdminForbiddenError as exc:
        raise _forbidden() from exc
    return AdminPromoCodeListResponse(items=[_promo_code_view(item) for item in promo_codes])


@router.post("/promo-codes/{promo_code_id}/active", response_model=AdminPromoCodeView)
async def set_promo_code_active(
    promo_code_id: int,
    payload: AdminPromoCodeActiveRequest,
    user: AuthenticatedUser = Depends(get_current_user),
) -> AdminPromoCodeView:
    try:
        async with SessionLocal.begin() as session:
            promo_code = await PromoCodeAdminService.set_active(
                session,
                caller=user,
                promo_code_id=promo_code_id,
                is_active=payload.is_active,
            )
            view = _promo_code_view(promo_code)
    except AdminForbiddenError as exc:
        raise _forbidden() from exc
    except AdminTargetNotFoundError as exc:
        raise HTTPException(status_code=404, detail={"code": "E_PROMO_CODE_NOT_FOUND"}) from exc
    return view


@router.get("/coupons", response_model=AdminCouponListResponse)
async def list_coupons(
    user: AuthenticatedUser = Depends(get_current_user),
    services: BillingServices = Depends(get_billing_services),
) -> AdminCouponListResponse:
    try:
        coupons = await services.coupons.list_coupons(caller=user)
    except AdminForbiddenError as exc:
        raise _forbidden() from exc
    except PaymentProcessorError as exc:
        raise processor_http_error(exc) from exc
    return AdminCouponListResponse(items=[AdminCouponView(**asdict(item)) for item in coupons])


@router.post("/coupons", response_model=AdminCouponCreateResponse, status_code=201)
async def create_coupon(
    payload: AdminCouponCreateRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    services: BillingServices = Depends(get_billing_services),
) -> AdminCouponCreateResponse:
    try:
        created = await services.coupons.create_coupon(caller=user, **payload.model_dump())
    except AdminForbiddenError as exc:
        raise _forbidden() from exc
    except AdminCouponInvalidError as exc:
        raise HTTPException(status_code=422, detail={"code": "E_COUPON_INVALID"}) from exc
    except PaymentProcessorError as exc:
        raise processor_http_error(exc) from exc
    return AdminCouponCreateResponse(**asdict(created))


@router.post("/coupons/{coupon_id}/deactivate", response_model=AdminCouponDeactivateResponse)
async def deactivate_coupon(
    coupon_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    services: BillingServices = Depends(get_billing_services),
) -> AdminCouponDeactivateResponse:
    try:
        deactivated = await services.coupons.deactivate_coupon(caller=user, coupon_id=coupon_id)
    except AdminForbiddenError as exc:
        raise _forbidden() from exc
    except AdminTargetNotFoundError as exc:
        raise HTTPException(status_code=404, detail={"code": "E_COUPON_NOT_FOUND"}) from exc
    except PaymentProcessorError as exc:
        raise processor_http_error(exc) from exc
    return AdminCouponDeactivateResponse(
        coupon_id=coupon_id,
        deactivated_promotion_codes=deactivated,
    )


@router.post(
    "/promotion-codes/{promotion_code_id}/active",
    response_model=AdminPromotionCodeView,
)
async def set_promotion_code_active(
    promotion_code_id: str,
    payload: AdminPromotionCodeActiveRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    services: BillingServices = Depends(get_billing_services),
) -> AdminPromotionCodeView:
    try:
        promotion_code = await services.coupons.set_promotion_code_active(
            caller=user,
            promotion_code_id=promotion_code_id,
            active=payload.active,
        )
    except AdminForbiddenError as exc:
        raise _forbidden() from exc
    except AdminTargetNotFoundError as exc:
        raise HTTPException(
            status_code=404,
            detail={"code": "E_PROMOTION_CODE_NOT_FOUND"},
        ) from exc
    except PaymentProcessorError as exc:
        raise processor_http_error(exc) from exc
    return AdminPromotionCodeView(**asdict(promotion_code))


@router.post("/refunds", response_model=AdminRefundResponse)
async def refund_payment(
    payload: AdminRefundRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    services: BillingServices = Depends(get_billing_services),
) -> AdminRefundResponse:
    try:
        async with SessionLocal.begin() as session:
            result = await services.refunds.refund_payment(
                session,
                caller=user,
                payment_intent_id=payload.payment_intent_id,
            )
    except AdminForbiddenError as exc:
        raise _forbidden() from exc
    except AdminTargetNotFoundError as exc:
        raise HTTPException(status_code=404, detail={"code": "E_PAYMENT_NOT_FOUND"}) from exc
    except AdminRefundNotAllowedError as exc:
        raise HTTPException(status_code=409, detail={"code": "E_REFUND_NOT_ALLOWED"}) from exc
    except PaymentProcessorError as exc:
        raise processor_http_error(exc) from exc
    return AdminRefundResponse(**asdict(result))
