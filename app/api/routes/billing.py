from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request

from app.api.deps import get_billing_services, get_current_user, get_current_user_optional
from app.billing.checkout.errors import CheckoutInvalidModeError, CheckoutInvalidPriceError
from app.billing.promo.errors import (
    PromoCodeAlreadyRedeemedError,
    PromoCodeDepletedError,
    PromoCodeExpiredError,
    PromoCodeInactiveError,
    PromoCodeInvalidError,
    PromoCodeNotFoundError,
    PromoError,
)
from app.billing.promo.service import PromoRedemptionService
from app.billing.services import BillingServices
from app.core.config import get_settings
from app.db.session import SessionLocal
from app.services.stripe_gateway import PaymentProcessorError, PaymentProcessorUnavailableError
from app.services.user_auth import AuthenticatedUser, resolve_redirect_origin

from .billing_models import (
    CheckoutRequest,
    CheckoutResponse,
    EntitlementResponse,
    RedeemRequest,
    RedeemResponse,
)

router = APIRouter(tags=["billing"])
logger = structlog.get_logger(__name__)

PROMO_ERROR_STATUS: dict[type[PromoError], int] = {
    PromoCodeInvalidError: 422,
    PromoCodeNotFoundError: 404,
    PromoCodeInactiveError: 410,
    PromoCodeExpiredError: 410,
    PromoCodeDepletedError: 409,
    PromoCodeAlreadyRedeemedError: 409,
}


def processor_http_error(exc: PaymentProcessorError) -> HTTPException:
    if isinstance(exc, PaymentProcessorUnavailableError):
        return HTTPException(status_code=502, detail={"code": "E_PROCESSOR_UNAVAILABLE"})
    return HTTPException(status_code=502, detail={"code": "E_PROCESSOR_ERROR"})


@router.get("/billing/entitlement", response_model=EntitlementResponse)
async def get_entitlement(
    user: AuthenticatedUser | None = Depends(get_current_user_optional),
    services: BillingServices = Depends(get_billing_services),
) -> EntitlementResponse:
    try:
        async with SessionLocal() as session:
            verdict = await services.entitlement_resolver.resolve(session, user=user)
    except PaymentProcessorError as exc:
        logger.warning("entitlement_processor_failed", error_type=type(exc).__name__)
        raise processor_http_error(exc) from exc

    return EntitlementResponse(
        plan=verdict.plan,
        expires_at=verdict.expires_at,
        source=verdict.source,
        error=verdict.error,
    )


@router.post("/billing/checkout", response_model=CheckoutResponse)
async def create_checkout(
    payload: CheckoutRequest,
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    services: BillingServices = Depends(get_billing_services),
) -> CheckoutResponse:
    settings = get_settings()
    origin = resolve_redirect_origin(
        request.headers.get("Origin"),
        allowlist=settings.checkout_allowed_origins,
        fallback_origin=settings.public_app_url,
    )
    try:
        result = await services.checkout.build_checkout_session(
            user=user,
            price_id=payload.price_id,
            mode=payload.mode,
            discount_code=payload.discount_code,
            origin=origin,
        )
    except CheckoutInvalidModeError as exc:
        raise HTTPException(status_code=422, detail={"code": "E_CHECKOUT_INVALID_MODE"}) from exc
    except CheckoutInvalidPriceError as exc:
        raise HTTPException(status_code=422, detail={"code": "E_CHECKOUT_INVALID_PRICE"}) from exc
    except PaymentProcessorError as exc:
        logger.warning("checkout_processor_failed", error_type=type(exc).__name__)
        raise processor_http_error(exc) from exc

    return CheckoutResponse(
        url=result.url,
        session_id=result.session_id,
        discount_applied=result.applied_discount is not None,
    )


@router.post("/billing/redeem", response_model=RedeemResponse)
async def redeem_code(
    payload: RedeemRequest,
    user: AuthenticatedUser = Depends(get_current_user),
) -> RedeemResponse:
    try:
        async with SessionLocal.begin() as session:
            result = await PromoRedemptionService.redeem(
                session,
                user=user,
                promo_code=payload.code,
            )
    except PromoError as exc:
        raise HTTPException(
            status_code=PROMO_ERROR_STATUS.get(type(exc), 422),
            detail={"code": exc.code, "reason": exc.reason},
        ) from exc

    return RedeemResponse(
        granted_plan=result.granted_plan,
        period_end=result.period_end,
        redemption_id=result.redemption_id,
    )
