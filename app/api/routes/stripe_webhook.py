from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from app.api.deps import get_billing_services
from app.billing.services import BillingServices
from app.billing.webhooks.errors import (
    StripeWebhookNotConfiguredError,
    StripeWebhookSignatureError,
)

router = APIRouter(tags=["stripe"])
logger = structlog.get_logger(__name__)


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    services: BillingServices = Depends(get_billing_services),
) -> JSONResponse:
    payload = await request.body()
    signature = request.headers.get("Stripe-Signature")

    try:
        event = services.webhooks.construct_event(payload, signature)
    except StripeWebhookNotConfiguredError:
        logger.error("stripe_webhook_secret_missing")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"code": "E_WEBHOOK_NOT_CONFIGURED"},
        )
    except StripeWebhookSignatureError:
        logger.warning("stripe_webhook_invalid_signature")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"code": "E_WEBHOOK_INVALID_SIGNATURE"},
        )

    try:
        outcome = await services.webhooks.handle_event(event)
    except Exception:
        # already logged with the event id by the service
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"code": "E_WEBHOOK_PROCESSING_FAILED"},
        )

    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={"received": True, "outcome": outcome},
    )
