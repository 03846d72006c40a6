from __future__ import annotations

from typing import Any

import structlog

from app.billing.checkout.errors import CheckoutInvalidModeError, CheckoutInvalidPriceError
from app.billing.checkout.types import CHECKOUT_MODES, AppliedDiscount, CheckoutSessionResult
from app.billing.stripe_records import field
from app.services.promo_codes import promo_code_log_prefix
from app.services.stripe_gateway import PaymentProcessorClient, PaymentProcessorError
from app.services.user_auth import AuthenticatedUser, AuthenticationRequiredError

logger = structlog.get_logger(__name__)

SUCCESS_PATH = "/payment-success?session_id={CHECKOUT_SESSION_ID}"
CANCEL_PATH = "/pricing"


class CheckoutService:
    def __init__(self, *, processor: PaymentProcessorClient) -> None:
        self._processor = processor

    async def resolve_discount(self, discount_code: str | None) -> AppliedDiscount | None:
        """Map a typed code to a processor coupon or promotion code.

        Lookup failures are logged and treated as "no discount".
        """
        code = (discount_code or "").strip()
        if not code:
            return None
        code_prefix = promo_code_log_prefix(code.upper())

        try:
            coupon = await self._processor.retrieve_coupon(code)
        except PaymentProcessorError as exc:
            logger.info(
                "checkout_coupon_lookup_failed",
                code_prefix=code_prefix,
                error_type=type(exc).__name__,
            )
        else:
            if field(coupon, "valid", False):
                return AppliedDiscount(kind="coupon", processor_id=field(coupon, "id"))

        try:
            promotion_code = await self._processor.find_active_promotion_code(code)
        except PaymentProcessorError as exc:
            logger.info(
                "checkout_promotion_code_lookup_failed",
                code_prefix=code_prefix,
                error_type=type(exc).__name__,
            )
            return None
        if promotion_code is None:
            logger.info("checkout_discount_unresolved", code_prefix=code_prefix)
            return None
        return AppliedDiscount(kind="promotion_code", processor_id=field(promotion_code, "id"))

    async def build_checkout_session(
        self,
        *,
        user: AuthenticatedUser | None,
        price_id: str,
        mode: str,
        discount_code: str | None,
        origin: str,
    ) -> CheckoutSessionResult:
        if user is None:
            raise AuthenticationRequiredError
        if mode not in CHECKOUT_MODES:
            raise CheckoutInvalidModeError
        price_id = (price_id or "").strip()
        if not price_id:
            raise CheckoutInvalidPriceError

        customer = await self._processor.get_or_create_customer(
            user.email,
            {"user_id": str(user.user_id)},
        )
        discount = await self.resolve_discount(discount_code)

        params: dict[str, Any] = {
            "customer": field(customer, "id"),
            "line_items": [{"price": price_id, "quantity": 1}],
            "mode": mode,
            "success_url": f"{origin}{SUCCESS_PATH}",
            "cancel_url": f"{origin}{CANCEL_PATH}",
            "client_reference_id": str(user.user_id),
            "metadata": {"user_id": str(user.user_id)},
        }
        if discount is not None:
            params["discounts"] = [discount.as_session_discount()]
        else:
            params["allow_promotion_codes"] = True

        checkout_session = await self._processor.create_checkout_session(params)
        logger.info(
            "checkout_session_created",
            user_id=str(user.user_id),
            mode=mode,
            session_id=field(checkout_session, "id"),
            discount_kind=discount.kind if discount is not None else None,
        )
        return CheckoutSessionResult(
            url=field(checkout_session, "url"),
            session_id=field(checkout_session, "id"),
            applied_discount=discount,
        )
