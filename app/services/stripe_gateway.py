from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from functools import partial
from typing import Any, TypeVar

import stripe
import structlog

from app.core.config import Settings

logger = structlog.get_logger(__name__)

T = TypeVar("T")

TRANSIENT_ERROR_SIGNATURES = (
    "connection reset",
    "connection error",
    "sendrequest",
    "connection aborted",
    "remote end closed",
    "timed out",
)


class PaymentProcessorError(Exception):
    pass


class PaymentProcessorUnavailableError(PaymentProcessorError):
    pass


class PaymentProcessorNotFoundError(PaymentProcessorError):
    pass


class PaymentProcessorRequestError(PaymentProcessorError):
    pass


def is_transient_processor_error(exc: BaseException) -> bool:
    if isinstance(exc, stripe.APIConnectionError):
        return True
    message = str(exc).lower()
    return any(signature in message for signature in TRANSIENT_ERROR_SIGNATURES)


def _is_not_found(exc: stripe.StripeError) -> bool:
    return exc.http_status == 404 or getattr(exc, "code", None) == "resource_missing"


class PaymentProcessorClient:
    """Async facade over the blocking Stripe SDK.

    Every call is executed in a worker thread and retried on transport
    failures only. Definitive processor errors are raised immediately.
    """

    def __init__(
        self,
        *,
        api_key: str,
        max_attempts: int = 3,
        retry_delay_ms: int = 500,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._api_key = api_key
        self._max_attempts = max(1, max_attempts)
        self._retry_delay_seconds = max(0, retry_delay_ms) / 1000
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings) -> PaymentProcessorClient:
        return cls(
            api_key=settings.stripe_secret_key,
            max_attempts=settings.stripe_max_retries,
            retry_delay_ms=settings.stripe_retry_delay_ms,
        )

    async def _call(self, operation: str, func: Callable[..., T], /, **params: Any) -> T:
        call = partial(func, api_key=self._api_key, **params)
        attempt = 1
        while True:
            try:
                return await asyncio.to_thread(call)
            except stripe.StripeError as exc:
                if is_transient_processor_error(exc):
                    if attempt >= self._max_attempts:
                        logger.warning(
                            "stripe_call_unavailable",
                            operation=operation,
                            attempts=attempt,
                            error_type=type(exc).__name__,
                        )
                        raise PaymentProcessorUnavailableError(operation) from exc
                    logger.info(
                        "stripe_call_retry",
                        operation=operation,
                        attempt=attempt,
                        max_attempts=self._max_attempts,
                        error_type=type(exc).__name__,
                    )
                    await self._sleep(self._retry_delay_seconds * attempt)
                    attempt += 1
                    continue
                if _is_not_found(exc):
                    raise PaymentProcessorNotFoundError(operation) from exc
                raise PaymentProcessorRequestError(operation) from exc

    async def _collect(self, operation: str, func: Callable[..., Any], /, **params: Any) -> list[Any]:
        def _list_all(**call_params: Any) -> list[Any]:
            return list(func(**call_params).auto_paging_iter())

        return await self._call(operation, _list_all, **params)

    async def find_customer_by_email(self, email: str) -> Any | None:
        result = await self._call(
            "customers.list",
            stripe.Customer.list,
            email=email,
            limit=1,
        )
        customers = list(result.data)
        return customers[0] if customers else None

    async def create_customer(self, email: str, metadata: Mapping[str, str] | None = None) -> Any:
        return await self._call(
            "customers.create",
            stripe.Customer.create,
            email=email,
            metadata=dict(metadata or {}),
        )

    async def get_or_create_customer(
        self,
        email: str,
        metadata: Mapping[str, str] | None = None,
    ) -> Any:
        existing = await self.find_customer_by_email(email)
        if existing is not None:
            return existing
        return await self.create_customer(email, metadata)

    async def retrieve_customer(self, customer_id: str) -> Any | None:
        try:
            customer = await self._call(
                "customers.retrieve",
                stripe.Customer.retrieve,
                id=customer_id,
            )
        except PaymentProcessorNotFoundError:
            return None
        if customer.get("deleted"):
            return None
        return customer

    async def list_active_subscriptions(self, customer_id: str) -> list[Any]:
        return await self._collect(
            "subscriptions.list",
            stripe.Subscription.list,
            customer=customer_id,
            status="active",
            limit=100,
        )

    async def iter_all_subscriptions(self) -> list[Any]:
        return await self._collect(
            "subscriptions.list_all",
            stripe.Subscription.list,
            status="all",
            expand=["data.customer"],
            limit=100,
        )

    async def list_payment_intents(self, customer_id: str | None = None) -> list[Any]:
        params: dict[str, Any] = {"limit": 100, "expand": ["data.latest_charge"]}
        if customer_id is not None:
            params["customer"] = customer_id
        return await self._collect("payment_intents.list", stripe.PaymentIntent.list, **params)

    async def list_checkout_sessions_for_payment_intent(self, payment_intent_id: str) -> list[Any]:
        return await self._collect(
            "checkout.sessions.list",
            stripe.checkout.Session.list,
            payment_intent=payment_intent_id,
            limit=10,
        )

    async def list_checkout_session_line_items(self, session_id: str) -> list[Any]:
        return await self._collect(
            "checkout.sessions.list_line_items",
            stripe.checkout.Session.list_line_items,
            session=session_id,
            limit=100,
        )

    async def retrieve_coupon(self, coupon_id: str) -> Any:
        return await self._call("coupons.retrieve", stripe.Coupon.retrieve, id=coupon_id)

    async def find_active_promotion_code(self, code: str) -> Any | None:
        result = await self._call(
            "promotion_codes.list",
            stripe.PromotionCode.list,
            code=code,
            active=True,
            limit=1,
        )
        promotion_codes = list(result.data)
        return promotion_codes[0] if promotion_codes else None

    async def list_coupons(self) -> list[Any]:
        return await self._collect("coupons.list", stripe.Coupon.list, limit=100)

    async def create_coupon(self, params: Mapping[str, Any]) -> Any:
        return await self._call("coupons.create", stripe.Coupon.create, **dict(params))

    async def delete_coupon(self, coupon_id: str) -> Any:
        return await self._call("coupons.delete", partial(stripe.Coupon.delete, coupon_id))

    async def list_promotion_codes(
        self,
        coupon_id: str,
        *,
        active: bool | None = None,
    ) -> list[Any]:
        params: dict[str, Any] = {"coupon": coupon_id, "limit": 100}
        if active is not None:
            params["active"] = active
        return await self._collect("promotion_codes.list", stripe.PromotionCode.list, **params)

    async def create_promotion_code(self, coupon_id: str, code: str) -> Any:
        return await self._call(
            "promotion_codes.create",
            stripe.PromotionCode.create,
            coupon=coupon_id,
            code=code,
        )

    async def set_promotion_code_active(self, promotion_code_id: str, active: bool) -> Any:
        return await self._call(
            "promotion_codes.update",
            partial(stripe.PromotionCode.modify, promotion_code_id),
            active=active,
        )

    async def retrieve_payment_intent(self, payment_intent_id: str) -> Any:
        return await self._call(
            "payment_intents.retrieve",
            stripe.PaymentIntent.retrieve,
            id=payment_intent_id,
            expand=["latest_charge"],
        )

    async def create_refund(self, payment_intent_id: str, *, reason: str) -> Any:
        return await self._call(
            "refunds.create",
            stripe.Refund.create,
            payment_intent=payment_intent_id,
            reason=reason,
        )

    async def cancel_subscription(self, subscription_id: str) -> Any:
        return await self._call(
            "subscriptions.cancel",
            partial(stripe.Subscription.cancel, subscription_id),
        )

    async def create_checkout_session(self, params: Mapping[str, Any]) -> Any:
        return await self._call(
            "checkout.sessions.create",
            stripe.checkout.Session.create,
            **dict(params),
        )

    @staticmethod
    def construct_webhook_event(payload: bytes, signature: str, secret: str) -> Any:
        return stripe.Webhook.construct_event(payload, signature, secret)
