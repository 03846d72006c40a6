from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import stripe
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.billing.catalog import ProductCatalog
from app.billing.constants import SUBSCRIPTION_STATUS_CANCELED, SUBSCRIPTION_STATUS_PAST_DUE
from app.billing.stripe_records import (
    build_invoice_payment_upsert,
    build_lifetime_payment_upsert,
    build_lifetime_subscription_upsert,
    build_subscription_upsert,
    catalog_subscription_item,
    customer_email_of,
    field,
    from_timestamp,
    line_items_contain_lifetime,
    object_id,
)
from app.billing.sync.service import resolve_user_id
from app.billing.webhooks.errors import (
    StripeWebhookNotConfiguredError,
    StripeWebhookSignatureError,
)
from app.db.repo.payments_repo import PaymentsRepo
from app.db.repo.stripe_webhook_events_repo import StripeWebhookEventsRepo
from app.db.repo.subscriptions_repo import SubscriptionsRepo
from app.db.session import SessionLocal
from app.services.stripe_gateway import PaymentProcessorClient

logger = structlog.get_logger(__name__)

OUTCOME_PROCESSED = "processed"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_IGNORED = "ignored"

DEFAULT_PROCESSING_TTL_SECONDS = 300


def _invoice_subscription_id(invoice: Any) -> str | None:
    subscription_id = object_id(field(invoice, "subscription"))
    if subscription_id is not None:
        return subscription_id
    # Newer API versions nest the reference under the invoice parent.
    details = field(field(invoice, "parent"), "subscription_details")
    return object_id(field(details, "subscription"))


class StripeWebhookService:
    def __init__(
        self,
        *,
        processor: PaymentProcessorClient,
        catalog: ProductCatalog,
        webhook_secret: str,
        session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
        processing_ttl_seconds: int = DEFAULT_PROCESSING_TTL_SECONDS,
    ) -> None:
        self._processor = processor
        self._catalog = catalog
        self._webhook_secret = webhook_secret
        self._session_factory = session_factory
        self._processing_ttl_seconds = processing_ttl_seconds
        self._handlers = {
            "checkout.session.completed": self._handle_checkout_completed,
            "customer.subscription.created": self._handle_subscription_changed,
            "customer.subscription.updated": self._handle_subscription_changed,
            "customer.subscription.deleted": self._handle_subscription_deleted,
            "invoice.paid": self._handle_invoice_paid,
            "invoice.payment_failed": self._handle_invoice_payment_failed,
        }

    def construct_event(self, payload: bytes, signature: str | None) -> Any:
        if not self._webhook_secret:
            raise StripeWebhookNotConfiguredError
        if not signature:
            raise StripeWebhookSignatureError
        try:
            return self._processor.construct_webhook_event(payload, signature, self._webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            raise StripeWebhookSignatureError from exc

    async def handle_event(self, event: Any) -> str:
        event_id = field(event, "id")
        event_type = field(event, "type")
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info("stripe_webhook_ignored", event_id=event_id, event_type=event_type)
            return OUTCOME_IGNORED

        async with self._session_factory.begin() as session:
            claimed = await StripeWebhookEventsRepo.try_create_processing_slot(
                session,
                event_id=event_id,
                event_type=event_type,
            )
            if not claimed:
                claimed = await StripeWebhookEventsRepo.try_reclaim_failed_slot(
                    session,
                    event_id=event_id,
                )
            if not claimed:
                # Handler died mid-flight and left the slot in PROCESSING.
                claimed = await StripeWebhookEventsRepo.try_reclaim_stale_processing_slot(
                    session,
                    event_id=event_id,
                    processing_ttl_seconds=self._processing_ttl_seconds,
                )
                if claimed:
                    logger.warning(
                        "stripe_webhook_stale_slot_reclaimed",
                        event_id=event_id,
                        event_type=event_type,
                    )
        if not claimed:
            logger.info("stripe_webhook_duplicate", event_id=event_id, event_type=event_type)
            return OUTCOME_DUPLICATE

        try:
            await handler(field(field(event, "data"), "object"))
        except Exception:
            async with self._session_factory.begin() as session:
                await StripeWebhookEventsRepo.set_status(session, event_id=event_id, status="FAILED")
            logger.exception("stripe_webhook_failed", event_id=event_id, event_type=event_type)
            raise

        async with self._session_factory.begin() as session:
            await StripeWebhookEventsRepo.set_status(session, event_id=event_id, status="PROCESSED")
        logger.info("stripe_webhook_processed", event_id=event_id, event_type=event_type)
        return OUTCOME_PROCESSED

    async def _customer_email(self, customer: Any) -> str | None:
        if customer is None:
            return None
        if isinstance(customer, str):
            customer = await self._processor.retrieve_customer(customer)
        return customer_email_of(customer)

    async def _handle_checkout_completed(self, checkout_session: Any) -> None:
        if field(checkout_session, "mode") != "payment":
            return
        checkout_session_id = field(checkout_session, "id")
        line_items = await self._processor.list_checkout_session_line_items(checkout_session_id)
        if not line_items_contain_lifetime(line_items, self._catalog):
            return

        customer_id = object_id(field(checkout_session, "customer"))
        raw_email = field(checkout_session, "customer_email") or field(
            field(checkout_session, "customer_details"), "email"
        )
        customer_email = raw_email.strip().lower() if isinstance(raw_email, str) else None
        amount = int(field(checkout_session, "amount_total", 0))
        currency = field(checkout_session, "currency")
        payment_intent_id = object_id(field(checkout_session, "payment_intent"))

        async with self._session_factory.begin() as session:
            user_id = await resolve_user_id(session, customer_email)
            await SubscriptionsRepo.upsert(
                session,
                row=build_lifetime_subscription_upsert(
                    checkout_session_id=checkout_session_id,
                    customer_id=customer_id,
                    amount=amount,
                    currency=currency,
                    user_id=user_id,
                    customer_email=customer_email,
                ),
            )
            if payment_intent_id is not None:
                await PaymentsRepo.upsert(
                    session,
                    row=build_lifetime_payment_upsert(
                        payment_intent_id=payment_intent_id,
                        checkout_session_id=checkout_session_id,
                        customer_id=customer_id,
                        amount=amount,
                        currency=currency,
                        user_id=user_id,
                        customer_email=customer_email,
                    ),
                )

    async def _handle_subscription_changed(self, subscription: Any) -> None:
        if catalog_subscription_item(subscription, self._catalog) is None:
            logger.info(
                "stripe_webhook_subscription_outside_catalog",
                stripe_subscription_id=field(subscription, "id"),
            )
            return
        customer_email = await self._customer_email(field(subscription, "customer"))
        async with self._session_factory.begin() as session:
            user_id = await resolve_user_id(session, customer_email)
            await SubscriptionsRepo.upsert(
                session,
                row=build_subscription_upsert(
                    subscription,
                    catalog=self._catalog,
                    user_id=user_id,
                    customer_email=customer_email,
                ),
            )

    async def _handle_subscription_deleted(self, subscription: Any) -> None:
        canceled_at = from_timestamp(field(subscription, "canceled_at")) or datetime.now(timezone.utc)
        async with self._session_factory.begin() as session:
            await SubscriptionsRepo.set_status_by_external_id(
                session,
                stripe_subscription_id=field(subscription, "id"),
                status=SUBSCRIPTION_STATUS_CANCELED,
                canceled_at=canceled_at,
            )

    async def _handle_invoice_paid(self, invoice: Any) -> None:
        payment_intent_id = object_id(field(invoice, "payment_intent"))
        if payment_intent_id is None:
            logger.info("stripe_invoice_without_payment_intent", invoice_id=field(invoice, "id"))
            return
        customer_email = await self._customer_email(field(invoice, "customer"))
        async with self._session_factory.begin() as session:
            user_id = await resolve_user_id(session, customer_email)
            await PaymentsRepo.upsert(
                session,
                row=build_invoice_payment_upsert(
                    invoice,
                    payment_intent_id=payment_intent_id,
                    user_id=user_id,
                    customer_email=customer_email,
                ),
            )

    async def _handle_invoice_payment_failed(self, invoice: Any) -> None:
        subscription_id = _invoice_subscription_id(invoice)
        if subscription_id is None:
            return
        async with self._session_factory.begin() as session:
            await SubscriptionsRepo.set_status_by_external_id(
                session,
                stripe_subscription_id=subscription_id,
                status=SUBSCRIPTION_STATUS_PAST_DUE,
            )
