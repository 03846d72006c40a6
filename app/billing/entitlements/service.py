from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.catalog import ProductCatalog, product_of_price
from app.billing.constants import PLAN_LIFETIME, PLAN_NONE, PLAN_PREMIUM
from app.billing.entitlements.types import (
    MARKER_UNAUTHENTICATED,
    SOURCE_LIVE_PURCHASE,
    SOURCE_LIVE_SUBSCRIPTION,
    SOURCE_LOCAL_GRANT,
    EntitlementVerdict,
)
from app.billing.stripe_records import (
    field,
    find_premium_item,
    payment_intent_settled,
    subscription_period,
)
from app.db.repo.subscriptions_repo import SubscriptionsRepo
from app.services.stripe_gateway import PaymentProcessorClient
from app.services.user_auth import AuthenticatedUser

logger = structlog.get_logger(__name__)


class EntitlementResolver:
    """Computes the current plan of a user.

    Sources are checked in a fixed order and the first hit wins: local
    admin/promo grant, live processor subscription, live one-time purchase.
    """

    def __init__(self, *, processor: PaymentProcessorClient, catalog: ProductCatalog) -> None:
        self._processor = processor
        self._catalog = catalog

    async def resolve(
        self,
        session: AsyncSession,
        *,
        user: AuthenticatedUser | None,
        now_utc: datetime | None = None,
    ) -> EntitlementVerdict:
        if user is None:
            return EntitlementVerdict(plan=PLAN_NONE, error=MARKER_UNAUTHENTICATED)

        now_utc = now_utc or datetime.now(timezone.utc)

        local_grant = await SubscriptionsRepo.get_active_local_grant(
            session,
            user_id=user.user_id,
            now_utc=now_utc,
        )
        if local_grant is not None:
            return self._log_verdict(
                user,
                EntitlementVerdict(
                    plan=local_grant.plan_type,
                    expires_at=local_grant.current_period_end,
                    source=SOURCE_LOCAL_GRANT,
                ),
            )

        customer = await self._processor.find_customer_by_email(user.email)
        if customer is None:
            return self._log_verdict(user, EntitlementVerdict(plan=PLAN_NONE))

        customer_id = field(customer, "id")
        verdict = await self._resolve_live_subscription(customer_id)
        if verdict is None:
            verdict = await self._resolve_live_purchase(customer_id)
        return self._log_verdict(user, verdict or EntitlementVerdict(plan=PLAN_NONE))

    async def _resolve_live_subscription(self, customer_id: str) -> EntitlementVerdict | None:
        for subscription in await self._processor.list_active_subscriptions(customer_id):
            item = find_premium_item(subscription, self._catalog)
            if item is None:
                continue
            _, period_end = subscription_period(subscription, item)
            return EntitlementVerdict(
                plan=PLAN_PREMIUM,
                expires_at=period_end,
                source=SOURCE_LIVE_SUBSCRIPTION,
            )
        return None

    async def _resolve_live_purchase(self, customer_id: str) -> EntitlementVerdict | None:
        payment_intents = await self._processor.list_payment_intents(customer_id)
        for payment_intent in payment_intents:
            if not payment_intent_settled(payment_intent):
                continue
            if await self._payment_bought_lifetime(field(payment_intent, "id")):
                return EntitlementVerdict(plan=PLAN_LIFETIME, source=SOURCE_LIVE_PURCHASE)
        return None

    async def _payment_bought_lifetime(self, payment_intent_id: str) -> bool:
        sessions = await self._processor.list_checkout_sessions_for_payment_intent(
            payment_intent_id
        )
        for checkout_session in sessions:
            line_items: list[Any] = await self._processor.list_checkout_session_line_items(
                field(checkout_session, "id")
            )
            for item in line_items:
                if self._catalog.is_lifetime(product_of_price(field(item, "price"))):
                    return True
        return False

    @staticmethod
    def _log_verdict(user: AuthenticatedUser, verdict: EntitlementVerdict) -> EntitlementVerdict:
        logger.info(
            "entitlement_resolved",
            user_id=str(user.user_id),
            plan=verdict.plan,
            source=verdict.source,
            entitled=verdict.is_entitled,
        )
        return verdict
