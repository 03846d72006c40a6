from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.billing.catalog import ProductCatalog
from app.billing.constants import ROLE_OWNER
from app.billing.stripe_records import (
    build_lifetime_payment_upsert,
    build_lifetime_subscription_upsert,
    build_subscription_upsert,
    catalog_subscription_item,
    customer_email_of,
    field,
    line_items_contain_lifetime,
    object_id,
    payment_intent_settled,
)
from app.billing.sync.errors import BillingSyncForbiddenError
from app.billing.sync.types import (
    SYNC_STATUS_FAILED,
    SYNC_STATUS_OK,
    SYNC_STATUS_PARTIAL,
    BillingSyncResult,
)
from app.db.repo.billing_sync_runs_repo import BillingSyncRunsRepo
from app.db.repo.payments_repo import PaymentsRepo
from app.db.repo.subscriptions_repo import SubscriptionsRepo
from app.db.repo.users_repo import UsersRepo
from app.db.session import SessionLocal
from app.services.stripe_gateway import PaymentProcessorClient
from app.services.user_auth import AuthenticatedUser

logger = structlog.get_logger(__name__)


async def resolve_user_id(session: AsyncSession, email: str | None) -> UUID | None:
    if not email:
        return None
    user = await UsersRepo.get_by_email(session, email)
    return user.id if user is not None else None


class BillingSyncService:
    """Copies processor subscriptions and lifetime purchases into the local store.

    Each record is written in its own transaction so one bad record only
    costs that record. Re-running is safe: rows are keyed by processor ids.
    """

    def __init__(
        self,
        *,
        processor: PaymentProcessorClient,
        catalog: ProductCatalog,
        session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
    ) -> None:
        self._processor = processor
        self._catalog = catalog
        self._session_factory = session_factory

    async def run(self, *, caller: AuthenticatedUser | None) -> BillingSyncResult:
        if caller is None or caller.role != ROLE_OWNER:
            raise BillingSyncForbiddenError

        started_at = datetime.now(timezone.utc)
        summary = {"synced_subscriptions": 0, "synced_payments": 0, "skipped_records": 0}
        logger.info("billing_sync_started", triggered_by_user_id=str(caller.user_id))

        try:
            subscriptions = await self._processor.iter_all_subscriptions()
            for subscription in subscriptions:
                try:
                    synced = await self._sync_subscription(subscription)
                except Exception:
                    summary["skipped_records"] += 1
                    logger.exception(
                        "billing_sync_subscription_failed",
                        stripe_subscription_id=field(subscription, "id"),
                    )
                    continue
                if synced:
                    summary["synced_subscriptions"] += 1

            payment_intents = await self._processor.list_payment_intents()
            for payment_intent in payment_intents:
                if not payment_intent_settled(payment_intent):
                    continue
                try:
                    synced = await self._sync_lifetime_purchase(payment_intent)
                except Exception:
                    summary["skipped_records"] += 1
                    logger.exception(
                        "billing_sync_payment_failed",
                        stripe_payment_intent_id=field(payment_intent, "id"),
                    )
                    continue
                summary["synced_payments"] += synced
        except Exception:
            await self._record_run(
                caller=caller,
                started_at=started_at,
                status=SYNC_STATUS_FAILED,
                summary=summary,
            )
            logger.exception("billing_sync_aborted", **summary)
            raise

        status = SYNC_STATUS_PARTIAL if summary["skipped_records"] > 0 else SYNC_STATUS_OK
        run_id = await self._record_run(
            caller=caller,
            started_at=started_at,
            status=status,
            summary=summary,
        )
        logger.info("billing_sync_finished", run_id=run_id, status=status, **summary)
        return BillingSyncResult(run_id=run_id, status=status, **summary)

    async def _customer_email(self, customer: Any) -> str | None:
        if customer is None:
            return None
        if isinstance(customer, str):
            customer = await self._processor.retrieve_customer(customer)
        return customer_email_of(customer)

    async def _sync_subscription(self, subscription: Any) -> bool:
        if catalog_subscription_item(subscription, self._catalog) is None:
            logger.info(
                "billing_sync_subscription_outside_catalog",
                stripe_subscription_id=field(subscription, "id"),
            )
            return False
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
        return True

    async def _sync_lifetime_purchase(self, payment_intent: Any) -> int:
        payment_intent_id = field(payment_intent, "id")
        checkout_sessions = await self._processor.list_checkout_sessions_for_payment_intent(
            payment_intent_id
        )
        synced = 0
        for checkout_session in checkout_sessions:
            checkout_session_id = field(checkout_session, "id")
            line_items = await self._processor.list_checkout_session_line_items(
                checkout_session_id
            )
            if not line_items_contain_lifetime(line_items, self._catalog):
                continue

            customer_id = object_id(field(payment_intent, "customer"))
            customer_email = await self._customer_email(customer_id)
            amount = int(field(payment_intent, "amount", 0))
            currency = field(payment_intent, "currency")
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
            synced += 1
        return synced

    async def _record_run(
        self,
        *,
        caller: AuthenticatedUser,
        started_at: datetime,
        status: str,
        summary: dict[str, int],
    ) -> int:
        async with self._session_factory.begin() as session:
            run = await BillingSyncRunsRepo.create(
                session,
                triggered_by_user_id=caller.user_id,
                started_at=started_at,
                finished_at=datetime.now(timezone.utc),
                status=status,
                **summary,
            )
            return run.id
