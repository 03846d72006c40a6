from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select

from app.billing.catalog import ProductCatalog
from app.billing.sync.service import BillingSyncService
from app.db.models.billing_sync_runs import BillingSyncRun
from app.db.models.payments import Payment
from app.db.repo.billing_sync_runs_repo import BillingSyncRunsRepo
from app.db.session import SessionLocal
from tests.billing.billing_fakes import (
    LIFETIME_PRODUCT_ID,
    PREMIUM_PRODUCT_ID,
    FakeProcessor,
    price,
    subscription,
)
from tests.integration.billing_fixtures import (
    count_subscriptions,
    create_user,
    get_payment,
    get_subscription,
)

CATALOG = ProductCatalog(premium_product_id=PREMIUM_PRODUCT_ID, lifetime_product_id=LIFETIME_PRODUCT_ID)


def _processor(*, subscription_email: str = "ana@example.com") -> FakeProcessor:
    return FakeProcessor(
        customers={"ana@example.com": {"id": "cus_1", "email": "ana@example.com"}},
        all_subscriptions=[
            subscription(customer={"id": "cus_1", "email": subscription_email}),
        ],
        payment_intents=[
            {"id": "pi_1", "status": "succeeded", "customer": "cus_1", "amount": 4900, "currency": "eur"},
        ],
        checkout_sessions={"pi_1": [{"id": "cs_1"}]},
        line_items={"cs_1": [{"price": price(LIFETIME_PRODUCT_ID)}]},
    )


async def _count(model) -> int:
    async with SessionLocal() as session:
        return int(await session.scalar(select(func.count(model.id))) or 0)


@pytest.mark.asyncio
async def test_sync_links_records_to_user_and_is_idempotent() -> None:
    owner = await create_user(email="owner@example.com", role="owner")
    user = await create_user(email="ana@example.com")
    service = BillingSyncService(processor=_processor(), catalog=CATALOG, session_factory=SessionLocal)

    first = await service.run(caller=owner)
    second = await service.run(caller=owner)

    assert first.status == "OK"
    assert (first.synced_subscriptions, first.synced_payments) == (1, 1)
    assert (second.synced_subscriptions, second.synced_payments) == (1, 1)
    assert await count_subscriptions() == 2
    assert await _count(Payment) == 1
    assert await _count(BillingSyncRun) == 2

    premium = await get_subscription("sub_1")
    lifetime = await get_subscription("lifetime_cs_1")
    assert premium is not None and lifetime is not None
    assert premium.user_id == user.user_id
    assert premium.plan_type == "premium"
    assert lifetime.user_id == user.user_id
    assert lifetime.grant_source == "stripe_lifetime"

    payment = await get_payment("pi_1")
    assert payment is not None
    assert payment.user_id == user.user_id
    assert payment.amount == 4900

    async with SessionLocal() as session:
        latest = await BillingSyncRunsRepo.get_latest(session)
    assert latest is not None
    assert latest.triggered_by_user_id == owner.user_id


@pytest.mark.asyncio
async def test_resync_with_unknown_email_keeps_existing_user_link() -> None:
    owner = await create_user(email="owner@example.com", role="owner")
    user = await create_user(email="ana@example.com")

    await BillingSyncService(processor=_processor(), catalog=CATALOG, session_factory=SessionLocal).run(
        caller=owner
    )
    await BillingSyncService(
        processor=_processor(subscription_email="renamed@example.com"),
        catalog=CATALOG,
        session_factory=SessionLocal,
    ).run(caller=owner)

    premium = await get_subscription("sub_1")
    assert premium is not None
    assert premium.user_id == user.user_id
    assert premium.customer_email == "renamed@example.com"


@pytest.mark.asyncio
async def test_resync_updates_canceled_subscription_in_place() -> None:
    owner = await create_user(email="owner@example.com", role="owner")
    user = await create_user(email="ana@example.com")
    customer = {"id": "cus_1", "email": "ana@example.com"}

    await BillingSyncService(
        processor=FakeProcessor(all_subscriptions=[subscription(customer=customer)]),
        catalog=CATALOG,
        session_factory=SessionLocal,
    ).run(caller=owner)
    before = await count_subscriptions()

    result = await BillingSyncService(
        processor=FakeProcessor(
            all_subscriptions=[
                subscription(customer=customer, status="canceled", canceled_at=1_790_000_000),
            ],
        ),
        catalog=CATALOG,
        session_factory=SessionLocal,
    ).run(caller=owner)

    assert result.synced_subscriptions == 1
    assert await count_subscriptions() == before
    premium = await get_subscription("sub_1")
    assert premium is not None
    assert premium.status == "canceled"
    assert premium.canceled_at == datetime.fromtimestamp(1_790_000_000, tz=timezone.utc)
    assert premium.user_id == user.user_id
