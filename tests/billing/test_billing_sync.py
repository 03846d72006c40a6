from __future__ import annotations

from types import SimpleNamespace

import pytest

from app.billing.catalog import ProductCatalog
from app.billing.sync import service as sync_service
from app.billing.sync.errors import BillingSyncForbiddenError
from app.billing.sync.service import BillingSyncService
from app.services.stripe_gateway import PaymentProcessorUnavailableError
from tests.billing.billing_fakes import (
    LIFETIME_PRODUCT_ID,
    OWNER_ID,
    PREMIUM_PRODUCT_ID,
    USER_ID,
    FakeProcessor,
    FakeSessionFactory,
    make_user,
    price,
    subscription,
)

CATALOG = ProductCatalog(premium_product_id=PREMIUM_PRODUCT_ID, lifetime_product_id=LIFETIME_PRODUCT_ID)
OWNER = make_user(user_id=OWNER_ID, email="owner@example.com", role="owner")


class _SyncStore:
    def __init__(self, monkeypatch, *, users_by_email: dict[str, object] | None = None) -> None:
        self.users_by_email = users_by_email or {}
        self.subscriptions: dict[str, object] = {}
        self.payments: dict[str, object] = {}
        self.runs: list[dict[str, object]] = []
        self.failing_subscription_ids: set[str] = set()

        async def _get_by_email(session, email: str):
            return self.users_by_email.get(email)

        async def _upsert_subscription(session, *, row):
            if row.stripe_subscription_id in self.failing_subscription_ids:
                raise RuntimeError("constraint violated")
            self.subscriptions[row.stripe_subscription_id] = row
            return SimpleNamespace(id=len(self.subscriptions))

        async def _upsert_payment(session, *, row):
            self.payments[row.stripe_payment_intent_id] = row
            return len(self.payments)

        async def _create_run(session, **kwargs):
            self.runs.append(kwargs)
            return SimpleNamespace(id=len(self.runs))

        monkeypatch.setattr(sync_service.UsersRepo, "get_by_email", _get_by_email)
        monkeypatch.setattr(sync_service.SubscriptionsRepo, "upsert", _upsert_subscription)
        monkeypatch.setattr(sync_service.PaymentsRepo, "upsert", _upsert_payment)
        monkeypatch.setattr(sync_service.BillingSyncRunsRepo, "create", _create_run)


def _service(processor: FakeProcessor, factory: FakeSessionFactory) -> BillingSyncService:
    return BillingSyncService(processor=processor, catalog=CATALOG, session_factory=factory)


@pytest.mark.asyncio
@pytest.mark.parametrize("caller", [None, make_user(role="user"), make_user(role="admin")])
async def test_non_owner_is_rejected_before_any_processor_call(monkeypatch, caller) -> None:
    store = _SyncStore(monkeypatch)
    processor = FakeProcessor(all_subscriptions=[subscription()])
    factory = FakeSessionFactory()

    with pytest.raises(BillingSyncForbiddenError):
        await _service(processor, factory).run(caller=caller)

    assert processor.total_calls == 0
    assert factory.opened == 0
    assert store.runs == []


@pytest.mark.asyncio
async def test_sync_links_subscription_and_lifetime_purchase_to_known_user(monkeypatch) -> None:
    store = _SyncStore(
        monkeypatch,
        users_by_email={"ana@example.com": SimpleNamespace(id=USER_ID)},
    )
    processor = FakeProcessor(
        customers={"ana@example.com": {"id": "cus_1", "email": "ana@example.com"}},
        all_subscriptions=[
            subscription(customer={"id": "cus_1", "email": "Ana@Example.com"}),
        ],
        payment_intents=[
            {"id": "pi_1", "status": "succeeded", "customer": "cus_1", "amount": 4900, "currency": "eur"},
            {"id": "pi_2", "status": "canceled", "customer": "cus_1", "amount": 4900, "currency": "eur"},
        ],
        checkout_sessions={"pi_1": [{"id": "cs_1"}]},
        line_items={"cs_1": [{"price": price(LIFETIME_PRODUCT_ID)}]},
    )
    factory = FakeSessionFactory()

    result = await _service(processor, factory).run(caller=OWNER)

    assert result.status == "OK"
    assert result.synced_subscriptions == 1
    assert result.synced_payments == 1
    assert result.skipped_records == 0
    assert result.run_id == 1

    synced_subscription = store.subscriptions["sub_1"]
    assert synced_subscription.user_id == USER_ID
    assert synced_subscription.customer_email == "ana@example.com"

    lifetime = store.subscriptions["lifetime_cs_1"]
    assert lifetime.plan_type == "lifetime"
    assert lifetime.user_id == USER_ID
    assert lifetime.amount == 4900

    payment = store.payments["pi_1"]
    assert payment.payment_type == "one_time"
    assert payment.metadata == {"session_id": "cs_1", "product": "lifetime"}
    assert "pi_2" not in store.payments
    assert processor.calls["list_checkout_sessions_for_payment_intent"] == 1

    assert store.runs[0]["status"] == "OK"
    assert store.runs[0]["triggered_by_user_id"] == OWNER_ID
    assert factory.committed == 3


@pytest.mark.asyncio
async def test_unknown_email_keeps_subscription_unlinked(monkeypatch) -> None:
    store = _SyncStore(monkeypatch)
    processor = FakeProcessor(
        all_subscriptions=[subscription(customer={"id": "cus_9", "email": "stranger@example.com"})],
    )

    result = await _service(processor, FakeSessionFactory()).run(caller=OWNER)

    assert result.synced_subscriptions == 1
    assert store.subscriptions["sub_1"].user_id is None
    assert store.subscriptions["sub_1"].customer_email == "stranger@example.com"


@pytest.mark.asyncio
async def test_non_lifetime_checkout_is_not_counted(monkeypatch) -> None:
    store = _SyncStore(monkeypatch)
    processor = FakeProcessor(
        payment_intents=[{"id": "pi_1", "status": "succeeded", "customer": "cus_1", "amount": 999}],
        checkout_sessions={"pi_1": [{"id": "cs_1"}]},
        line_items={"cs_1": [{"price": price(PREMIUM_PRODUCT_ID)}]},
    )

    result = await _service(processor, FakeSessionFactory()).run(caller=OWNER)

    assert result.synced_payments == 0
    assert store.payments == {}
    assert store.subscriptions == {}


@pytest.mark.asyncio
async def test_refunded_lifetime_purchase_is_not_synced(monkeypatch) -> None:
    store = _SyncStore(monkeypatch)
    processor = FakeProcessor(
        payment_intents=[
            {
                "id": "pi_1",
                "status": "succeeded",
                "customer": "cus_1",
                "amount": 4900,
                "latest_charge": {"id": "ch_1", "refunded": True},
            }
        ],
        checkout_sessions={"pi_1": [{"id": "cs_1"}]},
        line_items={"cs_1": [{"price": price(LIFETIME_PRODUCT_ID)}]},
    )

    result = await _service(processor, FakeSessionFactory()).run(caller=OWNER)

    assert result.synced_payments == 0
    assert store.payments == {}
    assert processor.calls["list_checkout_sessions_for_payment_intent"] == 0


@pytest.mark.asyncio
async def test_subscription_outside_catalog_is_left_alone(monkeypatch) -> None:
    store = _SyncStore(monkeypatch)
    processor = FakeProcessor(
        all_subscriptions=[
            subscription(subscription_id="sub_other", customer="cus_2", product="prod_other"),
            subscription(customer={"id": "cus_1", "email": "a@example.com"}),
        ],
    )
    factory = FakeSessionFactory()

    result = await _service(processor, factory).run(caller=OWNER)

    assert result.status == "OK"
    assert result.synced_subscriptions == 1
    assert result.skipped_records == 0
    assert set(store.subscriptions) == {"sub_1"}
    assert processor.calls["retrieve_customer"] == 0


@pytest.mark.asyncio
async def test_failing_record_is_skipped_and_run_is_partial(monkeypatch) -> None:
    store = _SyncStore(monkeypatch)
    store.failing_subscription_ids.add("sub_bad")
    processor = FakeProcessor(
        all_subscriptions=[
            subscription(subscription_id="sub_bad", customer={"id": "cus_1", "email": "a@example.com"}),
            subscription(subscription_id="sub_ok", customer={"id": "cus_2", "email": "b@example.com"}),
        ],
    )
    factory = FakeSessionFactory()

    result = await _service(processor, factory).run(caller=OWNER)

    assert result.status == "PARTIAL"
    assert result.synced_subscriptions == 1
    assert result.skipped_records == 1
    assert set(store.subscriptions) == {"sub_ok"}
    assert factory.rolled_back == 1
    assert store.runs[0]["status"] == "PARTIAL"
    assert result.as_dict()["skipped_records"] == 1


@pytest.mark.asyncio
async def test_rerun_is_idempotent_on_processor_keys(monkeypatch) -> None:
    store = _SyncStore(monkeypatch)
    processor = FakeProcessor(
        all_subscriptions=[subscription(customer={"id": "cus_1", "email": "a@example.com"})],
        payment_intents=[{"id": "pi_1", "status": "succeeded", "customer": "cus_1", "amount": 4900}],
        checkout_sessions={"pi_1": [{"id": "cs_1"}]},
        line_items={"cs_1": [{"price": price(LIFETIME_PRODUCT_ID)}]},
    )
    service = _service(processor, FakeSessionFactory())

    await service.run(caller=OWNER)
    await service.run(caller=OWNER)

    assert set(store.subscriptions) == {"sub_1", "lifetime_cs_1"}
    assert set(store.payments) == {"pi_1"}
    assert len(store.runs) == 2


@pytest.mark.asyncio
async def test_bare_customer_id_is_expanded_through_processor(monkeypatch) -> None:
    store = _SyncStore(monkeypatch)
    processor = FakeProcessor(
        customers={"ana@example.com": {"id": "cus_1", "email": "ana@example.com"}},
        all_subscriptions=[subscription(customer="cus_1")],
    )

    await _service(processor, FakeSessionFactory()).run(caller=OWNER)

    assert processor.calls["retrieve_customer"] == 1
    assert store.subscriptions["sub_1"].customer_email == "ana@example.com"


@pytest.mark.asyncio
async def test_listing_failure_records_failed_run_and_reraises(monkeypatch) -> None:
    store = _SyncStore(monkeypatch)
    processor = FakeProcessor(
        errors={"iter_all_subscriptions": PaymentProcessorUnavailableError("subscriptions.list_all")},
    )

    with pytest.raises(PaymentProcessorUnavailableError):
        await _service(processor, FakeSessionFactory()).run(caller=OWNER)

    assert [run["status"] for run in store.runs] == ["FAILED"]
