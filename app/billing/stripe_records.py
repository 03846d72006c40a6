from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from app.billing.catalog import ProductCatalog, product_of_price
from app.billing.constants import (
    DEFAULT_CURRENCY,
    GRANT_SOURCE_STRIPE_LIFETIME,
    GRANT_SOURCE_STRIPE_SUBSCRIPTION,
    PAYMENT_STATUS_SUCCEEDED,
    PAYMENT_TYPE_ONE_TIME,
    PAYMENT_TYPE_RECURRING,
    PLAN_LIFETIME,
    SUBSCRIPTION_STATUS_ACTIVE,
    lifetime_purchase_key,
)
from app.db.repo.billing_models import PaymentUpsert, SubscriptionUpsert


def field(obj: Any, key: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        value = obj.get(key, default)
    else:
        value = getattr(obj, key, default)
    return default if value is None else value


def from_timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def object_id(value: Any) -> str | None:
    """Return the id of a reference that may be a bare id or an expanded object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    raw_id = field(value, "id")
    return raw_id if isinstance(raw_id, str) else None


def customer_email_of(customer: Any) -> str | None:
    if customer is None or isinstance(customer, str):
        return None
    if field(customer, "deleted", False):
        return None
    email = field(customer, "email")
    return email.strip().lower() if isinstance(email, str) and email.strip() else None


def payment_intent_settled(payment_intent: Any) -> bool:
    """True for a succeeded payment whose charge has not been refunded."""
    if field(payment_intent, "status") != PAYMENT_STATUS_SUCCEEDED:
        return False
    # latest_charge is a bare id unless the listing expanded it.
    return not field(field(payment_intent, "latest_charge"), "refunded", False)


def subscription_items(subscription: Any) -> list[Any]:
    items = field(subscription, "items")
    return list(field(items, "data", []) or [])


def subscription_period(subscription: Any, item: Any | None = None) -> tuple[datetime | None, datetime | None]:
    # Newer API versions report the billing period on the item only.
    start = field(subscription, "current_period_start")
    end = field(subscription, "current_period_end")
    if item is not None:
        start = start if start is not None else field(item, "current_period_start")
        end = end if end is not None else field(item, "current_period_end")
    return from_timestamp(start), from_timestamp(end)


def find_premium_item(subscription: Any, catalog: ProductCatalog) -> Any | None:
    for item in subscription_items(subscription):
        if catalog.is_premium(product_of_price(field(item, "price"))):
            return item
    return None


def catalog_subscription_item(subscription: Any, catalog: ProductCatalog) -> Any | None:
    for item in subscription_items(subscription):
        if catalog.plan_for_product(product_of_price(field(item, "price"))) is not None:
            return item
    return None


def line_items_contain_lifetime(line_items: Iterable[Any], catalog: ProductCatalog) -> bool:
    return any(catalog.is_lifetime(product_of_price(field(item, "price"))) for item in line_items)


def build_subscription_upsert(
    subscription: Any,
    *,
    catalog: ProductCatalog,
    user_id: UUID | None,
    customer_email: str | None,
) -> SubscriptionUpsert | None:
    """Build the upsert row, or None when no item belongs to a catalog product."""
    item = catalog_subscription_item(subscription, catalog)
    if item is None:
        return None
    price = field(item, "price")
    plan_type = catalog.plan_for_product(product_of_price(price))
    period_start, period_end = subscription_period(subscription, item)
    return SubscriptionUpsert(
        stripe_subscription_id=field(subscription, "id"),
        grant_source=GRANT_SOURCE_STRIPE_SUBSCRIPTION,
        plan_type=plan_type,
        status=field(subscription, "status"),
        user_id=user_id,
        stripe_customer_id=object_id(field(subscription, "customer")),
        stripe_price_id=field(price, "id"),
        amount=int(field(price, "unit_amount", 0)),
        currency=field(subscription, "currency", DEFAULT_CURRENCY),
        current_period_start=period_start,
        current_period_end=period_end,
        cancel_at_period_end=bool(field(subscription, "cancel_at_period_end", False)),
        canceled_at=from_timestamp(field(subscription, "canceled_at")),
        customer_email=customer_email,
    )


def build_lifetime_subscription_upsert(
    *,
    checkout_session_id: str,
    customer_id: str | None,
    amount: int,
    currency: str | None,
    user_id: UUID | None,
    customer_email: str | None,
) -> SubscriptionUpsert:
    return SubscriptionUpsert(
        stripe_subscription_id=lifetime_purchase_key(checkout_session_id),
        grant_source=GRANT_SOURCE_STRIPE_LIFETIME,
        plan_type=PLAN_LIFETIME,
        status=SUBSCRIPTION_STATUS_ACTIVE,
        user_id=user_id,
        stripe_customer_id=customer_id,
        amount=amount,
        currency=currency or DEFAULT_CURRENCY,
        customer_email=customer_email,
    )


def build_lifetime_payment_upsert(
    *,
    payment_intent_id: str,
    checkout_session_id: str,
    customer_id: str | None,
    amount: int,
    currency: str | None,
    user_id: UUID | None,
    customer_email: str | None,
) -> PaymentUpsert:
    return PaymentUpsert(
        stripe_payment_intent_id=payment_intent_id,
        status=PAYMENT_STATUS_SUCCEEDED,
        payment_type=PAYMENT_TYPE_ONE_TIME,
        stripe_customer_id=customer_id,
        user_id=user_id,
        amount=amount,
        currency=currency or DEFAULT_CURRENCY,
        customer_email=customer_email,
        metadata={"session_id": checkout_session_id, "product": PLAN_LIFETIME},
    )


def build_invoice_payment_upsert(
    invoice: Any,
    *,
    payment_intent_id: str,
    user_id: UUID | None,
    customer_email: str | None,
) -> PaymentUpsert:
    return PaymentUpsert(
        stripe_payment_intent_id=payment_intent_id,
        status=PAYMENT_STATUS_SUCCEEDED,
        payment_type=PAYMENT_TYPE_RECURRING,
        stripe_customer_id=object_id(field(invoice, "customer")),
        user_id=user_id,
        amount=int(field(invoice, "amount_paid", 0)),
        currency=field(invoice, "currency", DEFAULT_CURRENCY),
        customer_email=customer_email,
        metadata={"invoice_id": field(invoice, "id")},
    )
