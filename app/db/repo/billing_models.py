from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True, slots=True)
class SubscriptionUpsert:
    stripe_subscription_id: str
    grant_source: str
    plan_type: str
    status: str
    user_id: UUID | None = None
    stripe_customer_id: str | None = None
    stripe_price_id: str | None = None
    amount: int = 0
    currency: str = "eur"
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    canceled_at: datetime | None = None
    customer_email: str | None = None


@dataclass(frozen=True, slots=True)
class PaymentUpsert:
    stripe_payment_intent_id: str
    status: str
    payment_type: str
    stripe_customer_id: str | None = None
    user_id: UUID | None = None
    amount: int = 0
    currency: str = "eur"
    customer_email: str | None = None
    metadata: dict[str, object] = field(default_factory=dict)
