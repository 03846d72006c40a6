from __future__ import annotations

PLAN_PREMIUM = "premium"
PLAN_LIFETIME = "lifetime"
PLAN_NONE = "none"
PAID_PLAN_TYPES = (PLAN_PREMIUM, PLAN_LIFETIME)

GRANT_SOURCE_STRIPE_SUBSCRIPTION = "stripe_subscription"
GRANT_SOURCE_STRIPE_LIFETIME = "stripe_lifetime"
GRANT_SOURCE_ADMIN = "admin_grant"
GRANT_SOURCE_PROMO = "promo_grant"
LOCAL_GRANT_SOURCES = (GRANT_SOURCE_ADMIN, GRANT_SOURCE_PROMO)

SUBSCRIPTION_STATUS_ACTIVE = "active"
SUBSCRIPTION_STATUS_CANCELED = "canceled"
SUBSCRIPTION_STATUS_PAST_DUE = "past_due"

PAYMENT_TYPE_ONE_TIME = "one_time"
PAYMENT_TYPE_RECURRING = "recurring"
PAYMENT_STATUS_SUCCEEDED = "succeeded"
PAYMENT_STATUS_REFUNDED = "refunded"
REFUND_REASON_CUSTOMER = "requested_by_customer"

DEFAULT_CURRENCY = "eur"

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLE_OWNER = "owner"
GRANT_ADMIN_ROLES = (ROLE_ADMIN, ROLE_OWNER)


def local_grant_key(user_id: object) -> str:
    return f"local_grant_{user_id}"


def lifetime_purchase_key(checkout_session_id: str) -> str:
    return f"lifetime_{checkout_session_id}"


def promo_customer_marker(*, code: str, user_id: object) -> str:
    return f"promo_{code}_{user_id}"


def admin_customer_marker(user_id: object) -> str:
    return f"admin_granted_{user_id}"
