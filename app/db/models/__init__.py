from app.db.models.base import Base
from app.db.models.billing_sync_runs import BillingSyncRun
from app.db.models.payments import Payment
from app.db.models.promo_codes import PromoCode
from app.db.models.promo_redemptions import PromoRedemption
from app.db.models.stripe_webhook_events import StripeWebhookEvent
from app.db.models.subscriptions import Subscription
from app.db.models.users import User

__all__ = [
    "Base",
    "BillingSyncRun",
    "Payment",
    "PromoCode",
    "PromoRedemption",
    "StripeWebhookEvent",
    "Subscription",
    "User",
]
