from app.db.repo.billing_sync_runs_repo import BillingSyncRunsRepo
from app.db.repo.payments_repo import PaymentsRepo
from app.db.repo.promo_repo import PromoRepo
from app.db.repo.stripe_webhook_events_repo import StripeWebhookEventsRepo
from app.db.repo.subscriptions_repo import SubscriptionsRepo
from app.db.repo.users_repo import UsersRepo

__all__ = [
    "BillingSyncRunsRepo",
    "PaymentsRepo",
    "PromoRepo",
    "StripeWebhookEventsRepo",
    "SubscriptionsRepo",
    "UsersRepo",
]
