from __future__ import annotations

from dataclasses import dataclass

from app.billing.admin.refunds import RefundService
from app.billing.admin.stripe_coupons import StripeCouponAdminService
from app.billing.catalog import ProductCatalog
from app.billing.checkout.service import CheckoutService
from app.billing.entitlements.service import EntitlementResolver
from app.billing.sync.service import BillingSyncService
from app.billing.webhooks.service import StripeWebhookService
from app.core.config import Settings
from app.services.stripe_gateway import PaymentProcessorClient


@dataclass(slots=True)
class BillingServices:
    catalog: ProductCatalog
    processor: PaymentProcessorClient
    entitlement_resolver: EntitlementResolver
    checkout: CheckoutService
    billing_sync: BillingSyncService
    webhooks: StripeWebhookService
    coupons: StripeCouponAdminService
    refunds: RefundService


def build_billing_services(settings: Settings) -> BillingServices:
    catalog = ProductCatalog.from_settings(settings)
    processor = PaymentProcessorClient.from_settings(settings)
    return BillingServices(
        catalog=catalog,
        processor=processor,
        entitlement_resolver=EntitlementResolver(processor=processor, catalog=catalog),
        checkout=CheckoutService(processor=processor),
        billing_sync=BillingSyncService(processor=processor, catalog=catalog),
        webhooks=StripeWebhookService(
            processor=processor,
            catalog=catalog,
            webhook_secret=settings.stripe_webhook_secret,
            processing_ttl_seconds=settings.stripe_webhook_processing_ttl_seconds,
        ),
        coupons=StripeCouponAdminService(processor=processor),
        refunds=RefundService(processor=processor),
    )
