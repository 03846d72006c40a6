class StripeWebhookError(Exception):
    pass


class StripeWebhookNotConfiguredError(StripeWebhookError):
    pass


class StripeWebhookSignatureError(StripeWebhookError):
    pass
