from __future__ import annotations

from dataclasses import dataclass

CHECKOUT_MODE_SUBSCRIPTION = "subscription"
CHECKOUT_MODE_PAYMENT = "payment"
CHECKOUT_MODES = (CHECKOUT_MODE_SUBSCRIPTION, CHECKOUT_MODE_PAYMENT)


@dataclass(frozen=True, slots=True)
class AppliedDiscount:
    kind: str
    processor_id: str

    def as_session_discount(self) -> dict[str, str]:
        return {self.kind: self.processor_id}


@dataclass(frozen=True, slots=True)
class CheckoutSessionResult:
    url: str
    session_id: str
    applied_discount: AppliedDiscount | None = None
