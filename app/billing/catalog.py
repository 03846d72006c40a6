from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from app.billing.constants import PLAN_LIFETIME, PLAN_PREMIUM
from app.core.config import Settings


def product_id_of(product: Any) -> str | None:
    """Return the product id from a bare id or an expanded product object."""
    if product is None:
        return None
    if isinstance(product, str):
        return product
    if isinstance(product, Mapping):
        raw_id = product.get("id")
        return raw_id if isinstance(raw_id, str) else None
    raw_id = getattr(product, "id", None)
    return raw_id if isinstance(raw_id, str) else None


def product_of_price(price: Any) -> str | None:
    if price is None:
        return None
    if isinstance(price, Mapping):
        return product_id_of(price.get("product"))
    return product_id_of(getattr(price, "product", None))


@dataclass(frozen=True, slots=True)
class ProductCatalog:
    premium_product_id: str
    lifetime_product_id: str

    @classmethod
    def from_settings(cls, settings: Settings) -> ProductCatalog:
        return cls(
            premium_product_id=settings.stripe_premium_product_id,
            lifetime_product_id=settings.stripe_lifetime_product_id,
        )

    def is_premium(self, product: Any) -> bool:
        return product_id_of(product) == self.premium_product_id

    def is_lifetime(self, product: Any) -> bool:
        return product_id_of(product) == self.lifetime_product_id

    def plan_for_product(self, product: Any) -> str | None:
        product_id = product_id_of(product)
        if product_id is None:
            return None
        if product_id == self.lifetime_product_id:
            return PLAN_LIFETIME
        if product_id == self.premium_product_id:
            return PLAN_PREMIUM
        return None
