"""
Order pricing: subtotal, shipping, tax and total.

The policy is flat: free shipping at or above the threshold, a flat fee
below it, and one tax rate for the whole order. Values come from
``settings.SHOP_PRICING`` so deployments can change them without code.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Tuple

from django.conf import settings

CENT = Decimal("0.01")

DEFAULT_POLICY = {
    "FREE_SHIPPING_THRESHOLD": "1000",
    "FLAT_SHIPPING_FEE": "50",
    "TAX_RATE": "0.18",
}


def money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Processor amounts are integers in the currency's smallest unit."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class PricingPolicy:
    free_shipping_threshold: Decimal
    flat_shipping_fee: Decimal
    tax_rate: Decimal

    @classmethod
    def from_settings(cls) -> "PricingPolicy":
        conf = {**DEFAULT_POLICY, **getattr(settings, "SHOP_PRICING", {})}
        return cls(
            free_shipping_threshold=Decimal(conf["FREE_SHIPPING_THRESHOLD"]),
            flat_shipping_fee=Decimal(conf["FLAT_SHIPPING_FEE"]),
            tax_rate=Decimal(conf["TAX_RATE"]),
        )

    def shipping_for(self, subtotal: Decimal) -> Decimal:
        if subtotal >= self.free_shipping_threshold:
            return money(0)
        return money(self.flat_shipping_fee)

    def tax_for(self, subtotal: Decimal) -> Decimal:
        return money(subtotal * self.tax_rate)


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    shipping_cost: Decimal
    tax: Decimal
    total: Decimal


def quote(lines: Iterable[Tuple[Decimal, int]], policy: PricingPolicy = None) -> OrderTotals:
    """lines = [(unit_price, quantity), ...]"""
    policy = policy or PricingPolicy.from_settings()
    subtotal = money(sum((Decimal(price) * qty for price, qty in lines), Decimal("0")))
    shipping_cost = policy.shipping_for(subtotal)
    tax = policy.tax_for(subtotal)
    return OrderTotals(
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        tax=tax,
        total=subtotal + shipping_cost + tax,
    )
