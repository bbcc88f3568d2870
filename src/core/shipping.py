"""Shipping methods configuration.

All costs are in minor currency units (5000 = 50.00 THB).
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ShippingMethod:
    """A flat-rate shipping option."""

    id: str
    name: str
    description: str
    cost: int
    estimated_days: int
    carrier: str | None = None


SHIPPING_METHODS: tuple[ShippingMethod, ...] = (
    ShippingMethod(
        id="standard",
        name="Standard Shipping",
        description="Delivery within 3-5 business days",
        cost=5000,
        estimated_days=5,
        carrier="Thailand Post",
    ),
    ShippingMethod(
        id="express",
        name="Express Shipping",
        description="Delivery within 2-3 business days",
        cost=10000,
        estimated_days=3,
        carrier="Kerry Express",
    ),
    ShippingMethod(
        id="next_day",
        name="Next Day Delivery",
        description="Delivery by next business day",
        cost=15000,
        estimated_days=1,
        carrier="Flash Express",
    ),
)


def get_shipping_method(method_id: str) -> ShippingMethod | None:
    """Get shipping method by ID."""
    for method in SHIPPING_METHODS:
        if method.id == method_id:
            return method
    return None


def get_all_shipping_methods() -> list[ShippingMethod]:
    """Get all available shipping methods."""
    return list(SHIPPING_METHODS)
