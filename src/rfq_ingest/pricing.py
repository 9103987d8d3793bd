"""Markup divisor applied to raw supplier prices."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace

from rfq_ingest.models import ExtractedItem

DEFAULT_DIVISOR = 0.9


def adjust_price(original: float, divisor: float) -> float:
    """Return ``original / divisor``; a non-positive divisor counts as 1."""
    if divisor <= 0:
        divisor = 1.0
    return original / divisor


@dataclass(frozen=True)
class PricingConfig:
    divisor: float = DEFAULT_DIVISOR
    overrides: Mapping[str, float] = field(default_factory=dict)

    def divisor_for(self, category: str | None) -> float:
        if category is not None:
            for key, value in self.overrides.items():
                if key.strip().upper() == category.strip().upper():
                    return value
        return self.divisor


def apply_pricing(
    items: Iterable[ExtractedItem],
    config: PricingConfig,
    *,
    category_of: Callable[[ExtractedItem], str | None] | None = None,
) -> list[ExtractedItem]:
    """Recompute ``price``/``total`` of every item from its raw values.

    *category_of* maps an item to the category whose divisor applies; by
    default the item's tab name is used. Because only raw values are read,
    applying this repeatedly gives the same result.
    """
    adjusted: list[ExtractedItem] = []
    for item in items:
        category = category_of(item) if category_of is not None else item.tab
        divisor = config.divisor_for(category)
        adjusted.append(
            replace(
                item,
                price=adjust_price(item.raw_price, divisor),
                total=adjust_price(item.raw_total, divisor),
            )
        )
    return adjusted
