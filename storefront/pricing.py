"""Unit price resolution for products and variant mappings."""
import math
from typing import Any, Optional


def is_valid_price(value: Any) -> bool:
    """A price is valid when it is a finite, non-negative number."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value >= 0


def variant_price(mapping: dict, variant: Optional[dict]) -> Any:
    """Price of a variant mapping.

    A valid ``price_override`` on the mapping wins, then the variant's own
    ``price``, then 0. The variant price is returned as stored so callers can
    reject an invalid one instead of selling at a coerced value.
    """
    override = mapping.get("price_override")
    if override is not None and is_valid_price(override):
        return override
    if variant and variant.get("price") is not None:
        return variant["price"]
    return 0


def product_price(product: dict) -> Any:
    discounted = product.get("discounted_price")
    if discounted is not None and is_valid_price(discounted):
        return discounted
    return product.get("original_price")
