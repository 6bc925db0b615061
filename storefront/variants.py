"""Variant mapping lookup.

A product's ``variant_mappings`` holds either bare references or populated
mapping documents. Clients send "the variant id" which may be the mapping's
own id or the id of the underlying variant, so both are matched.
"""
from typing import Any, Iterable, List, Optional

from storefront import ids
from storefront.pricing import is_valid_price, variant_price


def is_populated(mapping: Any) -> bool:
    return isinstance(mapping, dict)


def mapping_ref(mapping: Any) -> Any:
    """Id of a mapping entry, populated or not."""
    if is_populated(mapping):
        return mapping.get("id")
    return mapping


def mapping_variant(mapping: dict) -> Optional[dict]:
    variant = mapping.get("variant")
    return variant if isinstance(variant, dict) else None


def _variant_ref(mapping: dict) -> Any:
    variant = mapping.get("variant")
    if isinstance(variant, dict):
        return variant.get("id")
    return variant


def resolve_mapping(
    mappings: Optional[Iterable[Any]],
    requested_variant_id: Any,
    requested_mapping_id: Any = None,
) -> Optional[dict]:
    if not mappings:
        return None

    wanted = ids.normalize(requested_variant_id)
    wanted_mapping = ids.normalize(requested_mapping_id) if requested_mapping_id is not None else None

    for mapping in mappings:
        if not is_populated(mapping):
            continue
        own_id = ids.normalize(mapping)
        variant_id = ids.normalize(_variant_ref(mapping))
        if wanted and (own_id == wanted or variant_id == wanted):
            return mapping
        if wanted_mapping and own_id == wanted_mapping:
            return mapping
    return None


def find_default_mapping(mappings: Optional[Iterable[Any]]) -> Optional[dict]:
    for mapping in mappings or []:
        if is_populated(mapping) and mapping.get("is_default"):
            return mapping
    return None


def storefront_variant(mapping: dict) -> Optional[dict]:
    """Shape an active mapping for the product page variant picker."""
    variant = mapping_variant(mapping)
    if variant is None:
        return None

    price = variant_price(mapping, variant)
    stock = int(mapping.get("quantity") or 0)
    return {
        "id": ids.normalize(mapping),
        "variant_id": ids.normalize(variant),
        "name": variant.get("name") or "",
        "price": float(price) if is_valid_price(price) else 0.0,
        "stock": stock,
        "sku": variant.get("sku") or "",
        "is_default": bool(mapping.get("is_default")),
        "available_for_sale": stock > 0,
        "category": variant.get("category") or "other",
        "active": bool(mapping.get("is_active")),
    }


def storefront_variants(mappings: Iterable[dict]) -> List[dict]:
    shaped = (storefront_variant(m) for m in mappings)
    return [v for v in shaped if v is not None]
