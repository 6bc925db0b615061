"""Stock ledger: quantity arithmetic and persisted adjustments on variant mappings."""
from typing import Any, Iterable, Optional

import structlog

from storefront import ids
from storefront.schemas import VARIANT_MAPPINGS
from storefront.variants import find_default_mapping, is_populated, resolve_mapping

logger = structlog.get_logger(__name__)


def _quantity(mapping: dict) -> int:
    return int(mapping.get("quantity") or 0)


def deduct(mapping: dict, quantity: int) -> int:
    """New quantity after selling ``quantity`` units, never below zero."""
    return max(0, _quantity(mapping) - quantity)


def restore(mapping: dict, quantity: int) -> int:
    return _quantity(mapping) + quantity


def calculate_total_stock(mappings: Iterable[Any]) -> int:
    return sum(_quantity(m) for m in mappings if is_populated(m))


def select_mapping(product: dict, variant_id: Any = None, mapping_id: Any = None, scoped: bool = False) -> Optional[dict]:
    """Mapping a cart line or order line draws stock from.

    Variant-scoped lines resolve by variant or mapping id; other lines use the
    product's default mapping, if any.
    """
    mappings = product.get("variant_mappings") or []
    if scoped:
        return resolve_mapping(mappings, variant_id, mapping_id)
    return find_default_mapping(mappings)


def write_quantity(catalog, mapping: dict, new_quantity: int) -> None:
    """Persist only ``quantity`` on the mapping, guarded by the value it was read with."""
    mapping_id = ids.normalize(mapping)
    catalog.update(
        VARIANT_MAPPINGS,
        mapping_id,
        {"quantity": new_quantity},
        override_access=True,
        expected={"quantity": mapping.get("quantity")},
    )
    logger.info(
        "Stock updated",
        mapping_id=mapping_id,
        previous=mapping.get("quantity"),
        quantity=new_quantity,
    )
    mapping["quantity"] = new_quantity


def adjust_stock(
    catalog,
    product: dict,
    quantity: int,
    variant_id: Any = None,
    mapping_id: Any = None,
    scoped: bool = False,
    restoring: bool = False,
) -> Optional[int]:
    """Deduct (or restore) stock for one line; returns the new quantity or None when nothing matched."""
    mapping = select_mapping(product, variant_id, mapping_id, scoped=scoped)
    if mapping is None:
        return None
    new_quantity = restore(mapping, quantity) if restoring else deduct(mapping, quantity)
    write_quantity(catalog, mapping, new_quantity)
    return new_quantity
