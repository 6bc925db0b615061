"""
Product stock hooks.

``after_read`` recomputes ``total_stock`` from every mapping the product
references (active or not) each time a product is read. ``after_change``
persists the recomputed value when it differs from the stored one.
"""
import structlog

from storefront.schemas import PRODUCTS, VARIANT_MAPPINGS
from storefront.stock import calculate_total_stock
from storefront.variants import mapping_ref

logger = structlog.get_logger(__name__)

MAPPING_LOOKUP_LIMIT = 1000


def total_stock_from_mappings(variant_mappings, catalog) -> int:
    if not variant_mappings:
        return 0
    refs = [mapping_ref(m) for m in variant_mappings]
    mappings = catalog.find_by_ids(VARIANT_MAPPINGS, refs, limit=MAPPING_LOOKUP_LIMIT)
    return calculate_total_stock(mappings)


def after_read(doc: dict, catalog) -> dict:
    stored = doc.get("total_stock") or 0

    if "variant_mappings" not in doc or doc["variant_mappings"] is None:
        doc["total_stock"] = 0
        return doc
    if catalog is None:
        doc["total_stock"] = stored
        return doc

    try:
        doc["total_stock"] = total_stock_from_mappings(doc["variant_mappings"], catalog)
    except Exception as exc:
        logger.warning("Could not recompute total stock, keeping stored value", product_id=str(doc.get("id")), error=str(exc))
        doc["total_stock"] = stored
    return doc


def after_change(doc: dict, catalog) -> dict:
    if not doc or doc.get("variant_mappings") is None:
        return doc

    total_stock = total_stock_from_mappings(doc["variant_mappings"], catalog)
    if doc.get("total_stock") != total_stock:
        catalog.update(PRODUCTS, doc["id"], {"total_stock": total_stock}, override_access=True)
        doc["total_stock"] = total_stock
    return doc


def refresh_product_stock(catalog, product_id) -> None:
    """Re-run the write hook for a product after one of its mappings changed."""
    doc = catalog.find_by_id(PRODUCTS, product_id, run_hooks=False)
    if doc is not None:
        after_change(doc, catalog)
