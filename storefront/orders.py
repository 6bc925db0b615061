"""Order cancellation: puts purchased units back on their variant mappings."""
import structlog

from storefront import ids
from storefront.errors import ConflictError, NotFoundError
from storefront.schemas import ORDERS, PRODUCTS
from storefront.stock import adjust_stock

logger = structlog.get_logger(__name__)

CANCELLED = "cancelled"


def restore_order_stock(catalog, order: dict) -> int:
    """Restore stock for every line of ``order``; returns how many lines were restored.

    Variant lines go back to the mapping recorded at checkout. Lines stored
    without one fall back to their variant snapshot, then to the default mapping.
    """
    items = order.get("items") or []
    products = catalog.find_by_ids(PRODUCTS, [item["product"] for item in items], depth=2)
    by_id = {ids.normalize(p["id"]): p for p in products}

    restored = 0
    for item in items:
        product = by_id.get(ids.normalize(item["product"]))
        if product is None:
            logger.warning("Product for order line no longer exists", product_id=ids.normalize(item["product"]))
            continue
        variant = item.get("variant")
        if item.get("mapping_id"):
            result = adjust_stock(catalog, product, item["quantity"], mapping_id=item["mapping_id"], scoped=True, restoring=True)
        elif variant:
            result = adjust_stock(catalog, product, item["quantity"], variant.get("id"), scoped=True, restoring=True)
        else:
            result = adjust_stock(catalog, product, item["quantity"], restoring=True)
        if result is not None:
            restored += 1
    return restored


def cancel_order(catalog, order_id) -> dict:
    order = catalog.find_by_id(ORDERS, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    if order.get("status") == CANCELLED:
        raise ConflictError("Order is already cancelled")

    restored = restore_order_stock(catalog, order)
    updated = catalog.update(ORDERS, order["id"], {"status": CANCELLED})
    logger.info("Order cancelled", order_id=ids.normalize(order["id"]), restored_lines=restored)
    return updated
