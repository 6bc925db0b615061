"""
Checkout.

``place_order`` takes a submitted checkout form through these stages:

    received -> form_validated -> products_fetched -> stock_validated
    -> stock_deducted -> order_persisted -> notified | notify_failed

Any validation gate may end the request with a StorefrontError instead. The
stages run one after another without a surrounding transaction: stock already
deducted stays deducted if a later step fails. Each quantity write is guarded
by the value it was validated against (see ``stock.write_quantity``).

``check_price`` is the checkout-intent check the product page runs before
adding a line to the cart.
"""
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

import structlog
from pydantic import TypeAdapter, ValidationError

from storefront import ids
from storefront.database import now_utc
from storefront.errors import ClientInputError, ConflictError, NotFoundError, ServerError, StorefrontError
from storefront.notifications import EmailChannel, send_order_confirmation
from storefront.pricing import is_valid_price, product_price, variant_price
from storefront.schemas import ORDERS, PRODUCTS, CartItem, CheckoutContact, Order
from storefront.stock import adjust_stock
from storefront.variants import mapping_variant, resolve_mapping

logger = structlog.get_logger(__name__)

REQUIRED_FIELDS = ("name", "email", "phone", "address", "cartItems")
PRODUCT_LOOKUP_LIMIT = 1000

_cart_adapter = TypeAdapter(List[CartItem])


class CheckoutStage(str, Enum):
    RECEIVED = "received"
    FORM_VALIDATED = "form_validated"
    PRODUCTS_FETCHED = "products_fetched"
    STOCK_VALIDATED = "stock_validated"
    STOCK_DEDUCTED = "stock_deducted"
    ORDER_PERSISTED = "order_persisted"
    NOTIFIED = "notified"
    NOTIFY_FAILED = "notify_failed"


def validate_contact(form: Dict[str, Any]) -> CheckoutContact:
    if any(not str(form.get(field) or "").strip() for field in REQUIRED_FIELDS):
        raise ClientInputError("Missing required fields")
    try:
        return CheckoutContact(
            name=form["name"],
            email=form["email"],
            phone=form["phone"],
            address=form["address"],
            note=form.get("note") or None,
        )
    except ValidationError:
        raise ClientInputError("Invalid email address")


def parse_cart_items(raw: str) -> List[CartItem]:
    try:
        items = _cart_adapter.validate_json(raw)
    except ValidationError:
        raise ClientInputError("Invalid cart data")
    if not items:
        raise ClientInputError("Invalid cart data")
    return items


def fetch_products(catalog, items: List[CartItem]) -> List[dict]:
    """Published products for the cart, populated down to variants."""
    requested = [item.id for item in items]
    where = dict(ids.id_filter(requested), published=True)
    products = catalog.find(PRODUCTS, where, depth=2, limit=PRODUCT_LOOKUP_LIMIT)["docs"]

    found = {ids.normalize(p["id"]) for p in products}
    missing = []
    for value in requested:
        normalized = ids.normalize(value)
        if normalized not in found and normalized not in missing:
            missing.append(normalized)
    if missing:
        raise NotFoundError(
            "Some products in cart are no longer available. "
            f"Missing product IDs: {', '.join(missing)}"
        )
    return products


def product_for(products: List[dict], product_id: Any) -> Optional[dict]:
    wanted = ids.normalize(product_id)
    for product in products:
        if ids.normalize(product["id"]) == wanted:
            return product
    return None


def _resolve_line_mapping(product: dict, item: CartItem) -> Optional[dict]:
    return resolve_mapping(product.get("variant_mappings"), item.variant.id, item.variant.mapping_id)


def _variant_label(item: CartItem) -> str:
    return item.variant.name or ids.normalize(item.variant.id)


def validate_stock(items: List[CartItem], products: List[dict]) -> None:
    """Check every line and report all shortfalls at once."""
    issues = []
    for item in items:
        product = product_for(products, item.id)
        if product is None:
            continue
        title = product.get("title") or "Product"

        if item.variant is not None:
            mapping = _resolve_line_mapping(product, item)
            if mapping is None or not mapping.get("is_active"):
                issues.append(f"{title} - {_variant_label(item)}: variant no longer available")
                continue
            available = int(mapping.get("quantity") or 0)
            if available <= 0 or available < item.quantity:
                issues.append(f"{title} - {_variant_label(item)}: requested {item.quantity}, available {available}")
        else:
            available = int(product.get("total_stock") or 0)
            if available <= 0 or available < item.quantity:
                issues.append(f"{title}: requested {item.quantity}, available {available}")

    if issues:
        raise ConflictError(f"Insufficient stock for the following items: {', '.join(issues)}")


def build_line_item(item: CartItem, product: dict) -> dict:
    """Order line with the unit price frozen at purchase time."""
    price = product_price(product)
    snapshot = None
    mapping_id = None

    if item.variant is not None:
        mapping = _resolve_line_mapping(product, item)
        if mapping is not None:
            mapping_id = ids.normalize(mapping)
            variant = mapping_variant(mapping)
            price = variant_price(mapping, variant)
            if variant and variant.get("id") is not None and variant.get("name"):
                snapshot = {
                    "id": ids.normalize(variant),
                    "name": str(variant["name"]),
                    "sku": variant.get("sku") or None,
                }

    if not is_valid_price(price):
        raise ClientInputError(f"Invalid price for {product.get('title') or ids.normalize(product['id'])}")

    line = {"product": product["id"], "quantity": item.quantity, "price_at_purchase": float(price)}
    if mapping_id:
        line["mapping_id"] = mapping_id
    if snapshot:
        line["variant"] = snapshot
    return line


def deduct_stock(catalog, items: List[CartItem], products: List[dict]) -> None:
    try:
        for item in items:
            product = product_for(products, item.id)
            if product is None:
                continue
            if item.variant is not None:
                adjust_stock(catalog, product, item.quantity, item.variant.id, item.variant.mapping_id, scoped=True)
            else:
                adjust_stock(catalog, product, item.quantity)
    except StorefrontError:
        raise
    except Exception as exc:
        raise ServerError(f"Failed to process stock deduction: {exc}")


def order_total(lines: List[dict]) -> float:
    return round(sum(line["price_at_purchase"] * line["quantity"] for line in lines), 2)


def place_order(catalog, form: Dict[str, Any], channel: EmailChannel) -> dict:
    """Run a checkout form through every stage and return the saved order.

    Stock is written line by line before the order exists. A ConflictError
    (409) raised by the guarded write of a later line, or any failure while
    saving the order, leaves the earlier lines deducted and no order saved.
    """
    log = logger.bind(checkout_id=uuid4().hex[:12])
    log.info("Checkout stage", stage=CheckoutStage.RECEIVED.value)

    contact = validate_contact(form)
    items = parse_cart_items(form["cartItems"])
    log.info("Checkout stage", stage=CheckoutStage.FORM_VALIDATED.value, lines=len(items))

    products = fetch_products(catalog, items)
    log.info("Checkout stage", stage=CheckoutStage.PRODUCTS_FETCHED.value, products=len(products))

    validate_stock(items, products)
    lines = [build_line_item(item, product_for(products, item.id)) for item in items]
    log.info("Checkout stage", stage=CheckoutStage.STOCK_VALIDATED.value)

    deduct_stock(catalog, items, products)
    log.info("Checkout stage", stage=CheckoutStage.STOCK_DEDUCTED.value)

    order = Order(
        **contact.model_dump(),
        items=lines,
        total_amount=order_total(lines),
        status="pending",
        order_date=now_utc(),
    )
    saved = catalog.create(ORDERS, order.model_dump(exclude_none=True))
    log.info("Checkout stage", stage=CheckoutStage.ORDER_PERSISTED.value, order_id=ids.normalize(saved["id"]), total=saved["total_amount"])

    try:
        send_order_confirmation(saved, products, channel)
        log.info("Checkout stage", stage=CheckoutStage.NOTIFIED.value)
    except Exception as exc:
        log.error("Order confirmation failed", stage=CheckoutStage.NOTIFY_FAILED.value, error=str(exc))

    return saved


def check_price(catalog, product_id: Any, variant_id: Any = None) -> dict:
    if product_id is None or ids.normalize(product_id) == "":
        raise ClientInputError("Missing productId")

    where = dict(ids.id_filter([product_id]), published=True)
    docs = catalog.find(PRODUCTS, where, depth=2, limit=1)["docs"]
    if not docs:
        raise NotFoundError("Product not found")
    product = docs[0]

    payload = {
        "ok": True,
        "product": {"id": ids.normalize(product), "title": product.get("title"), "slug": product.get("slug")},
    }

    if variant_id is not None and ids.normalize(variant_id) != "":
        mapping = resolve_mapping(product.get("variant_mappings"), variant_id)
        if mapping is None:
            raise ClientInputError("Variant not found for product")

        stock = int(mapping.get("quantity") or 0)
        if not (mapping.get("is_active") and stock > 0):
            raise ConflictError("Variant unavailable or out of stock")

        variant = mapping_variant(mapping)
        price = variant_price(mapping, variant)
        if not is_valid_price(price):
            raise ClientInputError("Invalid variant price")

        payload["price"] = price
        payload["variant"] = {
            "id": ids.normalize(variant if variant is not None else mapping),
            "name": str((variant or {}).get("name") or ""),
            "sku": (variant or {}).get("sku") or None,
            "price": price,
            "stock": stock,
        }
        return payload

    total_stock = int(product.get("total_stock") or 0)
    if not (product.get("published") and total_stock > 0):
        raise ConflictError("Product unavailable or out of stock")

    price = product_price(product)
    if not is_valid_price(price):
        raise ClientInputError("Invalid product price")
    payload["price"] = price
    return payload
