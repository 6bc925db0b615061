import os
from typing import Optional

import structlog
from bson import ObjectId
from fastapi import Depends, FastAPI, Form, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, Response
from fastapi.security import OAuth2PasswordRequestForm
from starlette.concurrency import run_in_threadpool

from storefront import config, ids
from storefront.auth import AdminOut, Token, authenticate_admin, create_access_token, get_current_admin
from storefront.blog import get_blog, get_blogs
from storefront.catalog import Catalog, get_catalog
from storefront.checkout import check_price, place_order
from storefront.database import get_database
from storefront.errors import ClientInputError, NotFoundError, ServerError, StorefrontError
from storefront.hooks import refresh_product_stock
from storefront.logging_config import configure_logging
from storefront.notifications import EmailChannel, get_email_channel
from storefront.orders import cancel_order
from storefront.schemas import (
    BLOGS,
    PRODUCTS,
    PriceCheckRequest,
    VARIANT_MAPPINGS,
    VARIANTS,
    Product as ProductSchema,
    ProductUpdate,
    Variant as VariantSchema,
    VariantMapping as VariantMappingSchema,
    VariantMappingUpdate,
)
from storefront.sitemap import build_sitemap
from storefront.variants import mapping_ref, storefront_variants

configure_logging()
logger = structlog.get_logger(__name__)

app = FastAPI(title="Storefront API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Helpers
def serialize(doc):
    return jsonable_encoder(doc, custom_encoder={ObjectId: ids.normalize, bytes: ids.normalize})


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.get("/")
def read_root():
    return {"message": "Storefront API is running"}


# Admin
@app.post("/api/admin/login", response_model=Token)
def login(form_data: OAuth2PasswordRequestForm = Depends(), catalog: Catalog = Depends(get_catalog)):
    admin = authenticate_admin(catalog, form_data.username, form_data.password)
    if not admin:
        raise HTTPException(400, "Incorrect email or password")
    return Token(access_token=create_access_token({"sub": ids.normalize(admin)}))


@app.post("/api/admin/products", status_code=201)
def create_product(product: ProductSchema, catalog: Catalog = Depends(get_catalog), admin: AdminOut = Depends(get_current_admin)):
    data = product.model_dump()
    data["variant_mappings"] = []
    data["total_stock"] = 0
    return serialize(catalog.create(PRODUCTS, data, override_access=True))


@app.patch("/api/admin/products/{product_id}")
def update_product(product_id: str, changes: ProductUpdate, catalog: Catalog = Depends(get_catalog), admin: AdminOut = Depends(get_current_admin)):
    return serialize(catalog.update(PRODUCTS, product_id, changes.model_dump(exclude_unset=True)))


@app.post("/api/admin/variants", status_code=201)
def create_variant(variant: VariantSchema, catalog: Catalog = Depends(get_catalog), admin: AdminOut = Depends(get_current_admin)):
    return serialize(catalog.create(VARIANTS, variant.model_dump()))


@app.post("/api/admin/variant-mappings", status_code=201)
def create_variant_mapping(mapping: VariantMappingSchema, catalog: Catalog = Depends(get_catalog), admin: AdminOut = Depends(get_current_admin)):
    product = catalog.find_by_id(PRODUCTS, mapping.product, run_hooks=False)
    if not product:
        raise NotFoundError("Product not found")
    variant = catalog.find_by_id(VARIANTS, mapping.variant)
    if not variant:
        raise NotFoundError("Variant not found")

    data = mapping.model_dump()
    data["product"] = product["id"]
    data["variant"] = variant["id"]
    created = catalog.create(VARIANT_MAPPINGS, data, override_access=True)
    catalog.push(PRODUCTS, product["id"], "variant_mappings", created["id"])
    return serialize(created)


@app.patch("/api/admin/variant-mappings/{mapping_id}")
def update_variant_mapping(mapping_id: str, changes: VariantMappingUpdate, catalog: Catalog = Depends(get_catalog), admin: AdminOut = Depends(get_current_admin)):
    updated = catalog.update(VARIANT_MAPPINGS, mapping_id, changes.model_dump(exclude_unset=True), override_access=True)
    if updated.get("product") is not None:
        refresh_product_stock(catalog, updated["product"])
    return serialize(updated)


# Catalog
@app.get("/api/products")
def list_products(
    q: Optional[str] = None,
    category: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    catalog: Catalog = Depends(get_catalog),
):
    where = {"published": True}
    if q:
        where["$or"] = [
            {"title": {"$regex": q, "$options": "i"}},
            {"description": {"$regex": q, "$options": "i"}},
            {"tags": {"$regex": q, "$options": "i"}},
        ]
    if category:
        where["category"] = category

    result = catalog.find(PRODUCTS, where, limit=limit, page=page, sort="-updated_at")
    return {"items": serialize(result["docs"]), "page": page, "limit": limit, "total": result["total"]}


@app.get("/api/products/{slug}")
def get_product(slug: str, catalog: Catalog = Depends(get_catalog)):
    docs = catalog.find(PRODUCTS, {"slug": slug, "published": True}, limit=1)["docs"]
    if not docs:
        raise NotFoundError("Product not found")
    return serialize(docs[0])


@app.get("/api/products/{product_id}/variants")
def get_product_variants(product_id: str, catalog: Catalog = Depends(get_catalog)):
    if product_id == ids.UNSERIALIZED_OBJECT:
        logger.error("Received unserialized object as productId")
        return {"error": "Invalid product ID format", "variants": []}

    product_id = product_id.strip()
    if not product_id:
        raise ClientInputError("Product ID is required")

    try:
        docs = catalog.find(PRODUCTS, ids.id_filter([product_id]), limit=1, select={"variant_mappings": True}, run_hooks=False)["docs"]
        if not docs:
            logger.warning("Product not found", product_id=product_id)
            return {"variants": []}

        refs = [mapping_ref(m) for m in docs[0].get("variant_mappings") or []]
        if not refs:
            logger.warning("Product has no variant mappings", product_id=product_id)
            return {"variants": []}

        where = dict(ids.id_filter(refs), is_active=True)
        mappings = catalog.find(VARIANT_MAPPINGS, where, depth=1, limit=100)["docs"]
        return {"variants": storefront_variants(mappings)}
    except StorefrontError:
        raise
    except Exception as exc:
        logger.error("Error fetching product variants", product_id=product_id, error=str(exc))
        raise ServerError("Failed to fetch product variants")


# Checkout
@app.get("/checkout")
def checkout_method_not_allowed():
    return JSONResponse(
        status_code=405,
        content={
            "error": "Method not allowed. Use POST to submit checkout data.",
            "message": "This endpoint only accepts POST requests for checkout form submissions.",
        },
        headers={"Allow": "POST"},
    )


@app.post("/checkout")
def checkout(
    name: Optional[str] = Form(None),
    email: Optional[str] = Form(None),
    phone: Optional[str] = Form(None),
    address: Optional[str] = Form(None),
    note: Optional[str] = Form(None),
    cartItems: Optional[str] = Form(None),
    catalog: Catalog = Depends(get_catalog),
    channel: EmailChannel = Depends(get_email_channel),
):
    form = {"name": name, "email": email, "phone": phone, "address": address, "note": note, "cartItems": cartItems}
    try:
        place_order(catalog, form, channel)
    except StorefrontError:
        raise
    except Exception as exc:
        logger.error("Error processing checkout", error=str(exc))
        raise ServerError("Failed to process checkout")
    return RedirectResponse(config.CHECKOUT_SUCCESS_URL, status_code=302)


@app.post("/api/checkout/price")
async def checkout_price(request: Request, catalog: Catalog = Depends(get_catalog)):
    try:
        body = await request.json()
    except ValueError:
        body = None
    request_body = PriceCheckRequest.model_validate(body if isinstance(body, dict) else {})

    try:
        payload = await run_in_threadpool(check_price, catalog, request_body.product_id, request_body.variant_id)
    except StorefrontError as exc:
        return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": exc.message})
    except Exception as exc:
        logger.error("Price check failed", error=str(exc))
        return JSONResponse(status_code=500, content={"ok": False, "error": "Unexpected server error"})
    return serialize(payload)


# Orders
@app.post("/api/orders/{order_id}/cancel")
def cancel(order_id: str, catalog: Catalog = Depends(get_catalog), admin: AdminOut = Depends(get_current_admin)):
    order = cancel_order(catalog, order_id)
    return {"order_id": ids.normalize(order), "status": order["status"]}


# Blog
@app.get("/api/blogs")
def list_blogs(limit: int = Query(10, ge=1, le=100), catalog: Catalog = Depends(get_catalog)):
    return serialize(get_blogs(catalog, limit=limit)["docs"])


@app.get("/api/blogs/{slug}")
def read_blog(slug: str, catalog: Catalog = Depends(get_catalog)):
    blog = get_blog(catalog, slug)
    if not blog:
        raise NotFoundError("Blog post not found")
    return serialize(blog)


@app.get("/sitemap.xml")
def sitemap(catalog: Catalog = Depends(get_catalog)):
    return Response(
        content=build_sitemap(catalog),
        media_type="application/xml",
        headers={"Cache-Control": "public, max-age=3600"},
    )


# Seed sample data if empty
@app.post("/api/seed")
def seed(catalog: Catalog = Depends(get_catalog)):
    if catalog.db[PRODUCTS].count_documents({}) > 0:
        return {"ok": True, "seeded": False}

    frost = catalog.create(VARIANTS, {"name": "Frost", "price": 129.0, "sku": "GC-FR", "category": "color"})
    graphite = catalog.create(VARIANTS, {"name": "Graphite", "price": 139.0, "sku": "GC-GR", "category": "color"})
    product = catalog.create(
        PRODUCTS,
        {
            "title": "Glass Credit Card",
            "slug": "glass-credit-card",
            "description": "Minimal, premium glass-morphic card.",
            "original_price": 129.0,
            "images": ["/prod-card-1.jpg", "/prod-card-2.jpg"],
            "category": "cards",
            "tags": ["card", "glass"],
            "published": True,
            "variant_mappings": [],
        },
    )
    for variant, quantity, is_default in ((frost, 25, True), (graphite, 12, False)):
        mapping = catalog.create(
            VARIANT_MAPPINGS,
            {
                "product": product["id"],
                "variant": variant["id"],
                "quantity": quantity,
                "price_override": None,
                "is_default": is_default,
                "is_active": True,
            },
            override_access=True,
        )
        catalog.push(PRODUCTS, product["id"], "variant_mappings", mapping["id"])

    catalog.create(
        BLOGS,
        {
            "title": "Caring for your glass card",
            "slug": "caring-for-your-glass-card",
            "excerpt": "Keep it shiny.",
            "published": True,
        },
    )
    return {"ok": True, "seeded": True}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        db = get_database()
        if db is not None:
            response["database"] = "✅ Available"
            response["database_url"] = "✅ Set" if config.DATABASE_URL else "❌ Not Set"
            response["database_name"] = "✅ Set" if config.DATABASE_NAME else "❌ Not Set"
            response["connection_status"] = "Connected"
            try:
                collections = db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️ Connected but Error: {str(e)[:50]}"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"
    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
