"""
Database Schemas for the storefront

Each Pydantic model below describes a collection in MongoDB.
Collection name is the lowercase, snake_cased class name:
- Product -> "product"
- Variant -> "variant"
- VariantMapping -> "variant_mapping"
- Order -> "order"
- Blog -> "blog"
- Admin -> "admin"

Request payload models follow the collection schemas.
"""
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

PRODUCTS = "product"
VARIANTS = "variant"
VARIANT_MAPPINGS = "variant_mapping"
ORDERS = "order"
BLOGS = "blog"
ADMINS = "admin"


class Admin(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Login email")
    password_hash: str = Field(..., description="Hashed password")
    is_active: bool = Field(True)


class Variant(BaseModel):
    name: str = Field(..., description="e.g., Red / M")
    price: float = Field(..., ge=0, description="Base price")
    sku: Optional[str] = None
    category: Optional[str] = Field(None, description="e.g., color, size")


class VariantMapping(BaseModel):
    product: str = Field(..., description="Owning product id")
    variant: str = Field(..., description="Target variant id")
    quantity: int = Field(0, ge=0, description="Units in stock")
    price_override: Optional[float] = Field(None, ge=0)
    is_default: bool = False
    is_active: bool = True


class Product(BaseModel):
    title: str
    slug: str = Field(..., description="URL-safe identifier")
    description: Optional[str] = None
    original_price: float = Field(..., ge=0)
    discounted_price: Optional[float] = Field(None, ge=0)
    images: List[str] = []
    category: Optional[str] = None
    tags: List[str] = []
    published: bool = False


class ProductUpdate(BaseModel):
    title: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    original_price: Optional[float] = Field(None, ge=0)
    discounted_price: Optional[float] = Field(None, ge=0)
    images: Optional[List[str]] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    published: Optional[bool] = None


class VariantMappingUpdate(BaseModel):
    quantity: Optional[int] = Field(None, ge=0)
    price_override: Optional[float] = Field(None, ge=0)
    is_default: Optional[bool] = None
    is_active: Optional[bool] = None


class Blog(BaseModel):
    title: str
    slug: str
    excerpt: Optional[str] = None
    content: Optional[str] = None
    published: bool = False
    published_date: Optional[datetime] = None


class VariantSnapshot(BaseModel):
    id: str
    name: str
    sku: Optional[str] = None


class OrderItem(BaseModel):
    product: Any = Field(..., description="Product id")
    quantity: int = Field(..., ge=1)
    price_at_purchase: float = Field(..., ge=0)
    mapping_id: Optional[str] = Field(None, description="Variant mapping the stock was taken from")
    variant: Optional[VariantSnapshot] = None


class Order(BaseModel):
    name: str
    email: EmailStr
    phone: str
    address: str
    note: Optional[str] = None
    items: List[OrderItem]
    total_amount: float = Field(..., ge=0)
    status: str = "pending"
    order_date: datetime


# ----- Request payloads -----

class CheckoutContact(BaseModel):
    name: str
    email: EmailStr
    phone: str
    address: str
    note: Optional[str] = None


class CartVariant(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Any = None
    mapping_id: Any = Field(None, alias="mappingId")
    name: Optional[str] = None
    sku: Optional[str] = None


class CartItem(BaseModel):
    id: Any
    quantity: int = Field(..., ge=1)
    variant: Optional[CartVariant] = None


class PriceCheckRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: Any = Field(None, alias="productId")
    variant_id: Any = Field(None, alias="variantId")
