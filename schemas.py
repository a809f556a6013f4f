"""
HandloomPortal Database Schemas

Each Pydantic model below represents one MongoDB collection. The collection name is the lowercase
class name. Example: class Product -> collection "product". LoginAttempt is the exception and
lives in "login_attempt".

Fields are snake_case in Python and camelCase in MongoDB and JSON, which is what the storefront
and the admin forms send. Documents are always dumped with by_alias=True.
"""
import re
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

Category = Literal["men", "women", "living", "others"]
ProductStatus = Literal["draft", "active", "archived"]
WeightUnit = Literal["kg", "g", "lb", "oz"]
Role = Literal["customer", "b2b_buyer", "admin"]
OrderStatus = Literal["pending", "processing", "shipped", "in_transit", "out_for_delivery", "delivered", "cancelled"]
PaymentStatus = Literal["unpaid", "paid", "failed"]

IMAGE_PATTERN = re.compile(
    r"^(https?://.+\.(jpg|jpeg|png|gif|webp)$|data:image/(jpeg|jpg|png|gif|webp);base64,)",
    re.IGNORECASE,
)
GSTIN_PATTERN = r"^\d{2}[A-Z]{5}\d{4}[A-Z][1-9A-Z]Z[0-9A-Z]$"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------- Catalog ----------

class ProductVariant(CamelModel):
    name: str
    values: List[str] = Field(default_factory=list, description="e.g. ['S', 'M', 'L']")


class SalesChannels(CamelModel):
    online_store: bool = True
    pos: bool = False


class Product(CamelModel):
    title: str
    description: str
    category: Category
    product_collection: str = Field(..., description="Collection shown in the storefront, e.g. 'Banarasi'")
    price: float = Field(..., ge=0)
    cost_per_item: float = Field(..., ge=0)
    charge_tax: bool = True
    track_quantity: bool = True
    quantity: int = Field(0, ge=0)
    continue_selling: bool = False
    has_sku: bool = Field(False, alias="hasSKU")
    sku: Optional[str] = None
    barcode: Optional[str] = None
    is_physical_product: bool = True
    weight: float = Field(0, ge=0)
    weight_unit: WeightUnit = "kg"
    package_type: str = "store-default"
    search_title: Optional[str] = None
    search_description: Optional[str] = None
    variants: List[ProductVariant] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list, description="http(s) image URLs or base64 data URLs")
    status: ProductStatus = "draft"
    product_type: Optional[str] = None
    vendor: Optional[str] = None
    collections: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    sales_channels: SalesChannels = Field(default_factory=SalesChannels)
    markets: List[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def accept_collection_alias(cls, data: Any) -> Any:
        # older admin forms post "collection" instead of "productCollection"
        if isinstance(data, dict) and "collection" in data and "productCollection" not in data:
            data = dict(data)
            data["productCollection"] = data.pop("collection")
        return data

    @field_validator("title", "product_type", "vendor", "search_title")
    @classmethod
    def strip_text(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if isinstance(v, str) else v

    @field_validator("tags", "collections", "markets")
    @classmethod
    def strip_items(cls, v: List[str]) -> List[str]:
        return [item.strip() for item in v]

    @field_validator("images")
    @classmethod
    def check_images(cls, v: List[str]) -> List[str]:
        for image in v:
            if not IMAGE_PATTERN.match(image):
                raise ValueError("Invalid image format - must be HTTP/HTTPS URL or base64 data URL")
        return v


def product_profit(price: float, cost: float) -> float:
    return round(price - cost, 2)


def product_margin(price: float, cost: float) -> float:
    """Margin as a percentage of price, 0 for a zero price."""
    if price > 0:
        return round((price - cost) / price * 100, 2)
    return 0


# ---------- Users ----------

class User(CamelModel):
    """
    User profile collection schema
    Mirrors the profile documents of the identity platform; passwordHash is never returned.
    """
    email: EmailStr
    full_name: str = Field(..., description="Full name")
    phone: Optional[str] = None
    password_hash: str
    role: Role = "customer"
    company_name: Optional[str] = None
    gst_number: Optional[str] = None
    access_codes: List[str] = Field(default_factory=list)
    email_verified: bool = False
    phone_verified: bool = False
    is_active: bool = True
    last_login_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None


class LoginAttempt(CamelModel):
    email: EmailStr
    attempts: int = 0
    locked_until: Optional[datetime] = None


# ---------- Orders ----------

class Address(CamelModel):
    line1: str
    line2: Optional[str] = None
    city: str
    state: str
    pincode: str = Field(..., pattern=r"^\d{6}$")
    country: str = "India"


class CustomerInfo(CamelModel):
    name: str
    email: EmailStr
    phone: str
    address: Optional[Address] = None


class OrderItem(CamelModel):
    product_id: str
    title: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)


class StatusEntry(CamelModel):
    status: OrderStatus
    at: datetime


class Order(CamelModel):
    order_number: str
    user_id: Optional[str] = None
    customer: CustomerInfo
    items: List[OrderItem]
    subtotal: float = Field(..., ge=0)
    shipping: float = Field(0, ge=0)
    amount: float = Field(..., ge=0, description="Total in major units (rupees)")
    currency: str = "INR"
    status: OrderStatus = "pending"
    payment_status: PaymentStatus = "unpaid"
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    tracking_number: Optional[str] = None
    status_history: List[StatusEntry] = Field(default_factory=list)
    notes: Optional[Dict[str, str]] = None
