import os
import re
import math
import time
import secrets
import logging
from datetime import datetime
from typing import Optional, List, Dict, Any

from fastapi import FastAPI, HTTPException, Depends, Header, Request, Response, Query, Body
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field, ValidationError
from pymongo import ReturnDocument
from starlette.exceptions import HTTPException as StarletteHTTPException
from bson import ObjectId
from bson.errors import InvalidId

import payments
from database import db, create_document, get_documents, now_utc
from schemas import (
    CamelModel, Product, User, LoginAttempt, Order, OrderItem, CustomerInfo, OrderStatus,
    GSTIN_PATTERN, product_profit, product_margin,
)
from security import (
    InactivityGuard, attempts_left, create_token, decode_token, hash_password,
    lockout_remaining, minutes_left, register_failure, verify_password,
)

# Logging
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"), format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger("handloom")

# Configuration
STORE_NAME = os.getenv("STORE_NAME", "HandloomPortal")
PRIMARY_CURRENCY = os.getenv("PRIMARY_CURRENCY", "INR")
FREE_SHIPPING_THRESHOLD = float(os.getenv("FREE_SHIPPING_THRESHOLD", "2000"))
SHIPPING_FLAT = float(os.getenv("SHIPPING_FLAT", "150"))
LOW_STOCK_THRESHOLD = int(os.getenv("LOW_STOCK_THRESHOLD", "5"))
ADMIN_ACCESS_CODE = os.getenv("ADMIN_ACCESS_CODE", "")
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*").split(",")
STARTED_AT = time.time()
SESSION_TOKEN_HEADER = "X-Session-Token"

session_guard = InactivityGuard()

app = FastAPI(title=f"{STORE_NAME} API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in ALLOWED_ORIGINS] if ALLOWED_ORIGINS else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[SESSION_TOKEN_HEADER],
)


# Error handlers
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if isinstance(exc.detail, dict):
        content = {"success": False, **exc.detail}
    else:
        content = {"success": False, "error": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"success": False, "error": "Validation error",
                                                  "details": validation_details(exc.errors())})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"success": False, "error": "Something went wrong!"})


# Utilities
def validation_details(errors) -> List[str]:
    details = []
    for err in errors:
        loc = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        details.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return details


def get_collection(name: str):
    if db is None:
        raise HTTPException(status_code=503, detail="Database not connected")
    return db[name]


def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail="Invalid id")


def to_dict(doc: Dict[str, Any]) -> Dict[str, Any]:
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def serialize_product(doc: Dict[str, Any]) -> Dict[str, Any]:
    p = to_dict(doc)
    price = float(p.get("price", 0))
    cost = float(p.get("costPerItem", 0))
    p["profit"] = product_profit(price, cost)
    p["margin"] = product_margin(price, cost)
    p["collection"] = p.get("productCollection")
    return p


def public_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "uid": str(doc["_id"]),
        "email": doc["email"],
        "fullName": doc.get("fullName"),
        "phone": doc.get("phone"),
        "role": doc.get("role", "customer"),
        "companyName": doc.get("companyName"),
        "gstNumber": doc.get("gstNumber"),
        "emailVerified": doc.get("emailVerified", False),
        "phoneVerified": doc.get("phoneVerified", False),
        "createdAt": doc.get("createdAt"),
        "updatedAt": doc.get("updatedAt"),
        "lastLoginAt": doc.get("lastLoginAt"),
    }


# Auth dependencies
def resolve_user(authorization: Optional[str], touch: bool, allow_lapsed: bool = False) -> Optional[Dict[str, Any]]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Invalid authorization header")
    token_data = decode_token(token, verify_exp=not allow_lapsed)
    users = get_collection("user")
    user = users.find_one({"_id": oid(token_data.user_id)})
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.get("isActive", True):
        raise HTTPException(status_code=403, detail="Account disabled")
    now = now_utc()
    state = session_guard.check(user.get("lastActivityAt"), now)
    if state.status == "expired":
        users.update_one({"_id": user["_id"]}, {"$set": {"lastActivityAt": None}})
        raise HTTPException(status_code=401, detail="Session expired")
    if touch:
        users.update_one({"_id": user["_id"]}, {"$set": {"lastActivityAt": now}})
        user["lastActivityAt"] = now
    return user


async def get_current_user(response: Response,
                           authorization: Optional[str] = Header(default=None)) -> Optional[Dict[str, Any]]:
    user = resolve_user(authorization, touch=True)
    if user:
        # active clients swap in the fresh token so the JWT expiry never outruns the session
        response.headers[SESSION_TOKEN_HEADER] = create_token(user)
    return user


async def require_user(user: Optional[Dict[str, Any]] = Depends(get_current_user)) -> Dict[str, Any]:
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


async def require_admin(user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Forbidden")
    return user


# Health and config
@app.get("/")
def root():
    return {"message": f"{STORE_NAME} Backend API is running"}


def database_status() -> Dict[str, Any]:
    status = {"status": "disconnected", "connected": False, "name": "Not connected"}
    if db is None:
        return status
    try:
        db.list_collection_names()
        status.update({"status": "connected", "connected": True, "name": db.name})
    except Exception as e:
        logger.warning("Database check failed: %s", e)
    return status


@app.get("/health")
def health():
    mongodb = database_status()
    body = {
        "status": "OK" if mongodb["connected"] else "WARNING",
        "message": f"{STORE_NAME} Backend API is running",
        "mongodb": mongodb,
        "razorpay": {
            "configured": payments.is_configured(),
            "keyId": "Set" if payments.RAZORPAY_KEY_ID else "Missing",
        },
        "timestamp": now_utc().isoformat(),
        "uptime": round(time.time() - STARTED_AT, 3),
    }
    return JSONResponse(status_code=200 if mongodb["connected"] else 503, content=body)


@app.get("/api/test-db")
def test_database():
    if not database_status()["connected"]:
        raise HTTPException(status_code=503, detail="Database not connected")
    return {
        "success": True,
        "message": "Database connection working",
        "productCount": get_collection("product").count_documents({}),
    }


@app.get("/config")
def get_config():
    return {
        "storeName": STORE_NAME,
        "currency": PRIMARY_CURRENCY,
        "shipping": {"flat": SHIPPING_FLAT, "freeAbove": FREE_SHIPPING_THRESHOLD},
        "session": {
            "inactivityMinutes": int(session_guard.timeout.total_seconds() // 60),
            "warningMinutes": int(session_guard.warning.total_seconds() // 60),
        },
        "payments": {"razorpay": payments.is_configured()},
    }


# Auth
class RegisterDTO(CamelModel):
    full_name: str = Field(..., min_length=1)
    email: EmailStr
    phone: Optional[str] = None
    password: str = Field(..., min_length=6)
    role: str = Field("customer", pattern=r"^(customer|b2b_buyer|admin)$")
    company_name: Optional[str] = None
    gst_number: Optional[str] = Field(None, pattern=GSTIN_PATTERN)
    access_code: Optional[str] = None


class LoginDTO(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdateDTO(CamelModel):
    full_name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = None
    company_name: Optional[str] = None
    gst_number: Optional[str] = Field(None, pattern=GSTIN_PATTERN)


@app.post("/api/auth/register", status_code=201)
def register(data: RegisterDTO):
    users = get_collection("user")
    email = data.email.lower()
    if users.find_one({"email": email}):
        raise HTTPException(status_code=400, detail="Email already in use")
    if data.role == "b2b_buyer" and not data.company_name:
        raise HTTPException(status_code=400, detail="Company name is required for B2B buyers")
    if data.role == "admin" and (not ADMIN_ACCESS_CODE or data.access_code != ADMIN_ACCESS_CODE):
        raise HTTPException(status_code=403, detail="Invalid admin access code")
    user = User(
        email=email,
        full_name=data.full_name.strip(),
        phone=data.phone,
        password_hash=hash_password(data.password),
        role=data.role,
        company_name=data.company_name,
        gst_number=data.gst_number,
        access_codes=[data.access_code] if data.access_code else [],
        last_login_at=now_utc(),
        last_activity_at=now_utc(),
    )
    user_id = create_document("user", user)
    doc = users.find_one({"_id": ObjectId(user_id)})
    logger.info("Registered %s account %s", data.role, user_id)
    return {"success": True, "token": create_token(doc), "user": public_user(doc)}


@app.post("/api/auth/login")
def login(data: LoginDTO):
    users = get_collection("user")
    attempts = get_collection("login_attempt")
    email = data.email.lower()
    now = now_utc()
    record = attempts.find_one({"email": email})
    remaining = lockout_remaining(record, now)
    if remaining is not None:
        raise HTTPException(status_code=423, detail={
            "error": f"Account temporarily locked. Try again in {minutes_left(remaining)} minutes.",
            "lockedMinutes": minutes_left(remaining),
        })

    user = users.find_one({"email": email})
    if not user or not verify_password(data.password, user.get("passwordHash", "")):
        update = register_failure(record, now)
        record = LoginAttempt(email=email, **update).model_dump(by_alias=True)
        attempts.update_one({"email": email}, {"$set": record}, upsert=True)
        if update["lockedUntil"] is not None:
            logger.warning("Locked sign-in for %s after %s failed attempts", email, update["attempts"])
            remaining = update["lockedUntil"] - now
            raise HTTPException(status_code=423, detail={
                "error": f"Too many failed attempts. Please try again in {minutes_left(remaining)} minutes.",
                "lockedMinutes": minutes_left(remaining),
            })
        left = attempts_left(update)
        raise HTTPException(status_code=401, detail={
            "error": f"Invalid credentials. {left} attempts remaining.",
            "attemptsRemaining": left,
        })

    if not user.get("isActive", True):
        raise HTTPException(status_code=403, detail="Account disabled")
    attempts.delete_one({"email": email})
    users.update_one({"_id": user["_id"]}, {"$set": {"lastLoginAt": now, "lastActivityAt": now}})
    user = users.find_one({"_id": user["_id"]})
    logger.info("User %s signed in", user["_id"])
    return {"success": True, "token": create_token(user), "user": public_user(user)}


@app.post("/api/auth/logout")
def logout(user: Dict[str, Any] = Depends(require_user)):
    get_collection("user").update_one({"_id": user["_id"]}, {"$set": {"lastActivityAt": None}})
    return {"success": True, "message": "You have been successfully signed out."}


@app.get("/api/auth/me")
def me(user: Dict[str, Any] = Depends(require_user)):
    return {"success": True, "user": public_user(user)}


@app.put("/api/auth/me")
def update_me(data: ProfileUpdateDTO, user: Dict[str, Any] = Depends(require_user)):
    updates = data.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)
    if not updates:
        return {"success": True, "user": public_user(user)}
    updates["updatedAt"] = now_utc()
    doc = get_collection("user").find_one_and_update(
        {"_id": user["_id"]}, {"$set": updates}, return_document=ReturnDocument.AFTER
    )
    return {"success": True, "user": public_user(doc)}


@app.get("/api/auth/session")
def session_status(authorization: Optional[str] = Header(default=None)):
    # polling this must not count as activity
    user = resolve_user(authorization, touch=False)
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    state = session_guard.check(user.get("lastActivityAt"), now_utc())
    return {"success": True, "session": state.as_dict()}


@app.post("/api/auth/session/extend")
def extend_session(authorization: Optional[str] = Header(default=None)):
    # a lapsed token is fine here as long as the user has not gone idle
    user = resolve_user(authorization, touch=True, allow_lapsed=True)
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    state = session_guard.check(user.get("lastActivityAt"), now_utc())
    return {"success": True, "token": create_token(user), "session": state.as_dict()}


# Products
REQUIRED_PRODUCT_FIELDS = ("title", "description", "category", "productCollection")


@app.get("/api/products")
def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    category: Optional[str] = None,
    collection: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    sortBy: str = "createdAt",
    sortOrder: str = Query("desc", pattern=r"^(asc|desc)$"),
):
    products = get_collection("product")
    query: Dict[str, Any] = {}
    if category:
        query["category"] = category
    if collection:
        query["productCollection"] = collection
    if status:
        query["status"] = status
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [
            {"title": pattern},
            {"description": pattern},
            {"searchTitle": pattern},
            {"searchDescription": pattern},
        ]
    total = products.count_documents(query)
    skip = (page - 1) * limit
    cursor = products.find(query).sort(sortBy, -1 if sortOrder == "desc" else 1).skip(skip).limit(limit)
    items = [serialize_product(p) for p in cursor]
    return {
        "success": True,
        "products": items,
        "pagination": {
            "currentPage": page,
            "totalPages": math.ceil(total / limit),
            "totalProducts": total,
            "hasNext": skip + len(items) < total,
            "hasPrev": page > 1,
        },
    }


@app.get("/api/products/categories")
def list_categories():
    categories = sorted(c for c in get_collection("product").distinct("category") if c)
    return {"success": True, "categories": categories}


@app.get("/api/products/{product_id}")
def get_product(product_id: str):
    doc = get_collection("product").find_one({"_id": oid(product_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"success": True, "product": serialize_product(doc)}


def validate_product(data: Dict[str, Any]) -> Product:
    try:
        return Product.model_validate(data)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail={"error": "Validation error",
                                                     "details": validation_details(e.errors())})


def parse_price(value: Any) -> Optional[float]:
    # admin forms may post numbers as strings
    if isinstance(value, bool):
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    return price if math.isfinite(price) else None


@app.post("/api/products", status_code=201)
def create_product(data: Dict[str, Any] = Body(...), user: Dict[str, Any] = Depends(require_admin)):
    if "collection" in data and "productCollection" not in data:
        data["productCollection"] = data.pop("collection")
    missing = [f for f in REQUIRED_PRODUCT_FIELDS if not data.get(f)]
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing required fields: {', '.join(REQUIRED_PRODUCT_FIELDS)}")
    price = parse_price(data.get("price"))
    if price is None or price <= 0:
        raise HTTPException(status_code=400, detail="Price must be greater than 0")
    data["price"] = price
    product = validate_product(data)
    product_id = create_document("product", product)
    doc = get_collection("product").find_one({"_id": ObjectId(product_id)})
    logger.info("Product %s created by %s", product_id, user["_id"])
    return {"success": True, "message": "Product created successfully", "product": serialize_product(doc)}


@app.put("/api/products/{product_id}")
def update_product(product_id: str, data: Dict[str, Any] = Body(...), user: Dict[str, Any] = Depends(require_admin)):
    products = get_collection("product")
    existing = products.find_one({"_id": oid(product_id)})
    if not existing:
        raise HTTPException(status_code=404, detail="Product not found")
    merged = {k: v for k, v in existing.items() if k not in ("_id", "createdAt", "updatedAt")}
    if "collection" in data and "productCollection" not in data:
        merged.pop("productCollection", None)
    merged.update({k: v for k, v in data.items() if k not in ("_id", "id", "createdAt", "updatedAt")})
    product = validate_product(merged)
    updates = product.model_dump(by_alias=True)
    updates["updatedAt"] = now_utc()
    doc = products.find_one_and_update(
        {"_id": existing["_id"]}, {"$set": updates}, return_document=ReturnDocument.AFTER
    )
    logger.info("Product %s updated by %s", product_id, user["_id"])
    return {"success": True, "message": "Product updated successfully", "product": serialize_product(doc)}


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, user: Dict[str, Any] = Depends(require_admin)):
    res = get_collection("product").delete_one({"_id": oid(product_id)})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    logger.info("Product %s deleted by %s", product_id, user["_id"])
    return {"success": True, "message": "Product deleted successfully"}


# Cart pricing
class CartLineDTO(CamelModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class CartQuoteDTO(CamelModel):
    items: List[CartLineDTO] = Field(..., min_length=1)


def shipping_for(subtotal: float) -> float:
    return 0.0 if subtotal > FREE_SHIPPING_THRESHOLD else SHIPPING_FLAT


def price_items(lines: List[CartLineDTO]) -> Dict[str, Any]:
    """Price cart lines against current product documents."""
    products = get_collection("product")
    # repeated lines for one product are merged so stock is checked against the total
    wanted: Dict[str, int] = {}
    for line in lines:
        wanted[line.product_id] = wanted.get(line.product_id, 0) + line.quantity
    items: List[OrderItem] = []
    for product_id, quantity in wanted.items():
        p = products.find_one({"_id": oid(product_id)})
        if not p:
            raise HTTPException(status_code=404, detail=f"Product {product_id} not found")
        if p.get("status") == "archived":
            raise HTTPException(status_code=400, detail=f"{p['title']} is no longer available")
        if p.get("trackQuantity", True) and not p.get("continueSelling", False) and quantity > p.get("quantity", 0):
            raise HTTPException(status_code=400, detail=f"Only {p.get('quantity', 0)} of {p['title']} left in stock")
        items.append(OrderItem(product_id=product_id, title=p["title"], price=float(p["price"]),
                               quantity=quantity))
    subtotal = round(sum(i.price * i.quantity for i in items), 2)
    shipping = shipping_for(subtotal)
    return {
        "items": items,
        "subtotal": subtotal,
        "shipping": shipping,
        "total": round(subtotal + shipping, 2),
        "freeShippingRemaining": 0.0 if shipping == 0 else round(FREE_SHIPPING_THRESHOLD - subtotal, 2),
        "itemCount": sum(i.quantity for i in items),
    }


@app.post("/api/cart/quote")
def cart_quote(data: CartQuoteDTO):
    quote = price_items(data.items)
    quote["items"] = [i.model_dump(by_alias=True) for i in quote["items"]]
    return {"success": True, "currency": PRIMARY_CURRENCY, **quote}


# Orders
TRACKING_STEPS = [
    ("pending", "Order Placed"),
    ("processing", "Order Confirmed"),
    ("shipped", "Shipped"),
    ("in_transit", "In Transit"),
    ("out_for_delivery", "Out for Delivery"),
    ("delivered", "Delivered"),
]
STEP_INDEX = {status: i for i, (status, _) in enumerate(TRACKING_STEPS)}
FINAL_STATUSES = ("delivered", "cancelled")


class CheckoutDTO(CamelModel):
    customer: CustomerInfo
    items: List[CartLineDTO] = Field(..., min_length=1)
    notes: Optional[Dict[str, str]] = None


class OrderStatusDTO(CamelModel):
    status: OrderStatus
    tracking_number: Optional[str] = None


def new_order_number() -> str:
    orders = get_collection("order")
    year = now_utc().year
    while True:
        number = f"HM-{year}-{secrets.randbelow(10 ** 6):06d}"
        if not orders.find_one({"orderNumber": number}):
            return number


def find_order(order_number: str) -> Dict[str, Any]:
    doc = get_collection("order").find_one({"orderNumber": order_number})
    if not doc:
        raise HTTPException(status_code=404, detail="Order not found")
    return doc


def tracking_steps(doc: Dict[str, Any]) -> List[Dict[str, Any]]:
    reached: Dict[str, datetime] = {}
    for entry in doc.get("statusHistory", []):
        reached.setdefault(entry["status"], entry["at"])
    status = doc.get("status", "pending")
    if status == "cancelled":
        indices = [STEP_INDEX[s] for s in reached if s in STEP_INDEX]
        current = max(indices) if indices else 0
    else:
        current = STEP_INDEX[status]
    steps = []
    for i, (step_status, label) in enumerate(TRACKING_STEPS):
        if status == "cancelled":
            state = "completed" if i <= current else "pending"
        elif i < current or status == "delivered":
            state = "completed"
        elif i == current:
            state = "current"
        else:
            state = "pending"
        at = reached.get(step_status) if state != "pending" else None
        steps.append({"label": label, "status": state, "at": at})
    return steps


@app.post("/api/orders", status_code=201)
def create_order(data: CheckoutDTO, user: Optional[Dict[str, Any]] = Depends(get_current_user)):
    quote = price_items(data.items)
    now = now_utc()
    order = Order(
        order_number=new_order_number(),
        user_id=str(user["_id"]) if user else None,
        customer=data.customer,
        items=quote["items"],
        subtotal=quote["subtotal"],
        shipping=quote["shipping"],
        amount=quote["total"],
        currency=PRIMARY_CURRENCY,
        status_history=[{"status": "pending", "at": now}],
        notes=data.notes,
    )
    order_id = create_document("order", order)
    doc = get_collection("order").find_one({"_id": ObjectId(order_id)})
    logger.info("Order %s placed for %s %s", order.order_number, order.amount, order.currency)
    return {"success": True, "order": to_dict(doc)}


@app.get("/api/orders/mine")
def my_orders(user: Dict[str, Any] = Depends(require_user)):
    cursor = get_collection("order").find({"userId": str(user["_id"])}).sort("createdAt", -1).limit(100)
    return {"success": True, "orders": [to_dict(o) for o in cursor]}


@app.get("/api/orders/track/{order_number}")
def track_order(order_number: str):
    doc = find_order(order_number)
    return {
        "success": True,
        "orderNumber": doc["orderNumber"],
        "status": doc["status"],
        "paymentStatus": doc.get("paymentStatus", "unpaid"),
        "cancelled": doc["status"] == "cancelled",
        "trackingNumber": doc.get("trackingNumber"),
        "items": doc.get("items", []),
        "total": doc.get("amount"),
        "currency": doc.get("currency", PRIMARY_CURRENCY),
        "steps": tracking_steps(doc),
    }


@app.get("/api/admin/orders")
def admin_list_orders(status: Optional[str] = None, search: Optional[str] = None,
                      limit: int = Query(100, ge=1, le=500), user: Dict[str, Any] = Depends(require_admin)):
    query: Dict[str, Any] = {}
    if status and status != "all":
        query["status"] = status
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"orderNumber": pattern}, {"customer.name": pattern}, {"customer.email": pattern}]
    cursor = get_collection("order").find(query).sort("createdAt", -1).limit(limit)
    return {"success": True, "orders": [to_dict(o) for o in cursor]}


@app.put("/api/admin/orders/{order_number}/status")
def update_order_status(order_number: str, data: OrderStatusDTO, user: Dict[str, Any] = Depends(require_admin)):
    doc = find_order(order_number)
    if doc["status"] in FINAL_STATUSES and data.status != doc["status"]:
        raise HTTPException(status_code=400, detail=f"Order is already {doc['status']}")
    now = now_utc()
    updates: Dict[str, Any] = {"status": data.status, "updatedAt": now}
    if data.tracking_number:
        updates["trackingNumber"] = data.tracking_number
    change: Dict[str, Any] = {"$set": updates}
    if data.status != doc["status"]:
        change["$push"] = {"statusHistory": {"status": data.status, "at": now}}
    doc = get_collection("order").find_one_and_update(
        {"_id": doc["_id"]}, change, return_document=ReturnDocument.AFTER
    )
    logger.info("Order %s moved to %s by %s", order_number, data.status, user["_id"])
    return {"success": True, "message": "Order status updated successfully", "order": to_dict(doc)}


# Admin analytics
@app.get("/api/admin/stats")
def admin_stats(user: Dict[str, Any] = Depends(require_admin)):
    by_status = {"draft": 0, "active": 0, "archived": 0}
    stock_units = 0
    inventory_value = 0.0
    low_stock = []
    for p in get_documents("product"):
        status = p.get("status", "draft")
        by_status[status] = by_status.get(status, 0) + 1
        qty = int(p.get("quantity", 0))
        stock_units += qty
        inventory_value += qty * float(p.get("costPerItem", 0))
        if p.get("trackQuantity", True) and qty <= LOW_STOCK_THRESHOLD and p.get("status") != "archived":
            low_stock.append({"id": str(p["_id"]), "title": p.get("title"), "quantity": qty})

    orders = get_collection("order")
    orders_by_status = {row["_id"]: row["count"] for row in orders.aggregate([
        {"$group": {"_id": "$status", "count": {"$sum": 1}}},
    ])}
    revenue = 0.0
    for row in orders.aggregate([
        {"$match": {"paymentStatus": "paid"}},
        {"$group": {"_id": None, "total": {"$sum": "$amount"}}},
    ]):
        revenue = row.get("total", 0.0)

    return {
        "success": True,
        "products": {
            "total": sum(by_status.values()),
            "byStatus": by_status,
            "stockUnits": stock_units,
            "inventoryValue": round(inventory_value, 2),
            "lowStock": low_stock,
        },
        "orders": {
            "total": orders.count_documents({}),
            "byStatus": orders_by_status,
            "revenue": round(revenue, 2),
        },
    }


# Razorpay
class CreatePaymentOrderDTO(CamelModel):
    amount: Optional[float] = None
    currency: str = "INR"
    receipt: Optional[str] = None
    order_number: Optional[str] = None


class VerifyPaymentDTO(BaseModel):
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None


@app.post("/api/razorpay/create-order")
def create_payment_order(data: CreatePaymentOrderDTO):
    if not data.amount:
        raise HTTPException(status_code=400, detail="Amount is required")
    if data.amount < 0:
        raise HTTPException(status_code=400, detail="Amount must be greater than 0")
    order_doc = None
    if data.order_number:
        order_doc = find_order(data.order_number)
        if order_doc.get("paymentStatus") == "paid":
            raise HTTPException(status_code=400, detail="Order is already paid")
        if order_doc["status"] == "cancelled":
            raise HTTPException(status_code=400, detail="Order is cancelled")
        if round(float(order_doc["amount"]), 2) != round(data.amount, 2):
            raise HTTPException(status_code=400, detail="Amount does not match order")
    receipt = data.receipt or data.order_number
    try:
        gateway_order = payments.create_gateway_order(data.amount, data.currency, receipt)
    except payments.GatewayNotConfigured:
        raise HTTPException(status_code=503, detail="Payment gateway not configured")
    except Exception as e:
        logger.error("Error creating Razorpay order: %s", e)
        raise HTTPException(status_code=500, detail={"error": "Failed to create order", "details": str(e)})

    if order_doc is not None:
        get_collection("order").update_one(
            {"_id": order_doc["_id"]},
            {"$set": {"razorpayOrderId": gateway_order["id"], "updatedAt": now_utc()}},
        )
    return {
        "success": True,
        "order": {
            "id": gateway_order["id"],
            "amount": gateway_order["amount"],
            "currency": gateway_order["currency"],
            "receipt": gateway_order.get("receipt"),
            "status": gateway_order.get("status"),
        },
    }


@app.post("/api/razorpay/verify-payment")
def verify_payment(data: VerifyPaymentDTO):
    if not (data.razorpay_order_id and data.razorpay_payment_id and data.razorpay_signature):
        raise HTTPException(status_code=400, detail="Missing payment verification data")
    try:
        authentic = payments.verify_signature(data.razorpay_order_id, data.razorpay_payment_id,
                                              data.razorpay_signature)
    except payments.GatewayNotConfigured:
        raise HTTPException(status_code=503, detail="Payment gateway not configured")

    linked = {"razorpayOrderId": data.razorpay_order_id}
    orders = db["order"] if db is not None else None
    if not authentic:
        logger.warning("Signature mismatch for Razorpay order %s", data.razorpay_order_id)
        if orders is not None:
            orders.update_one(linked, {"$set": {"paymentStatus": "failed", "updatedAt": now_utc()}})
        raise HTTPException(status_code=400, detail="Payment verification failed")

    logger.info("Verified payment %s for Razorpay order %s", data.razorpay_payment_id, data.razorpay_order_id)
    if orders is not None:
        now = now_utc()
        orders.update_one(
            {**linked, "status": "pending"},
            {"$set": {"status": "processing"}, "$push": {"statusHistory": {"status": "processing", "at": now}}},
        )
        orders.update_one(linked, {"$set": {"paymentStatus": "paid", "razorpayPaymentId": data.razorpay_payment_id,
                                            "updatedAt": now}})
    return {
        "success": True,
        "message": "Payment verified successfully",
        "paymentId": data.razorpay_payment_id,
        "orderId": data.razorpay_order_id,
    }


@app.get("/api/razorpay/key")
def get_razorpay_key():
    return {"key": payments.RAZORPAY_KEY_ID}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
