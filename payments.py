"""
Razorpay integration

Order creation goes through the Razorpay SDK. Payment verification is a local HMAC-SHA256
check of "<order_id>|<payment_id>" against the signature returned by Razorpay Checkout.
"""
import hashlib
import hmac
import logging
import os
import time
from typing import Any, Dict, Optional

import razorpay

logger = logging.getLogger("handloom.payments")

RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")

razorpay_client: Optional[razorpay.Client] = None
if RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET:
    razorpay_client = razorpay.Client(auth=(RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET))


class GatewayNotConfigured(RuntimeError):
    pass


def is_configured() -> bool:
    return razorpay_client is not None and bool(RAZORPAY_KEY_SECRET)


def to_minor_units(amount: float) -> int:
    """Rupees to paise."""
    return int(round(amount * 100))


def default_receipt() -> str:
    return f"receipt_{int(time.time() * 1000)}"


def create_gateway_order(amount: float, currency: str = "INR", receipt: Optional[str] = None,
                         notes: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    if razorpay_client is None:
        raise GatewayNotConfigured("Razorpay is not configured")
    data: Dict[str, Any] = {
        "amount": to_minor_units(amount),
        "currency": currency,
        "receipt": receipt or default_receipt(),
        "payment_capture": 1,
    }
    if notes:
        data["notes"] = notes
    order = razorpay_client.order.create(data=data)
    logger.info("Created Razorpay order %s for %s %s", order.get("id"), data["amount"], currency)
    return order


def compute_signature(order_id: str, payment_id: str, secret: Optional[str] = None) -> str:
    key = (secret if secret is not None else RAZORPAY_KEY_SECRET).encode()
    body = f"{order_id}|{payment_id}".encode()
    return hmac.new(key, body, hashlib.sha256).hexdigest()


def verify_signature(order_id: str, payment_id: str, signature: str, secret: Optional[str] = None) -> bool:
    if secret is None and not RAZORPAY_KEY_SECRET:
        raise GatewayNotConfigured("Razorpay secret is not configured")
    expected = compute_signature(order_id, payment_id, secret)
    return hmac.compare_digest(expected.encode(), signature.encode())
