import hashlib
import hmac

import pytest

import payments
from conftest import TEST_SECRET


def sign(order_id, payment_id, secret=TEST_SECRET):
    return hmac.new(secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


def test_compute_signature_matches_razorpay_scheme():
    assert payments.compute_signature("order_A", "pay_B", "s3cret") == sign("order_A", "pay_B", "s3cret")


def test_verify_signature_rejects_tampering():
    good = sign("order_A", "pay_B", "s3cret")
    assert payments.verify_signature("order_A", "pay_B", good, secret="s3cret")
    assert not payments.verify_signature("order_A", "pay_C", good, secret="s3cret")
    assert not payments.verify_signature("order_A", "pay_B", good, secret="other")
    assert not payments.verify_signature("order_A", "pay_B", "", secret="s3cret")


def test_verify_signature_without_secret(monkeypatch):
    monkeypatch.setattr(payments, "RAZORPAY_KEY_SECRET", "")
    with pytest.raises(payments.GatewayNotConfigured):
        payments.verify_signature("order_A", "pay_B", "abc")


def test_to_minor_units_rounds_paise():
    assert payments.to_minor_units(499) == 49900
    assert payments.to_minor_units(19.99) == 1999


def test_create_order_converts_to_paise(client, gateway):
    res = client.post("/api/razorpay/create-order", json={"amount": 2500.5, "receipt": "rcpt_1"})
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["order"] == {
        "id": "order_Test0001", "amount": 250050, "currency": "INR", "receipt": "rcpt_1", "status": "created",
    }
    sent = gateway.order.created[0]
    assert sent["payment_capture"] == 1


def test_create_order_default_receipt(client, gateway):
    res = client.post("/api/razorpay/create-order", json={"amount": 100, "currency": "INR"})
    assert res.status_code == 200
    assert gateway.order.created[0]["receipt"].startswith("receipt_")


def test_create_order_requires_positive_amount(client):
    res = client.post("/api/razorpay/create-order", json={})
    assert res.status_code == 400
    assert res.json()["error"] == "Amount is required"
    assert client.post("/api/razorpay/create-order", json={"amount": 0}).status_code == 400
    res = client.post("/api/razorpay/create-order", json={"amount": -50})
    assert res.status_code == 400
    assert res.json()["error"] == "Amount must be greater than 0"


def test_create_order_gateway_failure(client, gateway):
    gateway.order.fail_with = RuntimeError("Authentication failed")
    res = client.post("/api/razorpay/create-order", json={"amount": 100})
    assert res.status_code == 500
    assert res.json()["error"] == "Failed to create order"
    assert res.json()["details"] == "Authentication failed"


def test_create_order_without_gateway(client, monkeypatch):
    monkeypatch.setattr(payments, "razorpay_client", None)
    res = client.post("/api/razorpay/create-order", json={"amount": 100})
    assert res.status_code == 503


def test_verify_payment_success(client):
    payload = {
        "razorpay_order_id": "order_X1",
        "razorpay_payment_id": "pay_Y1",
        "razorpay_signature": sign("order_X1", "pay_Y1"),
    }
    res = client.post("/api/razorpay/verify-payment", json=payload)
    assert res.status_code == 200
    assert res.json() == {
        "success": True,
        "message": "Payment verified successfully",
        "paymentId": "pay_Y1",
        "orderId": "order_X1",
    }


def test_verify_payment_bad_signature(client):
    payload = {"razorpay_order_id": "order_X1", "razorpay_payment_id": "pay_Y1", "razorpay_signature": "deadbeef"}
    res = client.post("/api/razorpay/verify-payment", json=payload)
    assert res.status_code == 400
    assert res.json() == {"success": False, "error": "Payment verification failed"}


def test_verify_payment_missing_fields(client):
    res = client.post("/api/razorpay/verify-payment", json={"razorpay_order_id": "order_X1"})
    assert res.status_code == 400
    assert res.json()["error"] == "Missing payment verification data"


def test_razorpay_key(client):
    assert client.get("/api/razorpay/key").json() == {"key": "rzp_test_handloom"}
