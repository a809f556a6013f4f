import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import main
import payments

TEST_SECRET = "test_key_secret"
ADMIN_CODE = "loom-admin-2024"


class FakeOrders:
    def __init__(self):
        self.created = []
        self.fail_with = None

    def create(self, data=None, **kwargs):
        if self.fail_with is not None:
            raise self.fail_with
        self.created.append(data)
        return {
            "id": f"order_Test{len(self.created):04d}",
            "entity": "order",
            "amount": data["amount"],
            "currency": data["currency"],
            "receipt": data["receipt"],
            "status": "created",
        }


class FakeRazorpayClient:
    def __init__(self):
        self.order = FakeOrders()


@pytest.fixture
def mongo_db(monkeypatch):
    db = mongomock.MongoClient()["handloom_test"]
    monkeypatch.setattr(database, "db", db)
    monkeypatch.setattr(main, "db", db)
    return db


@pytest.fixture
def gateway(monkeypatch):
    fake = FakeRazorpayClient()
    monkeypatch.setattr(payments, "razorpay_client", fake)
    monkeypatch.setattr(payments, "RAZORPAY_KEY_ID", "rzp_test_handloom")
    monkeypatch.setattr(payments, "RAZORPAY_KEY_SECRET", TEST_SECRET)
    return fake


@pytest.fixture
def client(mongo_db, gateway, monkeypatch):
    monkeypatch.setattr(main, "ADMIN_ACCESS_CODE", ADMIN_CODE)
    with TestClient(main.app) as c:
        yield c


def register(client, email, role="customer", **extra):
    payload = {"fullName": "Test User", "email": email, "password": "secret123", "role": role}
    payload.update(extra)
    res = client.post("/api/auth/register", json=payload)
    assert res.status_code == 201, res.json()
    return res.json()


@pytest.fixture
def admin_headers(client):
    body = register(client, "admin@handloomportal.in", role="admin", accessCode=ADMIN_CODE)
    return {"Authorization": f"Bearer {body['token']}"}


@pytest.fixture
def customer_headers(client):
    body = register(client, "meera@example.com")
    return {"Authorization": f"Bearer {body['token']}"}


def product_payload(**overrides):
    payload = {
        "title": "Banarasi Silk Saree",
        "description": "Handwoven pure silk with zari border",
        "category": "women",
        "productCollection": "Banarasi",
        "price": 3500,
        "costPerItem": 2100,
        "quantity": 10,
        "images": ["https://cdn.handloomportal.in/sarees/banarasi.jpg"],
        "variants": [{"name": "Color", "values": ["Red", "Gold"]}],
        "status": "active",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_product(client, admin_headers):
    def _make(**overrides):
        res = client.post("/api/products", json=product_payload(**overrides), headers=admin_headers)
        assert res.status_code == 201, res.json()
        return res.json()["product"]
    return _make
