import os

os.environ.pop("DATABASE_URL", None)
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["JWT_SECRET"] = "test-access-secret"
os.environ["REFRESH_TOKEN_SECRET"] = "test-refresh-secret"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["COOKIE_SECURE"] = "false"

import hashlib
import hmac
import json
import time
from datetime import datetime, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import ensure_indexes, get_db
from main import app
from security import hash_password
from sessions import session_registry

PASSWORD = "secret123"


@pytest.fixture
def db():
    database = mongomock.MongoClient(tz_aware=True)["jewelry_store_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    session_registry.clear()
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    session_registry.clear()


def make_user(db, email="jane@example.com", role="user", password=PASSWORD, **extra):
    now = datetime.now(timezone.utc)
    doc = {
        "firstName": "Jane",
        "lastName": "Doe",
        "email": email,
        "password": hash_password(password),
        "role": role,
        "refreshToken": None,
        "loginAttempts": 0,
        "lockUntil": None,
        "isActive": True,
        "createdAt": now,
        "updatedAt": now,
    }
    doc.update(extra)
    doc["_id"] = db["user"].insert_one(doc).inserted_id
    return doc


def login(client, email, password=PASSWORD, is_admin_login=False):
    return client.post(
        "/api/auth/login",
        json={"email": email, "password": password, "isAdminLogin": is_admin_login},
    )


@pytest.fixture
def user(db):
    return make_user(db)


@pytest.fixture
def admin(db):
    return make_user(db, email="admin@example.com", role="admin")


@pytest.fixture
def user_client(client, user):
    assert login(client, user["email"]).status_code == 200
    return client


@pytest.fixture
def admin_client(client, admin):
    assert login(client, admin["email"], is_admin_login=True).status_code == 200
    return client


def sign_stripe_payload(payload: dict, secret: str = "whsec_test"):
    body = json.dumps(payload)
    timestamp = int(time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.{body}".encode(), hashlib.sha256).hexdigest()
    return body, f"t={timestamp},v1={signature}"


def order_payload(total=1250.0, email="buyer@example.com", intent_id=None):
    return {
        "items": [
            {
                "productId": "64b7f0c2a1b2c3d4e5f60718",
                "productType": "wedding",
                "title": "Classic Band",
                "price": total,
                "quantity": 1,
                "metalOption": {"karat": "14K", "color": "Yellow Gold"},
            }
        ],
        "shippingAddress": {
            "firstName": "Ann",
            "lastName": "Buyer",
            "email": email,
            "phone": "555-0100",
            "address": "1 Main St",
            "city": "Springfield",
            "state": "IL",
            "zipCode": "62701",
        },
        "paymentInfo": {"paymentMethod": "stripe", "stripePaymentIntentId": intent_id},
        "pricing": {"subtotal": total, "shipping": 0, "tax": 0, "total": total, "shippingMethod": "standard"},
    }
