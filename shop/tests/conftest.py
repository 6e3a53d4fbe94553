import hashlib
import hmac
import json
import time
from decimal import Decimal

import pytest
from rest_framework.test import APIClient

from shop.models import Product

WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture(autouse=True)
def shop_settings(settings):
    settings.SHOP_NOTIFY_INLINE = True
    settings.STRIPE_SECRET_KEY = "sk_test_dummy"
    settings.STRIPE_WEBHOOK_SECRET = WEBHOOK_SECRET
    settings.EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"
    return settings


@pytest.fixture
def user(django_user_model):
    return django_user_model.objects.create_user(
        username="john", email="customer@test.com", password="Customer@123", first_name="John"
    )


@pytest.fixture
def other_user(django_user_model):
    return django_user_model.objects.create_user(
        username="jane", email="jane@test.com", password="Customer@123"
    )


@pytest.fixture
def staff_user(django_user_model):
    return django_user_model.objects.create_user(
        username="admin", email="admin@shinaboutique.com", password="Admin@123", is_staff=True
    )


@pytest.fixture
def make_product():
    counter = {"n": 0}

    def make(price="100.00", stock=10, name=None, **extra):
        counter["n"] += 1
        n = counter["n"]
        return Product.objects.create(
            name=name or f"Product {n}",
            slug=f"product-{n}",
            sku=f"SKU-{n:04d}",
            price=Decimal(price),
            stock=stock,
            images=[f"https://cdn.example.com/p{n}.jpg"],
            **extra,
        )
    return make


@pytest.fixture
def address():
    return {
        "first_name": "John",
        "last_name": "Doe",
        "street": "123 Main Street",
        "city": "Chennai",
        "state": "Tamil Nadu",
        "zip_code": "600001",
        "country": "India",
        "phone": "+919876543211",
    }


@pytest.fixture
def api(user):
    client = APIClient()
    client.force_authenticate(user)
    return client


@pytest.fixture
def staff_api(staff_user):
    client = APIClient()
    client.force_authenticate(staff_user)
    return client


@pytest.fixture
def anon_api():
    return APIClient()


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header the way the processor does."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    sig = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={sig}"


def intent_event(event_type: str, intent_id: str, status: str = "succeeded") -> bytes:
    return json.dumps({
        "id": "evt_test_1",
        "object": "event",
        "type": event_type,
        "data": {"object": {"id": intent_id, "object": "payment_intent", "status": status}},
    }).encode()
