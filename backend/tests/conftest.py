"""
Pytest configuration and shared test helpers for backend tests.
"""
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

# Skip heavy server startup (MongoDB) when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")

BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

import pytest

# Shared TestClient fixture so tests can use in-process requests without a running server.
from fastapi.testclient import TestClient
from server import app
from database import database
from models import BillingInterval, CatalogProduct, SubscriptionLineItem, SubscriptionSnapshot
from services.payment_platform import PaymentPlatform

OWNER_ID = "user-owner-1"
OTHER_USER_ID = "user-other-2"
PRODUCT_ID = "prod-launch-1"
ACCOUNT_ID = "acct_test_123"


class FakePaymentPlatform(PaymentPlatform):
    """In-memory stand-in for Stripe Connect."""

    def __init__(self, subscriptions=None, products=None, account_id=ACCOUNT_ID):
        self.subscriptions = list(subscriptions or [])
        self.products = list(products or [])
        self.account_id = account_id
        self.exchange_error = None
        self.list_error = None
        self.exchanged_codes = []
        self.subscription_calls = []

    def exchange_code(self, code):
        self.exchanged_codes.append(code)
        if self.exchange_error:
            raise self.exchange_error
        return self.account_id

    def list_active_subscriptions(self, connected_account_id):
        self.subscription_calls.append(connected_account_id)
        if self.list_error:
            raise self.list_error
        return list(self.subscriptions)

    def list_products(self, connected_account_id):
        if self.list_error:
            raise self.list_error
        return list(self.products)


class FakeProductsCollection:
    """Just enough of a Motor collection for find_one/update_one with $set."""

    def __init__(self, docs=None):
        self.docs = [dict(d) for d in (docs or [])]
        self.update_calls = []

    @staticmethod
    def _matches(doc, query):
        return all(doc.get(k) == v for k, v in query.items())

    async def find_one(self, query, projection=None):
        for doc in self.docs:
            if self._matches(doc, query):
                return dict(doc)
        return None

    async def update_one(self, query, update):
        self.update_calls.append((query, update))
        for doc in self.docs:
            if self._matches(doc, query):
                doc.update(update.get("$set", {}))
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    def get(self, product_id):
        return next(d for d in self.docs if d["product_id"] == product_id)


def make_item(product_id="P1", unit_amount=2000, interval="month", interval_count=1, quantity=1):
    return SubscriptionLineItem(
        product_id=product_id,
        unit_amount=unit_amount,
        interval=BillingInterval(interval),
        interval_count=interval_count,
        quantity=quantity,
    )


def make_subscription(sub_id="sub_1", items=None, status="active", period_days=10, **kwargs):
    now = datetime.now(timezone.utc)
    fields = {
        "subscription_id": sub_id,
        "status": status,
        "current_period_end": now + timedelta(days=period_days),
        "customer_id": f"cus_{sub_id}",
        "items": items if items is not None else [make_item()],
    }
    fields.update(kwargs)
    return SubscriptionSnapshot(**fields)


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app). Use for unit-style API tests."""
    return TestClient(app)


@pytest.fixture
def platform():
    return FakePaymentPlatform(
        subscriptions=[make_subscription("sub_1", [make_item("P1", 2000, quantity=3)])],
        products=[CatalogProduct(external_id="P1", name="Pro Plan")],
    )


@pytest.fixture
def products():
    return FakeProductsCollection([
        {
            "product_id": PRODUCT_ID,
            "owner_id": OWNER_ID,
            "name": "Launch One",
            "stripe_connect_account_id": None,
            "stripe_product_id": None,
            "verified_mrr": None,
            "mrr_verified_at": None,
        }
    ])


@pytest.fixture
def fake_db(products):
    """Patch the global database handle with the fake products collection."""
    db = MagicMock()
    db.products = products
    db.audit_logs = MagicMock()
    db.audit_logs.insert_one = AsyncMock()
    with patch.object(database, "get_db", return_value=db):
        yield db
