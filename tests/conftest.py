"""Shared test fixtures and configuration."""

import os
import json
import pytest
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

# Set up test environment variables before importing modules
os.environ.setdefault("STRIPE_API_KEY", "sk_test_dummy_key_for_testing")
os.environ.setdefault("API_KEY", "test_api_key_12345")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

from covetalks_billing.database import (
    Base,
    Account,
    AccountKind,
    RecordStore,
    create_async_engine,
    get_async_session_factory,
)
from covetalks_billing.config import Settings
from covetalks_billing.errors import NotFoundError
from covetalks_billing.plans import PlanTier
from covetalks_billing.reconciliation import (
    BillingProviderBase,
    ProviderSubscription,
    ProviderInvoice,
    ProviderCharge,
    Reconciler,
)

PRICE_TIERS = {
    "price_standard_monthly": PlanTier.STANDARD,
    "price_plus_yearly": PlanTier.PLUS,
    "price_premium_monthly": PlanTier.PREMIUM,
}

BASE_TIME = datetime(2025, 1, 1, 12, 0, 0)


class FakeBillingProvider(BillingProviderBase):
    """In-memory billing provider for driving the reconciler."""

    def __init__(
        self,
        subscriptions: Optional[List[ProviderSubscription]] = None,
        invoices: Optional[Dict[str, ProviderInvoice]] = None,
        charges: Optional[List[ProviderCharge]] = None,
    ):
        self.subscriptions = list(subscriptions or [])
        self.invoices = dict(invoices or {})
        self.charges = list(charges or [])
        self.calls: List[tuple] = []

    def list_subscriptions(self, customer_id: str) -> List[ProviderSubscription]:
        self.calls.append(("list_subscriptions", customer_id))
        return list(self.subscriptions)

    def retrieve_invoice(self, invoice_id: str) -> ProviderInvoice:
        self.calls.append(("retrieve_invoice", invoice_id))
        if invoice_id not in self.invoices:
            raise NotFoundError(f"Invoice {invoice_id} not found", reference=invoice_id)
        return self.invoices[invoice_id]

    def list_charges(self, customer_id: str, limit: int = 10) -> List[ProviderCharge]:
        self.calls.append(("list_charges", customer_id, limit))
        return self.charges[:limit]

    def parse_webhook(self, headers: Dict[str, str], body: bytes) -> Dict[str, Any]:
        return json.loads(body)


# Database fixtures
@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    engine = create_async_engine(
        database_url="sqlite+aiosqlite:///:memory:",
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Create a database session for testing."""
    session_factory = get_async_session_factory(db_engine)
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(db_session):
    """Record store bound to the test session."""
    return RecordStore(db_session)


@pytest.fixture
async def account(db_session):
    """A speaker account linked to a billing customer."""
    acct = Account(
        id="acc_speaker_001",
        account_kind=AccountKind.SPEAKER.value,
        billing_customer_reference="cus_test123",
        created_at=BASE_TIME - timedelta(days=30),
    )
    db_session.add(acct)
    await db_session.flush()
    return acct


@pytest.fixture
async def unlinked_account(db_session):
    """An organization account with no billing customer yet."""
    acct = Account(
        id="acc_org_001",
        account_kind=AccountKind.ORGANIZATION.value,
        billing_customer_reference=None,
        created_at=BASE_TIME - timedelta(days=30),
    )
    db_session.add(acct)
    await db_session.flush()
    return acct


# Provider object factories
@pytest.fixture
def make_invoice():
    """Build ProviderInvoice objects with sensible defaults."""
    def _make(invoice_id: str = "in_001", **overrides: Any) -> ProviderInvoice:
        data = {
            "id": invoice_id,
            "payment_intent": f"pi_{invoice_id[3:]}",
            "amount_paid": 1999,
            "status": "paid",
            "hosted_invoice_url": f"https://invoice.stripe.com/i/{invoice_id}",
            "number": "INV-0001",
            "created": BASE_TIME,
        }
        data.update(overrides)
        return ProviderInvoice(**data)
    return _make


@pytest.fixture
def make_subscription():
    """Build ProviderSubscription objects with sensible defaults."""
    def _make(sub_id: str = "sub_001", **overrides: Any) -> ProviderSubscription:
        data = {
            "id": sub_id,
            "customer": "cus_test123",
            "status": "active",
            "price_id": "price_standard_monthly",
            "unit_amount": 1999,
            "interval": "month",
            "created": BASE_TIME,
            "canceled_at": None,
            "current_period_end": BASE_TIME + timedelta(days=30),
            "latest_invoice_id": None,
            "latest_invoice": None,
        }
        data.update(overrides)
        return ProviderSubscription(**data)
    return _make


@pytest.fixture
def make_charge():
    """Build ProviderCharge objects with sensible defaults."""
    def _make(charge_id: str = "ch_001", **overrides: Any) -> ProviderCharge:
        data = {
            "id": charge_id,
            "status": "succeeded",
            "invoice": "in_charge_001",
            "payment_intent": f"pi_{charge_id[3:]}",
            "amount": 1999,
            "description": None,
            "receipt_url": f"https://pay.stripe.com/receipts/{charge_id}",
            "created": BASE_TIME + timedelta(days=1),
        }
        data.update(overrides)
        return ProviderCharge(**data)
    return _make


@pytest.fixture
def fake_provider():
    """Empty in-memory billing provider."""
    return FakeBillingProvider()


@pytest.fixture
def reconciler(fake_provider, store):
    """Reconciler wired to the fake provider and the test database."""
    return Reconciler(
        billing_provider=fake_provider,
        store=store,
        price_tiers=PRICE_TIERS,
    )


@pytest.fixture
def settings():
    """Settings carrying the test price mapping."""
    return Settings(
        stripe_api_key="sk_test_dummy_key_for_testing",
        price_tiers=PRICE_TIERS,
    )


@pytest.fixture
def auth_headers():
    """Return headers with authentication."""
    return {"Authorization": "Bearer test_api_key_12345"}
