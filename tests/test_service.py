"""Tests for the reconciliation service layer."""

import json
import pytest
from datetime import datetime

from covetalks_billing.database import ACCOUNTS
from covetalks_billing.errors import NotFoundError, ValidationError
from covetalks_billing.reconciliation import ReconciliationService, SyncReport


@pytest.fixture
def service(db_session, fake_provider, settings):
    """Service bound to the test database and fake provider."""
    return ReconciliationService(db_session, billing_provider=fake_provider, settings=settings)


class TestSyncAccount:
    """Tests for running a sync through the service."""

    async def test_uses_configured_price_tiers(self, service, fake_provider, account, make_subscription):
        fake_provider.subscriptions = [make_subscription(price_id="price_plus_yearly", interval="year")]

        report = await service.sync_account(account.id)

        assert report.has_active_subscription is True
        assert account.current_plan == "Plus"

    async def test_missing_account_id(self, service):
        with pytest.raises(ValidationError):
            await service.sync_account(None)

    async def test_generate_report_formats(self, service):
        report = SyncReport(id="rpt_1", account_id="acc_1")
        assert json.loads(service.generate_report(report, format="json"))["id"] == "rpt_1"
        assert service.generate_report(report, format="csv").startswith("type,record_type")
        assert "SUBSCRIPTION SYNC REPORT" in service.generate_report(report, format="text")
        with pytest.raises(ValueError):
            service.generate_report(report, format="xml")


class TestSubscriptionStatus:
    """Tests for reading an account's current plan."""

    async def test_free_plan_without_subscription(self, service, unlinked_account):
        status = await service.get_subscription_status(unlinked_account.id)

        assert status["success"] is True
        assert status["subscription"]["planTier"] == "Free"
        assert status["subscription"]["amount"] == 0
        assert status["features"]["opportunityApplications"] == 3
        assert status["paymentHistory"] == []
        assert status["accountKind"] == "Organization"

    async def test_active_subscription_and_payments(
        self, service, fake_provider, account, make_subscription, make_invoice
    ):
        invoice = make_invoice("in_plus", amount_paid=149700, number="INV-7")
        fake_provider.subscriptions = [
            make_subscription(
                "sub_plus",
                price_id="price_plus_yearly",
                interval="year",
                unit_amount=149700,
                current_period_end=datetime(2026, 1, 1),
                latest_invoice_id=invoice.id,
                latest_invoice=invoice,
            )
        ]
        await service.sync_account(account.id)

        status = await service.get_subscription_status(account.id)

        subscription = status["subscription"]
        assert subscription["planTier"] == "Plus"
        assert subscription["billingPeriod"] == "Yearly"
        assert subscription["amount"] == 1497.0
        assert subscription["periodEnd"] == "2026-01-01T00:00:00"
        assert subscription["externalSubscriptionReference"] == "sub_plus"
        assert status["features"]["profileHighlight"] is True
        assert len(status["paymentHistory"]) == 1
        assert status["paymentHistory"][0]["amount"] == 1497.0
        assert status["paymentHistory"][0]["description"] == "Payment for invoice INV-7"
        assert status["accountKind"] == "Speaker"

    async def test_cancelled_subscription_falls_back_to_free(
        self, service, fake_provider, account, make_subscription
    ):
        fake_provider.subscriptions = [make_subscription(status="canceled", canceled_at=datetime(2025, 1, 5))]
        await service.sync_account(account.id)

        status = await service.get_subscription_status(account.id)

        assert status["subscription"]["planTier"] == "Free"

    async def test_unknown_account(self, service):
        with pytest.raises(NotFoundError):
            await service.get_subscription_status("acc_missing")


class TestBillingEvents:
    """Tests for webhook-driven syncs."""

    async def test_subscription_event_syncs_linked_account(
        self, service, fake_provider, account, make_subscription
    ):
        fake_provider.subscriptions = [make_subscription()]
        event = {
            "id": "evt_1",
            "type": "customer.subscription.updated",
            "data": {"object": {"id": "sub_001", "customer": "cus_test123"}},
        }

        result = await service.handle_billing_event(event)

        assert result == {
            "received": True,
            "type": "customer.subscription.updated",
            "synced": True,
            "accountId": account.id,
            "hasActiveSubscription": True,
        }

    async def test_unhandled_event_type(self, service, fake_provider):
        result = await service.handle_billing_event({"id": "evt_2", "type": "customer.created", "data": {"object": {}}})

        assert result["synced"] is False
        assert fake_provider.calls == []

    async def test_unknown_customer_is_ignored(self, service, fake_provider, account):
        event = {"id": "evt_3", "type": "invoice.paid", "data": {"object": {"customer": "cus_stranger"}}}

        result = await service.handle_billing_event(event)

        assert result["synced"] is False
        assert fake_provider.calls == []

    async def test_event_without_customer_rejected(self, service):
        with pytest.raises(ValidationError):
            await service.handle_billing_event({"id": "evt_4", "type": "invoice.paid", "data": {"object": {}}})

    async def test_checkout_links_customer(self, service, fake_provider, store, unlinked_account):
        event = {
            "id": "evt_5",
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "customer": "cus_new456",
                    "metadata": {"account_id": unlinked_account.id},
                }
            },
        }

        result = await service.handle_billing_event(event)

        assert result["synced"] is True
        assert result["accountId"] == unlinked_account.id
        account = await store.get(ACCOUNTS, unlinked_account.id)
        assert account.billing_customer_reference == "cus_new456"
        assert ("list_subscriptions", "cus_new456") in fake_provider.calls

    async def test_checkout_does_not_relink_account(self, service, fake_provider, account):
        event = {
            "id": "evt_6",
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "customer": {"id": "cus_other"},
                    "client_reference_id": account.id,
                }
            },
        }

        result = await service.handle_billing_event(event)

        assert account.billing_customer_reference == "cus_test123"
        assert result["synced"] is True
        assert ("list_subscriptions", "cus_test123") in fake_provider.calls
