"""Service layer for subscription sync operations."""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings, get_settings
from ..database import (
    RecordStore,
    ACCOUNTS,
    SUBSCRIPTION_RECORDS,
    PAYMENT_RECORDS,
)
from ..errors import NotFoundError, ValidationError
from ..plans import FREE_PLAN, SubscriptionStatus, get_plan_features
from .billing_provider import BillingProviderBase, get_billing_provider
from .models import SyncReport
from .reconciler import Reconciler
from .report import ReportGenerator

logger = logging.getLogger(__name__)

PAYMENT_HISTORY_LIMIT = 10

# Webhook events that can change an account's subscriptions or payments
SYNC_EVENT_PREFIXES = ("customer.subscription.", "invoice.")
CHECKOUT_COMPLETED = "checkout.session.completed"


class ReconciliationService:
    """Service for running subscription syncs and reading subscription state."""

    def __init__(
        self,
        session: AsyncSession,
        billing_provider: Optional[BillingProviderBase] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize the reconciliation service.

        Args:
            session: Async database session.
            billing_provider: Optional billing provider. Will create the default if not provided.
            settings: Optional settings. Defaults to the process-wide settings.
        """
        self.session = session
        self.store = RecordStore(session)
        self.settings = settings or get_settings()
        self._billing_provider = billing_provider

    @property
    def billing_provider(self) -> BillingProviderBase:
        """The billing provider, created on first use."""
        if self._billing_provider is None:
            self._billing_provider = get_billing_provider(settings=self.settings)
        return self._billing_provider

    def build_reconciler(self) -> Reconciler:
        return Reconciler(
            billing_provider=self.billing_provider,
            store=self.store,
            price_tiers=self.settings.price_tiers,
            charge_sync_limit=self.settings.charge_sync_limit,
        )

    async def sync_account(self, account_id: Optional[str]) -> SyncReport:
        """Reconcile one account against the billing provider.

        Args:
            account_id: Local account ID.

        Returns:
            SyncReport with per-record results.
        """
        return await self.build_reconciler().reconcile(account_id)

    async def get_subscription_status(self, account_id: str) -> Dict[str, Any]:
        """Describe the account's current plan, features and recent payments.

        Accounts without an Active Subscription Record are on the Free plan.
        """
        account = await self.store.get(ACCOUNTS, account_id)
        if account is None:
            raise NotFoundError(f"Account {account_id} not found", reference=account_id)

        current = await self.store.find_one(
            SUBSCRIPTION_RECORDS,
            order_by="created_at",
            descending=True,
            account_id=account.id,
            status=SubscriptionStatus.ACTIVE.value,
        )

        if current is not None:
            subscription = {
                "planTier": current.plan_tier,
                "status": current.status,
                "amount": float(current.amount),
                "billingPeriod": current.billing_period,
                "periodEnd": current.period_end.isoformat() if current.period_end else None,
                "startedAt": current.created_at.isoformat() if current.created_at else None,
                "endedAt": current.ended_at.isoformat() if current.ended_at else None,
                "externalSubscriptionReference": current.external_subscription_reference,
            }
        else:
            subscription = {
                "planTier": FREE_PLAN,
                "status": SubscriptionStatus.ACTIVE.value,
                "amount": 0,
                "billingPeriod": None,
                "periodEnd": None,
                "startedAt": account.created_at.isoformat() if account.created_at else None,
                "endedAt": None,
                "externalSubscriptionReference": None,
            }

        payments = await self.store.find_all(
            PAYMENT_RECORDS,
            order_by="created_at",
            descending=True,
            limit=PAYMENT_HISTORY_LIMIT,
            account_id=account.id,
        )

        return {
            "success": True,
            "subscription": subscription,
            "features": get_plan_features(subscription["planTier"]),
            "paymentHistory": [
                {
                    "id": p.id,
                    "amount": float(p.amount),
                    "status": p.status,
                    "date": p.created_at.isoformat() if p.created_at else None,
                    "receiptUrl": p.receipt_url,
                    "description": p.description,
                }
                for p in payments
            ],
            "accountKind": account.account_kind,
        }

    async def handle_billing_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """Reconcile the account affected by a billing provider webhook event.

        Checkout completion also records the customer reference on the
        account named in the session metadata when the account has none yet.
        """
        event_type = event.get("type") or ""
        obj = (event.get("data") or {}).get("object") or {}
        customer = obj.get("customer")
        customer_id = customer.get("id") if isinstance(customer, dict) else customer

        logger.info(f"Received billing event {event.get('id')} ({event_type})")

        if event_type != CHECKOUT_COMPLETED and not event_type.startswith(SYNC_EVENT_PREFIXES):
            return {"received": True, "type": event_type, "synced": False}

        if not customer_id:
            raise ValidationError(f"Event {event.get('id')} carries no customer reference")

        account = None
        if event_type == CHECKOUT_COMPLETED:
            account_id = (obj.get("metadata") or {}).get("account_id") or obj.get("client_reference_id")
            if account_id:
                account = await self.store.get(ACCOUNTS, account_id)
                if account is not None and not account.billing_customer_reference:
                    await self.store.update(ACCOUNTS, account.id, {"billing_customer_reference": customer_id})
                    logger.info(f"Linked account {account.id} to billing customer {customer_id}")

        if account is None:
            account = await self.store.find_one(ACCOUNTS, billing_customer_reference=customer_id)

        if account is None:
            logger.warning(f"No account linked to billing customer {customer_id}; ignoring {event_type}")
            return {"received": True, "type": event_type, "synced": False}

        report = await self.sync_account(account.id)
        return {
            "received": True,
            "type": event_type,
            "synced": True,
            "accountId": account.id,
            "hasActiveSubscription": report.has_active_subscription,
        }

    def generate_report(
        self,
        report: SyncReport,
        format: str = "json",
        include_details: bool = True,
    ) -> str:
        """Generate a formatted report from sync results.

        Args:
            report: SyncReport to format.
            format: Output format ('json', 'csv', 'text').
            include_details: Include per-record entries (for JSON format).

        Returns:
            Formatted report string.
        """
        generator = ReportGenerator(report)

        if format == "json":
            return generator.to_json(include_details=include_details)
        elif format == "csv":
            return generator.to_csv()
        elif format == "text":
            return generator.to_summary_text()
        else:
            raise ValueError(f"Unsupported report format: {format}")
