"""Reconciliation of billing provider subscriptions into local records."""

import uuid
import logging
from decimal import Decimal
from typing import Dict, List, Mapping, Optional

from ..database import (
    Account,
    SubscriptionRecord,
    AccountSubscriptionStatus,
    PaymentStatus,
    RecordStore,
    ACCOUNTS,
    SUBSCRIPTION_RECORDS,
    PAYMENT_RECORDS,
    utcnow,
)
from ..errors import (
    BillingSyncError,
    DuplicateRecordError,
    ErrorKind,
    NotFoundError,
    ValidationError,
)
from ..plans import (
    PlanTier,
    SubscriptionStatus,
    resolve_plan_tier,
    resolve_billing_period,
    map_subscription_status,
)
from .billing_provider import BillingProviderBase
from .models import (
    ProviderSubscription,
    ProviderInvoice,
    ProviderCharge,
    RecordOk,
    RecordErr,
    RecordOutcome,
    RecordResult,
    SyncReport,
)

logger = logging.getLogger(__name__)

DEFAULT_CHARGE_DESCRIPTION = "Subscription payment"
NO_CUSTOMER_MESSAGE = "No billing customer found"


def to_major_units(minor: Optional[int]) -> Decimal:
    """Convert an integer minor-unit amount (cents) to a decimal amount."""
    return (Decimal(minor or 0) / Decimal(100)).quantize(Decimal("0.01"))


class Reconciler:
    """Mirrors an account's provider subscriptions and payments locally.

    Subscriptions and charges are processed one at a time so that result
    ordering is reproducible and a failure on one item never stops the rest.
    """

    def __init__(
        self,
        billing_provider: BillingProviderBase,
        store: RecordStore,
        price_tiers: Optional[Mapping[str, PlanTier]] = None,
        charge_sync_limit: int = 10,
    ):
        """Initialize the reconciler.

        Args:
            billing_provider: Source of subscription, invoice and charge data.
            store: Local record persistence.
            price_tiers: Mapping of provider price IDs to plan tiers. Unmapped
                prices sync as Standard.
            charge_sync_limit: How many recent charges to inspect per run.
        """
        self.billing_provider = billing_provider
        self.store = store
        self.price_tiers: Dict[str, PlanTier] = dict(price_tiers or {})
        self.charge_sync_limit = charge_sync_limit

    async def reconcile(self, account_id: Optional[str]) -> SyncReport:
        """Bring local records for an account in line with the billing provider.

        The process:
        1. Resolve the account; bail out early when it has no billing customer
        2. Create or update a Subscription Record per provider subscription
        3. Refresh the account's subscription summary
        4. Mirror recent successful invoice charges as Payment Records

        Args:
            account_id: Local account ID.

        Returns:
            SyncReport with created/updated/errors buckets.

        Raises:
            ValidationError: If account_id is empty.
            NotFoundError: If the account does not exist.
        """
        if not account_id:
            raise ValidationError("accountId is required")

        account = await self.store.get(ACCOUNTS, account_id)
        if account is None:
            raise NotFoundError(f"Account {account_id} not found", reference=account_id)

        customer_id = account.billing_customer_reference
        report = SyncReport(
            id=str(uuid.uuid4()),
            account_id=account.id,
            billing_customer_reference=customer_id,
        )

        if not customer_id:
            logger.info(f"Account {account.id} has no billing customer; nothing to sync")
            report.message = NO_CUSTOMER_MESSAGE
            report.completed_at = utcnow()
            return report

        logger.info(f"Starting subscription sync for account {account.id} (customer {customer_id})")

        subscriptions: Optional[List[ProviderSubscription]]
        try:
            subscriptions = self.billing_provider.list_subscriptions(customer_id)
        except BillingSyncError as e:
            logger.error(f"Could not list subscriptions for customer {customer_id}: {e.message}")
            report.results.add(RecordErr(external_id=customer_id, kind=e.kind, message=e.message))
            subscriptions = None

        if subscriptions is not None:
            ordered = sorted(subscriptions, key=lambda s: (s.created, s.id))
            for subscription in ordered:
                report.results.add(await self._sync_subscription(account, subscription, report))

            active = [s for s in ordered if s.status == "active"]
            report.has_active_subscription = bool(active)
            await self._refresh_account_summary(account, active, report)

        await self._sync_recent_charges(account, customer_id, report)

        report.completed_at = utcnow()
        logger.info(
            f"Sync for account {account.id} complete: "
            f"{len(report.results.created)} created, "
            f"{len(report.results.updated)} updated, "
            f"{len(report.results.errors)} errors, "
            f"{len(report.payments_created)} payments created"
        )
        return report

    async def _sync_subscription(
        self,
        account: Account,
        subscription: ProviderSubscription,
        report: SyncReport,
    ) -> RecordResult:
        """Insert or update the local record for one provider subscription."""
        logger.info(f"Processing subscription {subscription.id} ({subscription.status})")
        try:
            tier = resolve_plan_tier(subscription.price_id, self.price_tiers)
            period = resolve_billing_period(subscription.interval)
            status = map_subscription_status(subscription.status)
            amount = to_major_units(subscription.unit_amount)

            existing = await self.store.find_one(
                SUBSCRIPTION_RECORDS,
                external_subscription_reference=subscription.id,
            )

            if existing is None:
                data = {
                    "account_id": account.id,
                    "external_subscription_reference": subscription.id,
                    "plan_tier": tier.value,
                    "billing_period": period.value,
                    "status": status.value,
                    "amount": amount,
                    "period_end": subscription.current_period_end,
                    "created_at": subscription.created,
                }
                if subscription.canceled_at:
                    data["ended_at"] = subscription.canceled_at

                try:
                    record = await self.store.insert(SUBSCRIPTION_RECORDS, data)
                except DuplicateRecordError:
                    # Another request inserted it first; treat as existing
                    existing = await self.store.find_one(
                        SUBSCRIPTION_RECORDS,
                        external_subscription_reference=subscription.id,
                    )
                    if existing is None:
                        raise
                else:
                    if status == SubscriptionStatus.ACTIVE and (
                        subscription.latest_invoice or subscription.latest_invoice_id
                    ):
                        await self._sync_invoice_payment(account, record, subscription, report)
                    return RecordOk(
                        outcome=RecordOutcome.CREATED,
                        id=record.id,
                        external_id=subscription.id,
                        status=subscription.status,
                    )

            patch = {
                "status": status.value,
                "plan_tier": tier.value,
                "billing_period": period.value,
                "amount": amount,
            }
            if subscription.current_period_end is not None:
                patch["period_end"] = subscription.current_period_end
            # Cancellation time is immutable once recorded
            if subscription.canceled_at and existing.ended_at is None:
                patch["ended_at"] = subscription.canceled_at

            record = await self.store.update(SUBSCRIPTION_RECORDS, existing.id, patch)
            return RecordOk(
                outcome=RecordOutcome.UPDATED,
                id=record.id,
                external_id=subscription.id,
                status=subscription.status,
            )

        except BillingSyncError as e:
            logger.error(f"Error processing subscription {subscription.id}: {e.message}")
            return RecordErr(external_id=subscription.id, kind=e.kind, message=e.message)
        except Exception as e:
            logger.exception(f"Unexpected error processing subscription {subscription.id}")
            return RecordErr(external_id=subscription.id, kind=ErrorKind.UNEXPECTED, message=str(e))

    async def _refresh_account_summary(
        self,
        account: Account,
        active: List[ProviderSubscription],
        report: SyncReport,
    ) -> None:
        """Mark the account Active on its newest active plan, or Inactive."""
        if active:
            newest = active[-1]
            patch = {
                "subscription_status": AccountSubscriptionStatus.ACTIVE.value,
                "current_plan": resolve_plan_tier(newest.price_id, self.price_tiers).value,
            }
        else:
            patch = {
                "subscription_status": AccountSubscriptionStatus.INACTIVE.value,
                "current_plan": None,
            }

        try:
            await self.store.update(ACCOUNTS, account.id, patch)
        except BillingSyncError as e:
            logger.error(f"Failed to update subscription summary for account {account.id}: {e.message}")
            report.results.add(RecordErr(
                external_id=account.id,
                kind=e.kind,
                message=e.message,
                record_type="account",
            ))

    async def _payment_exists(self, payment_reference: str, invoice_reference: Optional[str]) -> bool:
        existing = await self.store.find_one(PAYMENT_RECORDS, external_payment_reference=payment_reference)
        if existing is None and invoice_reference:
            existing = await self.store.find_one(PAYMENT_RECORDS, external_invoice_reference=invoice_reference)
        return existing is not None

    async def _sync_invoice_payment(
        self,
        account: Account,
        subscription_record: SubscriptionRecord,
        subscription: ProviderSubscription,
        report: SyncReport,
    ) -> None:
        """Record the paid latest invoice of a freshly created subscription."""
        invoice_ref = subscription.latest_invoice_id or subscription.latest_invoice.id
        logger.info(f"Syncing invoice payment {invoice_ref}")
        try:
            invoice: ProviderInvoice = subscription.latest_invoice or self.billing_provider.retrieve_invoice(
                invoice_ref
            )

            if await self._payment_exists(invoice.payment_reference, invoice.id):
                logger.debug(f"Payment for invoice {invoice.id} already recorded")
                return

            if invoice.status != "paid":
                logger.info(f"Invoice {invoice.id} is {invoice.status}; no payment recorded")
                return

            payment = await self.store.insert(PAYMENT_RECORDS, {
                "subscription_id": subscription_record.id,
                "account_id": account.id,
                "external_payment_reference": invoice.payment_reference,
                "external_invoice_reference": invoice.id,
                "invoice_number": invoice.number,
                "amount": to_major_units(invoice.amount_paid),
                "status": PaymentStatus.SUCCEEDED.value,
                "receipt_url": invoice.hosted_invoice_url,
                "description": f"Payment for invoice {invoice.number or invoice.id}",
                "created_at": invoice.created,
            })
            report.payments_created.append(RecordOk(
                outcome=RecordOutcome.CREATED,
                record_type="payment",
                id=payment.id,
                external_id=invoice.payment_reference,
                status=PaymentStatus.SUCCEEDED.value,
            ))

        except DuplicateRecordError:
            logger.warning(f"Payment for invoice {invoice_ref} was recorded concurrently; skipping")
        except BillingSyncError as e:
            logger.error(f"Error syncing invoice payment {invoice_ref}: {e.message}")
            report.charge_sync_errors.append(RecordErr(
                external_id=invoice_ref, kind=e.kind, message=e.message, record_type="invoice",
            ))
        except Exception as e:
            logger.exception(f"Unexpected error syncing invoice payment {invoice_ref}")
            report.charge_sync_errors.append(RecordErr(
                external_id=invoice_ref, kind=ErrorKind.UNEXPECTED, message=str(e), record_type="invoice",
            ))

    async def _sync_recent_charges(self, account: Account, customer_id: str, report: SyncReport) -> None:
        """Record recent successful invoice charges that have no Payment Record yet."""
        logger.info(f"Syncing recent payments for customer {customer_id}")
        try:
            charges = self.billing_provider.list_charges(customer_id, limit=self.charge_sync_limit)
        except BillingSyncError as e:
            logger.error(f"Could not list charges for customer {customer_id}: {e.message}")
            report.charge_sync_errors.append(RecordErr(
                external_id=customer_id, kind=e.kind, message=e.message, record_type="charge",
            ))
            return

        for charge in sorted(charges, key=lambda c: (c.created, c.id)):
            if charge.status != "succeeded" or not charge.invoice:
                continue
            try:
                await self._sync_charge(account, charge, report)
            except DuplicateRecordError:
                logger.warning(f"Payment for charge {charge.id} was recorded concurrently; skipping")
            except BillingSyncError as e:
                logger.error(f"Error syncing charge {charge.id}: {e.message}")
                report.charge_sync_errors.append(RecordErr(
                    external_id=charge.id, kind=e.kind, message=e.message, record_type="charge",
                ))
            except Exception as e:
                logger.exception(f"Unexpected error syncing charge {charge.id}")
                report.charge_sync_errors.append(RecordErr(
                    external_id=charge.id, kind=ErrorKind.UNEXPECTED, message=str(e), record_type="charge",
                ))

    async def _sync_charge(self, account: Account, charge: ProviderCharge, report: SyncReport) -> None:
        if await self._payment_exists(charge.payment_reference, charge.invoice):
            return

        latest = await self.store.find_one(
            SUBSCRIPTION_RECORDS,
            order_by="created_at",
            descending=True,
            account_id=account.id,
        )
        if latest is None:
            logger.warning(f"Account {account.id} has no subscription record; skipping charge {charge.id}")
            return

        payment = await self.store.insert(PAYMENT_RECORDS, {
            "subscription_id": latest.id,
            "account_id": account.id,
            "external_payment_reference": charge.payment_reference,
            "external_invoice_reference": charge.invoice,
            "amount": to_major_units(charge.amount),
            "status": PaymentStatus.SUCCEEDED.value,
            "receipt_url": charge.receipt_url,
            "description": charge.description or DEFAULT_CHARGE_DESCRIPTION,
            "created_at": charge.created,
        })
        logger.info(f"Payment record created for charge {charge.id}")
        report.payments_created.append(RecordOk(
            outcome=RecordOutcome.CREATED,
            record_type="payment",
            id=payment.id,
            external_id=charge.payment_reference,
            status=PaymentStatus.SUCCEEDED.value,
        ))
