"""Subscription reconciliation.

This module mirrors an account's subscriptions and payments from the billing
provider (Stripe) into local Subscription and Payment Records.

Features:
- Create or update one Subscription Record per provider subscription
- Record the paid first invoice of newly seen active subscriptions
- Mirror recent successful invoice charges as Payment Records
- Per-record error isolation with created/updated/errors result buckets
"""

from .models import (
    ProviderSubscription,
    ProviderInvoice,
    ProviderCharge,
    RecordOutcome,
    RecordOk,
    RecordErr,
    SyncResults,
    SyncReport,
)
from .billing_provider import (
    BillingProviderBase,
    StripeBillingProvider,
    get_billing_provider,
)
from .reconciler import Reconciler
from .service import ReconciliationService
from .report import ReportGenerator

__all__ = [
    # Models
    "ProviderSubscription",
    "ProviderInvoice",
    "ProviderCharge",
    "RecordOutcome",
    "RecordOk",
    "RecordErr",
    "SyncResults",
    "SyncReport",
    # Billing providers
    "BillingProviderBase",
    "StripeBillingProvider",
    "get_billing_provider",
    # Core Components
    "Reconciler",
    "ReconciliationService",
    "ReportGenerator",
]
