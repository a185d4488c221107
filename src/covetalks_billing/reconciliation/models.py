"""Models for subscription reconciliation."""

import enum
from datetime import datetime
from typing import Optional, Dict, Any, List, Union

from pydantic import BaseModel, Field

from ..database.models import utcnow
from ..errors import ErrorKind


class ProviderInvoice(BaseModel):
    """An invoice as reported by the billing provider."""
    id: str = Field(..., description="Invoice ID from the provider")
    payment_intent: Optional[str] = Field(None, description="Payment reference that settled the invoice")
    amount_paid: int = Field(default=0, description="Amount paid in minor units")
    status: Optional[str] = Field(None, description="Invoice status (draft, open, paid, ...)")
    hosted_invoice_url: Optional[str] = None
    number: Optional[str] = None
    created: datetime = Field(..., description="Invoice creation time")

    @property
    def payment_reference(self) -> str:
        return self.payment_intent or self.id


class ProviderSubscription(BaseModel):
    """A subscription as reported by the billing provider."""
    id: str = Field(..., description="Subscription ID from the provider")
    customer: Optional[str] = None
    status: str = Field(..., description="Provider subscription status")
    price_id: Optional[str] = Field(None, description="Price ID of the first subscription item")
    unit_amount: int = Field(default=0, description="Price per period in minor units")
    interval: Optional[str] = Field(None, description="Recurring interval (month, year)")
    created: datetime = Field(..., description="Subscription creation time")
    canceled_at: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    latest_invoice_id: Optional[str] = None
    latest_invoice: Optional[ProviderInvoice] = Field(
        None, description="Expanded latest invoice when the provider returned one"
    )


class ProviderCharge(BaseModel):
    """A charge as reported by the billing provider."""
    id: str = Field(..., description="Charge ID from the provider")
    status: str
    invoice: Optional[str] = None
    payment_intent: Optional[str] = None
    amount: int = Field(..., description="Charge amount in minor units")
    description: Optional[str] = None
    receipt_url: Optional[str] = None
    created: datetime

    @property
    def payment_reference(self) -> str:
        return self.payment_intent or self.id


class RecordOutcome(str, enum.Enum):
    """What happened to a local record."""
    CREATED = "created"
    UPDATED = "updated"


class RecordOk(BaseModel):
    """A record that was written successfully."""
    outcome: RecordOutcome
    record_type: str = Field(default="subscription")
    id: str = Field(..., description="Local record ID")
    external_id: str = Field(..., description="Billing provider reference")
    status: str = Field(..., description="Provider status at sync time")


class RecordErr(BaseModel):
    """A record that failed to sync."""
    external_id: str = Field(..., description="Billing provider reference")
    kind: ErrorKind
    message: str
    record_type: str = Field(default="subscription")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "external_id": self.external_id,
            "record_type": self.record_type,
            "kind": self.kind.value,
            "error": self.message,
        }


RecordResult = Union[RecordOk, RecordErr]


class SyncResults(BaseModel):
    """Per-subscription results, bucketed by outcome."""
    created: List[RecordOk] = Field(default_factory=list)
    updated: List[RecordOk] = Field(default_factory=list)
    errors: List[RecordErr] = Field(default_factory=list)

    def add(self, result: RecordResult) -> None:
        if isinstance(result, RecordErr):
            self.errors.append(result)
        elif result.outcome == RecordOutcome.CREATED:
            self.created.append(result)
        else:
            self.updated.append(result)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "created": [
                {"id": r.id, "external_id": r.external_id, "status": r.status}
                for r in self.created
            ],
            "updated": [
                {"id": r.id, "external_id": r.external_id, "status": r.status}
                for r in self.updated
            ],
            "errors": [r.to_dict() for r in self.errors],
        }


class SyncReport(BaseModel):
    """Outcome of reconciling one account."""
    id: str = Field(..., description="Report ID")
    account_id: str
    billing_customer_reference: Optional[str] = None
    has_active_subscription: bool = False
    message: str = "Subscription data synced successfully"
    results: SyncResults = Field(default_factory=SyncResults)
    payments_created: List[RecordOk] = Field(default_factory=list)
    charge_sync_errors: List[RecordErr] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def total_errors(self) -> int:
        return len(self.results.errors) + len(self.charge_sync_errors)

    def to_summary_dict(self) -> Dict[str, Any]:
        """Return counts without per-record detail."""
        return {
            "id": self.id,
            "account_id": self.account_id,
            "billing_customer_reference": self.billing_customer_reference,
            "has_active_subscription": self.has_active_subscription,
            "message": self.message,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "statistics": {
                "created": len(self.results.created),
                "updated": len(self.results.updated),
                "errors": len(self.results.errors),
                "payments_created": len(self.payments_created),
                "charge_sync_errors": len(self.charge_sync_errors),
            },
        }

    def to_response_dict(self) -> Dict[str, Any]:
        """Return the HTTP response body for a successful sync."""
        return {
            "success": True,
            "message": self.message,
            "results": self.results.to_dict(),
            "hasActiveSubscription": self.has_active_subscription,
            "paymentsCreated": [
                {"id": r.id, "external_id": r.external_id, "status": r.status}
                for r in self.payments_created
            ],
            "chargeSyncErrors": [r.to_dict() for r in self.charge_sync_errors],
        }
