"""SQLAlchemy models for accounts and their billing records."""

import uuid
import enum
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Dict, Any, List

from sqlalchemy import (
    String,
    Numeric,
    DateTime,
    ForeignKey,
    Index,
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column

from ..plans import PlanTier, BillingPeriod, SubscriptionStatus


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how records are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class AccountKind(str, enum.Enum):
    """Who the account belongs to."""
    SPEAKER = "Speaker"
    ORGANIZATION = "Organization"


class AccountSubscriptionStatus(str, enum.Enum):
    """Summary subscription state kept on the account."""
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class PaymentStatus(str, enum.Enum):
    """Payment record statuses."""
    SUCCEEDED = "Succeeded"


class Account(Base):
    """A speaker or organization account."""
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    account_kind: Mapped[str] = mapped_column(String(20), nullable=False, default=AccountKind.SPEAKER.value)
    billing_customer_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)

    # Summary fields refreshed by the reconciler
    subscription_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    current_plan: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    subscriptions: Mapped[List["SubscriptionRecord"]] = relationship(
        "SubscriptionRecord",
        back_populates="account",
        order_by="SubscriptionRecord.created_at.desc()",
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "account_kind": self.account_kind,
            "billing_customer_reference": self.billing_customer_reference,
            "subscription_status": self.subscription_status,
            "current_plan": self.current_plan,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class SubscriptionRecord(Base):
    """Local mirror of a billing provider subscription."""
    __tablename__ = "subscription_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id: Mapped[str] = mapped_column(String(36), ForeignKey("accounts.id"), nullable=False, index=True)
    external_subscription_reference: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    plan_tier: Mapped[str] = mapped_column(String(20), nullable=False, default=PlanTier.STANDARD.value)
    billing_period: Mapped[str] = mapped_column(String(20), nullable=False, default=BillingPeriod.MONTHLY.value)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=SubscriptionStatus.ACTIVE.value)

    # Major currency units
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    period_end: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    # Set once when the provider reports a cancellation; never cleared
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    account: Mapped["Account"] = relationship("Account", back_populates="subscriptions")
    payments: Mapped[List["PaymentRecord"]] = relationship(
        "PaymentRecord",
        back_populates="subscription",
        order_by="PaymentRecord.created_at.desc()",
    )

    __table_args__ = (
        Index("ix_subscription_records_status", "status"),
        Index("ix_subscription_records_created_at", "created_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "external_subscription_reference": self.external_subscription_reference,
            "plan_tier": self.plan_tier,
            "billing_period": self.billing_period,
            "status": self.status,
            "amount": float(self.amount) if self.amount is not None else None,
            "period_end": self.period_end.isoformat() if self.period_end else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
        }


class PaymentRecord(Base):
    """A successful payment mirrored from an invoice or charge."""
    __tablename__ = "payment_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    subscription_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("subscription_records.id"), nullable=True, index=True
    )
    account_id: Mapped[str] = mapped_column(String(36), ForeignKey("accounts.id"), nullable=False, index=True)
    external_payment_reference: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    external_invoice_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    invoice_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PaymentStatus.SUCCEEDED.value)
    receipt_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    subscription: Mapped[Optional["SubscriptionRecord"]] = relationship(
        "SubscriptionRecord", back_populates="payments"
    )

    __table_args__ = (
        Index("ix_payment_records_created_at", "created_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "subscription_id": self.subscription_id,
            "account_id": self.account_id,
            "external_payment_reference": self.external_payment_reference,
            "external_invoice_reference": self.external_invoice_reference,
            "invoice_number": self.invoice_number,
            "amount": float(self.amount) if self.amount is not None else None,
            "status": self.status,
            "receipt_url": self.receipt_url,
            "description": self.description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
