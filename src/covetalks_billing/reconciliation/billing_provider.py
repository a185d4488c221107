"""Billing provider access for subscription reconciliation."""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any, Callable

import stripe

from ..config import Settings, get_settings
from ..errors import ProviderError, ValidationError
from .models import ProviderSubscription, ProviderInvoice, ProviderCharge

logger = logging.getLogger(__name__)

# Charges must carry `invoice` and invoices `payment_intent`; later versions drop both
STRIPE_API_VERSION = "2024-06-20"


class BillingProviderBase(ABC):
    """Read-side contract the reconciler needs from a billing provider."""

    @abstractmethod
    def list_subscriptions(self, customer_id: str) -> List[ProviderSubscription]:
        """List every subscription (all statuses) for a customer.

        Args:
            customer_id: The provider's customer reference.

        Returns:
            List of ProviderSubscription objects.
        """
        raise NotImplementedError

    @abstractmethod
    def retrieve_invoice(self, invoice_id: str) -> ProviderInvoice:
        """Fetch a single invoice by ID."""
        raise NotImplementedError

    @abstractmethod
    def list_charges(self, customer_id: str, limit: int = 10) -> List[ProviderCharge]:
        """List the most recent charges for a customer.

        Args:
            customer_id: The provider's customer reference.
            limit: Maximum number of charges to return.

        Returns:
            List of ProviderCharge objects, most recent first.
        """
        raise NotImplementedError

    @abstractmethod
    def parse_webhook(self, headers: Dict[str, str], body: bytes) -> Dict[str, Any]:
        """Validate a webhook payload and return the event as a dict."""
        raise NotImplementedError


def _to_datetime(timestamp: Optional[int]) -> Optional[datetime]:
    if not timestamp:
        return None
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc).replace(tzinfo=None)


def _reference(value: Any) -> Optional[str]:
    """Return the ID of a field that may be a bare ID or an expanded object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get("id")
    return getattr(value, "id", None)


class StripeBillingProvider(BillingProviderBase):
    """Stripe implementation of the billing provider contract."""

    # Stripe caps list page size at 100
    MAX_PAGE_SIZE = 100

    def __init__(
        self,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
    ):
        """Initialize the Stripe provider.

        Args:
            api_key: Stripe API key. Falls back to configured settings.
            webhook_secret: Webhook signing secret. Falls back to configured settings.

        Raises:
            ValueError: If no API key is provided or found.
        """
        settings = get_settings()
        self._api_key = api_key or settings.stripe_api_key
        self._webhook_secret = webhook_secret or settings.stripe_webhook_secret
        if not self._api_key:
            raise ValueError(
                "STRIPE_API_KEY must be provided either as argument or environment variable"
            )

    def _configure_stripe(self) -> None:
        """Configure the Stripe SDK with the API key and pinned API version."""
        stripe.api_key = self._api_key
        stripe.api_version = STRIPE_API_VERSION

    @staticmethod
    def _as_dict(obj: Any) -> Dict[str, Any]:
        if obj is None:
            return {}
        if isinstance(obj, dict):
            return obj
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        return dict(obj)

    def _call(self, action: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Invoke a Stripe SDK call, mapping SDK errors to ProviderError."""
        self._configure_stripe()
        try:
            return fn(*args, **kwargs)
        except stripe.AuthenticationError as e:
            logger.error(f"Stripe authentication failed while trying to {action}")
            raise ProviderError("Invalid Stripe API key") from e
        except stripe.APIConnectionError as e:
            logger.error(f"Failed to connect to Stripe API while trying to {action}")
            raise ProviderError("Failed to connect to Stripe API") from e
        except stripe.StripeError as e:
            logger.error(f"Stripe API error while trying to {action}: {type(e).__name__}")
            raise ProviderError(f"Stripe API error: {e}") from e

    def _convert_invoice(self, raw: Any) -> ProviderInvoice:
        data = self._as_dict(raw)
        return ProviderInvoice(
            id=data["id"],
            payment_intent=_reference(data.get("payment_intent")),
            amount_paid=data.get("amount_paid") or 0,
            status=data.get("status"),
            hosted_invoice_url=data.get("hosted_invoice_url"),
            number=data.get("number"),
            created=_to_datetime(data.get("created")),
        )

    def _convert_subscription(self, raw: Any) -> ProviderSubscription:
        data = self._as_dict(raw)
        items = (data.get("items") or {}).get("data") or []
        first_item = self._as_dict(items[0]) if items else {}
        price = first_item.get("price") or {}
        recurring = price.get("recurring") or {}

        # Newer API versions report the period end per item
        period_end = data.get("current_period_end") or first_item.get("current_period_end")

        latest = data.get("latest_invoice")
        latest_invoice = None
        if latest is not None and not isinstance(latest, str):
            latest_invoice = self._convert_invoice(latest)

        return ProviderSubscription(
            id=data["id"],
            customer=_reference(data.get("customer")),
            status=data.get("status") or "",
            price_id=price.get("id"),
            unit_amount=price.get("unit_amount") or 0,
            interval=recurring.get("interval"),
            created=_to_datetime(data.get("created")),
            canceled_at=_to_datetime(data.get("canceled_at")),
            current_period_end=_to_datetime(period_end),
            latest_invoice_id=_reference(latest),
            latest_invoice=latest_invoice,
        )

    def _convert_charge(self, raw: Any) -> ProviderCharge:
        data = self._as_dict(raw)
        return ProviderCharge(
            id=data["id"],
            status=data.get("status") or "",
            invoice=_reference(data.get("invoice")),
            payment_intent=_reference(data.get("payment_intent")),
            amount=data.get("amount") or 0,
            description=data.get("description"),
            receipt_url=data.get("receipt_url"),
            created=_to_datetime(data.get("created")),
        )

    def list_subscriptions(self, customer_id: str) -> List[ProviderSubscription]:
        """List all subscriptions for a Stripe customer.

        Uses Stripe's list pagination to walk every page.
        """
        response = self._call(
            f"list subscriptions for {customer_id}",
            stripe.Subscription.list,
            customer=customer_id,
            status="all",
            limit=self.MAX_PAGE_SIZE,
        )
        subscriptions: List[ProviderSubscription] = []
        try:
            for sub in response.auto_paging_iter():
                subscriptions.append(self._convert_subscription(sub))
        except stripe.StripeError as e:
            logger.error(f"Stripe pagination failed for {customer_id}: {type(e).__name__}")
            raise ProviderError(f"Stripe API error: {e}") from e

        logger.info(f"Fetched {len(subscriptions)} subscriptions from Stripe for {customer_id}")
        return subscriptions

    def retrieve_invoice(self, invoice_id: str) -> ProviderInvoice:
        invoice = self._call(f"retrieve invoice {invoice_id}", stripe.Invoice.retrieve, invoice_id)
        return self._convert_invoice(invoice)

    def list_charges(self, customer_id: str, limit: int = 10) -> List[ProviderCharge]:
        response = self._call(
            f"list charges for {customer_id}",
            stripe.Charge.list,
            customer=customer_id,
            limit=min(limit, self.MAX_PAGE_SIZE),
        )
        data = getattr(response, "data", None)
        if data is None and isinstance(response, dict):
            data = response.get("data")
        return [self._convert_charge(charge) for charge in data or []]

    def parse_webhook(self, headers: Dict[str, str], body: bytes) -> Dict[str, Any]:
        """Verify and decode a Stripe webhook.

        The signature is checked when a webhook secret is configured; otherwise
        the body is parsed as-is (local development only).
        """
        if self._webhook_secret:
            sig_header = headers.get("stripe-signature", "")
            try:
                event = stripe.Webhook.construct_event(
                    payload=body,
                    sig_header=sig_header,
                    secret=self._webhook_secret,
                )
            except (ValueError, stripe.SignatureVerificationError) as e:
                logger.warning(f"Rejected Stripe webhook: {e}")
                raise ValidationError("Invalid webhook signature") from e
            return self._as_dict(event)

        logger.warning("Processing Stripe webhook without signature verification")
        try:
            return json.loads(body)
        except ValueError as e:
            raise ValidationError("Invalid JSON body") from e


def get_billing_provider(
    provider: str = "stripe",
    settings: Optional[Settings] = None,
) -> BillingProviderBase:
    """Factory function to get the configured billing provider.

    Args:
        provider: Billing provider name.
        settings: Optional settings; defaults to the process-wide settings.

    Returns:
        BillingProviderBase implementation for the provider.

    Raises:
        ValueError: If the provider is not supported.
    """
    providers = {
        "stripe": StripeBillingProvider,
    }

    provider_class = providers.get(provider.lower())
    if not provider_class:
        raise ValueError(f"Unsupported billing provider: {provider}")

    settings = settings or get_settings()
    return provider_class(
        api_key=settings.stripe_api_key,
        webhook_secret=settings.stripe_webhook_secret,
    )
