"""Plan catalog: tiers, billing periods, status mapping and plan features."""

import enum
from typing import Any, Dict, Mapping, Optional


class PlanTier(str, enum.Enum):
    """Subscription plan levels."""
    STANDARD = "Standard"
    PLUS = "Plus"
    PREMIUM = "Premium"


class BillingPeriod(str, enum.Enum):
    """Billing cadence of a subscription."""
    MONTHLY = "Monthly"
    YEARLY = "Yearly"


class SubscriptionStatus(str, enum.Enum):
    """Local subscription statuses."""
    ACTIVE = "Active"
    PAST_DUE = "Past_Due"
    CANCELLED = "Cancelled"
    INCOMPLETE = "Incomplete"
    TRIALING = "Trialing"


# Provider status -> local status. Anything not listed (including
# "active") maps to Active.
PROVIDER_STATUS_MAP: Dict[str, SubscriptionStatus] = {
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELLED,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "trialing": SubscriptionStatus.TRIALING,
}

FREE_PLAN = "Free"

PLAN_FEATURES: Dict[str, Dict[str, Any]] = {
    FREE_PLAN: {
        "profileListing": True,
        "opportunityApplications": 3,
        "profileHighlight": False,
        "customBranding": False,
        "analytics": "Basic",
        "support": "Email",
    },
    PlanTier.STANDARD.value: {
        "profileListing": True,
        "opportunityApplications": 10,
        "profileHighlight": False,
        "customBranding": False,
        "analytics": "Enhanced",
        "support": "Priority Email",
    },
    PlanTier.PLUS.value: {
        "profileListing": True,
        "opportunityApplications": 25,
        "profileHighlight": True,
        "customBranding": False,
        "analytics": "Advanced",
        "support": "Email & Chat",
    },
    PlanTier.PREMIUM.value: {
        "profileListing": True,
        "opportunityApplications": "Unlimited",
        "profileHighlight": True,
        "customBranding": True,
        "analytics": "Full",
        "support": "Priority Phone, Email & Chat",
    },
}


def resolve_plan_tier(
    price_id: Optional[str],
    price_tiers: Mapping[str, PlanTier],
) -> PlanTier:
    """Look up the tier for a price ID.

    Unknown price IDs fall back to Standard so one unmapped product
    does not fail a whole sync.
    """
    if price_id and price_id in price_tiers:
        return PlanTier(price_tiers[price_id])
    return PlanTier.STANDARD


def resolve_billing_period(interval: Optional[str]) -> BillingPeriod:
    if interval == "year":
        return BillingPeriod.YEARLY
    return BillingPeriod.MONTHLY


def map_subscription_status(provider_status: Optional[str]) -> SubscriptionStatus:
    return PROVIDER_STATUS_MAP.get((provider_status or "").lower(), SubscriptionStatus.ACTIVE)


def get_plan_features(plan: Optional[str]) -> Dict[str, Any]:
    """Return the feature set for a plan name, defaulting to the free plan."""
    return dict(PLAN_FEATURES.get(plan or FREE_PLAN, PLAN_FEATURES[FREE_PLAN]))
