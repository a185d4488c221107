"""Runtime configuration loaded from the environment."""

import os
import json
import logging
from functools import lru_cache
from typing import Dict, Optional

from pydantic import BaseModel, Field

from .plans import PlanTier, BillingPeriod

logger = logging.getLogger(__name__)

DEFAULT_CHARGE_SYNC_LIMIT = 10


class Settings(BaseModel):
    """Settings injected into the billing provider and reconciler."""
    stripe_api_key: Optional[str] = Field(None, description="Stripe secret key")
    stripe_webhook_secret: Optional[str] = Field(None, description="Stripe webhook signing secret")
    price_tiers: Dict[str, PlanTier] = Field(
        default_factory=dict,
        description="Mapping of billing provider price IDs to plan tiers",
    )
    charge_sync_limit: int = Field(
        default=DEFAULT_CHARGE_SYNC_LIMIT,
        ge=1,
        le=100,
        description="Number of recent charges inspected per sync",
    )


def _load_price_tiers() -> Dict[str, PlanTier]:
    """Build the price -> tier mapping.

    ``PRICE_TIER_MAP`` holds a JSON object of ``{price_id: tier}``. Individual
    ``STRIPE_PRICE_<TIER>_<PERIOD>`` variables are merged on top.
    """
    tiers: Dict[str, PlanTier] = {}

    raw = os.getenv("PRICE_TIER_MAP")
    if raw:
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"PRICE_TIER_MAP is not valid JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise ValueError("PRICE_TIER_MAP must be a JSON object of price_id -> tier")
        for price_id, tier in parsed.items():
            tiers[price_id] = PlanTier(tier)

    for tier in PlanTier:
        for period in BillingPeriod:
            env_name = f"STRIPE_PRICE_{tier.name}_{period.name}"
            price_id = os.getenv(env_name)
            if price_id:
                tiers[price_id] = tier

    if not tiers:
        logger.warning("No price tier mapping configured; all subscriptions will sync as Standard")
    return tiers


def load_settings() -> Settings:
    """Read settings from environment variables."""
    limit = os.getenv("CHARGE_SYNC_LIMIT")
    return Settings(
        stripe_api_key=os.getenv("STRIPE_API_KEY") or os.getenv("STRIPE_SECRET_KEY"),
        stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET"),
        price_tiers=_load_price_tiers(),
        charge_sync_limit=int(limit) if limit else DEFAULT_CHARGE_SYNC_LIMIT,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, loaded once."""
    return load_settings()
