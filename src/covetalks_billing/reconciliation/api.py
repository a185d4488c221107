"""API endpoints for subscription sync operations."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..auth import verify_api_key, limiter, SYNC_RATE_LIMIT
from .service import ReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


class SyncRequestBody(BaseModel):
    """Request body for syncing an account's subscriptions."""
    model_config = ConfigDict(populate_by_name=True)

    account_id: Optional[str] = Field(None, alias="accountId", description="Local account ID")


async def get_reconciliation_service(
    db: AsyncSession = Depends(get_db),
) -> ReconciliationService:
    """Build a service bound to the request's database session."""
    return ReconciliationService(db)


@router.post("/sync")
@limiter.limit(SYNC_RATE_LIMIT)
async def sync_subscriptions(
    request: Request,
    body: Optional[SyncRequestBody] = None,
    api_key: str = Depends(verify_api_key),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    Sync an account's subscriptions and payments from the billing provider.

    Returns created/updated/errors buckets and whether the account has an
    active subscription. Per-record failures are reported in the body, not
    as a failed request.
    """
    account_id = body.account_id if body else None
    logger.info(f"Subscription sync requested for account {account_id}")

    report = await service.sync_account(account_id)
    return report.to_response_dict()


@router.get("/{account_id}/status")
async def subscription_status(
    account_id: str,
    api_key: str = Depends(verify_api_key),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    Get the account's current plan, its features and recent payments.
    """
    return await service.get_subscription_status(account_id)
