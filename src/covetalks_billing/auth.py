"""Authentication and rate limiting helpers for the API."""

import os
import secrets
import logging
from typing import Optional

from fastapi import HTTPException, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from slowapi import Limiter
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)

# Missing credentials are reported as 401 by verify_api_key
security = HTTPBearer(auto_error=False)

SYNC_RATE_LIMIT = os.getenv("SYNC_RATE_LIMIT", "30/minute")

limiter = Limiter(
    key_func=get_remote_address,
    enabled=os.getenv("RATE_LIMIT_ENABLED", "true").lower() != "false",
)


async def verify_api_key(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
) -> str:
    """Require `Authorization: Bearer <API_KEY>` on protected routes.

    Raises:
        HTTPException: 401 for a missing or wrong key, 500 when API_KEY is unset.
    """
    expected_key = os.getenv("API_KEY")
    if not expected_key:
        logger.error("API_KEY environment variable is not configured")
        raise HTTPException(status_code=500, detail="Server configuration error")
    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not secrets.compare_digest(credentials.credentials, expected_key):
        raise HTTPException(status_code=401, detail="Invalid API key")
    return credentials.credentials
