"""
Shared-token check for calls coming from the dashboard's CRUD layer
"""

import secrets
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import get_settings
from .logging_config import get_logger

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


async def verify_sync_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> None:
    """Require ``Authorization: Bearer <SYNC_API_TOKEN>`` when a token is configured"""
    expected = get_settings().SYNC_API_TOKEN
    if not expected:
        return
    if credentials is None or not secrets.compare_digest(credentials.credentials, expected):
        logger.warning("Rejected sync request with a missing or invalid token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing sync token",
            headers={"WWW-Authenticate": "Bearer"},
        )
