"""Authentication, callback source checks and rate limiting helpers for the API."""

import os
import secrets
import logging
from typing import Optional

from fastapi import HTTPException, Request, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import MpesaConfig

logger = logging.getLogger(__name__)

security = HTTPBearer()

# Rate limiter
limiter = Limiter(key_func=get_remote_address)


async def verify_api_key(credentials: HTTPAuthorizationCredentials = Security(security)) -> str:
    """Verify the API key from the Authorization header.

    Args:
        credentials: HTTP Bearer credentials from the request.

    Returns:
        The verified API key.

    Raises:
        HTTPException: If API key is invalid or not configured.
    """
    api_key = credentials.credentials
    expected_key = os.getenv("API_KEY")
    if not expected_key:
        logger.error("API_KEY environment variable is not configured")
        raise HTTPException(status_code=500, detail="Server configuration error")
    if not secrets.compare_digest(api_key, expected_key):
        raise HTTPException(status_code=401, detail="Invalid API key")
    return api_key


def verify_callback_source(request: Request, config: MpesaConfig, token: Optional[str]) -> None:
    """Reject callbacks that fail the configured source checks.

    Both checks are opt-in: with no ``callback_secret`` and no
    ``callback_allowed_ips`` configured every callback is accepted.

    Raises:
        HTTPException: 403 if the token or client address is not accepted.
    """
    if config.callback_secret:
        if not token or not secrets.compare_digest(token, config.callback_secret):
            logger.warning("Rejected callback with missing or invalid token")
            raise HTTPException(status_code=403, detail="Invalid callback token")

    if config.callback_allowed_ips:
        client_ip = request.client.host if request.client else None
        if client_ip not in config.callback_allowed_ips:
            logger.warning(f"Rejected callback from unlisted address {client_ip}")
            raise HTTPException(status_code=403, detail="Callback source not allowed")
