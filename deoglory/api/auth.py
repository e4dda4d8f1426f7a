"""API authentication for calling portals"""
import os
import logging
from fastapi import HTTPException, Security, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from deoglory.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

security = HTTPBearer()


def get_api_keys() -> dict[str, str]:
    """
    Load portal keys from API_KEYS

    Entries are comma separated, either `key` or `portal:key`; unnamed
    keys are reported as portal "default".
    """
    raw = os.getenv("API_KEYS", "")
    keys = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        portal, sep, key = entry.partition(":")
        if sep:
            keys[key.strip()] = portal.strip() or "default"
        else:
            keys[entry] = "default"
    if not keys:
        logger.warning("No API_KEYS configured in environment")
    return keys


async def verify_api_key(
    credentials: HTTPAuthorizationCredentials = Security(security)
) -> str:
    """
    Authenticate the calling portal; members are identified by the
    user_id path segment, never by the key.

    Returns:
        Name of the portal that owns the key

    Raises:
        HTTPException: 503 when no keys are configured
        AuthenticationError: 401 for unknown keys
    """
    valid_keys = get_api_keys()
    if not valid_keys:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="API authentication not configured"
        )

    portal = valid_keys.get(credentials.credentials)
    if portal is None:
        raise AuthenticationError(
            f"Invalid API key attempt: {credentials.credentials[:4]}...",
            operation="verify_api_key",
        )

    logger.debug(f"Request authenticated for portal {portal}")
    return portal
