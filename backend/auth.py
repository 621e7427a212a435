"""
API key checks and caller identity for the UGC API
"""

import hashlib
import hmac
from typing import Optional

from fastapi import Header, HTTPException, status

from config import settings

API_KEY_HEADER = "X-API-Key"
API_KEY_QUERY = "api_key"
OWNER_HEADER = "X-User-Id"


def check_api_key(api_key: str) -> bool:
    """
    Verify an API key against the configured key(s)

    Supports:
    - No key configured (development mode, everything passes)
    - Multiple comma-separated keys
    - Keys stored as "hash:<sha256 hex>"
    """
    configured_key = settings.API_KEY
    if not configured_key:
        return True

    valid_keys = [key.strip() for key in configured_key.split(",")]
    if api_key in valid_keys:
        return True

    provided_hash = hashlib.sha256(api_key.encode()).hexdigest()
    for valid_key in valid_keys:
        if valid_key.startswith("hash:") and hmac.compare_digest(valid_key[5:], provided_hash):
            return True

    return False


async def get_current_owner(x_user_id: Optional[str] = Header(None, alias=OWNER_HEADER)) -> str:
    """
    Owner id of the caller.

    Authentication happens upstream; this only requires the forwarded user id.

    Usage:
        @router.get("/sessions")
        async def list_sessions(owner_id: str = Depends(get_current_owner)):
            ...
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"User id missing. Provide {OWNER_HEADER} header.",
        )
    return x_user_id.strip()
