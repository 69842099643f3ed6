"""Master API key authentication."""

import hmac
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from callsync.config import settings

API_KEY_HEADER = APIKeyHeader(name="x-api-key", auto_error=False)


def verify_master_key(provided: str | None, expected: str) -> bool:
    """Constant-time key check; an unset master key rejects everything."""
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


async def require_master_key(
    api_key: str | None = Depends(API_KEY_HEADER),
) -> str:
    """Reject requests without the configured master API key."""
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing x-api-key header",
        )
    if not verify_master_key(api_key, settings.master_api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized. Invalid or missing API Key.",
        )
    return api_key


# Type alias for dependency injection
MasterKeyDep = Annotated[str, Depends(require_master_key)]
