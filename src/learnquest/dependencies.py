"""Shared FastAPI dependencies.

Authentication happens upstream; the gateway forwards the verified subject
as ``X-User-Id``. Internal callers (scheduler, other services) present the
shared ``cron_secret`` as a bearer token.
"""

import hmac

from fastapi import Header, HTTPException, status

from learnquest.config import get_settings
from learnquest.redis_client import get_redis_or_none

MAX_USER_ID_LENGTH = 64


def _clean_user_id(raw: str | None) -> str | None:
    if raw is None:
        return None
    user_id = raw.strip()
    if not user_id:
        return None
    if len(user_id) > MAX_USER_ID_LENGTH:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid user id")
    return user_id


async def get_current_user_id(x_user_id: str | None = Header(None, alias="X-User-Id")) -> str:
    """Identity of the caller; 401 when the gateway did not forward one."""
    user_id = _clean_user_id(x_user_id)
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user_id


async def get_optional_user_id(x_user_id: str | None = Header(None, alias="X-User-Id")) -> str | None:
    return _clean_user_id(x_user_id)


async def get_redis_dep() -> object:
    """Redis client for event publishing, or None when not configured."""
    return get_redis_or_none()


async def require_internal_token(authorization: str | None = Header(None)) -> None:
    """Bearer check against ``cron_secret``. Open when no secret is configured."""
    secret = get_settings().cron_secret
    if not secret:
        return
    expected = f"Bearer {secret}"
    if authorization is None or not hmac.compare_digest(authorization, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid internal token",
            headers={"WWW-Authenticate": "Bearer"},
        )
