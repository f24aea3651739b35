"""
FastAPI dependencies for authentication.
"""
from datetime import datetime, timezone
from typing import Annotated
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from app.core.database.engine import get_db
from app.core.database.store import RecordStore
from app.features.permissions.engine import Principal
from app.features.users.models import User
from app.features.users.auth import verify_jwt_token


security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> User | None:
    """
    Resolve the bearer token to a user.

    Returns None instead of raising when the token is missing, invalid, names
    an unknown user or a deactivated one; the authorization layer turns that
    into an Unauthenticated denial. Lookups go through RecordStore, so a slow
    or unreachable database raises StoreUnavailableError (503).

    Usage:
        @router.get("/me")
        async def get_me(user: Annotated[User | None, Depends(get_current_user)]):
            ...
    """
    if credentials is None:
        return None

    payload = verify_jwt_token(credentials.credentials)
    if payload is None:
        return None

    store = RecordStore(db)
    user = await store.find_principal(payload["sub"])
    if user is None or not user.is_active:
        return None

    user.last_login_at = datetime.now(timezone.utc)
    await store.commit()
    return user


async def get_current_principal(
    user: Annotated[User | None, Depends(get_current_user)]
) -> Principal | None:
    """Immutable snapshot of the authenticated user, or None."""
    if user is None:
        return None
    return Principal.from_user(user)


def get_request_meta(request: Request) -> dict:
    """Client address and user agent recorded on audit entries."""
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
