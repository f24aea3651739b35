"""
Bearer token utilities.

Tokens are HS256 JWTs signed with JWT_SECRET; `sub` holds the user id.
"""
from datetime import datetime, timedelta, timezone

import jwt

from app.core import config
from app.utils import get_logger


log = get_logger(__name__)


def create_access_token(user_id: str, expires_in: timedelta = timedelta(hours=12)) -> str:
    """Signed access token for `user_id`."""
    now = datetime.now(timezone.utc)
    payload = {"sub": user_id, "iat": now, "exp": now + expires_in}
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def verify_jwt_token(token: str) -> dict | None:
    """
    Verify a bearer token and return its payload.

    Args:
        token: JWT from the Authorization header

    Returns:
        Decoded payload, or None if the token is expired, badly signed or
        malformed. Callers treat None as "no principal".
    """
    try:
        return jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        log.info("Rejected expired token")
    except jwt.InvalidTokenError as e:
        log.info(f"Rejected invalid token: {e}")
    return None
