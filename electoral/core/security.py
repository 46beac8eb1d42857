"""
Bearer token verification.

Tokens are issued by the identity provider; this service only verifies
them and reads the claims it needs (``sub`` and ``role``).
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from electoral.core.config import settings
from electoral.core.logging_config import get_logger

logger = get_logger(__name__)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """
    Decode and verify a JWT access token.

    Args:
        token: JWT token string

    Returns:
        Decoded token payload or None if invalid
    """
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        logger.debug(f"Rejected bearer token: {e}")
        return None


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """
    Encode a token with the shared secret.

    Used by operational scripts and tests to mint tokens the API accepts.
    """
    to_encode = data.copy()
    expire = datetime.now(UTC) + (expires_delta or timedelta(minutes=60))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
