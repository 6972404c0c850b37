"""Bearer token encoding and decoding."""

from datetime import timedelta
from typing import Any, Optional
from uuid import UUID

import jwt

from .config import settings
from .database import utcnow

TOKEN_TYPE_USER = "USER"
TOKEN_TYPE_CUSTOMER = "CUSTOMER"
TOKEN_TYPES = (TOKEN_TYPE_USER, TOKEN_TYPE_CUSTOMER)


def create_access_token(
    subject: UUID | str,
    token_type: str = TOKEN_TYPE_USER,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Issue a signed access token for a staff user or a customer.

    Args:
        subject: ID of the user or customer
        token_type: ``USER`` or ``CUSTOMER``
        expires_delta: Token lifetime, defaults to the configured TTL

    Returns:
        str: Encoded JWT
    """
    if token_type not in TOKEN_TYPES:
        raise ValueError(f"Token type must be one of: {TOKEN_TYPES}")

    issued_at = utcnow()
    lifetime = expires_delta or timedelta(minutes=settings.access_token_ttl_minutes)
    payload = {
        "sub": str(subject),
        "type": token_type,
        "iat": issued_at,
        "exp": issued_at + lifetime,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode and verify a token. Raises ``jwt.PyJWTError`` on any failure."""
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        options={"require": ["sub", "exp"]},
    )
