"""
Identity token verification.

Tokens are issued by the external identity provider; this service only
verifies them and extracts the caller identity (`sub`, `email`, `admin`).
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from jose import JWTError, jwt

from storefront.core.config import get_settings
from storefront.core.logging import get_logger

settings = get_settings()
logger = get_logger(__name__)


class SecurityError(Exception):
    """Base exception for security-related errors."""

    def __init__(self, message: str, code: str, **context):
        super().__init__(message)
        self.code = code
        self.context = context


class TokenError(SecurityError):
    """Exception raised for token-related errors."""

    pass


@dataclass(frozen=True)
class SessionUser:
    """Authenticated caller as supplied by the identity provider."""

    id: UUID
    email: str
    admin: bool = False


def decode_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate a JWT token.

    Args:
        token: JWT token string to decode

    Returns:
        Dictionary of decoded token claims

    Raises:
        TokenError: If token is invalid, expired, or malformed
    """
    if not token:
        logger.warning("Attempted to decode empty token")
        raise TokenError("Token cannot be empty", code="EMPTY_TOKEN")

    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError as e:
        logger.warning("Token has expired", error=str(e))
        raise TokenError("Token has expired", code="TOKEN_EXPIRED") from e
    except JWTError as e:
        logger.warning(
            "Invalid token",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise TokenError(
            "Invalid token",
            code="TOKEN_INVALID",
            original_error=str(e),
        ) from e

    logger.debug(
        "Token decoded successfully",
        subject=payload.get("sub"),
        expires_at=payload.get("exp"),
    )
    return payload


def session_user_from_token(token: str) -> SessionUser:
    """
    Build the caller identity from a bearer token.

    Raises:
        TokenError: If the token is invalid or lacks a usable subject
    """
    payload = decode_token(token)

    subject = payload.get("sub")
    email = payload.get("email")
    if not subject or not email:
        raise TokenError("Token missing identity claims", code="TOKEN_CLAIMS")

    try:
        user_id = UUID(str(subject))
    except ValueError as e:
        raise TokenError(
            "Token subject is not a valid user id",
            code="TOKEN_SUBJECT",
            subject=subject,
        ) from e

    return SessionUser(id=user_id, email=email, admin=bool(payload.get("admin", False)))


def create_access_token(
    user_id: UUID,
    email: str,
    admin: bool = False,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Encode a token with the identity provider's claim layout.

    Used by operational tooling and tests; production tokens come from the
    identity provider.
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=60))
    claims = {
        "sub": str(user_id),
        "email": email,
        "admin": admin,
        "iat": now,
        "exp": expire,
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)
