"""
JWT token handling.

Session issuance belongs to the identity service; this module only needs to
verify the bearer tokens it hands out and, for tooling and tests, mint
tokens signed with the same key.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from pos_backoffice.core.config import get_settings
from pos_backoffice.core.logging import get_logger

logger = get_logger(__name__)

ACCESS_TOKEN_EXPIRE_MINUTES = 60


class SecurityError(Exception):
    """Base exception for security-related errors."""

    def __init__(self, message: str, code: str, **context):
        super().__init__(message)
        self.code = code
        self.context = context


class TokenError(SecurityError):
    """Exception raised for token-related errors."""
    pass


def create_access_token(
    data: Dict[str, Any],
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a signed access token.

    Args:
        data: Claims to encode; ``sub`` should hold the user id
        expires_delta: Optional custom lifetime

    Returns:
        Encoded JWT string
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))

    to_encode = dict(data)
    to_encode.update({"exp": expire, "iat": now, "type": "access"})

    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate a JWT token.

    Raises:
        TokenError: If token is empty, expired, or malformed
    """
    if not token:
        raise TokenError("Token cannot be empty", code="EMPTY_TOKEN")

    settings = get_settings()
    try:
        return jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except ExpiredSignatureError as e:
        logger.warning("Token has expired")
        raise TokenError("Token has expired", code="TOKEN_EXPIRED") from e
    except JWTError as e:
        logger.warning("Invalid token", error=str(e), error_type=type(e).__name__)
        raise TokenError(
            "Invalid token", code="TOKEN_INVALID", original_error=str(e)
        ) from e


def get_token_user_id(payload: Dict[str, Any]) -> int:
    """
    Extract the integer user id from the ``sub`` claim.

    Raises:
        TokenError: If the claim is missing or not an integer
    """
    subject = payload.get("sub")
    if subject is None:
        raise TokenError("Token missing 'sub' claim", code="TOKEN_NO_SUBJECT")
    try:
        return int(subject)
    except (TypeError, ValueError) as e:
        raise TokenError(
            "Invalid user ID in token", code="TOKEN_BAD_SUBJECT", subject=subject
        ) from e
