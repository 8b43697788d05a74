"""
JWT Session Management Module
==============================

Issues and verifies the session JWT handed to the client application after a
successful Entra login. The token binds the local user id and username; it
is never stored server-side.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from ..config import Settings
from .errors import SessionTokenError

logger = logging.getLogger(__name__)


# =============================================================================
# Token Creation
# =============================================================================

def create_session_jwt(
    user_id: int,
    username: str,
    settings: Settings,
    expires_in_minutes: Optional[int] = None,
) -> str:
    """
    Create a session JWT for a local user.

    Args:
        user_id: Local user identifier (becomes 'sub' and 'id')
        username: Local username
        settings: Application settings (secret, algorithm, expiry, issuer)
        expires_in_minutes: Optional custom expiry (overrides settings)

    Returns:
        Encoded JWT string

    Raises:
        SessionTokenError: If JWT creation fails

    Example:
        >>> token = create_session_jwt(1, "alice", get_settings())
    """
    if not username:
        raise SessionTokenError("Missing required claim: 'username'")

    expiry = expires_in_minutes or settings.SESSION_JWT_EXPIRY_MINUTES
    now = datetime.now(timezone.utc)

    payload: Dict[str, Any] = {
        "sub": str(user_id),
        "id": user_id,
        "username": username,
        "iat": now,
        "exp": now + timedelta(minutes=expiry),
        "iss": settings.SESSION_JWT_ISSUER,
    }

    try:
        token = jwt.encode(
            payload,
            settings.SESSION_JWT_SECRET,
            algorithm=settings.SESSION_JWT_ALGORITHM,
        )
    except Exception as e:
        logger.error(f"Failed to create session JWT: {e}", exc_info=True)
        raise SessionTokenError(f"Failed to create session JWT: {str(e)}") from e

    logger.debug(
        "Created session JWT",
        extra={"user_id": user_id, "expires_in_minutes": expiry},
    )

    return token


# =============================================================================
# Token Verification
# =============================================================================

def verify_session_jwt(token: str, settings: Settings) -> Dict[str, Any]:
    """
    Verify and decode a session JWT.

    Args:
        token: JWT string to verify
        settings: Application settings

    Returns:
        Dictionary containing the decoded claims

    Raises:
        SessionTokenError: If the token is missing, expired or invalid
    """
    if not token:
        raise SessionTokenError("No session token provided")

    try:
        return jwt.decode(
            token,
            settings.SESSION_JWT_SECRET,
            algorithms=[settings.SESSION_JWT_ALGORITHM],
            issuer=settings.SESSION_JWT_ISSUER,
            options={"require": ["exp", "iat", "sub", "iss"]},
        )
    except ExpiredSignatureError as e:
        logger.warning("Session JWT expired")
        raise SessionTokenError("Session token has expired") from e
    except InvalidTokenError as e:
        logger.warning(f"Invalid session JWT: {e}")
        raise SessionTokenError(f"Invalid session token: {str(e)}") from e
