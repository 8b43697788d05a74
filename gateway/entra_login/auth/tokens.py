"""
Anti-forgery tokens and their transport across the provider redirect.

State and nonce are generated per login attempt and travel with the browser
in three short-lived, HTTP-only cookies scoped to the login routes. Nothing is
kept in server memory. Each cookie value is signed with itsdangerous together
with the attempt it belongs to and that attempt's expiry, so a tampered,
stale or mixed-up binding is rejected here even if the browser still
presents it.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Request, Response
from itsdangerous import BadData, BadSignature, SignatureExpired, URLSafeTimedSerializer

from ..config import Settings
from ..models import LoginAttempt

logger = logging.getLogger(__name__)


TOKEN_BYTES = 32

STATE_COOKIE = "entra_state"
NONCE_COOKIE = "entra_nonce"
REDIRECT_URI_COOKIE = "entra_redirect_uri"

ATTEMPT_COOKIES = (STATE_COOKIE, NONCE_COOKIE, REDIRECT_URI_COOKIE)

COOKIE_PATH = "/auth/entra"

COOKIE_SALT = "entra-login-attempt"


# =============================================================================
# Token Generation
# =============================================================================

def generate_state() -> str:
    """Random state for CSRF protection (256 bits, hex)."""
    return secrets.token_hex(TOKEN_BYTES)


def generate_nonce() -> str:
    """Random nonce for replay protection (256 bits, hex)."""
    return secrets.token_hex(TOKEN_BYTES)


def issue_login_attempt(redirect_uri: str, ttl_seconds: int = 600) -> LoginAttempt:
    """
    Create the anti-forgery bindings for a new login attempt.

    Args:
        redirect_uri: Callback URL that will be sent to the provider
        ttl_seconds: How long the bindings are accepted

    Returns:
        LoginAttempt with independently generated state and nonce
    """
    now = datetime.now(timezone.utc)
    return LoginAttempt(
        state=generate_state(),
        nonce=generate_nonce(),
        redirect_uri=redirect_uri,
        created_at=now,
        expires_at=now + timedelta(seconds=ttl_seconds),
    )


# =============================================================================
# Cookie Transport
# =============================================================================

@dataclass(frozen=True)
class BoundAttempt:
    """Bindings read back from the callback request; None when unusable."""

    state: Optional[str]
    nonce: Optional[str]
    redirect_uri: Optional[str]

    @property
    def complete(self) -> bool:
        return bool(self.state and self.nonce and self.redirect_uri)


@dataclass(frozen=True)
class _SignedBinding:
    value: str
    attempt: str
    expires_at: int


def _serializer(settings: Settings) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(settings.SESSION_JWT_SECRET, salt=COOKIE_SALT)


def _sign(
    serializer: URLSafeTimedSerializer,
    name: str,
    value: str,
    attempt: LoginAttempt,
) -> str:
    # Payload: [cookie name, value, attempt state, expiry as epoch seconds].
    # The name stops values being swapped between cookies; the state ties all
    # three cookies to the same attempt.
    return serializer.dumps([name, value, attempt.state, int(attempt.expires_at.timestamp())])


def _unsign(
    serializer: URLSafeTimedSerializer,
    name: str,
    raw: Optional[str],
    max_age: int,
) -> Optional[_SignedBinding]:
    if not raw:
        return None

    try:
        payload = serializer.loads(raw, max_age=max_age)
    except SignatureExpired:
        logger.info("Login attempt cookie expired", extra={"cookie": name})
        return None
    except BadSignature:
        logger.warning("Login attempt cookie failed signature check", extra={"cookie": name})
        return None
    except BadData:
        logger.warning("Login attempt cookie payload could not be decoded", extra={"cookie": name})
        return None

    if (
        not isinstance(payload, list)
        or len(payload) != 4
        or payload[0] != name
        or not isinstance(payload[1], str)
        or not isinstance(payload[2], str)
        or not isinstance(payload[3], int)
    ):
        logger.warning("Login attempt cookie has unexpected payload", extra={"cookie": name})
        return None

    binding = _SignedBinding(value=payload[1], attempt=payload[2], expires_at=payload[3])
    if binding.expires_at <= datetime.now(timezone.utc).timestamp():
        logger.info("Login attempt has expired", extra={"cookie": name})
        return None

    return binding


def bind_login_attempt(response: Response, attempt: LoginAttempt, settings: Settings) -> None:
    """
    Attach the attempt's state, nonce and redirect URI to the response.

    Cookies are HTTP-only, SameSite=Lax, limited to the login routes and
    expire with the attempt; Secure is set in production.
    """
    serializer = _serializer(settings)
    max_age = settings.LOGIN_ATTEMPT_TTL_SECONDS

    values = {
        STATE_COOKIE: attempt.state,
        NONCE_COOKIE: attempt.nonce,
        REDIRECT_URI_COOKIE: attempt.redirect_uri,
    }

    for name, value in values.items():
        response.set_cookie(
            key=name,
            value=_sign(serializer, name, value, attempt),
            max_age=max_age,
            path=COOKIE_PATH,
            httponly=True,
            secure=settings.is_production,
            samesite="lax",
        )


def read_login_attempt(request: Request, settings: Settings) -> BoundAttempt:
    """
    Read the bindings presented with the callback.

    Missing, tampered, undecodable and expired cookies all come back as None.
    Cookies that belong to different attempts are all discarded. The callback
    turns an incomplete result into SessionExpired.
    """
    serializer = _serializer(settings)
    max_age = settings.LOGIN_ATTEMPT_TTL_SECONDS

    bindings = {
        name: _unsign(serializer, name, request.cookies.get(name), max_age)
        for name in ATTEMPT_COOKIES
    }

    attempts = {b.attempt for b in bindings.values() if b is not None}
    state = bindings[STATE_COOKIE]
    if len(attempts) > 1 or (state is not None and state.value != state.attempt):
        logger.warning("Login attempt cookies belong to different attempts")
        return BoundAttempt(state=None, nonce=None, redirect_uri=None)

    def value(name: str) -> Optional[str]:
        binding = bindings[name]
        return binding.value if binding is not None else None

    return BoundAttempt(
        state=value(STATE_COOKIE),
        nonce=value(NONCE_COOKIE),
        redirect_uri=value(REDIRECT_URI_COOKIE),
    )


def clear_login_attempt(response: Response, settings: Settings) -> None:
    """Delete all three binding cookies."""
    for name in ATTEMPT_COOKIES:
        response.delete_cookie(
            key=name,
            path=COOKIE_PATH,
            httponly=True,
            secure=settings.is_production,
            samesite="lax",
        )
