"""
Redirects back to the client application that started the login.

The base URL always comes from configuration (FRONTEND_URL), never from the
request, so the browser can only be sent to the trusted application.
"""

import json
from urllib.parse import quote, urlencode

from ..models import SanitizedUser

COMPLETE_PATH = "/auth/entra/complete"


def completion_url(frontend_url: str) -> str:
    return f"{frontend_url.rstrip('/')}{COMPLETE_PATH}"


def encode_user(user: SanitizedUser) -> str:
    """Compact JSON for the 'user' query parameter."""
    return json.dumps(user.model_dump(), separators=(",", ":"))


def build_success_redirect(frontend_url: str, token: str, user: SanitizedUser) -> str:
    """
    Build ``<frontend>/auth/entra/complete?token=...&user=...``.

    Args:
        frontend_url: Trusted frontend base URL ('' for same origin)
        token: Session JWT
        user: Sanitized user projection

    Returns:
        Redirect target
    """
    query = urlencode({"token": token, "user": encode_user(user)}, quote_via=quote)
    return f"{completion_url(frontend_url)}?{query}"


def build_failure_redirect(frontend_url: str, category: str) -> str:
    """Build ``<frontend>/auth/entra/complete?error=<category>``."""
    query = urlencode({"error": category}, quote_via=quote)
    return f"{completion_url(frontend_url)}?{query}"
