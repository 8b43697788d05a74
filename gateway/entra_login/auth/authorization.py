"""
Authorization request builder for the OIDC authorization code flow.
"""

from urllib.parse import urlencode, urlparse

from ..config import ProviderConfig
from .errors import ConfigInvalid


SCOPES = "openid profile email"


def build_authorization_url(
    config: ProviderConfig,
    redirect_uri: str,
    state: str,
    nonce: str,
) -> str:
    """
    Build the provider authorization URL for a login attempt.

    The result depends only on the inputs, so the same attempt always
    produces the same URL.

    Args:
        config: Provider configuration with discovered endpoints
        redirect_uri: Callback URL registered with the provider
        state: Anti-CSRF token bound to the attempt
        nonce: Anti-replay token bound to the attempt

    Returns:
        Absolute authorization URL

    Raises:
        ConfigInvalid: If the configuration or any input is malformed
    """
    if config.endpoints is None:
        raise ConfigInvalid("Provider endpoints have not been discovered")

    auth_endpoint = config.endpoints.authorization_endpoint
    parsed = urlparse(auth_endpoint)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigInvalid(f"Invalid authorization endpoint: {auth_endpoint!r}")

    if not config.client_id:
        raise ConfigInvalid("Client id is empty")

    for name, value in (("redirect_uri", redirect_uri), ("state", state), ("nonce", nonce)):
        if not value:
            raise ConfigInvalid(f"Missing {name} for authorization request")

    params = {
        "client_id": config.client_id,
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "response_mode": "query",
        "scope": SCOPES,
        "state": state,
        "nonce": nonce,
    }

    separator = "&" if parsed.query else "?"
    return f"{auth_endpoint}{separator}{urlencode(params)}"
