"""
OIDC provider discovery.

Endpoints are read from the provider's ``.well-known/openid-configuration``
document. Discovery is a capability (anything with an async
``discover(issuer_url)``) so tests can supply endpoints without network
access.
"""

import logging
import time
from typing import Dict, Optional, Protocol, Tuple

import httpx
from pydantic import ValidationError

from ..config import OIDCEndpoints, ProviderConfig
from .errors import ConfigInvalid, ProviderUnreachable

logger = logging.getLogger(__name__)


WELL_KNOWN_PATH = ".well-known/openid-configuration"


class Discoverer(Protocol):
    async def discover(self, issuer_url: str) -> OIDCEndpoints:
        ...


def discovery_url(issuer_url: str) -> str:
    return f"{issuer_url.rstrip('/')}/{WELL_KNOWN_PATH}"


class HttpDiscoverer:
    """Fetches the discovery document with a shared httpx client."""

    def __init__(self, client: httpx.AsyncClient, timeout: float = 10.0):
        self._client = client
        self._timeout = timeout

    async def discover(self, issuer_url: str) -> OIDCEndpoints:
        """
        Fetch and parse the discovery document.

        Raises:
            ProviderUnreachable: Network failure or non-2xx response
            ConfigInvalid: Document is not JSON or lacks required endpoints
        """
        url = discovery_url(issuer_url)

        try:
            response = await self._client.get(url, timeout=self._timeout)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderUnreachable(
                f"Discovery returned HTTP {e.response.status_code} for {url}"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderUnreachable(f"Discovery request failed for {url}: {e}") from e

        try:
            document = response.json()
        except ValueError as e:
            raise ConfigInvalid(f"Discovery document at {url} is not JSON") from e

        if not isinstance(document, dict):
            raise ConfigInvalid(f"Discovery document at {url} is not an object")

        try:
            endpoints = OIDCEndpoints.model_validate(document)
        except ValidationError as e:
            raise ConfigInvalid(f"Discovery document at {url} is incomplete: {e}") from e

        logger.debug("OIDC discovery successful", extra={"issuer": endpoints.issuer})
        return endpoints


# =============================================================================
# Discovery Cache
# =============================================================================

class DiscoveryCache:
    """
    Process-wide cache of discovery documents keyed by issuer URL.

    Entries live for ``ttl_seconds``; a TTL of 0 disables caching. Because
    the key is the issuer URL, changing the tenant never returns endpoints
    of the previous tenant.
    """

    def __init__(self, ttl_seconds: int = 3600):
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[str, Tuple[OIDCEndpoints, float]] = {}

    def get(self, issuer_url: str) -> Optional[OIDCEndpoints]:
        if self.ttl_seconds <= 0:
            return None

        entry = self._entries.get(issuer_url)
        if entry is None:
            return None

        endpoints, stored_at = entry
        if time.monotonic() - stored_at >= self.ttl_seconds:
            self._entries.pop(issuer_url, None)
            return None

        return endpoints

    def put(self, issuer_url: str, endpoints: OIDCEndpoints) -> None:
        if self.ttl_seconds <= 0:
            return
        self._entries[issuer_url] = (endpoints, time.monotonic())

    def invalidate(self, issuer_url: Optional[str] = None) -> None:
        """Drop one issuer's entry, or everything when no issuer is given."""
        if issuer_url is None:
            self._entries.clear()
        else:
            self._entries.pop(issuer_url, None)


class CachingDiscoverer:
    """Wraps a discoverer with a DiscoveryCache."""

    def __init__(self, inner: Discoverer, cache: DiscoveryCache):
        self._inner = inner
        self._cache = cache

    async def discover(self, issuer_url: str) -> OIDCEndpoints:
        cached = self._cache.get(issuer_url)
        if cached is not None:
            return cached

        endpoints = await self._inner.discover(issuer_url)
        self._cache.put(issuer_url, endpoints)
        return endpoints


async def discover_provider(config: ProviderConfig, discoverer: Discoverer) -> ProviderConfig:
    """
    Return a copy of ``config`` with its endpoints populated.

    Raises:
        ProviderUnreachable: Discovery failed on the network
        ConfigInvalid: Discovery document is unusable
    """
    if config.endpoints is not None:
        return config

    endpoints = await discoverer.discover(config.issuer_url)
    return config.with_endpoints(endpoints)
