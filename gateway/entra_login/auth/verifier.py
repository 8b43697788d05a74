"""
Callback verification for the OIDC authorization code flow.

This module handles:
- Checking the callback state against the bound login attempt
- Exchanging the authorization code for tokens
- Verifying the ID token signature and claims with the provider JWKS
- Checking the nonce and the user-info subject

Every check fails closed. Nothing is retried.
"""

import logging
import secrets
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlparse

import httpx
from jose import JWTError, jwk, jwt

from ..config import ProviderConfig
from ..models import VerifiedCallback
from .errors import (
    ConfigInvalid,
    IdTokenInvalid,
    NonceMismatch,
    ProviderError,
    ProviderUnreachable,
    SessionExpired,
    StateMismatch,
    SubjectMismatch,
)

logger = logging.getLogger(__name__)


ID_TOKEN_ALGORITHMS = ["RS256"]
CLOCK_SKEW_SECONDS = 10


def _same(received: Optional[str], expected: str) -> bool:
    if not isinstance(received, str):
        return False
    return secrets.compare_digest(received.encode("utf-8"), expected.encode("utf-8"))


def _single(query: Dict[str, list], name: str) -> Optional[str]:
    values = query.get(name)
    if not values:
        return None
    # A repeated parameter is ambiguous; take none of them.
    if len(values) != 1:
        return None
    return values[0]


class CallbackVerifier:
    """
    Verifies one provider callback against its bound login attempt.

    Args:
        config: Provider configuration with discovered endpoints
        client: Shared httpx client for token, JWKS and user-info calls
        timeout: Per-request timeout in seconds
    """

    def __init__(self, config: ProviderConfig, client: httpx.AsyncClient, timeout: float = 10.0):
        if config.endpoints is None:
            raise ConfigInvalid("Provider endpoints have not been discovered")
        self.config = config
        self.endpoints = config.endpoints
        self._client = client
        self._timeout = timeout

    async def verify(
        self,
        callback_url: str,
        redirect_uri: Optional[str],
        expected_state: Optional[str],
        expected_nonce: Optional[str],
    ) -> VerifiedCallback:
        """
        Run every callback check and return claims and user-info.

        Args:
            callback_url: Full URL the provider redirected the browser to
            redirect_uri: Redirect URI used when the attempt was started
            expected_state: State bound to the attempt
            expected_nonce: Nonce bound to the attempt

        Returns:
            VerifiedCallback once all checks pass

        Raises:
            SessionExpired: Bindings are missing
            StateMismatch: Callback state differs from the bound state
            ProviderError: Provider returned an error or a bad response
            ProviderUnreachable: Provider could not be reached
            IdTokenInvalid: ID token failed signature or claim validation
            NonceMismatch: ID token nonce differs from the bound nonce
            SubjectMismatch: User-info subject differs from the ID token
        """
        if not expected_state or not expected_nonce or not redirect_uri:
            raise SessionExpired("Missing state/nonce bindings for callback")

        query = parse_qs(urlparse(callback_url).query, keep_blank_values=True)

        provider_error = _single(query, "error")
        if provider_error:
            description = _single(query, "error_description") or ""
            raise ProviderError(f"Provider returned error '{provider_error}': {description}")

        if not _same(_single(query, "state"), expected_state):
            raise StateMismatch("Callback state does not match the bound login attempt")

        code = _single(query, "code")
        if not code:
            raise ProviderError("Callback is missing the authorization code")

        tokens = await self._exchange_code(code, redirect_uri)

        claims = await self._validate_id_token(tokens["id_token"], tokens["access_token"])

        if not _same(claims.get("nonce"), expected_nonce):
            raise NonceMismatch("ID token nonce does not match the bound login attempt")

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise IdTokenInvalid("ID token has no subject")

        user_info = await self._fetch_user_info(tokens["access_token"])

        if not _same(user_info.get("sub"), subject):
            raise SubjectMismatch("User-info subject does not match the ID token subject")

        return VerifiedCallback(claims=claims, user_info=user_info)

    # =========================================================================
    # Token Exchange
    # =========================================================================

    async def _exchange_code(self, code: str, redirect_uri: str) -> Dict[str, Any]:
        """
        Exchange the authorization code for access and ID tokens.

        Raises:
            ProviderUnreachable: Network failure
            ProviderError: Non-2xx response or response without tokens
        """
        payload = {
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        }

        try:
            response = await self._client.post(
                self.endpoints.token_endpoint,
                data=payload,
                headers={"Accept": "application/json"},
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            raise ProviderUnreachable(f"Token exchange request failed: {e}") from e

        if not response.is_success:
            error_msg = "Token exchange failed"
            try:
                error_data = response.json()
                error_msg = error_data.get("error_description") or error_data.get("error") or error_msg
            except ValueError:
                pass
            raise ProviderError(f"Token exchange failed (HTTP {response.status_code}): {error_msg}")

        try:
            token_data = response.json()
        except ValueError as e:
            raise ProviderError("Token response is not JSON") from e

        if not isinstance(token_data, dict):
            raise ProviderError("Token response is not an object")

        for field in ("id_token", "access_token"):
            if not token_data.get(field):
                raise ProviderError(f"Token response missing {field}")

        return token_data

    # =========================================================================
    # ID Token Verification
    # =========================================================================

    async def _fetch_jwks(self) -> Dict[str, Any]:
        try:
            response = await self._client.get(self.endpoints.jwks_uri, timeout=self._timeout)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderError(f"JWKS endpoint returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ProviderUnreachable(f"JWKS request failed: {e}") from e

        try:
            jwks_data = response.json()
        except ValueError as e:
            raise ProviderError("JWKS response is not JSON") from e

        if not isinstance(jwks_data, dict) or "keys" not in jwks_data:
            raise ProviderError("Invalid JWKS response: missing 'keys' field")

        return jwks_data

    @staticmethod
    def _signing_key(id_token: str, jwks: Dict[str, Any]) -> Dict[str, Any]:
        try:
            unverified_header = jwt.get_unverified_header(id_token)
        except JWTError as e:
            raise IdTokenInvalid(f"Failed to decode token header: {e}") from e

        kid = unverified_header.get("kid")
        if not kid:
            raise IdTokenInvalid("Token header missing 'kid' (Key ID)")

        for key in jwks.get("keys", []):
            if isinstance(key, dict) and key.get("kid") == kid:
                return key

        raise IdTokenInvalid(f"No JWKS key matches kid '{kid}'")

    async def _validate_id_token(self, id_token: str, access_token: str) -> Dict[str, Any]:
        """
        Verify the ID token signature, audience, issuer and lifetime.

        Raises:
            IdTokenInvalid: Any signature or claim failure
        """
        jwks = await self._fetch_jwks()
        signing_key = self._signing_key(id_token, jwks)

        try:
            public_key = jwk.construct(signing_key, algorithm=ID_TOKEN_ALGORITHMS[0])
        except Exception as e:
            raise IdTokenInvalid(f"Failed to construct public key from JWK: {e}") from e

        try:
            claims = jwt.decode(
                id_token,
                public_key.to_pem().decode("utf-8"),
                algorithms=ID_TOKEN_ALGORITHMS,
                audience=self.config.client_id,
                issuer=self.endpoints.issuer,
                access_token=access_token,
                options={
                    "verify_signature": True,
                    "verify_aud": True,
                    "verify_iat": True,
                    "verify_exp": True,
                    "verify_nbf": True,
                    "verify_iss": True,
                    "verify_sub": True,
                    "verify_at_hash": True,
                    "require_exp": True,
                    "require_iat": True,
                    "require_sub": True,
                    "leeway": CLOCK_SKEW_SECONDS,
                },
            )
        except JWTError as e:
            raise IdTokenInvalid(f"ID token verification failed: {e}") from e

        return claims

    # =========================================================================
    # User Info
    # =========================================================================

    async def _fetch_user_info(self, access_token: str) -> Dict[str, Any]:
        try:
            response = await self._client.get(
                self.endpoints.userinfo_endpoint,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self._timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderError(f"User-info endpoint returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ProviderUnreachable(f"User-info request failed: {e}") from e

        try:
            user_info = response.json()
        except ValueError as e:
            raise ProviderError("User-info response is not JSON") from e

        if not isinstance(user_info, dict):
            raise ProviderError("User-info response is not an object")

        return user_info
