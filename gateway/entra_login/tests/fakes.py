"""
Test doubles for provider traffic.

Provider traffic never leaves the process: ``FakeEntra`` answers discovery,
token, JWKS and user-info requests through ``httpx.MockTransport`` and mints
RS256 ID tokens with a test key pair.
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs

import httpx
import jwt
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from entra_login.config import OIDCEndpoints


# Test RSA key pair generation for mocking JWKS
def generate_test_keys():
    """Generate RSA key pair for testing"""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048,
        backend=default_backend()
    )

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )

    return private_pem.decode(), private_key.public_key()


# Generate test keys once for reuse
TEST_PRIVATE_KEY, TEST_PUBLIC_KEY = generate_test_keys()
OTHER_PRIVATE_KEY, _ = generate_test_keys()
TEST_KID = "test-key-id-2024"

TENANT_ID = "test-tenant-id"
CLIENT_ID = "test-client-id"
CLIENT_SECRET = "test-client-secret"
AUTHORITY = f"https://login.microsoftonline.com/{TENANT_ID}"
ISSUER = f"{AUTHORITY}/v2.0"
FRONTEND_URL = "http://frontend.test"

ENDPOINTS = OIDCEndpoints(
    issuer=ISSUER,
    authorization_endpoint=f"{AUTHORITY}/oauth2/v2.0/authorize",
    token_endpoint=f"{AUTHORITY}/oauth2/v2.0/token",
    userinfo_endpoint="https://graph.microsoft.com/oidc/userinfo",
    jwks_uri=f"{AUTHORITY}/discovery/v2.0/keys",
)


def create_mock_jwks(kid: str = TEST_KID) -> Dict[str, Any]:
    """JWKS containing the test public key under ``kid``."""
    key = RSAAlgorithm.to_jwk(TEST_PUBLIC_KEY, as_dict=True)
    key["kid"] = kid
    key["use"] = "sig"
    return {"keys": [key]}


def create_mock_id_token(
    nonce: Optional[str],
    sub: str = "entra-sub-alice",
    email: Optional[str] = "alice@example.com",
    kid: str = TEST_KID,
    exp_delta_minutes: int = 60,
    audience: str = CLIENT_ID,
    issuer: str = ISSUER,
    private_key: str = TEST_PRIVATE_KEY,
    extra_claims: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Create an ID token signed with the test private key.
    """
    now = datetime.now(timezone.utc)
    payload: Dict[str, Any] = {
        "iss": issuer,
        "sub": sub,
        "aud": audience,
        "exp": now + timedelta(minutes=exp_delta_minutes),
        "iat": now - timedelta(minutes=1),
        "name": "Alice Example",
    }
    if nonce is not None:
        payload["nonce"] = nonce
    if email is not None:
        payload["email"] = email
        payload["preferred_username"] = email
    if extra_claims:
        payload.update(extra_claims)

    return jwt.encode(payload, private_key, algorithm="RS256", headers={"kid": kid})


class FakeEntra:
    """
    In-process stand-in for the Entra ID endpoints.

    Tests tweak the attributes before a flow runs; ``requests`` records every
    request the verifier or discoverer made.
    """

    def __init__(self):
        self.nonce: Optional[str] = None
        self.sub = "entra-sub-alice"
        self.email: Optional[str] = "alice@example.com"
        self.userinfo: Optional[Dict[str, Any]] = None
        self.id_token: Optional[str] = None
        self.access_token = "access-token-123"
        self.token_status = 200
        self.token_error: Dict[str, Any] = {
            "error": "invalid_grant",
            "error_description": "AADSTS70008: The provided authorization code has expired.",
        }
        self.discovery_status = 200
        self.discovery_document: Optional[Dict[str, Any]] = None
        self.jwks = create_mock_jwks()
        self.fail_network = False
        self.requests: List[httpx.Request] = []

    def paths(self) -> List[str]:
        return [request.url.path for request in self.requests]

    def token_form(self) -> Dict[str, str]:
        for request in self.requests:
            if request.url.path.endswith("/oauth2/v2.0/token"):
                return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        return {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if self.fail_network:
            raise httpx.ConnectError("connection refused", request=request)

        path = request.url.path

        if path.endswith("/.well-known/openid-configuration"):
            if self.discovery_status != 200:
                return httpx.Response(self.discovery_status, json={"error": "unavailable"})
            document = self.discovery_document
            if document is None:
                document = ENDPOINTS.model_dump()
            return httpx.Response(200, json=document)

        if path.endswith("/oauth2/v2.0/token"):
            if self.token_status != 200:
                return httpx.Response(self.token_status, json=self.token_error)
            id_token = self.id_token or create_mock_id_token(self.nonce, sub=self.sub, email=self.email)
            return httpx.Response(200, json={
                "token_type": "Bearer",
                "id_token": id_token,
                "access_token": self.access_token,
                "expires_in": 3600,
            })

        if path.endswith("/discovery/v2.0/keys"):
            return httpx.Response(200, json=self.jwks)

        if path.endswith("/oidc/userinfo"):
            if request.headers.get("Authorization") != f"Bearer {self.access_token}":
                return httpx.Response(401, json={"error": "invalid_token"})
            info = self.userinfo
            if info is None:
                info = {"sub": self.sub, "name": "Alice Example"}
                if self.email:
                    info["email"] = self.email
                    info["preferred_username"] = self.email
            return httpx.Response(200, content=json.dumps(info), headers={"Content-Type": "application/json"})

        return httpx.Response(404)
