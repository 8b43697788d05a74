"""
Configuration module for the Entra ID login gateway.

This module uses Pydantic Settings to load and validate environment variables
for the Microsoft Entra ID provider, session JWT issuance, the login-attempt
cookies and the trusted frontend that receives completion redirects.

Environment variables are loaded from .env file or system environment.

The provider itself is resolved lazily on every login attempt by
``resolve_provider_config``. A missing or partial provider configuration is
not an error: it simply means Entra login is disabled.
"""

from functools import lru_cache
from typing import List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


AFFIRMATIVE = "true"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Every provider field is optional so the service can start with Entra
    login switched off.
    """

    # =========================================================================
    # Microsoft Entra ID Provider
    # =========================================================================

    ENTRA_ENABLED: Optional[str] = Field(
        None,
        description="Must be the string 'true' to enable Entra login",
    )

    ENTRA_CLIENT_ID: Optional[str] = Field(
        None,
        description="Application (client) ID registered in Entra ID",
    )

    ENTRA_CLIENT_SECRET: Optional[str] = Field(
        None,
        description="Client secret for the confidential client",
    )

    ENTRA_TENANT_ID: Optional[str] = Field(
        None,
        description="Directory (tenant) ID; the issuer is derived from it",
    )

    ENTRA_AUTHORITY_HOST: str = Field(
        default="login.microsoftonline.com",
        description="Authority host used to build the issuer URL",
    )

    ENTRA_REDIRECT_URI: Optional[str] = Field(
        None,
        description="Explicit callback URL; derived from the request when unset",
    )

    # =========================================================================
    # Provisioning Policy
    # =========================================================================

    ENTRA_AUTO_PROVISION: Optional[str] = Field(
        None,
        description="Set to 'true' to create local accounts on first login",
    )

    ENTRA_DEFAULT_ROLE: str = Field(
        default="default",
        description="Role assigned to auto-provisioned users",
        min_length=1,
    )

    ENTRA_DISCLOSE_ACCOUNT_STATUS: bool = Field(
        default=False,
        description="Report 'user_not_found'/'user_suspended' to clients instead of 'access_denied'",
    )

    # =========================================================================
    # Frontend / Redirects
    # =========================================================================

    FRONTEND_URL: str = Field(
        default="",
        description="Trusted frontend base URL for completion redirects (empty = same origin)",
    )

    HOME_PATH: str = Field(
        default="/",
        description="Path the completion page sends the user to",
    )

    # =========================================================================
    # Session JWT Configuration
    # =========================================================================

    SESSION_JWT_SECRET: str = Field(
        ...,
        description="Secret for signing session JWTs and login-attempt cookies",
        min_length=32,
    )

    SESSION_JWT_ALGORITHM: str = Field(
        default="HS256",
        description="JWT signing algorithm (HS256, HS384, or HS512)",
    )

    SESSION_JWT_EXPIRY_MINUTES: int = Field(
        default=1440,
        description="Session JWT expiry time in minutes",
        ge=5,
        le=43200,  # 30 days
    )

    SESSION_JWT_ISSUER: str = Field(
        default="entra-login",
        description="Issuer claim stamped on session JWTs",
    )

    # =========================================================================
    # Login Attempt / Provider Traffic
    # =========================================================================

    LOGIN_ATTEMPT_TTL_SECONDS: int = Field(
        default=600,
        description="Lifetime of the state/nonce/redirect cookies",
        ge=60,
        le=3600,
    )

    DISCOVERY_CACHE_SECONDS: int = Field(
        default=3600,
        description="Time to cache the OIDC discovery document (0 disables)",
        ge=0,
        le=86400,
    )

    HTTP_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for discovery, token, JWKS and userinfo calls",
        gt=0,
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    ENVIRONMENT: str = Field(
        default="development",
        description="'production' turns on Secure cookies",
    )

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins",
    )

    LOG_LEVEL: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.strip().lower() == "production"

    @property
    def auto_provision(self) -> bool:
        return _is_affirmative(self.ENTRA_AUTO_PROVISION)

    @property
    def frontend_base_url(self) -> str:
        """FRONTEND_URL without a trailing slash."""
        return self.FRONTEND_URL.strip().rstrip("/")

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        Parse and return ALLOWED_ORIGINS as a list.

        Returns:
            List of allowed origin URLs, or empty list if not configured.
        """
        if not self.ALLOWED_ORIGINS:
            return []

        return [
            origin.strip()
            for origin in self.ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("SESSION_JWT_ALGORITHM")
    @classmethod
    def validate_jwt_algorithm(cls, v: str) -> str:
        """
        Validate JWT algorithm is one of the supported HMAC algorithms.

        Raises:
            ValueError: If algorithm is not supported
        """
        allowed_algorithms = ["HS256", "HS384", "HS512"]

        if v not in allowed_algorithms:
            raise ValueError(
                f"JWT algorithm must be one of {allowed_algorithms}, got: {v}"
            )

        return v

    @field_validator("FRONTEND_URL")
    @classmethod
    def validate_frontend_url(cls, v: str) -> str:
        """
        The frontend URL is the only redirect target this service emits,
        so it must be empty (same origin) or an absolute http(s) URL.
        """
        v = v.strip()
        if not v:
            return v

        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(
                f"FRONTEND_URL must be an absolute http(s) URL, got: {v}"
            )
        if parsed.query or parsed.fragment:
            raise ValueError("FRONTEND_URL must not carry a query or fragment")

        return v

    @field_validator("HOME_PATH")
    @classmethod
    def validate_home_path(cls, v: str) -> str:
        if not v.startswith("/") or v.startswith("//"):
            raise ValueError("HOME_PATH must be an absolute path on this origin")
        return v


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    Used by ``create_app`` when no AppState is supplied. Raises a
    ValidationError when required values such as SESSION_JWT_SECRET are
    missing, so the service refuses to start without them.
    """
    return Settings()


# =============================================================================
# Provider Configuration
# =============================================================================

class OIDCEndpoints(BaseModel):
    """Endpoints published in the provider's discovery document."""

    model_config = ConfigDict(frozen=True)

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str
    jwks_uri: str


class ProviderConfig(BaseModel):
    """
    Immutable description of the single configured identity provider.

    ``endpoints`` stays ``None`` until discovery has run; discovery returns a
    new instance rather than mutating this one.
    """

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    issuer_url: str
    client_id: str
    client_secret: str
    endpoints: Optional[OIDCEndpoints] = None

    def with_endpoints(self, endpoints: OIDCEndpoints) -> "ProviderConfig":
        return self.model_copy(update={"endpoints": endpoints})


def _is_affirmative(value: Optional[str]) -> bool:
    return bool(value) and value.strip().lower() == AFFIRMATIVE


def is_enabled(settings: Settings) -> bool:
    """
    Check whether Entra login is switched on and fully configured.

    Returns:
        True only when ENTRA_ENABLED is 'true' and client id, client secret
        and tenant id are all present.
    """
    return (
        _is_affirmative(settings.ENTRA_ENABLED)
        and bool((settings.ENTRA_CLIENT_ID or "").strip())
        and bool((settings.ENTRA_CLIENT_SECRET or "").strip())
        and bool((settings.ENTRA_TENANT_ID or "").strip())
    )


def build_issuer_url(settings: Settings, tenant_id: str) -> str:
    host = settings.ENTRA_AUTHORITY_HOST.strip().rstrip("/")
    return f"https://{host}/{tenant_id}/v2.0"


def resolve_provider_config(settings: Settings) -> Optional[ProviderConfig]:
    """
    Resolve the provider configuration for one login attempt.

    Args:
        settings: Application settings

    Returns:
        ProviderConfig, or None when Entra login is disabled. Missing
        configuration never raises.
    """
    if not is_enabled(settings):
        return None

    tenant_id = settings.ENTRA_TENANT_ID.strip()
    return ProviderConfig(
        tenant_id=tenant_id,
        issuer_url=build_issuer_url(settings, tenant_id),
        client_id=settings.ENTRA_CLIENT_ID.strip(),
        client_secret=settings.ENTRA_CLIENT_SECRET.strip(),
    )
