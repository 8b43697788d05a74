"""
Data Models Module

This module defines Pydantic models for request/response validation
and data exchanged between the stages of the Entra login flow.

Models are organized by functional area:
- Login attempt models (anti-forgery bindings)
- Identity models (verified callback, external identity)
- User models (local user record, sanitized projection)
- API response models
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Login Attempt Models
# ============================================================================

class LoginAttempt(BaseModel):
    """Anti-forgery bindings for one redirect round-trip."""
    model_config = ConfigDict(frozen=True)

    state: str = Field(..., description="Opaque anti-CSRF token")
    nonce: str = Field(..., description="Opaque anti-replay token bound into the ID token")
    redirect_uri: str = Field(..., description="Callback URL sent to the provider")
    created_at: datetime = Field(..., description="When the attempt was issued")
    expires_at: datetime = Field(..., description="When the bindings stop being accepted")


# ============================================================================
# Identity Models
# ============================================================================

class VerifiedCallback(BaseModel):
    """Claims and user-info returned once every callback check has passed."""
    claims: Dict[str, Any] = Field(..., description="Validated ID token claims")
    user_info: Dict[str, Any] = Field(..., description="User-info endpoint response")


class ExternalIdentity(BaseModel):
    """Identity asserted by the provider. Never persisted as-is."""
    subject: str = Field(..., description="Provider subject identifier")
    email: str = Field(..., description="Lower-cased email used for lookup")
    preferred_username: Optional[str] = Field(None, description="preferred_username from user-info")
    claims: Dict[str, Any] = Field(default_factory=dict, description="Raw ID token claims")


# ============================================================================
# User Models
# ============================================================================

class LocalUser(BaseModel):
    """Local account record as returned by the user store."""
    id: int = Field(..., description="Local user identifier")
    username: str = Field(..., description="Unique username")
    email: Optional[str] = Field(None, description="Lower-cased email address")
    role: str = Field(..., description="Application role")
    suspended: bool = Field(default=False, description="Suspended accounts cannot log in")


class SanitizedUser(BaseModel):
    """The only user projection that leaves the reconciler."""
    id: int = Field(..., description="Local user identifier")
    username: str = Field(..., description="Unique username")
    email: Optional[str] = Field(None, description="Email address")
    role: str = Field(..., description="Application role")

    @classmethod
    def from_local(cls, user: LocalUser) -> "SanitizedUser":
        return cls(id=user.id, username=user.username, email=user.email, role=user.role)


class ReconcileResult(BaseModel):
    """Outcome of a successful reconciliation."""
    user: SanitizedUser = Field(..., description="Sanitized user projection")
    session_token: str = Field(..., description="Signed session JWT")
    provisioned: bool = Field(default=False, description="True if the account was created by this login")


# ============================================================================
# API Response Models
# ============================================================================

class EnabledResponse(BaseModel):
    """Response for GET /auth/entra/enabled."""
    enabled: bool = Field(..., description="Whether Entra login is available")


class LoginResponse(BaseModel):
    """Response for GET /auth/entra/login."""
    success: bool = Field(..., description="Whether the authorization URL was built")
    authUrl: Optional[str] = Field(None, description="Provider authorization URL")
    error: Optional[str] = Field(None, description="Error category when success is false")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
