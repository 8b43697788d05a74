"""
Error taxonomy for the Entra login flow.

Every failure carries two messages: ``category`` is a short, stable code that
may be shown to a browser, ``detail`` is the full reason and is only ever
written to the server log.
"""

from typing import Optional


class EntraAuthError(Exception):
    """Base exception for all Entra login failures"""

    category = "authentication_failed"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.__class__.__doc__ or self.category
        super().__init__(self.detail)


# =============================================================================
# Configuration / Provider
# =============================================================================

class ProviderDisabled(EntraAuthError):
    """Entra authentication is not enabled"""

    category = "entra_not_enabled"


class ConfigInvalid(EntraAuthError):
    """Provider configuration is malformed"""

    category = "configuration_error"


class ProviderUnreachable(EntraAuthError):
    """Identity provider could not be reached"""

    category = "provider_error"


class ProviderError(EntraAuthError):
    """Identity provider rejected the request"""

    category = "provider_error"


# =============================================================================
# Verification (integrity failures always fail closed)
# =============================================================================

class SessionExpired(EntraAuthError):
    """Login attempt bindings are missing or expired"""

    category = "invalid_session"


class VerificationError(EntraAuthError):
    """Callback failed an anti-forgery or token integrity check"""

    category = "verification_failed"


class StateMismatch(VerificationError):
    """Callback state does not match the bound login attempt"""


class NonceMismatch(VerificationError):
    """ID token nonce does not match the bound login attempt"""


class SubjectMismatch(VerificationError):
    """User-info subject does not match the ID token subject"""


class IdTokenInvalid(VerificationError):
    """ID token signature or claims failed validation"""


# =============================================================================
# Reconciliation
# =============================================================================

class NoEmailClaim(EntraAuthError):
    """No email found in Entra user info"""

    category = "no_email_claim"


class UserNotFound(EntraAuthError):
    """User not found and auto-provisioning is disabled. Contact your administrator."""

    category = "user_not_found"
    disclosure_sensitive = True


class UserSuspended(EntraAuthError):
    """User account is suspended"""

    category = "user_suspended"
    disclosure_sensitive = True


class ProvisioningFailed(EntraAuthError):
    """Failed to create user"""

    category = "provisioning_failed"


class SessionTokenError(EntraAuthError):
    """Session token could not be issued"""

    category = "authentication_failed"


GENERIC_CATEGORY = "authentication_failed"
CONCEALED_ACCOUNT_CATEGORY = "access_denied"


def public_error_category(exc: BaseException, disclose_account_status: bool = False) -> str:
    """
    Map any exception to a category that is safe to put in a redirect.

    Args:
        exc: The failure raised anywhere in the login pipeline
        disclose_account_status: Whether 'user_not_found' and
            'user_suspended' may be revealed to the client

    Returns:
        Category string; unknown exceptions map to 'authentication_failed'.
    """
    if not isinstance(exc, EntraAuthError):
        return GENERIC_CATEGORY

    if getattr(exc, "disclosure_sensitive", False) and not disclose_account_status:
        return CONCEALED_ACCOUNT_CATEGORY

    return exc.category
