"""
Identity reconciliation.

Maps a verified Entra identity to a local user: lookup by email, optional
auto-provisioning, suspension check and session token issuance. Internal
user fields never leave this module; callers get a SanitizedUser.
"""

import logging
import secrets
from typing import Any, Dict, Optional, Tuple

from ..config import Settings
from ..models import ExternalIdentity, LocalUser, ReconcileResult, SanitizedUser
from ..users import EmailAlreadyExists, UsernameTaken, UserStore, UserStoreError
from .errors import NoEmailClaim, ProvisioningFailed, UserNotFound, UserSuspended
from .session import create_session_jwt
from .usernames import derive_username, with_suffix

logger = logging.getLogger(__name__)


MAX_PROVISION_ATTEMPTS = 3


def _claim(source: Dict[str, Any], name: str) -> Optional[str]:
    value = source.get(name)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def extract_identity(user_info: Dict[str, Any], claims: Dict[str, Any]) -> ExternalIdentity:
    """
    Build the external identity from user-info and ID token claims.

    Email preference: user-info email, then claims email, then claims
    preferred_username.

    Raises:
        NoEmailClaim: None of the three is present
    """
    email = (
        _claim(user_info, "email")
        or _claim(claims, "email")
        or _claim(claims, "preferred_username")
    )
    if not email:
        raise NoEmailClaim()

    return ExternalIdentity(
        subject=_claim(claims, "sub") or _claim(user_info, "sub") or "",
        email=email.lower(),
        preferred_username=_claim(user_info, "preferred_username"),
        claims=claims,
    )


class IdentityReconciler:
    """
    Reconciles external identities with local users.

    Args:
        store: User store collaborator
        settings: Application settings (provisioning policy, session expiry)
    """

    def __init__(self, store: UserStore, settings: Settings):
        self.store = store
        self.settings = settings

    async def reconcile(self, user_info: Dict[str, Any], claims: Dict[str, Any]) -> ReconcileResult:
        """
        Find or create the local user and issue a session token.

        Raises:
            NoEmailClaim: No usable email in user-info or claims
            UserNotFound: Unknown email and auto-provisioning is off
            ProvisioningFailed: The store refused to create the user
            UserSuspended: The user is suspended
            SessionTokenError: The session token could not be signed
        """
        identity = extract_identity(user_info, claims)

        provisioned = False
        user = await self.store.get_by_email(identity.email)

        if user is None:
            if not self.settings.auto_provision:
                raise UserNotFound(f"No local user for {identity.email} and auto-provisioning is disabled")

            user, provisioned = await self._provision(identity)

        if user.suspended:
            raise UserSuspended(f"User {user.id} is suspended")

        session_token = create_session_jwt(user.id, user.username, self.settings)

        logger.info(
            "Entra login reconciled",
            extra={"user_id": user.id, "provisioned": provisioned},
        )

        return ReconcileResult(
            user=SanitizedUser.from_local(user),
            session_token=session_token,
            provisioned=provisioned,
        )

    async def _provision(self, identity: ExternalIdentity) -> Tuple[LocalUser, bool]:
        """
        Create the local user for a first login.

        Returns:
            Tuple of (user, created). ``created`` is False when a concurrent
            login created the same email first.
        """
        base_username = derive_username(identity.preferred_username, identity.email, identity.subject)
        username = base_username
        role = self.settings.ENTRA_DEFAULT_ROLE

        for _ in range(MAX_PROVISION_ATTEMPTS):
            # Unusable password: Entra users never log in with it.
            password = secrets.token_hex(32)
            try:
                user = await self.store.create(
                    username=username,
                    password=password,
                    email=identity.email,
                    role=role,
                )
            except EmailAlreadyExists:
                existing = await self.store.get_by_email(identity.email)
                if existing is None:
                    raise ProvisioningFailed(f"Failed to create user: email conflict for {identity.email}")
                logger.info(
                    "Concurrent login already provisioned this email",
                    extra={"user_id": existing.id},
                )
                return existing, False
            except UsernameTaken:
                username = with_suffix(base_username, secrets.token_hex(2))
                continue
            except UserStoreError as e:
                raise ProvisioningFailed(f"Failed to create user: {e}") from e

            logger.info(
                "Auto-provisioned new user",
                extra={"user_id": user.id, "username": user.username, "role": role},
            )
            return user, True

        raise ProvisioningFailed(
            f"Failed to create user: no free username after {MAX_PROVISION_ATTEMPTS} attempts"
        )
