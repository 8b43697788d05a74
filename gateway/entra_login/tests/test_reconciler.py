"""
Identity Reconciliation Tests

Tests email extraction, lookup, auto-provisioning, the suspension check and
session token issuance.
"""

import asyncio
import re
from unittest.mock import AsyncMock, patch

import pytest

from entra_login.auth import reconciler
from entra_login.auth.errors import (
    NoEmailClaim,
    ProvisioningFailed,
    UserNotFound,
    UserSuspended,
    public_error_category,
)
from entra_login.auth.reconciler import IdentityReconciler, extract_identity
from entra_login.auth.session import verify_session_jwt
from entra_login.users import InMemoryUserStore, UserStoreError

CLAIMS = {"sub": "entra-sub-alice", "email": "claims@example.com", "preferred_username": "pref@example.com"}
USER_INFO = {"sub": "entra-sub-alice", "email": "Alice@Example.com", "preferred_username": "Alice@Example.com"}


@pytest.fixture
def store():
    return InMemoryUserStore()


@pytest.fixture
def provisioning_settings(make_settings):
    return make_settings(ENTRA_AUTO_PROVISION="true", ENTRA_DEFAULT_ROLE="student")


class TestExtractIdentity:
    """Email preference order"""

    def test_prefers_user_info_email(self):
        identity = extract_identity(USER_INFO, CLAIMS)

        assert identity.email == "alice@example.com"
        assert identity.subject == "entra-sub-alice"
        assert identity.preferred_username == "Alice@Example.com"

    def test_then_claims_email(self):
        assert extract_identity({"sub": "s"}, CLAIMS).email == "claims@example.com"

    def test_then_claims_preferred_username(self):
        claims = {"sub": "s", "preferred_username": "Pref@Example.com"}

        assert extract_identity({"sub": "s"}, claims).email == "pref@example.com"

    def test_blank_values_are_ignored(self):
        assert extract_identity({"email": "  "}, CLAIMS).email == "claims@example.com"

    def test_no_email_anywhere(self):
        with pytest.raises(NoEmailClaim):
            extract_identity({"sub": "s"}, {"sub": "s"})


class TestReconcile:
    """Test suite for IdentityReconciler"""

    @pytest.mark.asyncio
    async def test_existing_user_gets_session(self, store, mock_settings):
        alice = await store.create(username="alice", password="pw", email="alice@example.com", role="admin")

        result = await IdentityReconciler(store, mock_settings).reconcile(USER_INFO, CLAIMS)

        assert result.provisioned is False
        assert result.user.model_dump() == {
            "id": alice.id,
            "username": "alice",
            "email": "alice@example.com",
            "role": "admin",
        }
        claims = verify_session_jwt(result.session_token, mock_settings)
        assert claims["sub"] == str(alice.id)
        assert claims["username"] == "alice"
        assert claims["iss"] == "entra-login"

    @pytest.mark.asyncio
    async def test_sanitized_user_has_no_internal_fields(self, store, mock_settings):
        await store.create(username="alice", password="pw", email="alice@example.com", role="admin")

        result = await IdentityReconciler(store, mock_settings).reconcile(USER_INFO, CLAIMS)

        assert set(result.user.model_dump()) == {"id", "username", "email", "role"}

    @pytest.mark.asyncio
    async def test_unknown_user_without_provisioning(self, store, mock_settings):
        with pytest.raises(UserNotFound) as exc_info:
            await IdentityReconciler(store, mock_settings).reconcile(USER_INFO, CLAIMS)

        assert len(store) == 0
        assert public_error_category(exc_info.value) == "access_denied"
        assert public_error_category(exc_info.value, disclose_account_status=True) == "user_not_found"

    @pytest.mark.asyncio
    async def test_unknown_user_is_provisioned(self, store, provisioning_settings):
        result = await IdentityReconciler(store, provisioning_settings).reconcile(USER_INFO, CLAIMS)

        assert result.provisioned is True
        assert result.user.username == "alice"
        assert result.user.email == "alice@example.com"
        assert result.user.role == "student"
        assert re.match(r"^[a-z0-9_-]+$", result.user.username)
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_provisioning_uses_unusable_random_password(self, provisioning_settings):
        store = AsyncMock()
        store.get_by_email.return_value = None
        created = InMemoryUserStore()
        store.create.side_effect = created.create

        await IdentityReconciler(store, provisioning_settings).reconcile(USER_INFO, CLAIMS)

        password = store.create.await_args.kwargs["password"]
        assert re.match(r"^[0-9a-f]{64}$", password)

    @pytest.mark.asyncio
    async def test_username_collision_gets_suffix(self, store, provisioning_settings):
        await store.create(username="alice", password="pw", email="other-alice@example.com", role="default")

        result = await IdentityReconciler(store, provisioning_settings).reconcile(USER_INFO, CLAIMS)

        assert result.provisioned is True
        assert re.match(r"^alice_[0-9a-f]{4}$", result.user.username)

    @pytest.mark.asyncio
    async def test_store_failure_is_provisioning_failed(self, provisioning_settings):
        store = AsyncMock()
        store.get_by_email.return_value = None
        store.create.side_effect = UserStoreError("database is read-only")

        with pytest.raises(ProvisioningFailed) as exc_info:
            await IdentityReconciler(store, provisioning_settings).reconcile(USER_INFO, CLAIMS)

        assert "database is read-only" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_concurrent_first_logins_create_one_user(self, store, provisioning_settings):
        identity_reconciler = IdentityReconciler(store, provisioning_settings)

        results = await asyncio.gather(
            identity_reconciler.reconcile(USER_INFO, CLAIMS),
            identity_reconciler.reconcile(USER_INFO, CLAIMS),
        )

        assert len(store) == 1
        assert results[0].user.id == results[1].user.id
        assert sorted(r.provisioned for r in results) == [False, True]

    @pytest.mark.asyncio
    async def test_suspended_user_gets_no_session(self, store, mock_settings):
        bob = await store.create(username="bob", password="pw", email="alice@example.com", role="default")
        await store.set_suspended(bob.id, True)

        with patch.object(reconciler, "create_session_jwt", wraps=reconciler.create_session_jwt) as create_session:
            with pytest.raises(UserSuspended) as exc_info:
                await IdentityReconciler(store, mock_settings).reconcile(USER_INFO, CLAIMS)

        create_session.assert_not_called()
        assert public_error_category(exc_info.value) == "access_denied"
        assert public_error_category(exc_info.value, disclose_account_status=True) == "user_suspended"

    @pytest.mark.asyncio
    async def test_no_email_claim(self, store, provisioning_settings):
        with pytest.raises(NoEmailClaim):
            await IdentityReconciler(store, provisioning_settings).reconcile({"sub": "s"}, {"sub": "s"})

        assert len(store) == 0

