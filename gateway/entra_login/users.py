"""
User store collaborator.

The login flow only needs two operations from user management: look a user
up by email and create one. ``UserStore`` is that contract. Implementations
must compare emails case-insensitively and must never hold two rows for the
same email, even when two first logins race.

``InMemoryUserStore`` is the reference implementation used for development
and tests.
"""

import asyncio
import logging
from typing import Dict, Optional, Protocol

from argon2 import PasswordHasher
from argon2.exceptions import VerifyMismatchError

from .models import LocalUser

logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================

class UserStoreError(Exception):
    """Base exception for user store failures"""
    pass


class EmailAlreadyExists(UserStoreError):
    """A user with this email already exists"""
    pass


class UsernameTaken(UserStoreError):
    """A user with this username already exists"""
    pass


# =============================================================================
# Contract
# =============================================================================

class UserStore(Protocol):
    async def get_by_email(self, email: str) -> Optional[LocalUser]:
        ...

    async def create(self, *, username: str, password: str, email: str, role: str) -> LocalUser:
        ...


# =============================================================================
# Reference Implementation
# =============================================================================

_PASSWORD_HASHER = PasswordHasher()


class InMemoryUserStore:
    """
    Process-local user store.

    All writes go through one asyncio.Lock, so concurrent provisioning for
    the same email creates exactly one row.
    """

    def __init__(self):
        self._users: Dict[int, LocalUser] = {}
        self._by_email: Dict[str, int] = {}
        self._by_username: Dict[str, int] = {}
        self._password_hashes: Dict[int, str] = {}
        self._next_id = 1
        self._lock = asyncio.Lock()

    async def get_by_email(self, email: str) -> Optional[LocalUser]:
        user_id = self._by_email.get(email.strip().lower())
        if user_id is None:
            return None
        return self._users[user_id]

    async def create(self, *, username: str, password: str, email: str, role: str) -> LocalUser:
        """
        Create a user.

        Raises:
            EmailAlreadyExists: Email is already registered
            UsernameTaken: Username is already registered
            UserStoreError: Invalid input
        """
        email_key = email.strip().lower()
        if not email_key or not username:
            raise UserStoreError("Username and email are required")
        if not password:
            raise UserStoreError("Password is required")

        async with self._lock:
            if email_key in self._by_email:
                raise EmailAlreadyExists(f"Email already registered: {email_key}")
            if username in self._by_username:
                raise UsernameTaken(f"Username already taken: {username}")

            user = LocalUser(
                id=self._next_id,
                username=username,
                email=email_key,
                role=role,
                suspended=False,
            )
            self._next_id += 1

            self._users[user.id] = user
            self._by_email[email_key] = user.id
            self._by_username[username] = user.id
            self._password_hashes[user.id] = _PASSWORD_HASHER.hash(password)

        logger.debug("Created user", extra={"user_id": user.id})
        return user

    async def check_password(self, user_id: int, password: str) -> bool:
        password_hash = self._password_hashes.get(user_id)
        if password_hash is None:
            return False
        try:
            return _PASSWORD_HASHER.verify(password_hash, password)
        except VerifyMismatchError:
            return False

    async def set_suspended(self, user_id: int, suspended: bool) -> LocalUser:
        async with self._lock:
            user = self._users[user_id].model_copy(update={"suspended": suspended})
            self._users[user_id] = user
        return user

    def __len__(self) -> int:
        return len(self._users)
