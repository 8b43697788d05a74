"""
Username derivation for auto-provisioned accounts.

Pure functions: the same inputs always produce the same username, and every
result matches ``^[a-z0-9_-]{1,64}$``.
"""

import re
from typing import Optional

MAX_USERNAME_LENGTH = 64
SUBJECT_PREFIX_LENGTH = 8
FALLBACK_PREFIX = "entra_"
FALLBACK_USERNAME = "entra_user"

_DISALLOWED = re.compile(r"[^a-z0-9_-]")
_MEANINGFUL = re.compile(r"[a-z0-9]")


def sanitize_username(candidate: str) -> str:
    """Lower-case, replace every character outside [a-z0-9_-] with '_', truncate."""
    return _DISALLOWED.sub("_", candidate.lower())[:MAX_USERNAME_LENGTH]


def local_part(value: Optional[str]) -> str:
    """Text before the first '@' (the whole value when there is none)."""
    if not value:
        return ""
    return value.split("@", 1)[0]


def _usable(candidate: str) -> Optional[str]:
    sanitized = sanitize_username(candidate)
    # A name made only of '_' and '-' carries nothing of the original.
    if not _MEANINGFUL.search(sanitized):
        return None
    return sanitized


def derive_username(
    preferred_username: Optional[str],
    email: Optional[str],
    subject: Optional[str],
) -> str:
    """
    Pick a username for a new account.

    Candidates, in order: local part of ``preferred_username``, local part of
    ``email``, then ``entra_`` plus the first 8 characters of the subject.
    A candidate that sanitizes to nothing meaningful falls through to the
    next one.
    """
    for candidate in (local_part(preferred_username), local_part(email)):
        if candidate:
            usable = _usable(candidate)
            if usable:
                return usable

    if subject:
        usable = _usable(f"{FALLBACK_PREFIX}{subject[:SUBJECT_PREFIX_LENGTH]}")
        if usable:
            return usable

    return FALLBACK_USERNAME


def with_suffix(username: str, suffix: str) -> str:
    """Append ``_<suffix>`` while staying within the length limit."""
    suffix = sanitize_username(suffix)
    head = username[: MAX_USERNAME_LENGTH - len(suffix) - 1]
    return f"{head}_{suffix}"
