"""
Username Derivation Tests
"""

import random
import re
import string

import pytest

from entra_login.auth.usernames import (
    FALLBACK_USERNAME,
    MAX_USERNAME_LENGTH,
    derive_username,
    sanitize_username,
    with_suffix,
)

USERNAME_PATTERN = re.compile(r"^[a-z0-9_-]{1,64}$")


class TestDeriveUsername:
    """Candidate order and sanitization"""

    def test_prefers_preferred_username_local_part(self):
        assert derive_username("Alice.Smith@contoso.com", "alice@example.com", "sub") == "alice_smith"

    def test_falls_back_to_email_local_part(self):
        assert derive_username(None, "Bob@example.com", "sub") == "bob"

    def test_falls_back_to_subject_prefix(self):
        assert derive_username(None, None, "AbCdEfGh1234") == "entra_abcdefgh"

    def test_last_resort(self):
        assert derive_username(None, None, None) == FALLBACK_USERNAME

    def test_empty_local_part_falls_through(self):
        assert derive_username("@contoso.com", "carol@example.com", "sub") == "carol"

    def test_punctuation_only_local_part_falls_through(self):
        assert derive_username("...@contoso.com", "!!!@example.com", "12345678abc") == "entra_12345678"

    def test_unicode_is_replaced(self):
        username = derive_username("josé.müller@contoso.com", None, None)

        assert username == "jos__m_ller"

    def test_long_input_is_truncated(self):
        username = derive_username("x" * 500 + "@contoso.com", None, None)

        assert username == "x" * MAX_USERNAME_LENGTH

    def test_is_deterministic(self):
        args = ("Dana@contoso.com", "dana@example.com", "sub-1")

        assert derive_username(*args) == derive_username(*args)

    @pytest.mark.parametrize("seed", range(20))
    def test_fuzz_output_always_valid(self, seed):
        rng = random.Random(seed)
        alphabet = string.printable + "äöüßéçñ漢字😀​\u0000"

        for _ in range(200):
            def candidate():
                if rng.random() < 0.2:
                    return None
                length = rng.randint(0, 120)
                return "".join(rng.choice(alphabet) for _ in range(length))

            username = derive_username(candidate(), candidate(), candidate())

            assert USERNAME_PATTERN.match(username), username


class TestSanitizeAndSuffix:
    """Helpers used when provisioning collides"""

    def test_sanitize(self):
        assert sanitize_username("Hello World!") == "hello_world_"

    def test_suffix_stays_within_limit(self):
        username = with_suffix("y" * MAX_USERNAME_LENGTH, "a1b2")

        assert len(username) == MAX_USERNAME_LENGTH
        assert username.endswith("_a1b2")
        assert USERNAME_PATTERN.match(username)

    def test_suffix_on_short_name(self):
        assert with_suffix("alice", "0f3c") == "alice_0f3c"
