"""Tests for password hashing and bearer tokens"""
from datetime import datetime, timezone

from hargapangan.core.security import as_utc, hash_password, hash_token, verify_password


class TestPasswords:
    def test_hash_verifies(self):
        encoded = hash_password("secret123")
        assert encoded != "secret123"
        assert verify_password("secret123", encoded) is True
        assert verify_password("wrong", encoded) is False

    def test_same_password_gets_a_fresh_salt(self):
        assert hash_password("secret123") != hash_password("secret123")

    def test_malformed_or_empty_hash_never_verifies(self):
        assert verify_password("secret123", "") is False
        assert verify_password("secret123", "not-a-hash") is False


class TestTokens:
    def test_token_hash_is_stable(self):
        assert hash_token("abc") == hash_token("abc")
        assert hash_token("abc") != hash_token("abd")

    def test_naive_datetimes_read_as_utc(self):
        naive = datetime(2026, 10, 16, 8, 0)
        assert as_utc(naive).tzinfo is timezone.utc
        assert as_utc(None) is None
