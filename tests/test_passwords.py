"""
tests/test_passwords.py -- Unit tests for Argon2id hashing in auth/passwords.py.

Coverage:
  - hash/verify round trip and wrong-password rejection
  - per-call salting (same password, different hashes)
  - malformed and missing hashes are a non-match, never an exception
"""

from __future__ import annotations

from auth.passwords import equalize_timing, hash_password, verify_password


class TestHashAndVerify:
    def test_correct_password_verifies(self) -> None:
        hashed = hash_password("Passw0rd!")
        assert verify_password(hashed, "Passw0rd!") is True

    def test_wrong_password_rejected(self) -> None:
        hashed = hash_password("Passw0rd!")
        assert verify_password(hashed, "Passw0rd?") is False

    def test_hash_is_argon2id_phc_string(self) -> None:
        assert hash_password("Passw0rd!").startswith("$argon2id$")

    def test_same_password_hashes_differently(self) -> None:
        """A fresh salt per call: equal inputs never produce equal hashes."""
        assert hash_password("Passw0rd!") != hash_password("Passw0rd!")


class TestMalformedInput:
    def test_none_hash_is_non_match(self) -> None:
        """Google-only accounts have no hash; verification must just fail."""
        assert verify_password(None, "anything") is False

    def test_garbage_hash_is_non_match(self) -> None:
        assert verify_password("not-a-phc-string", "anything") is False

    def test_non_ascii_hash_is_non_match(self) -> None:
        """A stored hash that cannot be encoded as ASCII is rejected, not raised."""
        assert verify_password("$argon2id$v=19$m=65536,t=3,p=4$\u00fc$abc", "pw") is False

    def test_truncated_hash_is_non_match(self) -> None:
        hashed = hash_password("Passw0rd!")
        assert verify_password(hashed[:-10], "Passw0rd!") is False

    def test_equalize_timing_returns_nothing(self) -> None:
        assert equalize_timing("whatever") is None
