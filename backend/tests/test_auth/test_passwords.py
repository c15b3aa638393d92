"""Unit tests for bcrypt password hashing."""

from quillsign.auth.passwords import BCRYPT_MAX_BYTES, hash_password, verify_password


class TestHashPassword:
    def test_hash_is_bcrypt_string(self):
        hashed = hash_password("mypassword")
        assert isinstance(hashed, str)
        assert hashed.startswith("$2")
        assert hashed != "mypassword"

    def test_same_password_different_salts(self):
        assert hash_password("samepassword") != hash_password("samepassword")


class TestVerifyPassword:
    def test_correct_and_wrong_password(self):
        hashed = hash_password("testpass123")
        assert verify_password("testpass123", hashed) is True
        assert verify_password("wrongpassword", hashed) is False

    def test_unicode_password(self):
        hashed = hash_password("pässwördü")
        assert verify_password("pässwördü", hashed) is True
        assert verify_password("password", hashed) is False

    def test_password_longer_than_bcrypt_limit(self):
        """Only the first 72 bytes count, and long input does not raise."""
        long_pass = "a" * (BCRYPT_MAX_BYTES + 20)
        hashed = hash_password(long_pass)
        assert verify_password(long_pass, hashed) is True
        assert verify_password("a" * BCRYPT_MAX_BYTES, hashed) is True

    def test_malformed_hash_is_a_mismatch(self):
        assert verify_password("anything", "not-a-bcrypt-hash") is False
