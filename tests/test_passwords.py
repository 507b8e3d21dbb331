"""Tests for argon2 password hashing."""

from tokenward.service.passwords import Argon2PasswordHasher


class TestPasswordHashing:
    """Tests for password hashing."""

    def test_password_hash_is_not_plaintext(self, hasher):
        password = "TestPassword123!"
        pwd_hash = hasher.hash(password)

        assert pwd_hash != password
        assert pwd_hash.startswith("$argon2id$")

    def test_same_password_produces_different_hashes(self, hasher):
        """Same password produces different hashes (salted)."""
        hash1 = hasher.hash("TestPassword123!")
        hash2 = hasher.hash("TestPassword123!")

        assert hash1 != hash2
        assert hasher.verify("TestPassword123!", hash1)
        assert hasher.verify("TestPassword123!", hash2)

    def test_verify_mismatch_returns_false(self, hasher):
        pwd_hash = hasher.hash("TestPassword123!")

        assert hasher.verify("WrongPassword", pwd_hash) is False

    def test_verify_malformed_hash_returns_false(self, hasher):
        assert hasher.verify("TestPassword123!", "not-a-hash") is False

    def test_cost_parameters_from_settings(self, settings):
        hasher = Argon2PasswordHasher.from_settings(settings)

        pwd_hash = hasher.hash("pw")

        assert "t=1" in pwd_hash
        assert "m=8192" in pwd_hash
        assert hasher.algorithm == "argon2id"
