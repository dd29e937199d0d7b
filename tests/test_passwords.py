"""Unit tests for argon2id password hashing."""

import pytest
from argon2.exceptions import VerificationError

from identity_service.service.errors import InfrastructureFault
from identity_service.service.passwords import PASSWORD_ALGO, PasswordHasher


class TestPasswordHashing:
    def test_hash_is_argon2id_and_not_plaintext(self, hasher):
        pwd_hash = hasher.hash("secret1")
        assert pwd_hash != "secret1"
        assert pwd_hash.startswith(f"${PASSWORD_ALGO}$")

    def test_same_password_produces_different_hashes(self, hasher):
        assert hasher.hash("secret1") != hasher.hash("secret1")

    def test_verify_exact_plaintext_only(self, hasher):
        pwd_hash = hasher.hash("secret1")
        assert hasher.verify(pwd_hash, "secret1") is True
        for variant in ("secret2", "Secret1", "secret", "secret1 ", "ssecret1"):
            assert hasher.verify(pwd_hash, variant) is False

    def test_malformed_hash_is_infrastructure_fault(self, hasher):
        with pytest.raises(InfrastructureFault):
            hasher.verify("not-a-hash", "secret1")

    def test_backend_failure_is_infrastructure_fault(self):
        class BrokenHasher:
            def verify(self, _hash, _plaintext):
                raise VerificationError("internal failure")

        with pytest.raises(InfrastructureFault):
            PasswordHasher(BrokenHasher()).verify("$argon2id$whatever", "secret1")

    def test_burn_verify_returns_nothing(self, hasher):
        assert hasher.burn_verify("secret1") is None
        # Dummy hash is computed once and reused
        first = hasher._dummy_hash
        hasher.burn_verify("other")
        assert hasher._dummy_hash == first
