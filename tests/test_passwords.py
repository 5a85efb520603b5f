"""Unit tests for argon2id credential hashing."""

import pytest

from papacatzzi.service.errors import HashingError
from papacatzzi.service.passwords import CredentialHasher


class TestCredentialHasher:
    def test_hash_is_argon2id_and_not_plaintext(self, hasher):
        digest = hasher.hash("CorrectHorse42")

        assert digest.startswith("$argon2id$")
        assert "CorrectHorse42" not in digest

    def test_same_password_produces_different_hashes(self, hasher):
        """Salts differ per call."""
        assert hasher.hash("CorrectHorse42") != hasher.hash("CorrectHorse42")

    def test_verify_accepts_matching_password(self, hasher):
        digest = hasher.hash("CorrectHorse42")

        assert hasher.verify(digest, "CorrectHorse42") is True

    def test_verify_rejects_wrong_password(self, hasher):
        digest = hasher.hash("CorrectHorse42")

        assert hasher.verify(digest, "WrongHorse42") is False

    def test_verify_dummy_never_matches(self, hasher):
        assert hasher.verify_dummy("CorrectHorse42") is False
        assert hasher.verify_dummy("CorrectHorse42") is False

    def test_verify_raises_on_malformed_digest(self, hasher):
        with pytest.raises(HashingError):
            hasher.verify("not-a-real-digest", "CorrectHorse42")

    def test_needs_rehash_when_cost_changes(self, hasher):
        digest = hasher.hash("CorrectHorse42")
        stronger = CredentialHasher(time_cost=2, memory_cost=1024, parallelism=1)

        assert hasher.needs_rehash(digest) is False
        assert stronger.needs_rehash(digest) is True
        # The old digest still verifies under the new parameters
        assert stronger.verify(digest, "CorrectHorse42") is True
