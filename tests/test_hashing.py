"""Tests for searchable hashing."""
import pytest

from ledger_vault.vault import KeyDerivationEngine, Purpose, SearchableHasher


@pytest.fixture
def hasher(master_key, iterations):
    return SearchableHasher(KeyDerivationEngine(master_key, iterations=iterations))


class TestSearchableHasher:
    """Tests for SearchableHasher."""

    def test_deterministic(self, hasher):
        """Test the same value always yields the same token."""
        assert hasher.generate_searchable_hash("000123456789") == (
            hasher.generate_searchable_hash("000123456789")
        )

    def test_distinct_values(self, hasher):
        """Test different values yield different tokens."""
        tokens = {
            hasher.generate_searchable_hash(f"0001234567{i:02d}") for i in range(50)
        }
        assert len(tokens) == 50

    def test_token_format(self, hasher):
        """Test tokens are 64 hex characters and do not contain the value."""
        token = hasher.generate_searchable_hash("4111111111111111")
        assert len(token) == 64
        int(token, 16)
        assert "4111111111111111" not in token

    def test_purpose_separation(self, hasher):
        """Test the same value hashes differently per purpose."""
        assert hasher.generate_searchable_hash("x", Purpose.USERS) != (
            hasher.generate_searchable_hash("x", Purpose.ACCOUNTS)
        )

    def test_master_key_dependence(self, hasher, other_master_key, iterations):
        """Test tokens depend on the master key."""
        other = SearchableHasher(
            KeyDerivationEngine(other_master_key, iterations=iterations)
        )
        assert hasher.generate_searchable_hash("x") != other.generate_searchable_hash("x")

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty_passthrough(self, hasher, value):
        """Test empty values are returned unchanged."""
        assert hasher.generate_searchable_hash(value) == value

    def test_verify(self, hasher):
        """Test verification accepts the right value only."""
        token = hasher.generate_searchable_hash("123-45-6789", "users")
        assert hasher.verify_searchable_hash("123-45-6789", token, "users") is True
        assert hasher.verify_searchable_hash("123-45-6780", token, "users") is False
        assert hasher.verify_searchable_hash("123-45-6789", token, "search") is False
        assert hasher.verify_searchable_hash("", token) is False
