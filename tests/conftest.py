"""Shared fixtures for the Ledger Vault test suite."""
import pytest

from ledger_vault.vault import (
    KeyManagementContext,
    KeyStoreError,
    MemoryKeyStore,
    VaultConfig,
)

MASTER_KEY = "unit-test-master-key-0123456789abcdef"
OTHER_MASTER_KEY = "another-master-key-fedcba9876543210xyz"

# low PBKDF2 cost for tests
TEST_ITERATIONS = 1000

_VAULT_ENV = (
    "VAULT_MASTER_KEY",
    "VAULT_CIPHER_BACKEND",
    "VAULT_KDF_ITERATIONS",
    "VAULT_KEY_RETENTION",
    "VAULT_MAX_KEY_AGE_HOURS",
    "VAULT_REGISTRY_PATH",
    "VAULT_ALLOW_EPHEMERAL_KEY",
)


class FlakyKeyStore(MemoryKeyStore):
    """MemoryKeyStore whose writes can be made to fail."""

    def __init__(self):
        super().__init__()
        self.fail = False

    def save(self, state):
        if self.fail:
            raise KeyStoreError("simulated write failure")
        super().save(state)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every VAULT_* variable from the environment."""
    for name in _VAULT_ENV:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def master_key():
    return MASTER_KEY


@pytest.fixture
def other_master_key():
    return OTHER_MASTER_KEY


@pytest.fixture
def iterations():
    return TEST_ITERATIONS


@pytest.fixture
def config():
    return VaultConfig(master_key=MASTER_KEY, kdf_iterations=TEST_ITERATIONS)


@pytest.fixture
def store():
    return FlakyKeyStore()


@pytest.fixture
def context(config, store):
    """A fresh KeyManagementContext with one active key."""
    return KeyManagementContext(config, store=store)


@pytest.fixture
def codec(context):
    return context.codec


@pytest.fixture
def rotation(context):
    return context.rotation
