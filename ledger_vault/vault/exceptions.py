"""Exceptions raised by the Ledger Vault."""


class VaultError(Exception):
    """Base class for every error raised by the vault."""


class ConfigurationError(VaultError, RuntimeError):
    """Raised when the master key is missing, too short or otherwise invalid.

    Only raised when the ephemeral key fallback is disabled
    (``VAULT_ALLOW_EPHEMERAL_KEY``), see ``config.load_master_key``.
    """


class EncryptionError(VaultError):
    """Raised when the cipher fails to encrypt a value."""


class DecryptionError(VaultError, ValueError):
    """Raised when ciphertext is malformed, tampered with, or was produced
    with different key material (wrong purpose, wrong salt, wrong master key).
    """


class KeyNotFoundError(VaultError, KeyError):
    """Raised when a key id is not present in the registry (e.g. purged)."""

    def __init__(self, key_id: str):
        self.key_id = key_id
        super().__init__(f"Key {key_id} not found in key registry")

    def __str__(self) -> str:
        # KeyError.__str__ would quote the message
        return self.args[0]


class KeyRevokedError(VaultError):
    """Raised when decryption is attempted against a revoked key."""

    def __init__(self, key_id: str):
        self.key_id = key_id
        super().__init__(f"Key {key_id} has been revoked")


class KeyStateError(VaultError):
    """Raised on an illegal key lifecycle transition or a broken registry
    invariant (there must always be exactly one active key).
    """


class KeyStoreError(VaultError):
    """Raised when registry state cannot be read from or written to its store."""
