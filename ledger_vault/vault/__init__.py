"""Ledger Vault — Key lifecycle and field-level encryption.

Security Note (Threat Model):
    Decrypted values and derived keys exist in process memory while they
    are in use, and the master key lives in memory for the whole process
    lifetime. A memory dump of the application process could expose them.
    Protecting process memory needs an HSM or a secure enclave and is not
    attempted here.
"""

from .context import KeyManagementContext
from .config import VaultConfig, load_master_key, generate_master_key
from .crypto import KeyDerivationEngine
from .registry import KeyRegistry
from .codec import FieldEncryptionCodec
from .hashing import SearchableHasher
from .key_rotation import RotationCoordinator
from .store import KeyStore, MemoryKeyStore, FileKeyStore
from .fields import Purpose, DocumentType, SENSITIVE_FIELDS, AMOUNT_FIELDS
from .models import KeyMetadata, KeyStatus, EncryptedField, DerivedKey
from .exceptions import (
    VaultError,
    ConfigurationError,
    EncryptionError,
    DecryptionError,
    KeyNotFoundError,
    KeyRevokedError,
    KeyStateError,
    KeyStoreError,
)

__all__ = [
    "KeyManagementContext",
    "VaultConfig",
    "load_master_key",
    "generate_master_key",
    "KeyDerivationEngine",
    "KeyRegistry",
    "FieldEncryptionCodec",
    "SearchableHasher",
    "RotationCoordinator",
    "KeyStore",
    "MemoryKeyStore",
    "FileKeyStore",
    "Purpose",
    "DocumentType",
    "SENSITIVE_FIELDS",
    "AMOUNT_FIELDS",
    "KeyMetadata",
    "KeyStatus",
    "EncryptedField",
    "DerivedKey",
    "VaultError",
    "ConfigurationError",
    "EncryptionError",
    "DecryptionError",
    "KeyNotFoundError",
    "KeyRevokedError",
    "KeyStateError",
    "KeyStoreError",
]
