"""
KeyManagementContext — public API of the Ledger Vault.

Constructed once at process start and passed to every component that needs
cryptographic operations:

- ``encrypt(value, purpose)`` / ``decrypt(field, purpose)`` — single values
- ``encrypt_object(record, document_type)`` / ``decrypt_object(...)`` —
  the configured sensitive fields of a record
- ``hash(value, purpose)`` — searchable lookup tokens
- ``mask(value, kind)`` — display redaction
- ``rotate_keys()`` / ``revoke_key()`` / ``list_keys()`` — key lifecycle
- ``validate_encryption()`` — self-test

Security Note:
    Never log plaintext or ciphertext values. Only log key ids, purposes and
    field names.
"""
import asyncio
import logging
from functools import partial
from typing import Any
from collections.abc import Iterable, Mapping
from concurrent.futures import Executor

from ..masking import MaskKind, mask_sensitive_data
from .codec import FieldEncryptionCodec, FieldValue
from .config import VaultConfig
from .crypto import KDF_ALGORITHM, KeyDerivationEngine, algorithm_for_backend
from .fields import DocumentType, Purpose, fields_for, purpose_for
from .hashing import SearchableHasher
from .key_rotation import RotationCoordinator
from .models import DerivedKey, EncryptedField, KeyMetadata, KeyStatus
from .registry import KeyRegistry
from .store import FileKeyStore, KeyStore

logger = logging.getLogger("ledger.vault")

_VALIDATION_PLAINTEXT = "test_encryption_validation_data"


class KeyManagementContext:
    """Process-wide key management, built explicitly instead of as a global.

    Args:
        config: Validated vault configuration.
        store: Registry persistence. Defaults to a FileKeyStore when
            ``config.registry_path`` is set, else in-memory only.
        executor: Executor used by the ``*_async`` methods; ``None`` uses
            the event loop's default executor.
    """

    def __init__(
        self,
        config: VaultConfig,
        store: KeyStore | None = None,
        executor: Executor | None = None,
    ):
        self.config = config
        if store is None and config.registry_path:
            store = FileKeyStore(config.registry_path)
        self._engine = KeyDerivationEngine(
            config.master_key.get_secret_value(),
            iterations=config.kdf_iterations,
            salt_size=config.salt_size,
        )
        self.registry = KeyRegistry(store)
        self.codec = FieldEncryptionCodec(self._engine, self.registry)
        self.hasher = SearchableHasher(self._engine)
        self.rotation = RotationCoordinator(
            self.registry,
            self.codec,
            algorithm=algorithm_for_backend(config.cipher_backend),
            key_retention=config.key_retention,
            max_key_age_hours=config.max_key_age_hours,
        )
        self._executor = executor
        current = self.rotation.bootstrap()
        logger.debug(
            "Key management ready: current key=%s v%d", current.id, current.version,
        )

    @classmethod
    def from_env(cls, store: KeyStore | None = None) -> "KeyManagementContext":
        """Build a context from ``VaultConfig.from_env()``."""
        return cls(VaultConfig.from_env(), store=store)

    def __repr__(self) -> str:
        return (
            f"<KeyManagementContext current={self.registry.current_key_id} "
            f"keys={len(self.registry)}>"
        )

    # ------------------------------------------------------------------
    # Derivation
    # ------------------------------------------------------------------

    def derive_key(
        self, purpose: Purpose | str, salt: bytes | None = None
    ) -> DerivedKey:
        """Derive a key for ``purpose`` from the current key id."""
        return self._engine.derive_key(purpose, self.registry.current().id, salt)

    # ------------------------------------------------------------------
    # Values and records
    # ------------------------------------------------------------------

    def encrypt(
        self, value: str | None, purpose: Purpose | str = Purpose.TRANSACTIONS
    ) -> EncryptedField | str | None:
        return self.codec.encrypt_field(value, purpose)

    def decrypt(
        self,
        field: FieldValue | None,
        purpose: Purpose | str = Purpose.TRANSACTIONS,
    ) -> str | None:
        return self.codec.decrypt_field(field, purpose)

    def encrypt_object(
        self, record: Mapping[str, Any], document_type: DocumentType | str
    ) -> dict[str, Any]:
        """Encrypt the sensitive fields configured for ``document_type``."""
        return self.codec.encrypt_object(
            record, fields_for(document_type), purpose_for(document_type),
        )

    def decrypt_object(
        self, record: Mapping[str, Any], document_type: DocumentType | str
    ) -> dict[str, Any]:
        """Decrypt the sensitive fields configured for ``document_type``."""
        return self.codec.decrypt_object(
            record, fields_for(document_type), purpose_for(document_type),
        )

    def encrypt_document(
        self, document: Any, purpose: Purpose | str = Purpose.TEMPORARY
    ) -> EncryptedField:
        return self.codec.encrypt_document(document, purpose)

    def decrypt_document(
        self, field: FieldValue, purpose: Purpose | str = Purpose.TEMPORARY
    ) -> Any:
        return self.codec.decrypt_document(field, purpose)

    # ------------------------------------------------------------------
    # Hashing and masking
    # ------------------------------------------------------------------

    def hash(
        self, value: str | None, purpose: Purpose | str = Purpose.SEARCH
    ) -> str | None:
        return self.hasher.generate_searchable_hash(value, purpose)

    def verify_hash(
        self, value: str, token: str, purpose: Purpose | str = Purpose.SEARCH
    ) -> bool:
        return self.hasher.verify_searchable_hash(value, token, purpose)

    @staticmethod
    def mask(
        value: str | None, kind: MaskKind | str = MaskKind.DEFAULT
    ) -> str | None:
        return mask_sensitive_data(value, kind)

    # ------------------------------------------------------------------
    # Key lifecycle
    # ------------------------------------------------------------------

    def rotate_keys(
        self, reason: str = "scheduled_rotation", algorithm: str | None = None
    ) -> str:
        return self.rotation.rotate_keys(reason, algorithm)

    def revoke_key(self, key_id: str, reason: str) -> KeyMetadata:
        return self.rotation.revoke_key(key_id, reason)

    def list_keys(self) -> list[KeyMetadata]:
        return self.registry.list()

    def get_key_metadata(self, key_id: str | None = None) -> KeyMetadata | None:
        """Metadata for ``key_id``, or for the current key when omitted."""
        return self.registry.get(key_id or self.registry.current_key_id)

    def needs_rotation(self, max_age_hours: float | None = None) -> bool:
        return self.rotation.needs_rotation(max_age_hours)

    def cleanup_old_keys(self, retain: int | None = None) -> int:
        return self.rotation.cleanup_old_keys(retain)

    def reencrypt(
        self, field: FieldValue, purpose: Purpose | str = Purpose.TRANSACTIONS
    ) -> EncryptedField:
        return self.rotation.reencrypt_field(field, purpose)

    def reencrypt_records(
        self,
        records: Iterable[Mapping[str, Any]],
        document_type: DocumentType | str,
    ) -> tuple[list[dict[str, Any]], dict]:
        return self.rotation.reencrypt_records(
            records, fields_for(document_type), purpose_for(document_type),
        )

    def key_derivation_info(self) -> dict[str, Any]:
        """Summary of the key derivation setup for audit purposes."""
        keys = self.registry.list()
        return {
            "currentKeyId": self.registry.current_key_id,
            "algorithm": KDF_ALGORITHM,
            "iterations": self._engine.iterations,
            "totalKeys": len(keys),
            "activeKeys": sum(1 for k in keys if k.status is KeyStatus.ACTIVE),
        }

    def validate_encryption(
        self, purpose: Purpose | str = Purpose.TRANSACTIONS
    ) -> bool:
        """Encrypt and decrypt a fixed string. Never raises."""
        try:
            field = self.encrypt(_VALIDATION_PLAINTEXT, purpose)
            return self.decrypt(field, purpose) == _VALIDATION_PLAINTEXT
        except Exception as err:
            logger.error("Encryption validation failed: %s", err)
            return False

    # ------------------------------------------------------------------
    # Async variants (key derivation runs in an executor)
    # ------------------------------------------------------------------

    async def _offload(self, func, *args) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, partial(func, *args))

    async def encrypt_async(
        self, value: str | None, purpose: Purpose | str = Purpose.TRANSACTIONS
    ) -> EncryptedField | str | None:
        return await self._offload(self.encrypt, value, purpose)

    async def decrypt_async(
        self,
        field: FieldValue | None,
        purpose: Purpose | str = Purpose.TRANSACTIONS,
    ) -> str | None:
        return await self._offload(self.decrypt, field, purpose)

    async def encrypt_object_async(
        self, record: Mapping[str, Any], document_type: DocumentType | str
    ) -> dict[str, Any]:
        return await self._offload(self.encrypt_object, record, document_type)

    async def decrypt_object_async(
        self, record: Mapping[str, Any], document_type: DocumentType | str
    ) -> dict[str, Any]:
        return await self._offload(self.decrypt_object, record, document_type)
