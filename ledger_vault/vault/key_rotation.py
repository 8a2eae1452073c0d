"""
Vault Key Rotation — key generations, revocation and re-encryption.

Rotation introduces a new active key and keeps the previous one as
deprecated so existing ciphertext stays decryptable. Stored records are then
migrated with ``reencrypt_records``, which is idempotent: fields already
under the current key are skipped.

Security Note:
    Plaintext exists in memory only during re-encryption of each field.
    Never log plaintext or ciphertext values.
"""
import time
import secrets
import logging
from typing import Any
from collections.abc import Iterable, Mapping

from pydantic import ValidationError

from .codec import FieldEncryptionCodec, FieldValue
from .crypto import ALGORITHMS
from .exceptions import KeyStateError, VaultError
from .fields import Purpose
from .models import EncryptedField, KeyMetadata, KeyStatus, utcnow
from .registry import KeyRegistry, RegistryTransaction

logger = logging.getLogger("ledger.vault")

DEFAULT_MAX_KEY_AGE_HOURS = 24 * 30
DEFAULT_KEY_RETENTION = 3


def generate_key_id() -> str:
    """Return a unique key id: ``key_<epoch millis>_<8 hex chars>``."""
    return f"key_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class RotationCoordinator:
    """Orchestrates key rotation, revocation and data migration."""

    def __init__(
        self,
        registry: KeyRegistry,
        codec: FieldEncryptionCodec,
        algorithm: str = ALGORITHMS["aesgcm"],
        key_retention: int = DEFAULT_KEY_RETENTION,
        max_key_age_hours: float = DEFAULT_MAX_KEY_AGE_HOURS,
    ):
        self._registry = registry
        self._codec = codec
        self.algorithm = algorithm
        self.key_retention = key_retention
        self.max_key_age_hours = max_key_age_hours

    # ------------------------------------------------------------------
    # Key generations
    # ------------------------------------------------------------------

    def _new_key(
        self,
        txn: RegistryTransaction,
        previous: KeyMetadata | None,
        algorithm: str | None,
    ) -> KeyMetadata:
        key_id = generate_key_id()
        while key_id in txn.keys:
            key_id = generate_key_id()
        return KeyMetadata(
            id=key_id,
            created_at=utcnow(),
            algorithm=algorithm or self.algorithm,
            version=previous.version + 1 if previous else 1,
            status=KeyStatus.ACTIVE,
        )

    def _replace_current(
        self,
        txn: RegistryTransaction,
        retire_as: KeyStatus,
        reason: str,
        algorithm: str | None = None,
    ) -> KeyMetadata:
        """Activate a new key and retire the current one as ``retire_as``."""
        old = txn.current()
        if old is not None and retire_as is KeyStatus.DEPRECATED:
            old = txn.put(old.transition(KeyStatus.ROTATING, rotation_date=utcnow()))
        new = self._new_key(txn, old, algorithm)
        txn.put(new)
        txn.current_key_id = new.id
        if old is not None:
            if retire_as is KeyStatus.DEPRECATED:
                txn.put(old.transition(KeyStatus.DEPRECATED))
            else:
                txn.revoke(old.id, reason)
        return new

    def bootstrap(self) -> KeyMetadata:
        """Create the first active key if the registry is empty."""
        with self._registry.transaction() as txn:
            current = txn.current()
            if current is None:
                current = txn.register(self._new_key(txn, None, None))
                logger.info(
                    "Initialized key registry with key %s (%s)",
                    current.id, current.algorithm,
                )
        return current

    def rotate_keys(
        self,
        reason: str = "scheduled_rotation",
        algorithm: str | None = None,
    ) -> str:
        """Replace the current key with a new active key.

        The old key moves active → rotating → deprecated and stays in the
        registry so data encrypted under it remains decryptable. The whole
        change is persisted before it becomes visible; on failure nothing
        changes.

        Args:
            reason: Free-text reason, logged.
            algorithm: Cipher for the new key (defaults to the configured one).

        Returns:
            The id of the new active key.
        """
        if algorithm is not None and algorithm not in ALGORITHMS.values():
            raise ValueError(f"Unsupported cipher algorithm: {algorithm}")
        logger.info("Starting key rotation: %s", reason)
        with self._registry.transaction() as txn:
            old_id = txn.current_key_id
            new = self._replace_current(txn, KeyStatus.DEPRECATED, reason, algorithm)
        logger.info("Key rotation completed: %s -> %s (v%d)", old_id, new.id, new.version)
        return new.id

    def revoke_key(self, key_id: str, reason: str) -> KeyMetadata:
        """Revoke a key. Irreversible.

        Revoking the current key first activates a replacement key, in the
        same transaction, so there is always exactly one active key.

        Raises:
            KeyNotFoundError: If ``key_id`` is unknown.
            KeyStateError: If the key is in the middle of a rotation.
        """
        with self._registry.transaction() as txn:
            meta = txn.require(key_id)
            if key_id == txn.current_key_id and meta.status is KeyStatus.ACTIVE:
                new = self._replace_current(txn, KeyStatus.REVOKED, reason)
                logger.warning(
                    "Current key %s revoked, replaced by %s", key_id, new.id,
                )
            else:
                txn.revoke(key_id, reason)
            revoked = txn.require(key_id)
        return revoked

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    def needs_rotation(self, max_age_hours: float | None = None) -> bool:
        """True if the active key is older than ``max_age_hours``."""
        if max_age_hours is None:
            max_age_hours = self.max_key_age_hours
        try:
            current = self._registry.current()
        except KeyStateError:
            return True
        return current.age_hours() > max_age_hours

    def cleanup_old_keys(self, retain: int | None = None) -> int:
        """Purge deprecated keys beyond ``retain``. Returns the removed count."""
        if retain is None:
            retain = self.key_retention
        removed = self._registry.purge(retain)
        if removed:
            logger.info("Cleaned up %d old key(s)", len(removed))
        return len(removed)

    # ------------------------------------------------------------------
    # Re-encryption
    # ------------------------------------------------------------------

    def reencrypt_field(
        self, old_field: FieldValue, purpose: Purpose | str
    ) -> EncryptedField:
        """Decrypt with the field's own key and salt, encrypt under the current key."""
        plaintext = self._codec.decrypt_bytes(old_field, purpose)
        return self._codec.encrypt_bytes(plaintext, purpose)

    def reencrypt_records(
        self,
        records: Iterable[Mapping[str, Any]],
        field_names: Iterable[str],
        purpose: Purpose | str,
    ) -> tuple[list[dict[str, Any]], dict]:
        """Migrate encrypted fields of ``records`` to the current key.

        Args:
            records: Records as read from the object store.
            field_names: Encrypted fields to migrate.
            purpose: Purpose the fields were encrypted with.

        Returns:
            Tuple of (migrated records, stats dict with keys: total,
            rotated, errors, skipped). Fields that fail keep their old value.
        """
        purpose = Purpose.coerce(purpose)
        field_names = tuple(field_names)
        current_id = self._registry.current_key_id
        stats = {"total": 0, "rotated": 0, "errors": 0, "skipped": 0}
        migrated: list[dict[str, Any]] = []

        logger.info("Starting re-encryption to key %s", current_id)

        for record in records:
            updated = dict(record)
            for name in field_names:
                value = updated.get(name)
                if not EncryptedField.looks_encrypted(value):
                    continue
                stats["total"] += 1
                try:
                    field = EncryptedField.from_value(value)
                    if field.key_id == current_id:
                        stats["skipped"] += 1
                        continue
                    updated[name] = self.reencrypt_field(field, purpose).to_record()
                    stats["rotated"] += 1
                except (VaultError, ValidationError) as err:
                    logger.error("Error re-encrypting field %s: %s", name, err)
                    stats["errors"] += 1
            migrated.append(updated)

        logger.info("Re-encryption complete: %s", stats)
        return migrated, stats
