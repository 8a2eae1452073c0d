"""
Tests for key rotation, revocation and re-encryption.

Tests cover:
- Rotation state changes and decryptability of old data
- Atomic rotation under store failures and concurrent callers
- Revocation of deprecated and current keys
- Record migration statistics
- Cleanup of deprecated keys and age-based rotation policy
"""
from datetime import timedelta
from concurrent.futures import ThreadPoolExecutor

import pytest

from ledger_vault.vault import (
    DecryptionError,
    EncryptedField,
    KeyNotFoundError,
    KeyRevokedError,
    KeyStatus,
    KeyStoreError,
    Purpose,
)
from ledger_vault.vault.crypto import ALGORITHMS
from ledger_vault.vault.key_rotation import generate_key_id
from ledger_vault.vault.models import utcnow

ACCOUNT = "000123456789"


def statuses(context):
    return {k.version: k.status for k in context.list_keys()}


# --- Test Rotation ---

class TestRotation:
    """Tests for rotate_keys()."""

    def test_bootstrap_creates_first_key(self, context):
        """Test a fresh context has one active key at version 1."""
        keys = context.list_keys()
        assert len(keys) == 1
        assert keys[0].status is KeyStatus.ACTIVE
        assert keys[0].version == 1
        assert keys[0].algorithm == "AES-256-GCM"

    def test_bootstrap_is_idempotent(self, rotation, context, store):
        """Test bootstrapping again keeps the existing key without a write."""
        current = context.registry.current_key_id
        store.fail = True
        assert rotation.bootstrap().id == current
        assert len(context.registry) == 1

    def test_key_id_format(self):
        """Test key ids look like key_<millis>_<8 hex>."""
        prefix, millis, suffix = generate_key_id().split("_")
        assert prefix == "key"
        assert millis.isdigit()
        assert len(suffix) == 8
        int(suffix, 16)

    def test_rotation_state(self, context):
        """Test the old key is deprecated and the new key is active."""
        old_id = context.registry.current_key_id
        new_id = context.rotate_keys("test")

        assert new_id != old_id
        assert context.registry.current_key_id == new_id
        old = context.get_key_metadata(old_id)
        new = context.get_key_metadata(new_id)
        assert old.status is KeyStatus.DEPRECATED
        assert old.rotation_date is not None
        assert new.status is KeyStatus.ACTIVE
        assert new.version == 2

    def test_old_data_still_decrypts(self, context):
        """Test values encrypted before a rotation stay readable."""
        field = context.encrypt(ACCOUNT, Purpose.ACCOUNTS)
        context.rotate_keys()
        assert context.decrypt(field, Purpose.ACCOUNTS) == ACCOUNT
        context.rotate_keys()
        assert context.decrypt(field, Purpose.ACCOUNTS) == ACCOUNT

    def test_new_data_uses_new_key(self, context):
        """Test values encrypted after a rotation use the new key."""
        new_id = context.rotate_keys()
        assert context.encrypt(ACCOUNT, Purpose.ACCOUNTS).key_id == new_id

    def test_rotate_to_other_algorithm(self, context):
        """Test the cipher can be changed on rotation."""
        before = context.encrypt(ACCOUNT, Purpose.ACCOUNTS)
        new_id = context.rotate_keys(algorithm=ALGORITHMS["chacha20"])
        assert context.get_key_metadata(new_id).algorithm == "ChaCha20-Poly1305"
        after = context.encrypt(ACCOUNT, Purpose.ACCOUNTS)
        assert context.decrypt(before, Purpose.ACCOUNTS) == ACCOUNT
        assert context.decrypt(after, Purpose.ACCOUNTS) == ACCOUNT

    def test_unsupported_algorithm(self, context):
        """Test an unknown cipher is rejected before anything changes."""
        current = context.registry.current_key_id
        with pytest.raises(ValueError):
            context.rotate_keys(algorithm="DES")
        assert context.registry.current_key_id == current
        assert len(context.registry) == 1

    def test_store_failure_leaves_registry_unchanged(self, context, store):
        """Test a failed registry write aborts the rotation."""
        current = context.registry.current_key_id
        store.fail = True
        with pytest.raises(KeyStoreError):
            context.rotate_keys()
        assert context.registry.current_key_id == current
        assert statuses(context) == {1: KeyStatus.ACTIVE}

        store.fail = False
        assert context.rotate_keys() != current

    def test_rotation_is_persisted(self, context, store):
        """Test the store holds the rotated state."""
        new_id = context.rotate_keys()
        saved = store.load()
        assert saved.current_key_id == new_id
        assert len(saved.keys) == 2

    def test_concurrent_rotations(self, context):
        """Test concurrent rotations are serialized."""
        with ThreadPoolExecutor(max_workers=8) as pool:
            new_ids = list(pool.map(lambda _: context.rotate_keys(), range(8)))

        assert len(set(new_ids)) == 8
        keys = context.list_keys()
        assert sorted(k.version for k in keys) == list(range(1, 10))
        active = [k for k in keys if k.status is KeyStatus.ACTIVE]
        assert len(active) == 1
        assert active[0].version == 9
        assert active[0].id == context.registry.current_key_id


# --- Test Revocation ---

class TestRevocation:
    """Tests for revoke_key()."""

    def test_revoke_deprecated_key(self, context):
        """Test data under a revoked key can no longer be decrypted."""
        old_id = context.registry.current_key_id
        field = context.encrypt(ACCOUNT, Purpose.ACCOUNTS)
        context.rotate_keys()

        revoked = context.revoke_key(old_id, "compromised")

        assert revoked.status is KeyStatus.REVOKED
        assert revoked.revocation_reason == "compromised"
        with pytest.raises(KeyRevokedError) as exc_info:
            context.decrypt(field, Purpose.ACCOUNTS)
        assert exc_info.value.key_id == old_id

    def test_revoked_field_left_in_record(self, context):
        """Test decrypt_object keeps fields under a revoked key encrypted."""
        old_id = context.registry.current_key_id
        record = context.encrypt_object({"ssn": "123-45-6789"}, "user")
        context.rotate_keys()
        context.revoke_key(old_id, "compromised")
        assert context.decrypt_object(record, "user") == record

    def test_revoke_current_key_rotates(self, context):
        """Test revoking the current key activates a replacement."""
        old_id = context.registry.current_key_id
        field = context.encrypt(ACCOUNT, Purpose.ACCOUNTS)

        context.revoke_key(old_id, "emergency")

        new = context.get_key_metadata()
        assert new.id != old_id
        assert new.status is KeyStatus.ACTIVE
        assert new.version == 2
        assert context.get_key_metadata(old_id).status is KeyStatus.REVOKED
        with pytest.raises(KeyRevokedError):
            context.decrypt(field, Purpose.ACCOUNTS)
        assert context.validate_encryption() is True

    def test_revoke_unknown_key(self, context):
        """Test revoking an unknown key raises KeyNotFoundError."""
        with pytest.raises(KeyNotFoundError):
            context.revoke_key("key_0_00000000", "typo")

    def test_revoke_twice(self, context):
        """Test revoking a revoked key changes nothing."""
        old_id = context.registry.current_key_id
        context.rotate_keys()
        first = context.revoke_key(old_id, "first")
        second = context.revoke_key(old_id, "second")
        assert second == first
        assert second.revocation_reason == "first"


# --- Test Re-encryption ---

class TestReencryption:
    """Tests for reencrypt_field() / reencrypt_records()."""

    def test_reencrypt_field(self, context):
        """Test a field is moved to the current key."""
        field = context.encrypt(ACCOUNT, Purpose.ACCOUNTS)
        new_id = context.rotate_keys()

        migrated = context.reencrypt(field, Purpose.ACCOUNTS)

        assert migrated.key_id == new_id
        assert migrated.ciphertext != field.ciphertext
        assert context.decrypt(migrated, Purpose.ACCOUNTS) == ACCOUNT

    def test_reencrypt_accepts_dict(self, context):
        """Test the stored dict form can be re-encrypted."""
        record = context.encrypt(ACCOUNT, Purpose.ACCOUNTS).to_record()
        new_id = context.rotate_keys()
        assert context.reencrypt(record, Purpose.ACCOUNTS).key_id == new_id

    def test_reencrypt_revoked_key(self, context):
        """Test fields under a revoked key cannot be migrated."""
        old_id = context.registry.current_key_id
        field = context.encrypt(ACCOUNT, Purpose.ACCOUNTS)
        context.rotate_keys()
        context.revoke_key(old_id, "compromised")
        with pytest.raises(KeyRevokedError):
            context.reencrypt(field, Purpose.ACCOUNTS)

    def test_reencrypt_records_stats(self, context):
        """Test migration counts rotated, skipped and failed fields."""
        old = context.encrypt_object(
            {"id": "1", "accountNumber": ACCOUNT, "routingNumber": "021000021"},
            "transaction",
        )
        broken = context.encrypt_object({"id": "2", "notes": "x"}, "transaction")
        broken["notes"] = dict(broken["notes"], ciphertext="!!")
        new_id = context.rotate_keys()
        fresh = context.encrypt_object({"id": "3", "cardNumber": "4111"}, "transaction")
        plain = {"id": "4", "notes": None}

        migrated, stats = context.reencrypt_records(
            [old, broken, fresh, plain], "transaction",
        )

        assert stats == {"total": 4, "rotated": 2, "errors": 1, "skipped": 1}
        assert migrated[0]["accountNumber"]["keyId"] == new_id
        assert migrated[0]["routingNumber"]["keyId"] == new_id
        assert migrated[1]["notes"] == broken["notes"]
        assert migrated[2] == fresh
        assert migrated[3] == plain
        decrypted = context.decrypt_object(migrated[0], "transaction")
        assert decrypted["accountNumber"] == ACCOUNT

    def test_reencrypt_records_idempotent(self, context):
        """Test a second migration pass skips everything."""
        record = context.encrypt_object({"ssn": "123-45-6789"}, "user")
        context.rotate_keys()
        migrated, _ = context.reencrypt_records([record], "user")
        _, stats = context.reencrypt_records(migrated, "user")
        assert stats == {"total": 1, "rotated": 0, "errors": 0, "skipped": 1}

    def test_reencrypt_records_does_not_mutate_input(self, context):
        """Test the input records are left as they were."""
        record = context.encrypt_object({"ssn": "123-45-6789"}, "user")
        snapshot = dict(record)
        context.rotate_keys()
        context.reencrypt_records([record], "user")
        assert record == snapshot


# --- Test Cleanup ---

class TestCleanup:
    """Tests for cleanup_old_keys()."""

    def test_cleanup_keeps_recent_deprecated_keys(self, context):
        """Test only the oldest deprecated keys beyond the retention go."""
        first_id = context.registry.current_key_id
        field = context.encrypt(ACCOUNT, Purpose.ACCOUNTS)
        ids = [first_id] + [context.rotate_keys() for _ in range(5)]
        context.revoke_key(ids[4], "compromised")  # version 5

        removed = context.cleanup_old_keys(3)

        assert removed == 1
        assert first_id not in context.registry
        assert statuses(context) == {
            2: KeyStatus.DEPRECATED,
            3: KeyStatus.DEPRECATED,
            4: KeyStatus.DEPRECATED,
            5: KeyStatus.REVOKED,
            6: KeyStatus.ACTIVE,
        }
        with pytest.raises(KeyNotFoundError):
            context.decrypt(field, Purpose.ACCOUNTS)

    def test_cleanup_uses_configured_retention(self, context):
        """Test the default retention comes from the configuration."""
        for _ in range(5):
            context.rotate_keys()
        assert context.cleanup_old_keys() == 2
        assert len(context.registry) == 4

    def test_cleanup_nothing_to_remove(self, context):
        """Test cleanup on a fresh registry removes nothing."""
        assert context.cleanup_old_keys() == 0


# --- Test Rotation Policy ---

class TestRotationPolicy:
    """Tests for needs_rotation()."""

    @staticmethod
    def backdate(context, days):
        with context.registry.transaction() as txn:
            current = txn.current()
            txn.put(current.model_copy(
                update={"created_at": utcnow() - timedelta(days=days)}
            ))

    def test_fresh_key(self, context):
        """Test a new key does not need rotation."""
        assert context.needs_rotation() is False

    def test_old_key(self, context):
        """Test a key older than 30 days needs rotation."""
        self.backdate(context, 31)
        assert context.needs_rotation() is True

    def test_custom_threshold(self, context):
        """Test the age threshold can be passed explicitly."""
        self.backdate(context, 2)
        assert context.needs_rotation(max_age_hours=24) is True
        assert context.needs_rotation(max_age_hours=72) is False

    def test_rotation_resets_age(self, context):
        """Test rotating replaces the old key."""
        self.backdate(context, 31)
        context.rotate_keys()
        assert context.needs_rotation() is False


def test_decrypt_with_tampered_key_id_fails(context):
    """Test a field pointed at another valid key fails authentication."""
    field = context.encrypt(ACCOUNT, Purpose.ACCOUNTS)
    new_id = context.rotate_keys()
    moved = EncryptedField(ciphertext=field.ciphertext, key_id=new_id, salt=field.salt)
    with pytest.raises(DecryptionError):
        context.decrypt(moved, Purpose.ACCOUNTS)
