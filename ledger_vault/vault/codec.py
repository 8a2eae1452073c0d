"""
Field Encryption Codec — per-value and per-record encryption.

Every encryption derives a fresh-salt key from the registry's current key
and stores ``{ciphertext, keyId, salt}``. Decryption resolves the stored key
id through the registry, so values written under older (deprecated) keys
remain readable until those keys are purged or revoked.

Security Note:
    Never log plaintext or ciphertext values. Only log field names,
    purposes and key ids.
"""
import math
import logging
from typing import Any
from collections.abc import Iterable, Mapping

import orjson
from pydantic import ValidationError

from .crypto import (
    KeyDerivationEngine,
    b64decode,
    b64encode,
    decrypt_payload,
    deserialize_value,
    encrypt_payload,
    serialize_value,
)
from .exceptions import (
    DecryptionError,
    EncryptionError,
    KeyRevokedError,
    VaultError,
)
from .fields import AMOUNT_FIELDS, Purpose
from .models import EncryptedField, KeyStatus
from .registry import KeyRegistry

logger = logging.getLogger("ledger.vault")

FieldValue = EncryptedField | Mapping[str, Any]


def _associated_data(purpose: Purpose, key_id: str) -> bytes:
    """Bind ciphertext to its purpose and key id."""
    return f"{purpose.value}:{key_id}".encode("utf-8")


def _parse_number(text: str) -> int | float | str:
    """Parse an amount back to int or float; anything else stays a string."""
    if "_" in text:
        return text
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return text
    # NaN and infinities stay strings
    return number if math.isfinite(number) else text


class FieldEncryptionCodec:
    """Encrypts and decrypts values and records with registry-managed keys."""

    def __init__(self, engine: KeyDerivationEngine, registry: KeyRegistry):
        self._engine = engine
        self._registry = registry

    # ------------------------------------------------------------------
    # Bytes layer
    # ------------------------------------------------------------------

    def encrypt_bytes(
        self, plaintext: bytes, purpose: Purpose | str
    ) -> EncryptedField:
        """Encrypt ``plaintext`` under the current key.

        Raises:
            EncryptionError: If key derivation or the cipher fails.
        """
        purpose = Purpose.coerce(purpose)
        key = self._registry.current()
        try:
            derived = self._engine.derive_key(purpose, key.id)
            payload = encrypt_payload(
                plaintext,
                derived.key_material,
                key.algorithm,
                _associated_data(purpose, key.id),
            )
        except Exception as err:
            logger.error(
                "Encryption failed: purpose=%s key=%s: %s",
                purpose.value, key.id, err,
            )
            raise EncryptionError("Failed to encrypt data") from err
        return EncryptedField(
            ciphertext=b64encode(payload),
            key_id=key.id,
            salt=derived.salt.hex(),
        )

    def decrypt_bytes(
        self, field: FieldValue, purpose: Purpose | str
    ) -> bytes:
        """Decrypt an encrypted field to bytes.

        Raises:
            KeyNotFoundError: If the field's key is not in the registry.
            KeyRevokedError: If the field's key was revoked.
            DecryptionError: If the field is malformed or authentication fails.
        """
        purpose = Purpose.coerce(purpose)
        try:
            field = EncryptedField.from_value(field)
        except ValidationError as err:
            raise DecryptionError(f"Malformed encrypted field: {err}") from err
        meta = self._registry.require(field.key_id)
        if meta.status is KeyStatus.REVOKED:
            raise KeyRevokedError(meta.id)
        try:
            salt = bytes.fromhex(field.salt)
            payload = b64decode(field.ciphertext)
        except ValueError as err:
            raise DecryptionError(f"Malformed encrypted field: {err}") from err
        if not salt:
            raise DecryptionError("Malformed encrypted field: empty salt")
        derived = self._engine.derive_key(purpose, meta.id, salt)
        return decrypt_payload(
            payload,
            derived.key_material,
            meta.algorithm,
            _associated_data(purpose, meta.id),
        )

    # ------------------------------------------------------------------
    # Field layer
    # ------------------------------------------------------------------

    def encrypt_field(
        self, value: str | None, purpose: Purpose | str
    ) -> EncryptedField | str | None:
        """Encrypt a string value. ``None`` and ``""`` pass through unchanged."""
        if value is None or value == "":
            return value
        if not isinstance(value, str):
            raise TypeError(
                f"encrypt_field expects a string, got {type(value).__name__}"
            )
        return self.encrypt_bytes(value.encode("utf-8"), purpose)

    def decrypt_field(
        self, field: FieldValue | None, purpose: Purpose | str
    ) -> str | None:
        """Decrypt an encrypted field back to its string value.

        ``None`` and ``""`` pass through unchanged.
        """
        if field is None or field == "":
            return field
        plaintext = self.decrypt_bytes(field, purpose)
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as err:
            raise DecryptionError("Decrypted value is not valid UTF-8") from err

    # ------------------------------------------------------------------
    # Record layer
    # ------------------------------------------------------------------

    def encrypt_object(
        self,
        record: Mapping[str, Any],
        field_names: Iterable[str],
        purpose: Purpose | str,
    ) -> dict[str, Any]:
        """Return a copy of ``record`` with ``field_names`` encrypted.

        Strings are encrypted as-is and numbers as their string form. Empty,
        already encrypted, and non-scalar values are left untouched. A field
        that fails to encrypt is logged and keeps its plaintext value.
        """
        purpose = Purpose.coerce(purpose)
        result = dict(record)
        for name in field_names:
            value = result.get(name)
            if value is None or value == "":
                continue
            if EncryptedField.looks_encrypted(value):
                logger.debug("Field %s is already encrypted, skipping", name)
                continue
            if isinstance(value, bool) or not isinstance(value, (str, int, float)):
                logger.debug(
                    "Field %s has unsupported type %s, skipping",
                    name, type(value).__name__,
                )
                continue
            text = value if isinstance(value, str) else str(value)
            try:
                result[name] = self.encrypt_field(text, purpose).to_record()
            except VaultError as err:
                logger.error("Failed to encrypt field %s: %s", name, err)
        return result

    def decrypt_object(
        self,
        record: Mapping[str, Any],
        field_names: Iterable[str],
        purpose: Purpose | str,
        numeric_fields: Iterable[str] = AMOUNT_FIELDS,
    ) -> dict[str, Any]:
        """Return a copy of ``record`` with ``field_names`` decrypted.

        Values of ``numeric_fields`` are parsed back to int or float, falling
        back to the string. A field that fails to decrypt is logged and keeps
        its encrypted value.
        """
        purpose = Purpose.coerce(purpose)
        numeric_fields = frozenset(numeric_fields)
        result = dict(record)
        for name in field_names:
            value = result.get(name)
            if not EncryptedField.looks_encrypted(value):
                continue
            try:
                plaintext = self.decrypt_field(value, purpose)
            except VaultError as err:
                logger.error("Failed to decrypt field %s: %s", name, err)
                continue
            if name in numeric_fields:
                result[name] = _parse_number(plaintext)
            else:
                result[name] = plaintext
        return result

    # ------------------------------------------------------------------
    # Document layer (backup / export)
    # ------------------------------------------------------------------

    def encrypt_document(
        self, document: Any, purpose: Purpose | str
    ) -> EncryptedField:
        """Serialize a whole document with orjson and encrypt it."""
        try:
            plaintext = serialize_value(document)
        except TypeError as err:
            raise EncryptionError(f"Document is not serializable: {err}") from err
        return self.encrypt_bytes(plaintext, purpose)

    def decrypt_document(
        self, field: FieldValue, purpose: Purpose | str
    ) -> Any:
        """Decrypt and deserialize a document from ``encrypt_document``."""
        plaintext = self.decrypt_bytes(field, purpose)
        try:
            return deserialize_value(plaintext)
        except orjson.JSONDecodeError as err:
            raise DecryptionError("Decrypted document is not valid JSON") from err
