"""
Vault Crypto Core — PBKDF2/HKDF derivation, AEAD payloads and document serialization.

Two derivation paths share the master key:
- Field keys: PBKDF2-SHA256("{master}:{purpose}:{key_id}", salt) → AEAD → [nonce|payload]
- Lookup keys: HKDF-SHA256(master, "vault-search:{purpose}") → HMAC tokens

Security Note:
    Never log plaintext, ciphertext or key material.
    Nonces are random 96-bit values; a key is never used with a fixed nonce.
"""
import os
import base64
import logging
from typing import Any

import orjson
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from .config import MIN_MASTER_KEY_LENGTH
from .exceptions import ConfigurationError, DecryptionError
from .fields import Purpose
from .models import DerivedKey

logger = logging.getLogger("ledger.vault")

NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16
KEY_LENGTH = 32  # AES-256
DEFAULT_ITERATIONS = 100_000
DEFAULT_SALT_SIZE = 16

KDF_ALGORITHM = "PBKDF2-SHA256"

# cipher_backend setting -> algorithm name recorded in KeyMetadata
ALGORITHMS = {
    "aesgcm": "AES-256-GCM",
    "chacha20": "ChaCha20-Poly1305",
}

_CIPHERS = {
    "AES-256-GCM": AESGCM,
    "ChaCha20-Poly1305": ChaCha20Poly1305,
}

_BYTES_WRAPPER_KEY = "__vault_bytes_b64__"


def algorithm_for_backend(backend: str) -> str:
    """Map a cipher backend name (``aesgcm``/``chacha20``) to an algorithm name."""
    try:
        return ALGORITHMS[backend.lower()]
    except KeyError:
        raise ValueError(f"Unsupported cipher backend: {backend}") from None


def cipher_for(algorithm: str, key: bytes):
    """Return an AEAD cipher instance for ``algorithm`` keyed with ``key``."""
    try:
        cipher_cls = _CIPHERS[algorithm]
    except KeyError:
        raise ValueError(f"Unsupported cipher algorithm: {algorithm}") from None
    return cipher_cls(key)


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(seed: bytes, context: str) -> bytes:
    """Derive a 32-byte key using HKDF-SHA256.

    Args:
        seed: Input key material (master key bytes).
        context: Context string for domain separation (e.g. "vault-search:users").

    Returns:
        32-byte derived key.
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=None,  # deterministic: lookup tokens must be stable
        info=context.encode("utf-8"),
    )
    return hkdf.derive(seed)


class KeyDerivationEngine:
    """Derives purpose- and key-specific symmetric keys from the master key.

    PBKDF2 runs ``iterations`` rounds per derivation. Including the
    purpose and the key id in the input material separates the key spaces of
    different data categories and key generations.
    """

    def __init__(
        self,
        master_key: str,
        iterations: int = DEFAULT_ITERATIONS,
        salt_size: int = DEFAULT_SALT_SIZE,
    ):
        if not master_key:
            raise ConfigurationError("Master key is not configured")
        if len(master_key) < MIN_MASTER_KEY_LENGTH:
            raise ConfigurationError(
                f"Master key must be at least {MIN_MASTER_KEY_LENGTH} "
                "characters long"
            )
        if iterations < 1:
            raise ConfigurationError("KDF iterations must be positive")
        self._master_key = master_key
        self.iterations = iterations
        self.salt_size = salt_size

    def __repr__(self) -> str:
        return f"<KeyDerivationEngine iterations={self.iterations}>"

    @property
    def master_key_bytes(self) -> bytes:
        return self._master_key.encode("utf-8")

    def derive_key(
        self,
        purpose: Purpose | str,
        key_id: str,
        salt: bytes | None = None,
    ) -> DerivedKey:
        """Derive the key for (purpose, key_id, salt).

        Args:
            purpose: Data category of the value being protected.
            key_id: Registry id of the key generation.
            salt: Salt to re-derive an existing key. A random salt is
                generated when omitted (new encryptions).

        Returns:
            DerivedKey with the key material, salt and iteration count.
        """
        purpose = Purpose.coerce(purpose)
        if salt is None:
            salt = os.urandom(self.salt_size)
        material = f"{self._master_key}:{purpose.value}:{key_id}".encode("utf-8")
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=self.iterations,
        )
        return DerivedKey(
            key_material=kdf.derive(material),
            salt=salt,
            iterations=self.iterations,
        )


# ---------------------------------------------------------------------------
# AEAD payloads
# ---------------------------------------------------------------------------

def encrypt_payload(
    plaintext: bytes,
    key: bytes,
    algorithm: str,
    associated_data: bytes | None = None,
) -> bytes:
    """Encrypt plaintext with an AEAD cipher.

    Format: [nonce 12B][encrypted_payload + tag 16B]
    """
    cipher = cipher_for(algorithm, key)
    nonce = os.urandom(NONCE_SIZE)
    return nonce + cipher.encrypt(nonce, plaintext, associated_data)


def decrypt_payload(
    payload: bytes,
    key: bytes,
    algorithm: str,
    associated_data: bytes | None = None,
) -> bytes:
    """Decrypt a payload produced by ``encrypt_payload``.

    Raises:
        DecryptionError: If the payload is too short, was tampered with, or
            the key does not match.
    """
    _min = NONCE_SIZE + TAG_SIZE
    if len(payload) < _min:
        raise DecryptionError(
            f"ciphertext too short: {len(payload)} bytes (minimum {_min})"
        )
    try:
        cipher = cipher_for(algorithm, key)
    except ValueError as err:
        raise DecryptionError(str(err)) from err
    try:
        return cipher.decrypt(payload[:NONCE_SIZE], payload[NONCE_SIZE:], associated_data)
    except InvalidTag as err:
        raise DecryptionError(
            "Authentication failed: wrong key material or tampered ciphertext"
        ) from err


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode(data: str) -> bytes:
    return base64.b64decode(data, validate=True)


# ---------------------------------------------------------------------------
# Value serialization
# ---------------------------------------------------------------------------

def serialize_value(value: Any) -> bytes:
    """Encode a document for ``encrypt_document``.

    Anything orjson accepts is encoded directly. A top-level ``bytes`` value
    is stored as ``{"__vault_bytes_b64__": "<base64>"}`` so it comes back as
    bytes.

    Raises:
        TypeError: If orjson cannot encode ``value``.
    """
    if isinstance(value, bytes):
        return orjson.dumps({_BYTES_WRAPPER_KEY: b64encode(value)})
    return orjson.dumps(value)


def deserialize_value(data: bytes) -> Any:
    """Inverse of ``serialize_value``."""
    parsed = orjson.loads(data)
    if isinstance(parsed, dict) and len(parsed) == 1 and _BYTES_WRAPPER_KEY in parsed:
        return b64decode(parsed[_BYTES_WRAPPER_KEY])
    return parsed
