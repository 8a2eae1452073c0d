"""
Searchable hashing — deterministic lookup tokens for encrypted columns.

Tokens are HMAC-SHA256 over the value, keyed with an HKDF key derived from
the master key and the purpose. They do not depend on the current key id,
so they stay valid across key rotations; they change only if the master key
changes.
"""
import hmac
import logging

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.hmac import HMAC

from .crypto import KeyDerivationEngine, derive_key
from .fields import Purpose

logger = logging.getLogger("ledger.vault")


class SearchableHasher:
    """Produces non-reversible equality tokens for sensitive values."""

    def __init__(self, engine: KeyDerivationEngine):
        self._engine = engine
        self._keys: dict[Purpose, bytes] = {}

    def _lookup_key(self, purpose: Purpose) -> bytes:
        key = self._keys.get(purpose)
        if key is None:
            key = derive_key(
                self._engine.master_key_bytes, f"vault-search:{purpose.value}"
            )
            self._keys[purpose] = key
        return key

    def generate_searchable_hash(
        self,
        value: str | None,
        purpose: Purpose | str = Purpose.SEARCH,
    ) -> str | None:
        """Return the hex lookup token of ``value``.

        ``None`` and ``""`` pass through unchanged.
        """
        if value is None or value == "":
            return value
        purpose = Purpose.coerce(purpose)
        mac = HMAC(self._lookup_key(purpose), hashes.SHA256())
        mac.update(value.encode("utf-8"))
        return mac.finalize().hex()

    def verify_searchable_hash(
        self,
        value: str,
        token: str,
        purpose: Purpose | str = Purpose.SEARCH,
    ) -> bool:
        """Check ``value`` against ``token`` in constant time."""
        expected = self.generate_searchable_hash(value, purpose)
        if not expected or not token:
            return False
        return hmac.compare_digest(expected, token)
