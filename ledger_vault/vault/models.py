"""
Vault data model — key metadata, encrypted fields and derived keys.

KeyMetadata instances are immutable: a lifecycle transition returns a new
instance, so readers holding a reference always see a consistent record.
"""
from enum import Enum
from typing import Any
from collections.abc import Mapping
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import KeyStateError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KeyStatus(str, Enum):
    """Lifecycle state of a key."""

    ACTIVE = "active"
    ROTATING = "rotating"
    DEPRECATED = "deprecated"
    REVOKED = "revoked"


# active -> rotating -> deprecated, active|deprecated -> revoked
_TRANSITIONS: dict[KeyStatus, frozenset] = {
    KeyStatus.ACTIVE: frozenset({KeyStatus.ROTATING, KeyStatus.REVOKED}),
    KeyStatus.ROTATING: frozenset({KeyStatus.DEPRECATED}),
    KeyStatus.DEPRECATED: frozenset({KeyStatus.REVOKED}),
    KeyStatus.REVOKED: frozenset(),
}


class KeyMetadata(BaseModel):
    """Metadata and lifecycle state of a derived-key generation."""

    model_config = ConfigDict(frozen=True)

    id: str
    created_at: datetime = Field(default_factory=utcnow)
    algorithm: str
    version: int = Field(default=1, ge=1)
    rotation_date: datetime | None = None
    status: KeyStatus = KeyStatus.ACTIVE
    revoked_at: datetime | None = None
    revocation_reason: str | None = None

    def can_transition(self, status: KeyStatus) -> bool:
        return status in _TRANSITIONS[self.status]

    def transition(self, status: KeyStatus, **changes: Any) -> "KeyMetadata":
        """Return a copy of this metadata moved to ``status``.

        Raises:
            KeyStateError: If the transition is not allowed.
        """
        if not self.can_transition(status):
            raise KeyStateError(
                f"Key {self.id} cannot move from {self.status.value} "
                f"to {status.value}"
            )
        return self.model_copy(update={"status": status, **changes})

    def age_hours(self, now: datetime | None = None) -> float:
        now = now or utcnow()
        return (now - self.created_at).total_seconds() / 3600


class EncryptedField(BaseModel):
    """Persisted form of a sensitive value: ``{ciphertext, keyId, salt}``.

    ``ciphertext`` is base64 of ``nonce || ciphertext+tag``; ``salt`` is hex.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    ciphertext: str
    key_id: str = Field(alias="keyId")
    salt: str

    def to_record(self) -> dict[str, str]:
        """Return the store representation (camelCase keys)."""
        return self.model_dump(by_alias=True)

    @classmethod
    def from_value(cls, value: Any) -> "EncryptedField":
        if isinstance(value, cls):
            return value
        return cls.model_validate(value)

    @staticmethod
    def looks_encrypted(value: Any) -> bool:
        """True if ``value`` has the shape of an encrypted field."""
        if isinstance(value, EncryptedField):
            return True
        return (
            isinstance(value, Mapping)
            and "ciphertext" in value
            and "keyId" in value
            and "salt" in value
        )


class DerivedKey(BaseModel):
    """Ephemeral key material derived from the master key. Never persisted."""

    model_config = ConfigDict(frozen=True)

    key_material: bytes = Field(repr=False)
    salt: bytes
    iterations: int


class RegistryState(BaseModel):
    """Snapshot of the key registry, as written to a KeyStore."""

    current_key_id: str | None = None
    keys: list[KeyMetadata] = Field(default_factory=list)
