"""
Key Registry — metadata and lifecycle state of every key generation.

The registry is an arena of immutable ``KeyMetadata`` records indexed by id,
plus the id of the current (active) key. Readers take a single reference to
the current snapshot and never lock. Writers go through ``transaction()``,
which serializes them, validates the one-active-key invariant, persists the
new state to the KeyStore and only then publishes it.
"""
import logging
import threading
from contextlib import contextmanager
from typing import NamedTuple
from collections.abc import Iterator

from .exceptions import KeyNotFoundError, KeyStateError
from .models import KeyMetadata, KeyStatus, RegistryState, utcnow
from .store import KeyStore

logger = logging.getLogger("ledger.vault")


class _Snapshot(NamedTuple):
    keys: dict[str, KeyMetadata]
    current_key_id: str | None


class RegistryTransaction:
    """Mutable working copy of the registry used inside ``transaction()``."""

    def __init__(self, snapshot: _Snapshot):
        self.keys = dict(snapshot.keys)
        self.current_key_id = snapshot.current_key_id

    def get(self, key_id: str) -> KeyMetadata | None:
        return self.keys.get(key_id)

    def require(self, key_id: str) -> KeyMetadata:
        try:
            return self.keys[key_id]
        except KeyError:
            raise KeyNotFoundError(key_id) from None

    def current(self) -> KeyMetadata | None:
        if self.current_key_id is None:
            return None
        return self.keys.get(self.current_key_id)

    def put(self, metadata: KeyMetadata) -> KeyMetadata:
        """Insert or replace an entry."""
        self.keys[metadata.id] = metadata
        return metadata

    def register(self, metadata: KeyMetadata) -> KeyMetadata:
        """Add a new key. An active key becomes the current key."""
        if metadata.id in self.keys:
            raise KeyStateError(f"Key {metadata.id} is already registered")
        if metadata.status is KeyStatus.ACTIVE:
            current = self.current()
            if current is not None and current.status is KeyStatus.ACTIVE:
                raise KeyStateError(
                    f"Cannot register active key {metadata.id}: "
                    f"key {current.id} is already active"
                )
            self.current_key_id = metadata.id
        return self.put(metadata)

    def revoke(self, key_id: str, reason: str) -> KeyMetadata:
        meta = self.require(key_id)
        if meta.status is KeyStatus.REVOKED:
            logger.debug("Key %s is already revoked", key_id)
            return meta
        revoked = meta.transition(
            KeyStatus.REVOKED, revoked_at=utcnow(), revocation_reason=reason,
        )
        logger.warning("Key %s revoked: %s", key_id, reason)
        return self.put(revoked)

    def purge(self, retain: int) -> list[str]:
        """Remove the oldest deprecated keys beyond ``retain``."""
        if retain < 0:
            raise ValueError("retain must be zero or positive")
        deprecated = sorted(
            (k for k in self.keys.values() if k.status is KeyStatus.DEPRECATED),
            key=lambda k: (k.version, k.created_at),
            reverse=True,
        )
        removed = [k.id for k in deprecated[retain:]]
        for key_id in removed:
            del self.keys[key_id]
        return removed

    def validate(self) -> None:
        """Check that exactly one key is active and that it is current."""
        if not self.keys:
            if self.current_key_id is not None:
                raise KeyStateError("Current key id set on an empty registry")
            return
        active = [k.id for k in self.keys.values() if k.status is KeyStatus.ACTIVE]
        if len(active) != 1:
            raise KeyStateError(
                f"Exactly one active key is required, found {len(active)}"
            )
        if self.current_key_id != active[0]:
            raise KeyStateError(
                f"Current key {self.current_key_id} is not the active key {active[0]}"
            )


class KeyRegistry:
    """Tracks every key's metadata and the current key id."""

    def __init__(self, store: KeyStore | None = None):
        self._lock = threading.RLock()
        self._store = store
        self._state = _Snapshot({}, None)
        if store is not None:
            saved = store.load()
            if saved is not None:
                self._restore(saved)

    def _restore(self, saved: RegistryState) -> None:
        work = RegistryTransaction(
            _Snapshot({k.id: k for k in saved.keys}, saved.current_key_id)
        )
        work.validate()
        self._state = _Snapshot(work.keys, work.current_key_id)
        logger.info(
            "Key registry restored: %d key(s), current=%s",
            len(work.keys), work.current_key_id,
        )

    def __len__(self) -> int:
        return len(self._state.keys)

    def __contains__(self, key_id: object) -> bool:
        return key_id in self._state.keys

    @property
    def current_key_id(self) -> str | None:
        return self._state.current_key_id

    def current(self) -> KeyMetadata:
        """Return the metadata of the current active key.

        Raises:
            KeyStateError: If no key has been registered yet.
        """
        state = self._state
        if state.current_key_id is None:
            raise KeyStateError("Key registry has no active key")
        return state.keys[state.current_key_id]

    def get(self, key_id: str) -> KeyMetadata | None:
        return self._state.keys.get(key_id)

    def require(self, key_id: str) -> KeyMetadata:
        """Return metadata for ``key_id``.

        Raises:
            KeyNotFoundError: If the key is unknown or was purged.
        """
        meta = self._state.keys.get(key_id)
        if meta is None:
            raise KeyNotFoundError(key_id)
        return meta

    def to_state(self) -> RegistryState:
        state = self._state
        return RegistryState(
            current_key_id=state.current_key_id, keys=list(state.keys.values()),
        )

    @contextmanager
    def transaction(self) -> Iterator[RegistryTransaction]:
        """Serialized unit of work over the registry.

        Changes made to the yielded working copy are validated, written to
        the store and published together when the block exits normally. If
        the block, the validation or the store write raises, the registry
        is left untouched. A unit of work that changes nothing is not
        written.
        """
        with self._lock:
            state = self._state
            work = RegistryTransaction(state)
            yield work
            if (
                work.current_key_id == state.current_key_id
                and work.keys == state.keys
            ):
                return
            work.validate()
            if self._store is not None:
                self._store.save(
                    RegistryState(
                        current_key_id=work.current_key_id,
                        keys=list(work.keys.values()),
                    )
                )
            self._state = _Snapshot(work.keys, work.current_key_id)

    def register(self, metadata: KeyMetadata) -> KeyMetadata:
        with self.transaction() as txn:
            return txn.register(metadata)

    def revoke(self, key_id: str, reason: str) -> KeyMetadata:
        """Mark a key revoked. Irreversible.

        The current key cannot be revoked on its own because the registry
        would be left without an active key; use
        ``RotationCoordinator.revoke_key`` which rotates first.
        """
        with self.transaction() as txn:
            return txn.revoke(key_id, reason)

    def purge(self, retain: int) -> list[str]:
        """Remove the oldest deprecated keys beyond ``retain``.

        Active, rotating and revoked keys are never removed.

        Returns:
            Ids of the removed keys.
        """
        with self.transaction() as txn:
            removed = txn.purge(retain)
        if removed:
            logger.info("Purged %d deprecated key(s): %s", len(removed), removed)
        return removed

    # defined last: the name shadows the builtin inside the class body
    def list(self) -> list[KeyMetadata]:
        """Return every registered key, in registration order."""
        return list(self._state.keys.values())
