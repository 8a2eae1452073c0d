"""
Key Store — durable persistence of the key registry.

The registry writes its full state to the store before acknowledging a
rotation or revocation, so the deprecated-key history needed to decrypt
existing data survives a crash.
"""
import os
import logging
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

import orjson
from pydantic import ValidationError

from .exceptions import KeyStoreError
from .models import RegistryState

logger = logging.getLogger("ledger.vault")


class KeyStore(ABC):
    """Abstract interface for registry storage backends."""

    @abstractmethod
    def load(self) -> RegistryState | None:
        """Return the last saved state, or None if nothing was saved yet."""

    @abstractmethod
    def save(self, state: RegistryState) -> None:
        """Persist ``state``. Must not return before the write is durable."""


class MemoryKeyStore(KeyStore):
    """Keeps the last saved state in process memory."""

    def __init__(self, state: RegistryState | None = None):
        self._state = state

    def load(self) -> RegistryState | None:
        return self._state

    def save(self, state: RegistryState) -> None:
        self._state = state.model_copy(deep=True)


class FileKeyStore(KeyStore):
    """JSON file store.

    Writes go to a temporary file in the same directory which is fsynced and
    then atomically renamed over the registry file.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def __repr__(self) -> str:
        return f"<FileKeyStore path={self.path}>"

    def load(self) -> RegistryState | None:
        if not self.path.exists():
            return None
        try:
            data = orjson.loads(self.path.read_bytes())
            state = RegistryState.model_validate(data)
        except (OSError, orjson.JSONDecodeError, ValidationError) as err:
            raise KeyStoreError(
                f"Unable to read key registry from {self.path}: {err}"
            ) from err
        logger.debug(
            "Loaded key registry from %s: %d key(s)", self.path, len(state.keys)
        )
        return state

    def save(self, state: RegistryState) -> None:
        payload = orjson.dumps(
            state.model_dump(mode="json"), option=orjson.OPT_INDENT_2
        )
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", dir=directory
            )
            try:
                with os.fdopen(fd, "wb") as fp:
                    fp.write(payload)
                    fp.flush()
                    os.fsync(fp.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as err:
            raise KeyStoreError(
                f"Unable to write key registry to {self.path}: {err}"
            ) from err
        logger.debug("Key registry written to %s", self.path)
