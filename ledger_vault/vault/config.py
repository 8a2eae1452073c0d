"""
Vault Configuration — master key loading and the validated VaultConfig model.

Reads settings from environment variables:
    VAULT_MASTER_KEY = <secret string, at least 32 characters>
    VAULT_CIPHER_BACKEND = aesgcm | chacha20
    VAULT_KDF_ITERATIONS = <integer>
    VAULT_KEY_RETENTION = <number of deprecated keys kept by cleanup>
    VAULT_MAX_KEY_AGE_HOURS = <rotation policy threshold>
    VAULT_REGISTRY_PATH = <path of the JSON key registry file>
    VAULT_ALLOW_EPHEMERAL_KEY = true | false

Security Note:
    Never log key material. Only log key IDs and version numbers.
"""
import os
import secrets
import logging

from pydantic import BaseModel, Field, SecretStr, field_validator

from .exceptions import ConfigurationError

logger = logging.getLogger("ledger.vault")

MIN_MASTER_KEY_LENGTH = 32

_TRUTHY = frozenset({"1", "true", "yes", "on"})


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def generate_master_key() -> str:
    """Generate a random 64-character (32-byte hex) master key.

    Operators use this to provision VAULT_MASTER_KEY.

    Returns:
        Hex-encoded 32-byte key string.
    """
    return secrets.token_hex(32)


def load_master_key(allow_ephemeral: bool | None = None) -> str:
    """Load the master key from the VAULT_MASTER_KEY environment variable.

    When the key is missing or shorter than 32 characters and the ephemeral
    fallback is allowed, a random key is generated instead. Data encrypted
    under that key cannot be decrypted after the process restarts.

    Args:
        allow_ephemeral: Permit the generated fallback key. Defaults to the
            VAULT_ALLOW_EPHEMERAL_KEY environment variable.

    Returns:
        The master key string.

    Raises:
        ConfigurationError: If the key is missing or too short and the
            fallback is not allowed.
    """
    if allow_ephemeral is None:
        allow_ephemeral = _env_flag("VAULT_ALLOW_EPHEMERAL_KEY")
    key = os.environ.get("VAULT_MASTER_KEY")
    if key and len(key) >= MIN_MASTER_KEY_LENGTH:
        return key
    if key:
        problem = (
            f"VAULT_MASTER_KEY must be at least {MIN_MASTER_KEY_LENGTH} "
            f"characters long, got {len(key)}"
        )
    else:
        problem = "VAULT_MASTER_KEY environment variable is not set"
    if not allow_ephemeral:
        raise ConfigurationError(
            f"{problem}. Generate one with generate_master_key() or set "
            "VAULT_ALLOW_EPHEMERAL_KEY=true for local development"
        )
    logger.warning(
        "%s. Using a generated ephemeral master key - encrypted data will "
        "NOT be decryptable after a restart. Do not use in production.",
        problem,
    )
    return generate_master_key()


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    master_key: SecretStr
    cipher_backend: str = Field(default="aesgcm")
    kdf_iterations: int = Field(default=100_000, ge=1)
    salt_size: int = Field(default=16, ge=16, le=64)
    key_retention: int = Field(default=3, ge=0)
    max_key_age_hours: float = Field(default=24 * 30, gt=0)
    registry_path: str | None = None
    allow_ephemeral_key: bool = False

    @field_validator("master_key")
    @classmethod
    def validate_master_key(cls, v: SecretStr) -> SecretStr:
        """Ensure the master key is long enough."""
        if len(v.get_secret_value()) < MIN_MASTER_KEY_LENGTH:
            raise ValueError(
                f"master_key must be at least {MIN_MASTER_KEY_LENGTH} characters long"
            )
        return v

    @field_validator("cipher_backend")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Normalize the backend name and reject unknown ciphers."""
        v = v.lower()
        if v not in ("aesgcm", "chacha20"):
            raise ValueError(f"Unsupported cipher backend: {v}")
        return v

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Build a VaultConfig from the VAULT_* environment variables.

        Returns:
            The validated configuration.

        Raises:
            ConfigurationError: If the master key is unusable and the
                ephemeral fallback is disabled.
        """
        allow_ephemeral = _env_flag("VAULT_ALLOW_EPHEMERAL_KEY")
        master_key = load_master_key(allow_ephemeral)
        return cls(
            master_key=master_key,
            cipher_backend=os.environ.get("VAULT_CIPHER_BACKEND", "aesgcm"),
            kdf_iterations=int(os.environ.get("VAULT_KDF_ITERATIONS", 100_000)),
            key_retention=int(os.environ.get("VAULT_KEY_RETENTION", 3)),
            max_key_age_hours=float(
                os.environ.get("VAULT_MAX_KEY_AGE_HOURS", 24 * 30)
            ),
            registry_path=os.environ.get("VAULT_REGISTRY_PATH") or None,
            allow_ephemeral_key=allow_ephemeral,
        )
