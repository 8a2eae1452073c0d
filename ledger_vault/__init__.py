"""Ledger Vault.

Field-level encryption, key rotation and searchable hashing for sensitive
financial records.
"""
from .version import __version__
from .masking import MaskKind, mask_sensitive_data
from .vault import KeyManagementContext, VaultConfig

__all__ = [
    "__version__",
    "MaskKind",
    "mask_sensitive_data",
    "KeyManagementContext",
    "VaultConfig",
]
