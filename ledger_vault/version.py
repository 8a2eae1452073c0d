"""Ledger Vault Meta information.
   Ledger Vault protects sensitive financial fields with versioned,
   rotatable encryption keys.
"""
__title__ = 'ledger_vault'
__description__ = (
   'Ledger Vault protects sensitive financial fields with versioned, '
   'rotatable encryption keys.'
)
__version__ = '0.3.0'
__license__ = 'Apache-2.0'
