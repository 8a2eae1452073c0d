"""
Sensitive field catalogue — purposes, document types and the fields to encrypt.

The field names are the keys used by the persistent object store
(camelCase), not Python identifiers.
"""
from enum import Enum
from types import MappingProxyType


class Purpose(str, Enum):
    """Data category used for key domain separation."""

    TRANSACTIONS = "transactions"
    USERS = "users"
    ACCOUNTS = "accounts"
    INVESTMENTS = "investments"
    INCOME = "income"
    TEMPORARY = "temporary"
    SEARCH = "search"

    @classmethod
    def coerce(cls, value: "Purpose | str") -> "Purpose":
        """Return ``value`` as a Purpose.

        Document type names (``"user"``, ``"bankAccount"``, ...) are
        accepted as aliases of the purpose their records are encrypted with.

        Raises:
            ValueError: If ``value`` is neither a purpose nor a document type.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, DocumentType):
            return DOCUMENT_PURPOSES[value]
        try:
            return cls(value)
        except ValueError:
            pass
        try:
            return DOCUMENT_PURPOSES[DocumentType(value)]
        except ValueError:
            raise ValueError(
                f"Unknown purpose: {value!r} "
                f"(expected one of {[p.value for p in cls]})"
            ) from None


class DocumentType(str, Enum):
    """Kinds of records stored with encrypted fields."""

    TRANSACTION = "transaction"
    BANK_ACCOUNT = "bankAccount"
    INVESTMENT = "investment"
    USER = "user"
    INCOME = "income"

    @classmethod
    def coerce(cls, value: "DocumentType | str") -> "DocumentType":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown document type: {value!r}") from None


SENSITIVE_FIELDS = MappingProxyType({
    DocumentType.TRANSACTION: ("accountNumber", "routingNumber", "cardNumber", "notes"),
    DocumentType.BANK_ACCOUNT: ("accountNumber", "routingNumber", "loginCredentials"),
    DocumentType.INVESTMENT: ("accountNumber", "apiKey", "apiSecret"),
    DocumentType.USER: ("ssn", "taxId", "dob", "phoneNumber"),
    DocumentType.INCOME: ("employerTaxId", "payrollId"),
})

DOCUMENT_PURPOSES = MappingProxyType({
    DocumentType.TRANSACTION: Purpose.TRANSACTIONS,
    DocumentType.BANK_ACCOUNT: Purpose.ACCOUNTS,
    DocumentType.INVESTMENT: Purpose.INVESTMENTS,
    DocumentType.USER: Purpose.USERS,
    DocumentType.INCOME: Purpose.INCOME,
})

# Decrypted values of these fields are parsed back to numbers.
AMOUNT_FIELDS = frozenset({
    "amount",
    "balance",
    "currentAmount",
    "targetAmount",
    "monthlyPayment",
    "interestRate",
    "principal",
    "netWorth",
    "totalAssets",
    "totalLiabilities",
})


def fields_for(document_type: DocumentType | str) -> tuple[str, ...]:
    """Return the sensitive field names configured for ``document_type``."""
    return SENSITIVE_FIELDS[DocumentType.coerce(document_type)]


def purpose_for(document_type: DocumentType | str) -> Purpose:
    """Return the key purpose used for ``document_type``."""
    return DOCUMENT_PURPOSES[DocumentType.coerce(document_type)]
