"""
Display masking for sensitive values.

Purely textual redaction used when rendering values; it has no relation to
how the value is encrypted at rest.
"""
from enum import Enum


class MaskKind(str, Enum):
    ACCOUNT = "account"
    CARD = "card"
    SSN = "ssn"
    PHONE = "phone"
    DEFAULT = "default"


def mask_sensitive_data(
    value: str | None,
    kind: MaskKind | str = MaskKind.DEFAULT,
) -> str | None:
    """Return a masked version of ``value`` for display.

    >>> mask_sensitive_data("1234567890123456", "card")
    '1234 **** **** 3456'
    >>> mask_sensitive_data("000123456789", "account")
    '****6789'

    Unknown kinds are masked with the default rule. Empty values pass
    through unchanged.
    """
    if not value:
        return value
    try:
        kind = MaskKind(kind)
    except ValueError:
        kind = MaskKind.DEFAULT

    if kind is MaskKind.ACCOUNT:
        # last 4 digits
        return f"****{value[-4:]}" if len(value) > 4 else "****"
    if kind is MaskKind.CARD:
        # first 4 and last 4
        if len(value) >= 8:
            return f"{value[:4]} **** **** {value[-4:]}"
        return "****"
    if kind is MaskKind.SSN:
        return f"***-**-{value[-4:]}" if len(value) > 4 else "***-**-****"
    if kind is MaskKind.PHONE:
        # area code and last 4
        if len(value) >= 10:
            return f"({value[:3]}) ***-{value[-4:]}"
        return "(***) ***-****"
    if len(value) > 2:
        return f"{value[0]}{'*' * (len(value) - 2)}{value[-1]}"
    return "*" * len(value)
