"""
Identity Utilities
==================
Normalization and masking for phone numbers and email addresses.
"""

import re

E164_PATTERN = re.compile(r'^\+[1-9]\d{1,14}$')
EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


def is_email(identity: str) -> bool:
    return "@" in identity


def validate_e164(phone: str) -> bool:
    """Validate E.164 phone number format."""
    return bool(E164_PATTERN.match(phone))


def normalize_phone(phone: str, default_country: str = "1") -> str:
    """
    Normalize a phone number to E.164 format.

    Args:
        phone: Raw phone number
        default_country: Default country code (without +)

    Returns:
        E.164 formatted number
    """
    phone = phone.strip()
    digits = re.sub(r'\D', '', phone)

    if phone.startswith('+'):
        return f"+{digits}"

    # 10 digits: assume US/Canada
    if len(digits) == 10:
        return f"+{default_country}{digits}"

    if len(digits) == 11 and digits.startswith('1'):
        return f"+{digits}"

    return f"+{digits}"


def normalize_email(email: str) -> str:
    return email.strip().lower()


def normalize_identity(identity: str, default_country: str = "1") -> str:
    """
    Normalize an identity so that (identity, purpose) keys are stable.

    Emails are trimmed and lower-cased, anything else is treated as a phone
    number and converted to E.164.

    Raises:
        ValueError: If the result is not a valid email or E.164 number
    """
    if not identity or not identity.strip():
        raise ValueError("Identity must not be empty")

    if is_email(identity):
        normalized = normalize_email(identity)
        if not EMAIL_PATTERN.match(normalized):
            raise ValueError("Invalid email address")
        return normalized

    normalized = normalize_phone(identity, default_country)
    if not validate_e164(normalized):
        raise ValueError("Invalid phone number")
    return normalized


def mask_identity(identity: str) -> str:
    """
    Mask an identity for logs.

    ``+15551234567`` -> ``+155****4567``, ``jane@example.com`` -> ``j***@example.com``
    """
    if is_email(identity):
        local, _, domain = identity.partition("@")
        return f"{local[:1]}***@{domain}"
    if len(identity) <= 6:
        return "****"
    return f"{identity[:4]}****{identity[-4:]}"
