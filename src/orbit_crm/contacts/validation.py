"""Email and phone validation helpers for contact data."""

import re

import phonenumbers

# RFC 5322 simplified
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
DEFAULT_REGION = "CH"


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_RE.match(email))


def normalize_email(email: str) -> str:
    return email.strip().lower()


def is_valid_phone(phone: str, region: str = DEFAULT_REGION) -> bool:
    """Empty phone numbers are valid (the field is optional)."""
    if not phone:
        return True
    try:
        return phonenumbers.is_valid_number(phonenumbers.parse(phone, region))
    except phonenumbers.NumberParseException:
        return False


def to_e164(phone: str, region: str = DEFAULT_REGION) -> str:
    """Format as E.164, returning the input unchanged if it cannot be parsed."""
    if not phone:
        return ""
    try:
        number = phonenumbers.parse(phone, region)
    except phonenumbers.NumberParseException:
        return phone
    return phonenumbers.format_number(number, phonenumbers.PhoneNumberFormat.E164)
