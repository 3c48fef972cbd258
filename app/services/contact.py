"""
Irshad Backend: Contact Normalization
======================================

What:  Normalizes and validates email addresses, phone numbers and names.
Who:   Request schemas (field validators), registration service, billing
       matcher (Stripe custom fields arrive in free-form text).

Stored contact values are always the normalized form, so every lookup in
the codebase compares normalized input against normalized rows:

    "  Parent@Example.COM "  → "parent@example.com"
    "+1 (612) 555-0100"      → "6125550100"
    "612.555.0100"           → "6125550100"
    "555-0100"               → None (not a full US number)
"""

import re
from typing import Optional

# Accepts 555-0100, (612) 555-0100, +1 612.555.0100 and similar
PHONE_PATTERN = re.compile(r"^(\+?1[-.\s]?)?(\(?\d{3}\)?[-.\s]?)?\d{3}[-.\s]?\d{4}$")

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_HTML_PATTERN = re.compile(r"<[^>]*>")
_NON_DIGITS = re.compile(r"\D")


def normalize_email(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    email = value.strip().lower()
    return email or None


def is_valid_email(value: Optional[str]) -> bool:
    if not value:
        return False
    return bool(_EMAIL_PATTERN.match(value.strip()))


def normalize_phone(value: Optional[str]) -> Optional[str]:
    """
    Reduce a US phone number to its 10 digits.

    A leading country code 1 on an 11-digit number is dropped. Anything
    that does not come out at exactly 10 digits returns None.
    """
    if not value:
        return None
    digits = _NON_DIGITS.sub("", str(value))
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    if len(digits) != 10:
        return None
    return digits


def is_valid_phone(value: Optional[str]) -> bool:
    if not value:
        return False
    return bool(PHONE_PATTERN.match(value.strip()))


def contains_html(value: Optional[str]) -> bool:
    if not value:
        return False
    return bool(_HTML_PATTERN.search(value))
