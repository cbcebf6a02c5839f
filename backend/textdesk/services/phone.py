"""Phone number normalization.

Every phone number is normalized to E.164 before it is stored, looked up or
compared. Two spellings of one real number must collapse to one identity.
"""

import re

from textdesk.services.errors import ValidationError

E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")
_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: str | None) -> str | None:
    """Normalize a phone number to E.164, or return None if it has no valid shape.

    - 10 digits → US number, ``+1`` prepended
    - 11 digits starting with ``1`` → US number with country code
    - leading ``+`` with 2–15 digits, first digit 1–9 → already E.164
    """
    if raw is None:
        return None

    value = raw.strip()
    digits = _NON_DIGITS.sub("", value)

    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    if value.startswith("+"):
        candidate = f"+{digits}"
        if E164_PATTERN.match(candidate):
            return candidate
    return None


def require_phone(raw: str | None) -> str:
    """Like normalize_phone, but raises ValidationError on bad input."""
    normalized = normalize_phone(raw)
    if normalized is None:
        raise ValidationError("Phone number must be in E.164 format (e.g., +15551234567)")
    return normalized


def is_valid_e164(value: str | None) -> bool:
    return bool(value) and E164_PATTERN.match(value) is not None


def phone_variants(e164: str) -> list[str]:
    """Textual forms a legacy row may hold for one E.164 number.

    Read-side matching only; writes always use the E.164 form.
    """
    variants = [e164]
    digits = e164.lstrip("+")
    variants.append(digits)
    if digits.startswith("1") and len(digits) == 11:
        variants.append(digits[1:])
    return variants
