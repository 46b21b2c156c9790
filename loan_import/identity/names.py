"""Name and phone canonicalization rules."""

import re

NULL_TOKENS = frozenset({"NA", "N/A", "N", "UNDEFINED", "PENDIENTE", "NULL", "NONE", "-"})

_WHITESPACE = re.compile(r"\s+")


def normalize_name(value: str | None) -> str:
    """Trim, upper-case and collapse inner whitespace."""
    if value is None:
        return ""
    return _WHITESPACE.sub(" ", str(value)).strip().upper()


def is_null_like(value: str | None) -> bool:
    """Empty or one of the placeholder tokens used in the sheets."""
    text = normalize_name(value)
    return not text or text in NULL_TOKENS


def is_valid_phone(phone: str | None) -> bool:
    """A phone is usable when it has a digit, is not a placeholder and is not all zeros."""
    if phone is None:
        return False
    text = str(phone).strip()
    if not text or is_null_like(text):
        return False
    digits = [c for c in text if c.isdigit()]
    if not digits:
        return False
    return any(c != "0" for c in digits)


def should_update_phone(stored: str | None, incoming: str | None) -> bool:
    """Whether ``incoming`` replaces ``stored``.

    Update iff the incoming phone is valid and either differs from the
    stored one or the stored one is invalid/absent.
    """
    if not is_valid_phone(incoming):
        return False
    incoming = str(incoming).strip()
    if not is_valid_phone(stored):
        return True
    return incoming != str(stored).strip()
