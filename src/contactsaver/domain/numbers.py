"""Number canonicalisation: PhoneKey for storage, FuzzyKey for cross-source joins.

Pure functions. Remote address books store the same number as "+234 805 ...",
"0805..." or "234805...", so lookups across sources join on the FuzzyKey
(last 9 digits) while the ledger is keyed by the full PhoneKey.
"""

import re

from contactsaver.domain.errors import InvalidNumber

MIN_DIGITS = 8
MAX_DIGITS = 15
FUZZY_LENGTH = 9
MIN_TRUSTED_FUZZY = 7

_NON_DIGIT = re.compile(r"\D")


def _local_part(raw: object) -> str:
    """Drop a channel suffix ("@server") and a device suffix (":12") from a handle."""
    text = str(raw if raw is not None else "").strip()
    if "@" in text:
        text = text.split("@", 1)[0]
    if ":" in text:
        text = text.split(":", 1)[0]
    return text


def digits_of(raw: object) -> str:
    return _NON_DIGIT.sub("", str(raw if raw is not None else ""))


def canonicalize(raw: object) -> str:
    """Return the PhoneKey for raw, or raise InvalidNumber.

    canonicalize(canonicalize(x)) == canonicalize(x) for every accepted x.
    """
    digits = digits_of(_local_part(raw)).lstrip("0")
    if not MIN_DIGITS <= len(digits) <= MAX_DIGITS:
        raise InvalidNumber(raw)
    return digits


def try_canonicalize(raw: object) -> str | None:
    try:
        return canonicalize(raw)
    except InvalidNumber:
        return None


def fuzzy_key(raw: object) -> str:
    """Last 9 digits after leading zeros are stripped. May be shorter than 9."""
    return digits_of(_local_part(raw)).lstrip("0")[-FUZZY_LENGTH:]


def trusted_fuzzy_key(raw: object) -> str | None:
    """FuzzyKey, or None when it is too short to trust as a match."""
    key = fuzzy_key(raw)
    if len(key) < MIN_TRUSTED_FUZZY:
        return None
    return key


def is_phone_shaped(handle: str, phone_suffixes: tuple[str, ...]) -> bool:
    """True when the handle already carries the phone number.

    A bare number ("+234 805 ...") or a handle on one of phone_suffixes
    ("2348051378960@s.whatsapp.net") qualifies; opaque handles do not.
    """
    text = (handle or "").strip()
    if not text:
        return False
    if "@" in text:
        if not any(text.endswith(suffix) for suffix in phone_suffixes):
            return False
        text = _local_part(text)
    return bool(re.fullmatch(r"\+?[\d\s().-]+", text)) and bool(digits_of(text))


def handle_digits(handle: object) -> str:
    """Digits of a handle's local part, ignoring "@server" and ":device" suffixes."""
    return digits_of(_local_part(handle))
