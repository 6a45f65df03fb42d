"""E.164 formatting for numbers written to the address book."""

import phonenumbers

from contactsaver.domain.numbers import digits_of


def to_e164(phone: str, default_region: str | None = None) -> str:
    """Return the E.164 form of phone.

    A PhoneKey has no leading +, so it is parsed as international first. Falls
    back to "+<digits>" when phonenumbers does not consider the number valid.
    """
    digits = digits_of(phone)
    if not digits:
        return ""
    raw = str(phone).strip()
    candidate = raw if raw.startswith("+") or default_region else f"+{digits}"
    try:
        parsed = phonenumbers.parse(candidate, default_region)
    except phonenumbers.NumberParseException:
        return f"+{digits}"
    if not phonenumbers.is_valid_number(parsed):
        return f"+{digits}"
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


def search_forms(phone: str) -> list[str]:
    """Spellings of phone that an address-book prefix search can match.

    E.164 first, then the same digits without "+", then the national form
    ("08051378960") when phonenumbers knows the country.
    """
    e164 = to_e164(phone)
    if not e164:
        return []
    forms = [e164, e164.lstrip("+")]
    try:
        parsed = phonenumbers.parse(e164, None)
    except phonenumbers.NumberParseException:
        parsed = None
    if parsed is not None and phonenumbers.is_valid_number(parsed):
        national = phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.NATIONAL)
        forms.append(digits_of(national))
    return list(dict.fromkeys(f for f in forms if f))
