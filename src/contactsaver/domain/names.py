"""Name rules: what a contact may send as their name, and which passive names are usable labels."""

import re

from contactsaver.domain.errors import ValidationError

MAX_WORDS = 2
MIN_FIRST_WORD_LETTERS = 3
MAX_LETTERS = 12
MIN_PROFILE_LENGTH = 2
MAX_PROFILE_LENGTH = 50
MIN_PROFILE_LETTERS = 2

# Unicode letters (diacritics included), joined by single space, hyphen or apostrophe.
_NAME_PATTERN = re.compile(r"^[^\W\d_]+(?:[ '’-][^\W\d_]+)*$")
_LETTER = re.compile(r"[^\W\d_]")
_JUST_NUMBER = re.compile(r"^\+?\d{7,15}$")
_PHONE_LIKE = re.compile(r"^\+?[\d\s()-]+$")

JUNK_TOKENS = frozenset(
    {
        "hi", "hello", "hey", "yo", "sup", "bro", "ok", "okay", "kk", "k",
        "yes", "no", "test", "testing", "hmm", "lol",
    }
)

SENTENCE_OPENERS = (
    "my name is", "my names", "i am", "i'm", "im", "i have", "i bought",
    "i buy", "i want", "i need", "i will", "i would", "i was", "i just",
    "am buying", "i paid", "i sent", "this is", "it's", "its", "hello",
    "hi", "hey", "good morning", "good afternoon", "good evening",
)


def sanitize_text(value: object) -> str:
    """Collapse runs of whitespace and trim."""
    return re.sub(r"\s+", " ", str(value or "")).strip()


def words(name: str) -> list[str]:
    return [w for w in name.split(" ") if w]


def letter_count(value: str) -> int:
    return len(_LETTER.findall(value))


def looks_like_number(value: str | None) -> bool:
    """True for strings that are just a phone number, e.g. a display name nobody set."""
    return bool(_JUST_NUMBER.match(re.sub(r"\s+", "", value or "")))


def looks_like_sentence(name: str) -> bool:
    text = f" {name.lower()} "
    return any(f" {opener} " in text for opener in SENTENCE_OPENERS)


def profile_name(raw: object) -> str | None:
    """Clean a name the contact or the channel chose, or None when it is no use as a label.

    Looser than validate_name: digits, dots and emoji are fine, but fillers,
    sentences and bare numbers are not.
    """
    name = sanitize_text(raw)
    if not MIN_PROFILE_LENGTH <= len(name) <= MAX_PROFILE_LENGTH:
        return None
    if letter_count(name) < MIN_PROFILE_LETTERS:
        return None
    if _PHONE_LIKE.match(name) or name.lower() in JUNK_TOKENS:
        return None
    if looks_like_sentence(name):
        return None
    return name


def apply_tag(name: str, tag: str | None) -> str:
    """Append the owner's tag: apply_tag("Amaka", "FB") == "Amaka FB"."""
    return sanitize_text(f"{name} {tag or ''}")


def validate_name(raw: object) -> str:
    """Return the cleaned name, or raise ValidationError naming the broken rule."""
    name = sanitize_text(raw)
    if not name:
        raise ValidationError("Please send your name only (1 or 2 words).")

    if looks_like_sentence(name):
        raise ValidationError(
            "Name rejected.\nThat looks like a sentence.\nSend only your name."
        )

    parts = words(name)
    if len(parts) > MAX_WORDS:
        raise ValidationError(
            "Name rejected.\nSend 1 or 2 words only.\n"
            "Examples: Justice / Maxwell / Justice Tech"
        )

    if not _NAME_PATTERN.match(name):
        raise ValidationError(
            "Name rejected.\nUse letters only.\n"
            "Allowed: space, hyphen (-), apostrophe (')"
        )

    if any(part.lower() in JUNK_TOKENS for part in parts):
        raise ValidationError(
            "Name rejected.\nUse a real name or nickname, not a greeting or filler word."
        )

    if letter_count(parts[0]) < MIN_FIRST_WORD_LETTERS:
        raise ValidationError(
            "Name rejected.\nUse a real name or nickname "
            f"(first word must be at least {MIN_FIRST_WORD_LETTERS} letters)."
        )

    letters = letter_count(name)
    if letters > MAX_LETTERS:
        raise ValidationError(
            f"Name rejected.\nMax {MAX_LETTERS} letters total.\n"
            f"You sent: {letters} letters."
        )

    return name
